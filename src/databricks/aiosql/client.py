import logging
from typing import Dict, Optional

import httpx

from databricks.aiosql.backend.driver import Driver
from databricks.aiosql.backend.rest.driver import RestDriver, extract_warehouse_id
from databricks.aiosql.backend.rest.http_client import RestHttpClient
from databricks.aiosql.config import ClientConfig
from databricks.aiosql.context import ClientContext
from databricks.aiosql.exc import InterfaceError, InvalidServerResponseError
from databricks.aiosql.session import Session
from databricks.aiosql.status import Status
from databricks.aiosql.utils import CloseableCollection

logger = logging.getLogger(__name__)

USER_AGENT_NAME = "PyDatabricksSqlAio"


def build_user_agent(user_agent_entry: Optional[str] = None) -> str:
    from databricks.aiosql import __version__

    user_agent = "{}/{}".format(USER_AGENT_NAME, __version__)
    if user_agent_entry:
        user_agent = "{} ({})".format(user_agent, user_agent_entry)
    return user_agent


class Client:
    """
    Entry point: connects to a Databricks SQL warehouse and opens sessions.

    Example:
        async with Client() as client:
            await client.connect(host, "/sql/1.0/warehouses/abc", token)
            async with await client.open_session() as session:
                operation = await session.execute_statement("SELECT 1 AS x")
                print(await operation.fetch_all())
    """

    def __init__(self, config: Optional[ClientConfig] = None):
        self.config = config or ClientConfig()
        self._context: Optional[ClientContext] = None
        self._owned_http_client: Optional[httpx.AsyncClient] = None
        self._sessions: CloseableCollection[Session] = CloseableCollection()

    @property
    def context(self) -> ClientContext:
        if self._context is None:
            raise InterfaceError("Client is not connected")
        return self._context

    @property
    def is_connected(self) -> bool:
        return self._context is not None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_value, traceback):
        await self.close()

    async def connect(
        self,
        server_hostname: str,
        http_path: str,
        access_token: Optional[str] = None,
        port: int = 443,
        http_headers: Optional[Dict[str, str]] = None,
        driver: Optional[Driver] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> "Client":
        """
        Connect to a SQL warehouse.

        Args:
            server_hostname: Workspace host name, e.g. dbc-xxx.cloud.databricks.com
            http_path: HTTP path of the warehouse, e.g. /sql/1.0/warehouses/abc
            access_token: Personal access token sent as a bearer token
            port: HTTPS port
            http_headers: Extra headers sent with every API request
            driver: Use this driver instead of the REST driver
            http_client: Use this httpx client instead of creating one; the
                caller stays responsible for closing it

        Returns:
            Client: self, to allow chaining
        """
        if self._context is not None:
            raise InterfaceError("Client is already connected")

        warehouse_id = extract_warehouse_id(http_path) if driver is None else None

        if http_client is None:
            http_client = httpx.AsyncClient(
                timeout=self.config.socket_timeout,
                limits=httpx.Limits(
                    max_connections=self.config.cloud_fetch_concurrent_downloads * 2
                ),
            )
            self._owned_http_client = http_client

        if driver is None:
            headers = {"User-Agent": build_user_agent(self.config.user_agent_entry)}
            if access_token:
                headers["Authorization"] = "Bearer {}".format(access_token)
            headers.update(http_headers or {})
            rest_client = RestHttpClient(
                http_client,
                "https://{}:{}".format(server_hostname, port),
                self.config,
                headers,
            )
            driver = RestDriver(rest_client, warehouse_id)

        self._context = ClientContext(self.config, driver, http_client)
        logger.info("Connected to %s%s", server_hostname, http_path)
        return self

    async def open_session(
        self,
        catalog: Optional[str] = None,
        schema: Optional[str] = None,
        configuration: Optional[Dict[str, str]] = None,
    ) -> Session:
        """Open a session, optionally with an initial catalog and schema"""
        context = self.context
        response = await context.driver.open_session(catalog, schema, configuration)
        Status.raise_for_status(response.status)
        if response.session_handle is None:
            raise InvalidServerResponseError(
                "Open session response does not contain a session handle"
            )

        session = Session(context, response.session_handle)
        self._sessions.add(session)
        return session

    async def close(self):
        """Close every open session, then release the driver and HTTP client"""
        if self._context is None:
            return

        context = self._context
        try:
            await self._sessions.close_all()
        finally:
            self._context = None
            await context.driver.close()
            if self._owned_http_client is not None:
                await self._owned_http_client.aclose()
                self._owned_http_client = None
        logger.info("Client closed")
