from typing import Optional

import httpx

from databricks.aiosql.backend.driver import Driver
from databricks.aiosql.config import ClientConfig
from databricks.aiosql.exc import InterfaceError


class ClientContext:
    """Everything a session, operation or result handler needs from its client.

    Passed explicitly to constructors; components never reach for shared
    module state.
    """

    def __init__(
        self,
        config: ClientConfig,
        driver: Driver,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config
        self.driver = driver
        self._http_client = http_client

    @property
    def http_client(self) -> httpx.AsyncClient:
        """HTTP client used to download CloudFetch result files"""
        if self._http_client is None:
            raise InterfaceError("No HTTP client is configured for result downloads")
        return self._http_client
