import logging
from typing import Callable, Dict, Optional

from databricks.aiosql.backend.types import (
    ExecuteStatementRequest,
    ExecuteStatementResponse,
    SessionHandle,
    StatusCode,
)
from databricks.aiosql.context import ClientContext
from databricks.aiosql.exc import InterfaceError, InvalidServerResponseError, StatusError
from databricks.aiosql.operation.operation import Operation
from databricks.aiosql.status import Status
from databricks.aiosql.utils import CloseableCollection

logger = logging.getLogger(__name__)


class Session:
    """
    An open session on the server.

    Sessions create operations and keep track of the ones still open, so
    that closing the session closes them as well.
    """

    def __init__(self, context: ClientContext, session_handle: SessionHandle):
        self.context = context
        self.session_handle = session_handle
        self.is_open = True
        self.on_close: Optional[Callable[[], None]] = None
        self._operations: CloseableCollection[Operation] = CloseableCollection()
        logger.debug("Session created with id: %s", self.id)

    @property
    def id(self) -> str:
        return self.session_handle.id

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_value, traceback):
        await self.close()

    async def execute_statement(
        self,
        statement: str,
        max_rows: Optional[int] = None,
        direct_results: bool = True,
        use_cloud_fetch: Optional[bool] = None,
        use_lz4_compression: Optional[bool] = None,
        query_timeout: int = 0,
        run_async: bool = False,
        conf_overlay: Optional[Dict[str, str]] = None,
    ) -> Operation:
        """
        Execute a statement and return its operation.

        Args:
            statement: SQL text
            max_rows: Row limit of the first chunk returned inline with the
                response. Defaults to `direct_results_default_max_rows`
            direct_results: Set to False to never receive inline results
            use_cloud_fetch: Accept externally hosted result files. Defaults to
                the client configuration
            use_lz4_compression: Accept LZ4 compressed results. Defaults to
                the client configuration
            query_timeout: Server-side timeout in seconds, 0 for none
            run_async: Return as soon as the server accepted the statement
            conf_overlay: Per-statement configuration overrides

        Returns:
            Operation: Handle to wait for and fetch the results

        Raises:
            StatusError: If the server rejected the statement
        """
        if not self.is_open:
            raise InterfaceError("Cannot execute a statement on a closed session")

        config = self.context.config
        if use_cloud_fetch is None:
            use_cloud_fetch = config.use_cloud_fetch
        if use_lz4_compression is None:
            use_lz4_compression = config.use_lz4_compression

        request = ExecuteStatementRequest(
            session_handle=self.session_handle,
            statement=statement,
            run_async=run_async,
            query_timeout=query_timeout,
            direct_results_max_rows=(
                (max_rows or config.direct_results_default_max_rows)
                if direct_results
                else None
            ),
            can_read_arrow_result=config.arrow_enabled,
            # External result files are always Arrow encoded
            can_download_result=config.arrow_enabled and use_cloud_fetch,
            can_decompress_lz4_result=use_lz4_compression,
            arrow_native_types=config.arrow_native_types() if config.arrow_enabled else None,
            conf_overlay=dict(conf_overlay or {}),
        )
        response = await self.context.driver.execute_statement(request)
        return self._create_operation(response)

    def _create_operation(self, response: ExecuteStatementResponse) -> Operation:
        Status.raise_for_status(response.status)
        if response.operation_handle is None:
            raise InvalidServerResponseError(
                "Execute response does not contain an operation handle",
                {"session-id": self.id},
            )

        operation = Operation(
            self.context, response.operation_handle, response.direct_results
        )
        self._operations.add(operation)
        return operation

    async def close(self) -> Status:
        """Close every operation of the session, then the session itself."""
        if not self.is_open:
            logger.debug("Session appears to have been closed already")
            return Status.success()

        logger.info("Closing session %s", self.id)
        await self._operations.close_all()

        response = await self.context.driver.close_session(self.session_handle)
        try:
            Status.raise_for_status(response.status)
        except StatusError:
            if response.status.status_code != StatusCode.INVALID_HANDLE:
                raise
            logger.warning(
                "Attempted to close session that was already closed: %s",
                response.status.error_message,
            )

        self.is_open = False
        if self.on_close is not None:
            self.on_close()
        return Status(response.status)
