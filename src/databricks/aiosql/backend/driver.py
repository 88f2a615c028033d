from abc import ABC, abstractmethod
from typing import Dict, Optional

from databricks.aiosql.backend.types import (
    CancelOperationResponse,
    CloseOperationResponse,
    CloseSessionResponse,
    ExecuteStatementRequest,
    ExecuteStatementResponse,
    FetchOrientation,
    FetchResultsResponse,
    FetchType,
    GetOperationStatusResponse,
    OpenSessionResponse,
    OperationHandle,
    ResultSetMetadataResponse,
    SessionHandle,
)


class Driver(ABC):
    """
    Abstract transport interface for talking to a Databricks SQL service.

    Implementations are responsible for:
    - Turning each call into one request on their wire protocol
    - Translating the server response into the shared data model
    - Reporting server-side failures through the `status` of the response

    A driver is shared by every session and operation of a client, so
    implementations must not keep per-call state that outlives the call
    other than what is keyed by handle.
    """

    # == Session Management ==
    @abstractmethod
    async def open_session(
        self,
        catalog: Optional[str] = None,
        schema: Optional[str] = None,
        configuration: Optional[Dict[str, str]] = None,
    ) -> OpenSessionResponse:
        """
        Opens a new session.

        Args:
            catalog: Optional initial catalog of the session
            schema: Optional initial schema of the session
            configuration: Optional session configuration parameters

        Returns:
            OpenSessionResponse: The response carrying the new session handle

        Raises:
            RequestError: If the request could not be completed
        """
        pass

    @abstractmethod
    async def close_session(self, session_handle: SessionHandle) -> CloseSessionResponse:
        """
        Closes an existing session.

        Args:
            session_handle: The handle returned by open_session()

        Raises:
            RequestError: If the request could not be completed
        """
        pass

    # == Statement Execution ==
    @abstractmethod
    async def execute_statement(
        self, request: ExecuteStatementRequest
    ) -> ExecuteStatementResponse:
        """
        Submits a statement for execution.

        Depending on `request.run_async` and the server, the response may
        already carry direct results: the final status, the result set
        metadata and the first chunk of rows.

        Args:
            request: Statement and result encoding options

        Returns:
            ExecuteStatementResponse: The operation handle and optional direct results

        Raises:
            RequestError: If the request could not be completed
        """
        pass

    @abstractmethod
    async def get_operation_status(
        self, operation_handle: OperationHandle, get_progress_update: bool = False
    ) -> GetOperationStatusResponse:
        """
        Polls the execution state of an operation.

        Args:
            operation_handle: The operation to poll
            get_progress_update: Ask the server to include progress details

        Returns:
            GetOperationStatusResponse: Current state of the operation
        """
        pass

    @abstractmethod
    async def get_result_set_metadata(
        self, operation_handle: OperationHandle
    ) -> ResultSetMetadataResponse:
        """
        Retrieves the schema and encoding of an operation's results.

        Args:
            operation_handle: A finished operation with a result set

        Returns:
            ResultSetMetadataResponse: Schema, result format and compression
        """
        pass

    @abstractmethod
    async def fetch_results(
        self,
        operation_handle: OperationHandle,
        orientation: FetchOrientation,
        max_rows: int,
        fetch_type: FetchType = FetchType.DATA,
    ) -> FetchResultsResponse:
        """
        Fetches the next chunk of rows of an operation.

        Args:
            operation_handle: A finished operation with a result set
            orientation: FETCH_FIRST for the first call, FETCH_NEXT afterwards
            max_rows: Upper bound on rows in the chunk; servers may return fewer
            fetch_type: Data rows or operation logs

        Returns:
            FetchResultsResponse: The row set and the server's has-more-rows hint
        """
        pass

    @abstractmethod
    async def cancel_operation(
        self, operation_handle: OperationHandle
    ) -> CancelOperationResponse:
        """Requests cancellation of a running operation."""
        pass

    @abstractmethod
    async def close_operation(
        self, operation_handle: OperationHandle
    ) -> CloseOperationResponse:
        """Releases server resources held by an operation."""
        pass

    # == Transport lifecycle ==
    async def close(self) -> None:
        """Releases transport resources. The default does nothing."""
        pass
