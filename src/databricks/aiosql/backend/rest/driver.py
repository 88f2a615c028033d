import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import dateutil.parser

from databricks.aiosql.backend.driver import Driver
from databricks.aiosql.backend.rest.conversion import (
    columns_to_schema,
    json_array_to_columns,
)
from databricks.aiosql.backend.rest.http_client import RestHttpClient
from databricks.aiosql.backend.rest.models import (
    ResultCompression,
    ResultData,
    ResultDisposition,
    ResultFormat,
    ResultManifest,
    StatementResponse,
    StatementState,
    StatementStatus,
    WaitTimeout,
    parse_result,
)
from databricks.aiosql.backend.types import (
    CancelOperationResponse,
    CloseOperationResponse,
    CloseSessionResponse,
    DirectResults,
    ExecuteStatementRequest,
    ExecuteStatementResponse,
    FetchOrientation,
    FetchResultsResponse,
    FetchType,
    GetOperationStatusResponse,
    OpenSessionResponse,
    OperationHandle,
    OperationState,
    ResultFormat as RowSetFormat,
    ResultLink,
    ResultSetMetadataResponse,
    RowSet,
    SessionHandle,
    StatusCode,
    StatusInfo,
    TableSchema,
)
from databricks.aiosql.exc import InvalidServerResponseError, NotSupportedError, RequestError

logger = logging.getLogger(__name__)

_STATE_MAP = {
    StatementState.PENDING: OperationState.PENDING,
    StatementState.RUNNING: OperationState.RUNNING,
    StatementState.SUCCEEDED: OperationState.FINISHED,
    StatementState.FAILED: OperationState.ERROR,
    StatementState.CANCELED: OperationState.CANCELED,
    StatementState.CLOSED: OperationState.CLOSED,
}


def extract_warehouse_id(http_path: str) -> str:
    """
    Extract the warehouse ID from the HTTP path.

    Raises:
        ValueError: If the path points to neither a warehouse nor an endpoint
    """
    for pattern in (r".*/warehouses/(.+)", r".*/endpoints/(.+)"):
        match = re.match(pattern, http_path)
        if match:
            warehouse_id = match.group(1)
            logger.debug("Extracted warehouse ID: %s from path: %s", warehouse_id, http_path)
            return warehouse_id

    error_message = (
        "Could not extract warehouse ID from http_path: {}. Expected format: "
        "/path/to/warehouses/{{warehouse_id}} or /path/to/endpoints/{{warehouse_id}}".format(
            http_path
        )
    )
    logger.error(error_message)
    raise ValueError(error_message)


def _success() -> StatusInfo:
    return StatusInfo(status_code=StatusCode.SUCCESS)


def _invalid_handle(e: RequestError) -> StatusInfo:
    return StatusInfo(status_code=StatusCode.INVALID_HANDLE, error_message=e.message)


def _is_not_found(e: RequestError) -> bool:
    return e.context.get("http-code") == 404


def _expiry_millis(expiration: str) -> int:
    return int(dateutil.parser.parse(expiration).timestamp() * 1000)


@dataclass
class _Statement:
    """What the driver remembers about one statement between calls"""

    manifest: Optional[ResultManifest] = None
    first_result: Optional[ResultData] = None
    next_chunk_index: Optional[int] = None


class RestDriver(Driver):
    """
    Driver for the Databricks SQL Statement Execution REST API.

    Statements are polled and paged by chunk index; the driver keeps the
    manifest and the next chunk index of every open statement. Results come
    either inline as JSON_ARRAY, exposed as a column based row set, or as
    ARROW_STREAM external links, exposed as CloudFetch links.
    """

    BASE_PATH = "/api/2.0/sql/"
    SESSION_PATH = BASE_PATH + "sessions"
    SESSION_PATH_WITH_ID = SESSION_PATH + "/{}"
    STATEMENT_PATH = BASE_PATH + "statements"
    STATEMENT_PATH_WITH_ID = STATEMENT_PATH + "/{}"
    CANCEL_STATEMENT_PATH_WITH_ID = STATEMENT_PATH + "/{}/cancel"
    CHUNK_PATH_WITH_ID_AND_INDEX = STATEMENT_PATH + "/{}/result/chunks/{}"

    def __init__(self, http_client: RestHttpClient, warehouse_id: str):
        self._http_client = http_client
        self.warehouse_id = warehouse_id
        self._statements: Dict[str, _Statement] = {}

    # == Sessions ==

    async def open_session(
        self,
        catalog: Optional[str] = None,
        schema: Optional[str] = None,
        configuration: Optional[Dict[str, str]] = None,
    ) -> OpenSessionResponse:
        logger.debug(
            "RestDriver.open_session(catalog=%s, schema=%s, configuration=%s)",
            catalog,
            schema,
            configuration,
        )
        data: Dict[str, Any] = {"warehouse_id": self.warehouse_id}
        if catalog:
            data["catalog"] = catalog
        if schema:
            data["schema"] = schema
        if configuration:
            data["session_confs"] = {k: str(v) for k, v in configuration.items()}

        response = await self._http_client.request("POST", self.SESSION_PATH, data)
        session_id = response.get("session_id")
        if not session_id:
            raise InvalidServerResponseError(
                "Failed to create session: No session ID returned"
            )
        return OpenSessionResponse(
            status=_success(), session_handle=SessionHandle(guid=session_id)
        )

    async def close_session(self, session_handle: SessionHandle) -> CloseSessionResponse:
        logger.debug("RestDriver.close_session(session_id=%s)", session_handle.id)
        try:
            await self._http_client.request(
                "DELETE",
                self.SESSION_PATH_WITH_ID.format(session_handle.guid),
                {"warehouse_id": self.warehouse_id},
            )
        except RequestError as e:
            if not _is_not_found(e):
                raise
            return CloseSessionResponse(status=_invalid_handle(e))
        return CloseSessionResponse(status=_success())

    # == Statements ==

    async def execute_statement(
        self, request: ExecuteStatementRequest
    ) -> ExecuteStatementResponse:
        data: Dict[str, Any] = {
            "warehouse_id": self.warehouse_id,
            "session_id": request.session_handle.guid,
            "statement": request.statement,
            "wait_timeout": (
                WaitTimeout.ASYNC if request.run_async else WaitTimeout.SYNC
            ).value,
            "on_wait_timeout": "CONTINUE",
        }
        if request.can_download_result:
            data["format"] = ResultFormat.ARROW_STREAM.value
            data["disposition"] = ResultDisposition.EXTERNAL_LINKS.value
            if request.can_decompress_lz4_result:
                data["result_compression"] = ResultCompression.LZ4_FRAME.value
        else:
            data["format"] = ResultFormat.JSON_ARRAY.value
            data["disposition"] = ResultDisposition.INLINE.value
        if request.conf_overlay:
            logger.debug("Statement configuration overlay is not sent over REST")

        response = StatementResponse.from_dict(
            await self._http_client.request("POST", self.STATEMENT_PATH, data)
        )
        if not response.statement_id:
            raise InvalidServerResponseError(
                "Failed to execute statement: No statement ID returned"
            )

        statement = self._statements.setdefault(response.statement_id, _Statement())
        self._remember_result(statement, response)

        handle = OperationHandle(guid=response.statement_id, has_result_set=True)
        operation_status = self._operation_status(response.status)

        direct_results = None
        if response.status.state == StatementState.SUCCEEDED:
            direct_results = DirectResults(
                operation_status=operation_status,
                result_set_metadata=self._result_set_metadata(statement),
            )
            if request.direct_results_max_rows is not None:
                direct_results.result_set = self._take_first_result(statement)
        elif response.status.state is not None:
            direct_results = DirectResults(operation_status=operation_status)

        return ExecuteStatementResponse(
            status=_success(), operation_handle=handle, direct_results=direct_results
        )

    async def get_operation_status(
        self, operation_handle: OperationHandle, get_progress_update: bool = False
    ) -> GetOperationStatusResponse:
        response = await self._get_statement(operation_handle)
        status = self._operation_status(response.status)
        if status.operation_state in (OperationState.CANCELED, OperationState.CLOSED):
            # Nothing can be fetched any more, and close may never be called
            self._statements.pop(operation_handle.guid, None)
        return status

    async def get_result_set_metadata(
        self, operation_handle: OperationHandle
    ) -> ResultSetMetadataResponse:
        statement = self._statements.get(operation_handle.guid)
        if statement is None or statement.manifest is None:
            await self._get_statement(operation_handle)
            statement = self._statements[operation_handle.guid]
        return self._result_set_metadata(statement)

    async def fetch_results(
        self,
        operation_handle: OperationHandle,
        orientation: FetchOrientation,
        max_rows: int,
        fetch_type: FetchType = FetchType.DATA,
    ) -> FetchResultsResponse:
        """Fetch the next chunk of a statement.

        Chunks have a size chosen by the server, so `max_rows` is not used.
        """
        if fetch_type != FetchType.DATA:
            raise NotSupportedError("Only data can be fetched from REST statements")

        statement = self._statements.get(operation_handle.guid)
        if statement is None or statement.manifest is None:
            await self._get_statement(operation_handle)
            statement = self._statements[operation_handle.guid]

        if orientation == FetchOrientation.FETCH_FIRST:
            if statement.first_result is not None:
                return self._take_first_result(statement)
            chunk_index: Optional[int] = 0
        else:
            chunk_index = statement.next_chunk_index

        if chunk_index is None:
            return FetchResultsResponse(status=_success(), has_more_rows=False)

        logger.debug(
            "Fetching chunk %d of statement %s", chunk_index, operation_handle.id
        )
        response = await self._http_client.request(
            "GET",
            self.CHUNK_PATH_WITH_ID_AND_INDEX.format(operation_handle.guid, chunk_index),
        )
        result = parse_result(response) or ResultData()
        statement.next_chunk_index = result.next_chunk_index
        return self._fetch_response(statement, result)

    async def cancel_operation(
        self, operation_handle: OperationHandle
    ) -> CancelOperationResponse:
        self._statements.pop(operation_handle.guid, None)
        try:
            await self._http_client.request(
                "POST", self.CANCEL_STATEMENT_PATH_WITH_ID.format(operation_handle.guid)
            )
        except RequestError as e:
            if not _is_not_found(e):
                raise
            return CancelOperationResponse(status=_invalid_handle(e))
        return CancelOperationResponse(status=_success())

    async def close_operation(
        self, operation_handle: OperationHandle
    ) -> CloseOperationResponse:
        self._statements.pop(operation_handle.guid, None)
        try:
            await self._http_client.request(
                "DELETE", self.STATEMENT_PATH_WITH_ID.format(operation_handle.guid)
            )
        except RequestError as e:
            if not _is_not_found(e):
                raise
            return CloseOperationResponse(status=_invalid_handle(e))
        return CloseOperationResponse(status=_success())

    # == Helpers ==

    async def _get_statement(self, operation_handle: OperationHandle) -> StatementResponse:
        response = StatementResponse.from_dict(
            await self._http_client.request(
                "GET", self.STATEMENT_PATH_WITH_ID.format(operation_handle.guid)
            )
        )
        statement = self._statements.setdefault(operation_handle.guid, _Statement())
        self._remember_result(statement, response)
        return response

    @staticmethod
    def _remember_result(statement: _Statement, response: StatementResponse):
        if response.manifest is not None and statement.manifest is None:
            statement.manifest = response.manifest
            if response.result is not None:
                statement.first_result = response.result

    @staticmethod
    def _operation_status(status: StatementStatus) -> GetOperationStatusResponse:
        state = _STATE_MAP.get(status.state, OperationState.UNKNOWN)
        error = status.error
        return GetOperationStatusResponse(
            status=_success(),
            operation_state=state,
            sql_state=status.sql_state,
            error_message=error.message if error else None,
            display_message=error.message if error else None,
            diagnostic_info=error.error_code if error else None,
            has_result_set=True,
        )

    @staticmethod
    def _schema(statement: _Statement) -> TableSchema:
        if statement.manifest is None:
            return TableSchema()
        return columns_to_schema(statement.manifest.columns)

    def _result_set_metadata(self, statement: _Statement) -> ResultSetMetadataResponse:
        manifest = statement.manifest
        if manifest is None:
            raise InvalidServerResponseError(
                "Statement response does not contain a result manifest"
            )
        return ResultSetMetadataResponse(
            status=_success(),
            schema=self._schema(statement),
            result_format=(
                RowSetFormat.URL_BASED_SET
                if manifest.format == ResultFormat.ARROW_STREAM.value
                else RowSetFormat.COLUMN_BASED_SET
            ),
            lz4_compressed=manifest.lz4_compressed,
        )

    def _take_first_result(self, statement: _Statement) -> FetchResultsResponse:
        result = statement.first_result or ResultData()
        statement.first_result = None
        statement.next_chunk_index = result.next_chunk_index
        return self._fetch_response(statement, result)

    def _fetch_response(self, statement: _Statement, result: ResultData) -> FetchResultsResponse:
        if result.external_links is not None:
            row_set = RowSet(
                start_row_offset=result.row_offset,
                result_links=self._result_links(result),
            )
        else:
            row_set = RowSet(
                start_row_offset=result.row_offset,
                columns=json_array_to_columns(self._schema(statement), result.data),
            )
        return FetchResultsResponse(
            status=_success(),
            has_more_rows=result.next_chunk_index is not None,
            results=row_set,
        )

    @staticmethod
    def _result_links(result: ResultData) -> List[ResultLink]:
        return [
            ResultLink(
                file_link=link.external_link,
                expiry_time=_expiry_millis(link.expiration),
                start_row_offset=link.row_offset,
                row_count=link.row_count,
                bytes_num=link.byte_count,
                http_headers=dict(link.http_headers),
            )
            for link in result.external_links or []
        ]
