import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from databricks.aiosql.backend.types import (
    DirectResults,
    GetOperationStatusResponse,
    OperationHandle,
    ResultFormat,
    ResultSetMetadataResponse,
    TableSchema,
)
from databricks.aiosql.context import ClientContext
from databricks.aiosql.exc import (
    InvalidServerResponseError,
    OperationStateError,
    OperationStateErrorCode,
    UnsupportedResultFormatError,
)
from databricks.aiosql.operation.iterators import (
    OperationChunksIterator,
    OperationRowsIterator,
)
from databricks.aiosql.operation.status_tracker import ProgressCallback, StatusTracker
from databricks.aiosql.operation.stream import OperationStream, StreamMode
from databricks.aiosql.result.arrow_result_converter import ArrowResultConverter
from databricks.aiosql.result.arrow_result_handler import ArrowResultHandler
from databricks.aiosql.result.cloud_fetch_result_handler import CloudFetchResultHandler
from databricks.aiosql.result.json_result_handler import JsonResultHandler
from databricks.aiosql.result.provider import ResultsProvider
from databricks.aiosql.result.result_slicer import ResultSlicer
from databricks.aiosql.result.row_set_provider import RowSetProvider
from databricks.aiosql.status import Status

logger = logging.getLogger(__name__)

Row = Dict[str, Any]


class Operation:
    """
    Client-side handle of one submitted statement.

    An Operation waits for the statement to finish, resolves how its results
    are encoded and serves them page by page. Direct results returned with
    the execute response are served before anything is fetched from the
    server.

    Once `cancel()` or `close()` succeeded the operation is unusable: data
    accessing methods raise OperationStateError without contacting the
    server.

    Example:
        async with await session.execute_statement("SELECT 1 AS x") as operation:
            rows = await operation.fetch_all()
    """

    def __init__(
        self,
        context: ClientContext,
        operation_handle: OperationHandle,
        direct_results: Optional[DirectResults] = None,
    ):
        self.context = context
        self.operation_handle = operation_handle
        self.on_close: Optional[Callable[[], None]] = None

        self.closed = False
        self.cancelled = False

        direct_results = direct_results or DirectResults()
        self._status_tracker = StatusTracker(
            context, operation_handle, direct_results.operation_status
        )
        self._metadata: Optional[ResultSetMetadataResponse] = (
            direct_results.result_set_metadata
        )
        self._metadata_task: Optional[asyncio.Future] = None
        self._close_operation_response = direct_results.close_operation
        self._data = RowSetProvider(
            context,
            operation_handle,
            lambda: self._status_tracker.has_result_set,
            [direct_results.result_set],
            # The server already closed the operation, nothing else can be fetched
            return_only_prefetched_results=direct_results.close_operation is not None,
        )
        self._result_handler: Optional[ResultSlicer] = None

        logger.debug("Operation created with id: %s", self.id)

    @property
    def id(self) -> str:
        return self.operation_handle.id

    @property
    def has_result_set(self) -> bool:
        return self._status_tracker.has_result_set

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_value, traceback):
        await self.close()

    def iterate_chunks(self, auto_close: bool = False, **fetch_options) -> OperationChunksIterator:
        return OperationChunksIterator(self, auto_close=auto_close, **fetch_options)

    def iterate_rows(self, auto_close: bool = False, **fetch_options) -> OperationRowsIterator:
        return OperationRowsIterator(self, auto_close=auto_close, **fetch_options)

    def to_stream(
        self,
        mode: StreamMode = "chunks",
        auto_close: bool = False,
        high_water_mark: int = 16,
        **fetch_options,
    ) -> OperationStream:
        """Expose results as a stream of chunks or of rows.

        A background task fills a bounded queue, so reading drives fetching.

        Raises:
            ValueError: If `mode` is neither "chunks" nor "rows"
        """
        if mode == "chunks":
            iterator = self.iterate_chunks(auto_close=auto_close, **fetch_options)
        elif mode == "rows":
            iterator = self.iterate_rows(auto_close=auto_close, **fetch_options)
        else:
            raise ValueError("Operation.to_stream: unsupported mode {}".format(mode))
        return OperationStream(iterator, high_water_mark=high_water_mark)

    async def fetch_all(
        self,
        max_rows: Optional[int] = None,
        progress: bool = False,
        callback: Optional[ProgressCallback] = None,
    ) -> List[Row]:
        """Fetch every remaining row.

        `max_rows` only sets how many rows are requested per round trip.
        """
        data: List[Row] = []
        while True:
            # Raw chunks are fine here, everything gets concatenated anyway
            data.extend(
                await self.fetch_chunk(
                    max_rows=max_rows,
                    progress=progress,
                    callback=callback,
                    disable_buffering=True,
                )
            )
            if not await self.has_more_rows():
                break

        logger.debug("Fetched all data from operation with id: %s", self.id)
        return data

    async def fetch_chunk(
        self,
        max_rows: Optional[int] = None,
        progress: bool = False,
        callback: Optional[ProgressCallback] = None,
        disable_buffering: bool = False,
    ) -> List[Row]:
        """Fetch the next page of at most `max_rows` rows.

        With `disable_buffering` the page is whatever chunk the server
        delivered, regardless of `max_rows`.
        """
        limit = (
            max_rows if max_rows is not None else self.context.config.fetch_chunk_default_max_rows
        )
        if limit < 1:
            raise ValueError("max_rows must be at least 1, got {}".format(max_rows))

        self._fail_if_closed()
        if not self.has_result_set:
            return []

        await self._wait_until_ready(progress, callback)
        self._fail_if_closed()
        result_handler = await self._get_result_handler()

        # Let other tasks run between pages; decoding large chunks back to back
        # would otherwise starve the loop
        await asyncio.sleep(0)

        result = await result_handler.fetch_next(limit, disable_buffering)
        self._fail_if_closed()

        logger.debug(
            "Fetched chunk of %d rows (limit %d) from operation with id: %s",
            len(result),
            limit,
            self.id,
        )
        return result

    async def status(self, progress: bool = False) -> GetOperationStatusResponse:
        self._fail_if_closed()
        logger.debug("Fetching status for operation with id: %s", self.id)
        return await self._status_tracker.status(progress)

    async def cancel(self) -> Status:
        if self.closed or self.cancelled:
            return Status.success()

        logger.debug("Cancelling operation with id: %s", self.id)
        response = await self.context.driver.cancel_operation(self.operation_handle)
        Status.raise_for_status(response.status)
        self.cancelled = True

        # Cancelled operation becomes unusable, same as a closed one
        self._notify_close()
        return Status(response.status)

    async def close(self) -> Status:
        if self.closed or self.cancelled:
            return Status.success()

        logger.debug("Closing operation with id: %s", self.id)
        response = self._close_operation_response
        if response is None:
            response = await self.context.driver.close_operation(self.operation_handle)
        Status.raise_for_status(response.status)
        self.closed = True

        self._notify_close()
        return Status(response.status)

    async def finished(
        self, progress: bool = False, callback: Optional[ProgressCallback] = None
    ):
        self._fail_if_closed()
        await self._wait_until_ready(progress, callback)

    async def has_more_rows(self) -> bool:
        if self.closed or self.cancelled:
            return False
        if not self.has_result_set:
            return False

        # Metadata can only be fetched for a finished operation
        await self._wait_until_ready()
        result_handler = await self._get_result_handler()
        return await result_handler.has_more()

    async def get_schema(
        self, progress: bool = False, callback: Optional[ProgressCallback] = None
    ) -> Optional[TableSchema]:
        self._fail_if_closed()
        if not self.has_result_set:
            return None

        await self._wait_until_ready(progress, callback)
        logger.debug("Fetching schema for operation with id: %s", self.id)
        metadata = await self._fetch_metadata()
        return metadata.schema

    async def get_metadata(self) -> ResultSetMetadataResponse:
        self._fail_if_closed()
        await self._wait_until_ready()
        return await self._fetch_metadata()

    def _notify_close(self):
        if self.on_close is not None:
            self.on_close()

    def _fail_if_closed(self):
        if self.closed:
            raise OperationStateError(OperationStateErrorCode.CLOSED)
        if self.cancelled:
            raise OperationStateError(OperationStateErrorCode.CANCELED)

    async def _wait_until_ready(
        self, progress: bool = False, callback: Optional[ProgressCallback] = None
    ):
        try:
            await self._status_tracker.wait_until_ready(progress, callback)
        except OperationStateError as e:
            # The server cancelled or closed the operation; it is as unusable
            # as if it happened on the client
            if e.error_code == OperationStateErrorCode.CANCELED:
                self.cancelled = True
            elif e.error_code == OperationStateErrorCode.CLOSED:
                self.closed = True
            raise

    async def _fetch_metadata(self) -> ResultSetMetadataResponse:
        if self._metadata is not None:
            return self._metadata

        # Concurrent callers share one in-flight request
        if self._metadata_task is None:
            self._metadata_task = asyncio.ensure_future(self._request_metadata())
        task = self._metadata_task
        try:
            return await asyncio.shield(task)
        finally:
            if task.done() and self._metadata_task is task:
                self._metadata_task = None

    async def _request_metadata(self) -> ResultSetMetadataResponse:
        logger.debug("Fetching result set metadata for operation with id: %s", self.id)
        response = await self.context.driver.get_result_set_metadata(
            self.operation_handle
        )
        Status.raise_for_status(response.status)
        self._metadata = response
        return response

    async def _get_result_handler(self) -> ResultSlicer:
        metadata = await self._fetch_metadata()
        if self._result_handler is None:
            self._result_handler = ResultSlicer(self._create_result_source(metadata))
        return self._result_handler

    def _create_result_source(self, metadata: ResultSetMetadataResponse) -> ResultsProvider:
        result_format = metadata.result_format
        if result_format is None:
            raise InvalidServerResponseError(
                "Result set metadata does not specify a result format",
                {"operation-id": self.id},
            )

        if result_format == ResultFormat.COLUMN_BASED_SET:
            return JsonResultHandler(self.context, self._data, metadata)
        if result_format == ResultFormat.ARROW_BASED_SET:
            return ArrowResultConverter(
                self.context,
                ArrowResultHandler(self.context, self._data, metadata),
                metadata,
            )
        if result_format == ResultFormat.URL_BASED_SET:
            return ArrowResultConverter(
                self.context,
                CloudFetchResultHandler(self.context, self._data, metadata),
                metadata,
            )
        raise UnsupportedResultFormatError(result_format)
