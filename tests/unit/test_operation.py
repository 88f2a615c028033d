import asyncio
import unittest
from unittest.mock import AsyncMock, MagicMock

from databricks.aiosql.backend.types import (
    CloseOperationResponse,
    DirectResults,
    OperationState,
    ResultFormat,
    StatusCode,
    StatusInfo,
    TableSchema,
)
from databricks.aiosql.exc import (
    InvalidServerResponseError,
    OperationStateError,
    OperationStateErrorCode,
    StatusError,
    UnsupportedResultFormatError,
)
from databricks.aiosql.operation.operation import Operation
from databricks.aiosql.result.arrow_result_converter import ArrowResultConverter
from databricks.aiosql.result.arrow_result_handler import ArrowResultHandler
from databricks.aiosql.result.cloud_fetch_result_handler import CloudFetchResultHandler
from databricks.aiosql.result.json_result_handler import JsonResultHandler

from tests.unit.mocks import (
    ChunkedFetcher,
    column_response,
    make_context,
    make_handle,
    metadata_response,
    status_response,
    success,
)


def finished_operation(context, has_result_set=True, **direct):
    """Operation whose direct results already report FINISHED"""
    return Operation(
        context,
        make_handle(has_result_set),
        DirectResults(operation_status=status_response(OperationState.FINISHED), **direct),
    )


class OperationCloseAndCancelTests(unittest.IsolatedAsyncioTestCase):
    async def test_close_is_idempotent(self):
        context = make_context()
        operation = Operation(context, make_handle())

        await operation.close()
        status = await operation.close()

        self.assertTrue(status.is_success)
        self.assertTrue(operation.closed)
        context.driver.close_operation.assert_awaited_once()

    async def test_cancel_is_idempotent(self):
        context = make_context()
        operation = Operation(context, make_handle())

        await operation.cancel()
        await operation.cancel()

        self.assertTrue(operation.cancelled)
        context.driver.cancel_operation.assert_awaited_once()

    async def test_close_after_cancel_does_not_call_server(self):
        context = make_context()
        operation = Operation(context, make_handle())

        await operation.cancel()
        status = await operation.close()

        self.assertTrue(status.is_success)
        context.driver.close_operation.assert_not_awaited()

    async def test_on_close_fires_once(self):
        operation = Operation(make_context(), make_handle())
        on_close = MagicMock()
        operation.on_close = on_close

        await operation.cancel()
        await operation.close()

        on_close.assert_called_once_with()

    async def test_close_uses_direct_results_acknowledgment(self):
        context = make_context()
        operation = Operation(
            context,
            make_handle(),
            DirectResults(close_operation=CloseOperationResponse(status=success())),
        )

        await operation.close()

        self.assertTrue(operation.closed)
        context.driver.close_operation.assert_not_awaited()

    async def test_failed_close_leaves_operation_open(self):
        context = make_context()
        context.driver.close_operation.return_value = CloseOperationResponse(
            status=StatusInfo(status_code=StatusCode.ERROR, error_message="boom")
        )
        operation = Operation(context, make_handle())

        with self.assertRaises(StatusError):
            await operation.close()
        self.assertFalse(operation.closed)

    async def test_async_context_manager_closes(self):
        context = make_context()
        async with Operation(context, make_handle()) as operation:
            pass

        self.assertTrue(operation.closed)


class OperationStickyStateTests(unittest.IsolatedAsyncioTestCase):
    async def _assert_rejected(self, operation, error_code):
        for call in (
            operation.fetch_chunk,
            operation.fetch_all,
            operation.status,
            operation.finished,
            operation.get_schema,
        ):
            with self.assertRaises(OperationStateError) as cm:
                await call()
            self.assertEqual(cm.exception.error_code, error_code)

    async def test_cancelled_operation_rejects_calls(self):
        context = make_context()
        operation = Operation(context, make_handle())
        await operation.cancel()

        await self._assert_rejected(operation, OperationStateErrorCode.CANCELED)

        context.driver.get_operation_status.assert_not_awaited()
        context.driver.get_result_set_metadata.assert_not_awaited()
        context.driver.fetch_results.assert_not_awaited()

    async def test_closed_operation_rejects_calls(self):
        context = make_context()
        operation = Operation(context, make_handle())
        await operation.close()

        await self._assert_rejected(operation, OperationStateErrorCode.CLOSED)

        context.driver.get_operation_status.assert_not_awaited()
        context.driver.fetch_results.assert_not_awaited()

    async def test_has_more_rows_is_false_once_closed(self):
        operation = Operation(make_context(), make_handle())
        await operation.close()

        self.assertFalse(await operation.has_more_rows())

    async def test_server_side_cancel_marks_operation_cancelled(self):
        context = make_context()
        context.driver.get_operation_status.return_value = status_response(
            OperationState.CANCELED
        )
        operation = Operation(context, make_handle())

        with self.assertRaises(OperationStateError) as cm:
            await operation.fetch_chunk()

        self.assertEqual(cm.exception.error_code, OperationStateErrorCode.CANCELED)
        self.assertTrue(operation.cancelled)
        with self.assertRaises(OperationStateError):
            await operation.status()

    async def test_cancel_while_fetching_rejects_the_chunk(self):
        context = make_context()
        operation = finished_operation(
            context, result_set_metadata=metadata_response()
        )

        async def fetch_and_cancel(*args, **kwargs):
            await operation.cancel()
            return column_response([1, 2], has_more_rows=False)

        context.driver.fetch_results.side_effect = fetch_and_cancel

        with self.assertRaises(OperationStateError) as cm:
            await operation.fetch_chunk()
        self.assertEqual(cm.exception.error_code, OperationStateErrorCode.CANCELED)


class OperationFetchTests(unittest.IsolatedAsyncioTestCase):
    async def test_no_result_set_returns_empty_without_server_calls(self):
        context = make_context()
        operation = Operation(context, make_handle(has_result_set=False))

        self.assertEqual(await operation.fetch_chunk(), [])
        self.assertEqual(await operation.fetch_all(), [])
        self.assertIsNone(await operation.get_schema())
        self.assertFalse(await operation.has_more_rows())

        context.driver.get_operation_status.assert_not_awaited()
        context.driver.fetch_results.assert_not_awaited()

    async def test_direct_results_are_served_first(self):
        context = make_context()
        context.driver.fetch_results.return_value = column_response([3], has_more_rows=False)
        operation = finished_operation(
            context,
            result_set_metadata=metadata_response(),
            result_set=column_response([1, 2], has_more_rows=True),
        )

        first = await operation.fetch_chunk(disable_buffering=True)

        self.assertEqual(first, [{"test": 1}, {"test": 2}])
        context.driver.fetch_results.assert_not_awaited()
        self.assertTrue(await operation.has_more_rows())

        second = await operation.fetch_chunk(disable_buffering=True)

        self.assertEqual(second, [{"test": 3}])
        context.driver.fetch_results.assert_awaited_once()
        self.assertFalse(await operation.has_more_rows())

    async def test_only_prefetched_results_once_server_closed_operation(self):
        context = make_context()
        operation = finished_operation(
            context,
            result_set_metadata=metadata_response(),
            result_set=column_response([1], has_more_rows=True),
            close_operation=CloseOperationResponse(status=success()),
        )

        rows = await operation.fetch_all()

        self.assertEqual(rows, [{"test": 1}])
        context.driver.fetch_results.assert_not_awaited()

    async def test_fetch_chunk_pages_by_max_rows(self):
        context = make_context()
        context.driver.get_operation_status.return_value = status_response(
            OperationState.FINISHED
        )
        context.driver.get_result_set_metadata.return_value = metadata_response()
        context.driver.fetch_results.side_effect = ChunkedFetcher(1000)
        operation = Operation(context, make_handle())

        sizes = []
        while await operation.has_more_rows():
            sizes.append(len(await operation.fetch_chunk(max_rows=300)))

        self.assertEqual(sizes, [300, 300, 300, 100])

    async def test_fetch_chunk_rejects_non_positive_max_rows(self):
        context = make_context()
        operation = Operation(context, make_handle())

        for max_rows in (0, -1):
            with self.subTest(max_rows=max_rows):
                with self.assertRaises(ValueError):
                    await operation.fetch_chunk(max_rows=max_rows)

        context.driver.get_operation_status.assert_not_awaited()
        context.driver.fetch_results.assert_not_awaited()

    async def test_fetch_chunk_defaults_max_rows_from_config(self):
        context = make_context(fetch_chunk_default_max_rows=250)
        context.driver.get_operation_status.return_value = status_response(
            OperationState.FINISHED
        )
        context.driver.get_result_set_metadata.return_value = metadata_response()
        context.driver.fetch_results.side_effect = ChunkedFetcher(1000)
        operation = Operation(context, make_handle())

        self.assertEqual(len(await operation.fetch_chunk()), 250)

    async def test_fetch_all_collects_every_row(self):
        context = make_context()
        context.driver.get_operation_status.return_value = status_response(
            OperationState.FINISHED
        )
        context.driver.get_result_set_metadata.return_value = metadata_response()
        fetcher = ChunkedFetcher(1000)
        context.driver.fetch_results.side_effect = fetcher
        operation = Operation(context, make_handle())

        rows = await operation.fetch_all(max_rows=200)

        self.assertEqual(len(rows), 1000)
        self.assertEqual(rows[0], {"test": 0})
        self.assertEqual(rows[-1], {"test": 999})
        # Five full chunks and a last empty one
        self.assertEqual(fetcher.calls, 6)

    async def test_fetch_waits_until_finished(self):
        context = make_context()
        context.driver.get_operation_status.side_effect = [
            status_response(OperationState.PENDING),
            status_response(OperationState.RUNNING),
            status_response(OperationState.FINISHED),
        ]
        context.driver.get_result_set_metadata.return_value = metadata_response()
        context.driver.fetch_results.return_value = column_response([1], has_more_rows=False)
        operation = Operation(context, make_handle())
        callback = MagicMock()

        rows = await operation.fetch_chunk(callback=callback)

        self.assertEqual(rows, [{"test": 1}])
        self.assertEqual(context.driver.get_operation_status.await_count, 3)
        self.assertEqual(callback.call_count, 3)

    async def test_failed_operation_raises_with_server_message(self):
        context = make_context()
        context.driver.get_operation_status.return_value = status_response(
            OperationState.ERROR, display_message="Table not found"
        )
        operation = Operation(context, make_handle())

        with self.assertRaises(OperationStateError) as cm:
            await operation.finished()

        self.assertEqual(cm.exception.error_code, OperationStateErrorCode.ERROR)
        self.assertEqual(cm.exception.message, "Table not found")

    async def test_status_is_cached_after_finished(self):
        context = make_context()
        context.driver.get_operation_status.return_value = status_response(
            OperationState.FINISHED
        )
        operation = Operation(context, make_handle())

        first = await operation.status()
        second = await operation.status()

        self.assertIs(first, second)
        context.driver.get_operation_status.assert_awaited_once()


class OperationMetadataTests(unittest.IsolatedAsyncioTestCase):
    async def test_concurrent_metadata_fetches_share_one_request(self):
        context = make_context()
        release = asyncio.Event()

        async def slow_metadata(handle):
            await release.wait()
            return metadata_response()

        context.driver.get_result_set_metadata.side_effect = slow_metadata
        operation = finished_operation(context)

        tasks = [asyncio.ensure_future(operation.get_metadata()) for _ in range(3)]
        await asyncio.sleep(0)
        release.set()
        results = await asyncio.gather(*tasks)

        self.assertIs(results[0], results[1])
        self.assertIs(results[1], results[2])
        context.driver.get_result_set_metadata.assert_awaited_once()

    async def test_failed_metadata_fetch_can_be_retried(self):
        context = make_context()
        context.driver.get_result_set_metadata.side_effect = [
            ConnectionError("reset"),
            metadata_response(),
        ]
        operation = finished_operation(context)

        with self.assertRaises(ConnectionError):
            await operation.get_metadata()
        metadata = await operation.get_metadata()

        self.assertEqual(metadata.result_format, ResultFormat.COLUMN_BASED_SET)
        self.assertEqual(context.driver.get_result_set_metadata.await_count, 2)

    async def test_direct_results_metadata_seeds_cache(self):
        context = make_context()
        operation = finished_operation(context, result_set_metadata=metadata_response())

        schema = await operation.get_schema()

        self.assertEqual(schema.columns[0].column_name, "test")
        context.driver.get_result_set_metadata.assert_not_awaited()


class OperationResultHandlerTests(unittest.IsolatedAsyncioTestCase):
    async def _source_for(self, result_format, http_client=None):
        context = make_context(http_client=http_client)
        operation = finished_operation(
            context, result_set_metadata=metadata_response(result_format)
        )
        handler = await operation._get_result_handler()
        return handler.source

    async def test_column_based_set(self):
        source = await self._source_for(ResultFormat.COLUMN_BASED_SET)
        self.assertIsInstance(source, JsonResultHandler)

    async def test_arrow_based_set(self):
        source = await self._source_for(ResultFormat.ARROW_BASED_SET)
        self.assertIsInstance(source, ArrowResultConverter)
        self.assertIsInstance(source.source, ArrowResultHandler)

    async def test_url_based_set(self):
        source = await self._source_for(ResultFormat.URL_BASED_SET, http_client=AsyncMock())
        self.assertIsInstance(source, ArrowResultConverter)
        self.assertIsInstance(source.source, CloudFetchResultHandler)

    async def test_unsupported_format(self):
        with self.assertRaises(UnsupportedResultFormatError) as cm:
            await self._source_for(ResultFormat.ROW_BASED_SET)
        self.assertIn("ROW_BASED_SET", cm.exception.message)

    async def test_missing_format(self):
        with self.assertRaises(InvalidServerResponseError):
            await self._source_for(None)

    async def test_handler_is_resolved_once(self):
        context = make_context()
        operation = finished_operation(context, result_set_metadata=metadata_response())

        self.assertIs(
            await operation._get_result_handler(), await operation._get_result_handler()
        )

    async def test_empty_schema_has_no_rows(self):
        context = make_context()
        operation = finished_operation(
            context, result_set_metadata=metadata_response(schema=TableSchema())
        )

        self.assertEqual(await operation.fetch_all(), [])
        self.assertFalse(await operation.has_more_rows())


class OperationIterationTests(unittest.IsolatedAsyncioTestCase):
    def _operation(self, total_rows=5):
        context = make_context()
        context.driver.get_result_set_metadata.return_value = metadata_response()
        context.driver.fetch_results.side_effect = ChunkedFetcher(total_rows)
        return context, finished_operation(context)

    async def test_iterate_chunks(self):
        _, operation = self._operation()

        chunks = [chunk async for chunk in operation.iterate_chunks(max_rows=2)]

        self.assertEqual([len(chunk) for chunk in chunks], [2, 2, 1])

    async def test_iterate_rows_with_auto_close(self):
        context, operation = self._operation()

        rows = [row async for row in operation.iterate_rows(auto_close=True, max_rows=2)]

        self.assertEqual([row["test"] for row in rows], [0, 1, 2, 3, 4])
        self.assertTrue(operation.closed)
        context.driver.close_operation.assert_awaited_once()

    async def test_stream_rows(self):
        _, operation = self._operation()

        async with operation.to_stream(mode="rows", max_rows=2) as stream:
            rows = [row async for row in stream]

        self.assertEqual(len(rows), 5)
        self.assertTrue(stream.ended)
        self.assertIsNone(await stream.read())

    async def test_stream_chunks_with_backpressure(self):
        _, operation = self._operation(total_rows=6)

        stream = operation.to_stream(mode="chunks", high_water_mark=1, max_rows=2)
        first = await stream.read()
        await stream.close()

        self.assertEqual(len(first), 2)

    async def test_stream_reraises_errors(self):
        context = make_context()
        context.driver.get_result_set_metadata.return_value = metadata_response()
        context.driver.fetch_results.side_effect = ConnectionError("reset")
        operation = finished_operation(context)

        stream = operation.to_stream()

        with self.assertRaises(ConnectionError):
            await stream.read()
        await stream.close()

    async def test_unknown_stream_mode(self):
        _, operation = self._operation()

        with self.assertRaises(ValueError):
            operation.to_stream(mode="pages")
