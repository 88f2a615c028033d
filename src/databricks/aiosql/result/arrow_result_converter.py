import logging
from typing import Any, Dict, Iterator, List, Optional

import pyarrow

from databricks.aiosql.backend.types import ArrowBatch, ResultSetMetadataResponse
from databricks.aiosql.context import ClientContext
from databricks.aiosql.result.provider import ResultsProvider
from databricks.aiosql.result.utils import (
    column_leaf_name,
    convert_thrift_value,
    get_schema_columns,
)

logger = logging.getLogger(__name__)


def convert_arrow_value(value: Any, arrow_type: pyarrow.DataType) -> Any:
    """Turn a value produced by pyarrow's to_pylist into plain Python data.

    Timestamps, decimals and binaries already come out as datetime, Decimal
    and bytes. Nested values are walked so that maps become dicts at any
    depth.
    """
    if value is None:
        return None

    if pyarrow.types.is_struct(arrow_type):
        return {
            field.name: convert_arrow_value(value.get(field.name), field.type)
            for field in arrow_type
        }
    if pyarrow.types.is_map(arrow_type):
        return {
            _map_key(key): convert_arrow_value(item, arrow_type.item_type)
            for key, item in value
        }
    if (
        pyarrow.types.is_list(arrow_type)
        or pyarrow.types.is_large_list(arrow_type)
        or pyarrow.types.is_fixed_size_list(arrow_type)
    ):
        return [convert_arrow_value(item, arrow_type.value_type) for item in value]
    return value


def _map_key(key):
    # Keys of complex type are not hashable once converted
    if isinstance(key, (dict, list)):
        return str(key)
    return key


class ArrowResultConverter(ResultsProvider[List[Dict[str, Any]]]):
    """
    Decodes Arrow batches from an Arrow producing source into rows.

    Works on top of both inline Arrow results and CloudFetch downloads. One
    non-empty record batch is always read ahead, which makes `has_more`
    exact: once the read-ahead slot is empty, the next `fetch_next` would
    return nothing.
    """

    def __init__(
        self,
        context: ClientContext,
        source: ResultsProvider[ArrowBatch],
        metadata: ResultSetMetadataResponse,
    ):
        self.context = context
        self.source = source
        self.schema = get_schema_columns(metadata.schema)

        self._record_batch_reader: Optional[Iterator[pyarrow.RecordBatch]] = None
        # Rows left in the current ArrowBatch, which may span several record batches
        self._remaining_rows = 0
        self._prefetched_record_batch: Optional[pyarrow.RecordBatch] = None
        # Failure of the read-ahead that followed already returned rows
        self._prefetch_error: Optional[Exception] = None

    async def has_more(self) -> bool:
        if not self.schema:
            return False
        self._raise_prefetch_error()
        if self._prefetched_record_batch is not None:
            return True
        return await self.source.has_more()

    async def fetch_next(self, limit: int, disable_buffering: bool = False) -> List[Dict[str, Any]]:
        if not self.schema:
            return []
        self._raise_prefetch_error()

        # Only does work on the first call; afterwards the slot was filled at
        # the end of the previous call
        await self._prefetch(limit, disable_buffering)

        if self._prefetched_record_batch is None:
            return []

        record_batch = self._prefetched_record_batch.slice(0, self._remaining_rows)
        self._prefetched_record_batch = None
        rows = self._get_rows(record_batch)

        self._remaining_rows -= len(rows)
        if self._remaining_rows <= 0:
            self._record_batch_reader = None

        try:
            await self._prefetch(limit, disable_buffering)
        except Exception as e:
            # The rows are already decoded; report the failure on the next call
            logger.debug("Arrow read-ahead failed, deferring error: %s", e)
            self._prefetch_error = e
        return rows

    def _raise_prefetch_error(self):
        if self._prefetch_error is not None:
            error, self._prefetch_error = self._prefetch_error, None
            raise error

    async def _prefetch(self, limit: int, disable_buffering: bool):
        while self._prefetched_record_batch is None:
            if self._record_batch_reader is None:
                if not await self.source.has_more():
                    return

                arrow_batch = await self.source.fetch_next(limit, disable_buffering)
                if arrow_batch.batches and arrow_batch.row_count > 0:
                    reader = pyarrow.ipc.open_stream(b"".join(arrow_batch.batches))
                    self._record_batch_reader = iter(reader)
                    self._remaining_rows = arrow_batch.row_count

            record_batch = (
                next(self._record_batch_reader, None)
                if self._record_batch_reader is not None
                else None
            )
            if record_batch is None:
                self._record_batch_reader = None
            elif record_batch.num_rows > 0:
                self._prefetched_record_batch = record_batch

    def _get_rows(self, record_batch: pyarrow.RecordBatch) -> List[Dict[str, Any]]:
        values_by_name = {
            field.name: [convert_arrow_value(v, field.type) for v in array.to_pylist()]
            for field, array in zip(record_batch.schema, record_batch.columns)
        }

        rows = []
        for i in range(record_batch.num_rows):
            row = {}
            for column in self.schema:
                values = values_by_name.get(column.column_name)
                value = values[i] if values is not None else None
                row[column_leaf_name(column.column_name)] = (
                    None if value is None else convert_thrift_value(column.type_id, value)
                )
            rows.append(row)
        return rows
