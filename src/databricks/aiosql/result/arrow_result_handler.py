import logging
from typing import Optional

from databricks.aiosql.backend.types import ArrowBatch, ResultSetMetadataResponse, RowSet
from databricks.aiosql.context import ClientContext
from databricks.aiosql.result.provider import ResultsProvider
from databricks.aiosql.result.utils import decompress_lz4, hive_schema_to_arrow_schema

logger = logging.getLogger(__name__)


class ArrowResultHandler(ResultsProvider[ArrowBatch]):
    """Pairs inline Arrow record batches with the result set's Arrow schema."""

    def __init__(
        self,
        context: ClientContext,
        source: ResultsProvider[Optional[RowSet]],
        metadata: ResultSetMetadataResponse,
    ):
        self.context = context
        self.source = source
        # Servers that omit the Arrow schema do not support native Arrow
        # types either, so the table schema maps to it directly
        self.arrow_schema = metadata.arrow_schema or hive_schema_to_arrow_schema(
            metadata.schema
        )
        self.lz4_compressed = metadata.lz4_compressed

    async def has_more(self) -> bool:
        if not self.arrow_schema:
            return False
        return await self.source.has_more()

    async def fetch_next(self, limit: int, disable_buffering: bool = False) -> ArrowBatch:
        if not self.arrow_schema:
            return ArrowBatch()

        row_set = await self.source.fetch_next(limit, disable_buffering)

        batches = []
        total_row_count = 0
        for arrow_batch in (row_set.arrow_batches if row_set else None) or []:
            if not arrow_batch.batch:
                continue
            batches.append(
                decompress_lz4(arrow_batch.batch)
                if self.lz4_compressed
                else arrow_batch.batch
            )
            total_row_count += arrow_batch.row_count

        if not batches:
            return ArrowBatch()

        return ArrowBatch(batches=[self.arrow_schema] + batches, row_count=total_row_count)
