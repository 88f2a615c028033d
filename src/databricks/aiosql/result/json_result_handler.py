import logging
from typing import Any, Dict, List, Optional

from databricks.aiosql.backend.types import (
    Column,
    ColumnDesc,
    ResultSetMetadataResponse,
    RowSet,
)
from databricks.aiosql.context import ClientContext
from databricks.aiosql.result.provider import ResultsProvider
from databricks.aiosql.result.utils import (
    column_leaf_name,
    convert_thrift_value,
    get_schema_columns,
    is_null,
)

logger = logging.getLogger(__name__)


class JsonResultHandler(ResultsProvider[List[Dict[str, Any]]]):
    """Turns column-based row sets into rows."""

    def __init__(
        self,
        context: ClientContext,
        source: ResultsProvider[Optional[RowSet]],
        metadata: ResultSetMetadataResponse,
    ):
        self.context = context
        self.source = source
        self.schema = get_schema_columns(metadata.schema)

    async def has_more(self) -> bool:
        if not self.schema:
            return False
        return await self.source.has_more()

    async def fetch_next(self, limit: int, disable_buffering: bool = False) -> List[Dict[str, Any]]:
        if not self.schema:
            return []

        data = await self.source.fetch_next(limit, disable_buffering)
        if data is None:
            return []

        return self._get_rows(data.columns or [])

    def _get_rows(self, columns: List[Column]) -> List[Dict[str, Any]]:
        rows: List[Dict[str, Any]] = []
        for descriptor in self.schema:
            index = descriptor.position - 1
            column = columns[index] if 0 <= index < len(columns) else None
            name = column_leaf_name(descriptor.column_name)
            for i, value in enumerate(self._get_schema_values(descriptor, column)):
                if i == len(rows):
                    rows.append({})
                rows[i][name] = value
        return rows

    @staticmethod
    def _get_schema_values(descriptor: ColumnDesc, column: Optional[Column]) -> List[Any]:
        if column is None:
            return []

        return [
            None
            if is_null(column.nulls, i)
            else convert_thrift_value(descriptor.type_id, value)
            for i, value in enumerate(column.values)
        ]
