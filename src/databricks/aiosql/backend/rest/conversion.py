"""
Conversion of REST column descriptions and JSON_ARRAY chunks into the
column-major model used by the result pipeline.

JSON_ARRAY results carry every value as a string (or null). Values of
primitive columns are parsed into their typed vector here; everything else
stays a string and is cast later, the same way a string-encoded Thrift column
would be.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from databricks.aiosql.backend.rest.models import ColumnInfo
from databricks.aiosql.backend.types import (
    Column,
    ColumnDesc,
    ColumnKind,
    TableSchema,
    TypeId,
)
from databricks.aiosql.result.utils import BIT_MASKS

logger = logging.getLogger(__name__)

_TYPE_NAME_TO_TYPE_ID: Dict[str, TypeId] = {
    "BOOLEAN": TypeId.BOOLEAN,
    "BYTE": TypeId.TINYINT,
    "TINYINT": TypeId.TINYINT,
    "SHORT": TypeId.SMALLINT,
    "SMALLINT": TypeId.SMALLINT,
    "INT": TypeId.INT,
    "LONG": TypeId.BIGINT,
    "BIGINT": TypeId.BIGINT,
    "FLOAT": TypeId.FLOAT,
    "DOUBLE": TypeId.DOUBLE,
    "DECIMAL": TypeId.DECIMAL,
    "STRING": TypeId.STRING,
    "VARCHAR": TypeId.VARCHAR,
    "CHAR": TypeId.CHAR,
    "BINARY": TypeId.BINARY,
    "DATE": TypeId.DATE,
    "TIMESTAMP": TypeId.TIMESTAMP,
    "TIMESTAMP_NTZ": TypeId.TIMESTAMP,
    "INTERVAL": TypeId.INTERVAL_DAY_TIME,
    "ARRAY": TypeId.ARRAY,
    "MAP": TypeId.MAP,
    "STRUCT": TypeId.STRUCT,
    "NULL": TypeId.NULL,
    "USER_DEFINED_TYPE": TypeId.USER_DEFINED,
}

_TYPE_ID_TO_COLUMN_KIND: Dict[TypeId, ColumnKind] = {
    TypeId.BOOLEAN: ColumnKind.BOOL,
    TypeId.TINYINT: ColumnKind.BYTE,
    TypeId.SMALLINT: ColumnKind.I16,
    TypeId.INT: ColumnKind.I32,
    TypeId.BIGINT: ColumnKind.I64,
    TypeId.FLOAT: ColumnKind.DOUBLE,
    TypeId.DOUBLE: ColumnKind.DOUBLE,
    TypeId.BINARY: ColumnKind.BINARY,
}

_COLUMN_KIND_PARSERS: Dict[ColumnKind, Callable[[str], Any]] = {
    ColumnKind.BOOL: lambda v: v.lower() in ("true", "t", "1", "yes", "y"),
    ColumnKind.BYTE: int,
    ColumnKind.I16: int,
    ColumnKind.I32: int,
    ColumnKind.I64: int,
    ColumnKind.DOUBLE: float,
    ColumnKind.BINARY: bytes.fromhex,
    ColumnKind.STRING: lambda v: v,
}


def type_name_to_type_id(type_name: Optional[str]) -> TypeId:
    type_id = _TYPE_NAME_TO_TYPE_ID.get((type_name or "").upper())
    if type_id is None:
        logger.debug("Unknown column type %r, treating it as STRING", type_name)
        return TypeId.STRING
    return type_id


def column_kind(type_id: Optional[TypeId]) -> ColumnKind:
    return _TYPE_ID_TO_COLUMN_KIND.get(type_id, ColumnKind.STRING)


def columns_to_schema(columns: List[ColumnInfo]) -> TableSchema:
    """Build a table schema from REST column infos; positions become 1-based"""
    return TableSchema(
        columns=[
            ColumnDesc(
                column_name=column.name,
                position=column.position + 1,
                type_id=type_name_to_type_id(column.type_name),
                precision=column.type_precision,
                scale=column.type_scale,
            )
            for column in columns
        ]
    )


def _build_null_bitmap(values: List[Any]) -> bytes:
    nulls = bytearray((len(values) + 7) // 8)
    for i, value in enumerate(values):
        if value is None:
            nulls[i >> 3] |= BIT_MASKS[i & 0x7]
    return bytes(nulls)


def _parse_value(kind: ColumnKind, value: Optional[str], column_name: str) -> Any:
    if value is None:
        return None
    try:
        return _COLUMN_KIND_PARSERS[kind](value)
    except (TypeError, ValueError) as e:
        logger.warning(
            "Error converting value %r in column %s: %s", value, column_name, e
        )
        return value


def json_array_to_columns(
    schema: TableSchema, data: Optional[List[List[Optional[str]]]]
) -> List[Column]:
    """Transpose row-major JSON_ARRAY data into typed column vectors.

    Columns are returned in schema order; a null bitmap is only attached to
    columns that actually contain nulls.
    """
    rows = data or []
    columns = []
    for index, desc in enumerate(schema.columns):
        kind = column_kind(desc.type_id)
        raw = [row[index] if index < len(row) else None for row in rows]
        values = [_parse_value(kind, value, desc.column_name) for value in raw]
        nulls = _build_null_bitmap(raw) if None in raw else b""
        columns.append(Column(kind=kind, values=values, nulls=nulls))
    return columns
