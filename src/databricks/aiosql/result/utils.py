import decimal
import json
import logging
from typing import Any, List, Optional

import lz4.frame
import pyarrow

from databricks.aiosql.backend.types import ColumnDesc, TableSchema, TypeId
from databricks.aiosql.exc import NotSupportedError

BIT_MASKS = [1, 2, 4, 8, 16, 32, 64, 128]

logger = logging.getLogger(__name__)


def get_schema_columns(schema: Optional[TableSchema]) -> List[ColumnDesc]:
    """Return the schema columns ordered by position, or [] without a schema"""
    if schema is None:
        return []
    return sorted(schema.columns, key=lambda column: column.position)


def column_leaf_name(column_name: str) -> str:
    """Row key of a column: the segment after the last dot of its name"""
    return column_name.rsplit(".", 1)[-1]


def is_null(nulls: bytes, i: int) -> bool:
    if (i >> 3) >= len(nulls):
        return False
    return bool(nulls[i >> 3] & BIT_MASKS[i & 0x7])


def _convert_json(value, default):
    if not isinstance(value, str):
        return value
    try:
        return json.loads(value)
    except ValueError:
        return default


def _convert_decimal(value):
    if isinstance(value, decimal.Decimal):
        return value
    try:
        return decimal.Decimal(str(value))
    except decimal.InvalidOperation:
        logger.warning("Unable to convert %r to decimal", value)
        return value


def convert_thrift_value(type_id: Optional[TypeId], value: Any) -> Any:
    """Cast a decoded value according to the declared column type.

    Callers handle nulls before calling this; the value is never None here
    unless the server sent a raw None without flagging it.
    """
    if type_id is None:
        return value

    if type_id in (TypeId.DATE, TypeId.TIMESTAMP):
        return value
    if type_id in (TypeId.UNION, TypeId.USER_DEFINED):
        return str(value)
    if type_id == TypeId.DECIMAL:
        return _convert_decimal(value)
    if type_id in (TypeId.STRUCT, TypeId.MAP):
        return _convert_json(value, {})
    if type_id == TypeId.ARRAY:
        return _convert_json(value, [])
    if type_id == TypeId.BIGINT:
        return int(value)
    return value


# Arrow types used by servers that encode without native type support; most
# complex types arrive serialized as strings
_HIVE_TYPE_TO_ARROW_TYPE = {
    TypeId.BOOLEAN: pyarrow.bool_(),
    TypeId.TINYINT: pyarrow.int8(),
    TypeId.SMALLINT: pyarrow.int16(),
    TypeId.INT: pyarrow.int32(),
    TypeId.BIGINT: pyarrow.int64(),
    TypeId.FLOAT: pyarrow.float32(),
    TypeId.DOUBLE: pyarrow.float64(),
    TypeId.STRING: pyarrow.string(),
    TypeId.TIMESTAMP: pyarrow.string(),
    TypeId.BINARY: pyarrow.binary(),
    TypeId.ARRAY: pyarrow.string(),
    TypeId.MAP: pyarrow.string(),
    TypeId.STRUCT: pyarrow.string(),
    TypeId.UNION: pyarrow.string(),
    TypeId.USER_DEFINED: pyarrow.string(),
    TypeId.DECIMAL: pyarrow.string(),
    TypeId.DATE: pyarrow.date32(),
    TypeId.VARCHAR: pyarrow.string(),
    TypeId.CHAR: pyarrow.string(),
    TypeId.INTERVAL_YEAR_MONTH: pyarrow.string(),
    TypeId.INTERVAL_DAY_TIME: pyarrow.string(),
}


def hive_schema_to_arrow_schema(schema: Optional[TableSchema]) -> Optional[bytes]:
    """Serialize an Arrow IPC schema message equivalent to a table schema.

    Used for servers that do not send an Arrow schema with the result set
    metadata. Those servers never use native Arrow types either.
    """
    if schema is None:
        return None

    def convert_col(column: ColumnDesc):
        arrow_type = _HIVE_TYPE_TO_ARROW_TYPE.get(column.type_id)
        if arrow_type is None:
            name = column.type_id.name if column.type_id is not None else "undefined"
            raise NotSupportedError("Unsupported column type: {}".format(name))
        return pyarrow.field(column.column_name, arrow_type, nullable=True)

    arrow_schema = pyarrow.schema(
        [convert_col(column) for column in get_schema_columns(schema)]
    )
    return arrow_schema.serialize().to_pybytes()


def decompress_lz4(compressed_data: bytes) -> bytes:
    """
    Decompress lz4 frame compressed data.

    Decompresses data that has been lz4 compressed, either via the whole frame or by series of chunks.
    """
    uncompressed_data, bytes_read = lz4.frame.decompress(
        compressed_data, return_bytes_read=True
    )
    # Files are commonly punctuated by several end-of-frame markers, and whole
    # frame decompression stops at the first one
    if bytes_read < len(compressed_data):
        d_context = lz4.frame.create_decompression_context()
        start = 0
        uncompressed_data = bytearray()
        while start < len(compressed_data):
            data, num_bytes, is_end = lz4.frame.decompress_chunk(
                d_context, compressed_data[start:]
            )
            uncompressed_data += data
            start += num_bytes
        uncompressed_data = bytes(uncompressed_data)
    return uncompressed_data
