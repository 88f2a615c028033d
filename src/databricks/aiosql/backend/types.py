"""
Data model shared by drivers and the result pipeline.

The shapes mirror the TCLIService structures that every driver speaks in:
a driver translates its own wire format into these dataclasses, and the
rest of the client only ever sees these.
"""

import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional, Union

logger = logging.getLogger(__name__)

NIL_UUID = str(uuid.UUID(int=0))


class OperationState(Enum):
    """
    Execution state of an operation as reported by the server.

    Values follow the TCLIService TOperationState numbering.
    """

    INITIALIZED = 0
    RUNNING = 1
    FINISHED = 2
    CANCELED = 3
    CLOSED = 4
    ERROR = 5
    UNKNOWN = 6
    PENDING = 7
    TIMEDOUT = 8

    @property
    def is_terminal(self) -> bool:
        """
        Whether no further transition can happen from this state.

        Terminal states are stable, so a status response carrying one can be
        cached for the lifetime of the operation.
        """
        return self not in (
            OperationState.INITIALIZED,
            OperationState.PENDING,
            OperationState.RUNNING,
        )


class StatusCode(Enum):
    SUCCESS = 0
    SUCCESS_WITH_INFO = 1
    STILL_EXECUTING = 2
    ERROR = 3
    INVALID_HANDLE = 4


class TypeId(Enum):
    BOOLEAN = 0
    TINYINT = 1
    SMALLINT = 2
    INT = 3
    BIGINT = 4
    FLOAT = 5
    DOUBLE = 6
    STRING = 7
    TIMESTAMP = 8
    BINARY = 9
    ARRAY = 10
    MAP = 11
    STRUCT = 12
    UNION = 13
    USER_DEFINED = 14
    DECIMAL = 15
    NULL = 16
    DATE = 17
    VARCHAR = 18
    CHAR = 19
    INTERVAL_YEAR_MONTH = 20
    INTERVAL_DAY_TIME = 21


class ResultFormat(Enum):
    """Encoding of the row sets returned for an operation."""

    ARROW_BASED_SET = 0
    COLUMN_BASED_SET = 1
    ROW_BASED_SET = 2
    URL_BASED_SET = 3


class FetchOrientation(Enum):
    FETCH_NEXT = 0
    FETCH_PRIOR = 1
    FETCH_RELATIVE = 2
    FETCH_ABSOLUTE = 3
    FETCH_FIRST = 4
    FETCH_LAST = 5


class FetchType(IntEnum):
    DATA = 0
    LOGS = 1


class OperationType(Enum):
    EXECUTE_STATEMENT = 0
    GET_TYPE_INFO = 1
    GET_CATALOGS = 2
    GET_SCHEMAS = 3
    GET_TABLES = 4
    GET_TABLE_TYPES = 5
    GET_COLUMNS = 6
    GET_FUNCTIONS = 7
    UNKNOWN = 8


class ColumnKind(Enum):
    """Physical storage of a column-major value vector."""

    BOOL = "bool"
    BYTE = "byte"
    I16 = "i16"
    I32 = "i32"
    I64 = "i64"
    DOUBLE = "double"
    STRING = "string"
    BINARY = "binary"


@dataclass
class StatusInfo:
    """Status block carried by every driver response."""

    status_code: StatusCode = StatusCode.SUCCESS
    info_messages: List[str] = field(default_factory=list)
    sql_state: Optional[str] = None
    error_code: Optional[int] = None
    error_message: Optional[str] = None


@dataclass(frozen=True)
class SessionHandle:
    guid: Union[bytes, str]
    secret: Optional[bytes] = None

    @property
    def id(self) -> str:
        return _handle_id(self.guid)


@dataclass(frozen=True)
class OperationHandle:
    """
    Server-issued identity of one operation.

    Attributes:
        guid: Operation identifier, raw bytes for Thrift style servers or a
            string statement id for REST servers
        secret: Secret part of the identifier, if the server uses one
        operation_type: Kind of operation this handle refers to
        has_result_set: Whether the operation produces rows, as known when
            the handle was issued
        modified_row_count: Rows affected by DML, if reported
    """

    guid: Union[bytes, str, None]
    secret: Optional[bytes] = None
    operation_type: OperationType = OperationType.EXECUTE_STATEMENT
    has_result_set: bool = False
    modified_row_count: Optional[float] = None

    @property
    def id(self) -> str:
        return _handle_id(self.guid)


def _handle_id(guid) -> str:
    """Render a handle guid as a UUID string.

    Example:
        IN   b'\\x01\\xee\\x1d)\\xa4\\x19\\x1d\\xb6\\xa9\\xc0\\x8d\\xf1\\xfe\\xbaB\\xdd'
        OUT  '01ee1d29-a419-1db6-a9c0-8df1feba42dd'

    Missing guids render as the NIL UUID, string guids are returned unchanged
    and bytes that are not a UUID fall back to their hex form.
    """
    if not guid:
        return NIL_UUID
    if isinstance(guid, bytes):
        try:
            return str(uuid.UUID(bytes=guid))
        except ValueError as e:
            logger.debug("Unable to convert bytes to UUID: %r -- %s", guid, str(e))
            return guid.hex()
    return str(guid)


@dataclass
class ColumnDesc:
    """
    Description of one result column.

    Attributes:
        column_name: Column name, possibly qualified with dots
        position: 1-based position of the column in row sets
        type_id: Primitive type tag, None if the server did not describe it
    """

    column_name: str
    position: int
    type_id: Optional[TypeId] = None
    precision: Optional[int] = None
    scale: Optional[int] = None
    comment: Optional[str] = None


@dataclass
class TableSchema:
    columns: List[ColumnDesc] = field(default_factory=list)


@dataclass
class Column:
    """
    One column-major value vector.

    `kind` tells which physical vector the values came from; it is set once
    by the driver when the row set is decoded. `nulls` is a bitmap with one
    bit per value, least significant bit first.
    """

    kind: ColumnKind
    values: List[Any] = field(default_factory=list)
    nulls: bytes = b""


@dataclass
class ArrowBatchInfo:
    batch: bytes
    row_count: int


@dataclass
class ResultLink:
    """
    Link to an externally hosted Arrow file.

    Attributes:
        file_link: Presigned URL of the file
        expiry_time: Link expiry as epoch milliseconds
        start_row_offset: Index of the first row in the file
        row_count: Number of rows in the file
        bytes_num: Size of the file in bytes
        http_headers: Extra headers required by the storage service
    """

    file_link: str
    expiry_time: int
    start_row_offset: int = 0
    row_count: int = 0
    bytes_num: int = 0
    http_headers: Dict[str, str] = field(default_factory=dict)


@dataclass
class RowSet:
    """One server-delivered chunk of data in its native encoding."""

    start_row_offset: int = 0
    columns: Optional[List[Column]] = None
    arrow_batches: Optional[List[ArrowBatchInfo]] = None
    result_links: Optional[List[ResultLink]] = None


@dataclass
class ArrowBatch:
    """Arrow IPC buffers ready to be read as one stream, plus their row count."""

    batches: List[bytes] = field(default_factory=list)
    row_count: int = 0


@dataclass
class ArrowNativeTypes:
    timestamp_as_arrow: bool = True
    decimal_as_arrow: bool = True
    complex_types_as_arrow: bool = True
    interval_types_as_arrow: bool = False


@dataclass
class ProgressUpdate:
    header_names: List[str] = field(default_factory=list)
    rows: List[List[str]] = field(default_factory=list)
    progressed_percentage: float = 0.0
    footer_summary: Optional[str] = None
    start_time: Optional[int] = None


@dataclass
class OpenSessionResponse:
    status: StatusInfo
    session_handle: Optional[SessionHandle] = None


@dataclass
class CloseSessionResponse:
    status: StatusInfo


@dataclass
class GetOperationStatusResponse:
    status: StatusInfo
    operation_state: Optional[OperationState] = None
    sql_state: Optional[str] = None
    error_code: Optional[int] = None
    error_message: Optional[str] = None
    display_message: Optional[str] = None
    diagnostic_info: Optional[str] = None
    has_result_set: Optional[bool] = None
    num_modified_rows: Optional[int] = None
    progress_update: Optional[ProgressUpdate] = None


@dataclass
class ResultSetMetadataResponse:
    status: StatusInfo
    schema: Optional[TableSchema] = None
    result_format: Optional[ResultFormat] = None
    lz4_compressed: bool = False
    arrow_schema: Optional[bytes] = None


@dataclass
class FetchResultsResponse:
    status: StatusInfo
    has_more_rows: Optional[bool] = None
    results: Optional[RowSet] = None


@dataclass
class CancelOperationResponse:
    status: StatusInfo


@dataclass
class CloseOperationResponse:
    status: StatusInfo


@dataclass
class DirectResults:
    """
    First-round results bundled with an execute response.

    Any of the parts may be missing. When `close_operation` is present the
    server has already closed the operation and nothing beyond
    `result_set` can be fetched.
    """

    operation_status: Optional[GetOperationStatusResponse] = None
    result_set_metadata: Optional[ResultSetMetadataResponse] = None
    result_set: Optional[FetchResultsResponse] = None
    close_operation: Optional[CloseOperationResponse] = None


@dataclass
class ExecuteStatementResponse:
    status: StatusInfo
    operation_handle: Optional[OperationHandle] = None
    direct_results: Optional[DirectResults] = None


@dataclass
class ExecuteStatementRequest:
    """
    Parameters of one statement execution.

    Attributes:
        session_handle: Session to run the statement in
        statement: SQL text
        run_async: Return as soon as the statement is accepted
        query_timeout: Server-side timeout in seconds, 0 for none
        direct_results_max_rows: Row limit of the inline first chunk, None
            to disable direct results
        can_read_arrow_result: Client accepts Arrow encoded row sets
        can_download_result: Client accepts CloudFetch links
        can_decompress_lz4_result: Client accepts LZ4-frame compressed data
        arrow_native_types: Which types the client decodes natively from Arrow
        conf_overlay: Per-statement configuration overrides
    """

    session_handle: SessionHandle
    statement: str
    run_async: bool = False
    query_timeout: int = 0
    direct_results_max_rows: Optional[int] = None
    can_read_arrow_result: bool = False
    can_download_result: bool = False
    can_decompress_lz4_result: bool = False
    arrow_native_types: Optional[ArrowNativeTypes] = None
    conf_overlay: Dict[str, str] = field(default_factory=dict)
