"""
Models of the Statement Execution REST API payloads.

Only the fields the driver consumes are modelled; unknown fields are ignored.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class ResultFormat(Enum):
    ARROW_STREAM = "ARROW_STREAM"
    JSON_ARRAY = "JSON_ARRAY"


class ResultDisposition(Enum):
    EXTERNAL_LINKS = "EXTERNAL_LINKS"
    INLINE = "INLINE"


class ResultCompression(Enum):
    LZ4_FRAME = "LZ4_FRAME"
    NONE = None


class WaitTimeout(Enum):
    """How long the execute request blocks before returning a running statement"""

    ASYNC = "0s"
    SYNC = "10s"


class StatementState(Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    CANCELED = "CANCELED"
    CLOSED = "CLOSED"


@dataclass
class ServiceError:
    message: str
    error_code: Optional[str] = None


@dataclass
class StatementStatus:
    state: Optional[StatementState]
    error: Optional[ServiceError] = None
    sql_state: Optional[str] = None


@dataclass
class ColumnInfo:
    name: str
    position: int
    type_name: str
    type_text: Optional[str] = None
    type_precision: Optional[int] = None
    type_scale: Optional[int] = None


@dataclass
class ResultManifest:
    format: Optional[str] = None
    columns: List[ColumnInfo] = field(default_factory=list)
    total_row_count: int = 0
    total_chunk_count: int = 0
    result_compression: Optional[str] = None
    truncated: bool = False

    @property
    def lz4_compressed(self) -> bool:
        return self.result_compression == ResultCompression.LZ4_FRAME.value


@dataclass
class ExternalLink:
    external_link: str
    expiration: str
    chunk_index: int
    byte_count: int = 0
    row_count: int = 0
    row_offset: int = 0
    next_chunk_index: Optional[int] = None
    http_headers: Dict[str, str] = field(default_factory=dict)


@dataclass
class ResultData:
    data: Optional[List[List[Any]]] = None
    external_links: Optional[List[ExternalLink]] = None
    chunk_index: Optional[int] = None
    row_offset: int = 0
    row_count: int = 0
    next_chunk_index: Optional[int] = None


def parse_status(data: Dict[str, Any]) -> StatementStatus:
    """Parse the status block of a statement response."""
    status_data = data.get("status") or {}
    error = None
    if "error" in status_data:
        error_data = status_data["error"] or {}
        error = ServiceError(
            message=error_data.get("message", ""),
            error_code=error_data.get("error_code"),
        )

    try:
        state = StatementState(status_data.get("state"))
    except ValueError:
        state = None

    return StatementStatus(
        state=state,
        error=error,
        sql_state=status_data.get("sql_state"),
    )


def parse_manifest(data: Dict[str, Any]) -> Optional[ResultManifest]:
    """Parse the result manifest, None if the response has none."""
    manifest_data = data.get("manifest")
    if manifest_data is None:
        return None

    schema = manifest_data.get("schema") or {}
    columns = [
        ColumnInfo(
            name=column.get("name", ""),
            position=column.get("position", index),
            type_name=column.get("type_name", ""),
            type_text=column.get("type_text"),
            type_precision=column.get("type_precision"),
            type_scale=column.get("type_scale"),
        )
        for index, column in enumerate(schema.get("columns") or [])
    ]

    return ResultManifest(
        format=manifest_data.get("format"),
        columns=columns,
        total_row_count=manifest_data.get("total_row_count", 0),
        total_chunk_count=manifest_data.get("total_chunk_count", 0),
        result_compression=manifest_data.get("result_compression"),
        truncated=manifest_data.get("truncated", False),
    )


def parse_result(result_data: Optional[Dict[str, Any]]) -> Optional[ResultData]:
    """Parse one result chunk, either inline data or external links."""
    if result_data is None:
        return None

    external_links = None
    if "external_links" in result_data:
        external_links = [
            ExternalLink(
                external_link=link.get("external_link", ""),
                expiration=link.get("expiration", ""),
                chunk_index=link.get("chunk_index", 0),
                byte_count=link.get("byte_count", 0),
                row_count=link.get("row_count", 0),
                row_offset=link.get("row_offset", 0),
                next_chunk_index=link.get("next_chunk_index"),
                http_headers=link.get("http_headers") or {},
            )
            for link in result_data["external_links"] or []
        ]

    next_chunk_index = result_data.get("next_chunk_index")
    if next_chunk_index is None and external_links:
        next_chunk_index = external_links[-1].next_chunk_index

    return ResultData(
        data=result_data.get("data_array"),
        external_links=external_links,
        chunk_index=result_data.get("chunk_index"),
        row_offset=result_data.get("row_offset", 0),
        row_count=result_data.get("row_count", 0),
        next_chunk_index=next_chunk_index,
    )


@dataclass
class StatementResponse:
    """Response of the execute and get statement endpoints."""

    statement_id: str
    status: StatementStatus
    manifest: Optional[ResultManifest] = None
    result: Optional[ResultData] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StatementResponse":
        return cls(
            statement_id=data.get("statement_id", ""),
            status=parse_status(data),
            manifest=parse_manifest(data),
            result=parse_result(data.get("result")),
        )
