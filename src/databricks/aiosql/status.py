from typing import List, Optional

from databricks.aiosql.backend.types import StatusCode, StatusInfo
from databricks.aiosql.exc import StatusError


class Status:
    """Read-only view over the status block of a driver response."""

    def __init__(self, status: StatusInfo):
        self._status = status

    @property
    def is_success(self) -> bool:
        return self._status.status_code in (
            StatusCode.SUCCESS,
            StatusCode.SUCCESS_WITH_INFO,
        )

    @property
    def is_executing(self) -> bool:
        return self._status.status_code == StatusCode.STILL_EXECUTING

    @property
    def is_error(self) -> bool:
        return self._status.status_code in (
            StatusCode.ERROR,
            StatusCode.INVALID_HANDLE,
        )

    @property
    def info(self) -> List[str]:
        return list(self._status.info_messages or [])

    def __repr__(self):
        return "Status({})".format(self._status.status_code.name)

    @staticmethod
    def raise_for_status(status: Optional[StatusInfo]):
        """Raise a StatusError if the status reports an error or an invalid handle"""
        if status is not None and status.status_code in (
            StatusCode.ERROR,
            StatusCode.INVALID_HANDLE,
        ):
            raise StatusError(status)

    @classmethod
    def success(cls, info: Optional[List[str]] = None) -> "Status":
        info = info or []
        return cls(
            StatusInfo(
                status_code=StatusCode.SUCCESS_WITH_INFO if info else StatusCode.SUCCESS,
                info_messages=info,
            )
        )
