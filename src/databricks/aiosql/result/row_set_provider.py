import logging
from collections import deque
from typing import Callable, Iterable, Optional

from databricks.aiosql.backend.types import (
    FetchOrientation,
    FetchResultsResponse,
    FetchType,
    OperationHandle,
    RowSet,
)
from databricks.aiosql.context import ClientContext
from databricks.aiosql.result.provider import ResultsProvider
from databricks.aiosql.status import Status

logger = logging.getLogger(__name__)


def check_if_operation_has_more_rows(response: FetchResultsResponse) -> bool:
    """Decide whether rows may follow the chunk in `response`.

    An explicit flag from the server wins. Some servers omit the flag, in
    which case a chunk whose first column carries values means more data may
    follow, and an empty chunk means the result is exhausted.
    """
    if response.has_more_rows is not None:
        return response.has_more_rows

    columns = (response.results.columns if response.results else None) or []
    if not columns:
        return False
    return len(columns[0].values) > 0


class RowSetProvider(ResultsProvider[Optional[RowSet]]):
    """Serves prefetched direct results first, then live fetch_results calls."""

    def __init__(
        self,
        context: ClientContext,
        operation_handle: OperationHandle,
        has_result_set: Callable[[], bool],
        prefetched_results: Iterable[Optional[FetchResultsResponse]] = (),
        return_only_prefetched_results: bool = False,
    ):
        self.context = context
        self.operation_handle = operation_handle
        # Evaluated lazily: the status tracker may learn about the result set
        # after this provider is created
        self._has_result_set = has_result_set
        self.prefetched_results = deque(r for r in prefetched_results if r is not None)
        self.return_only_prefetched_results = return_only_prefetched_results
        self.fetch_orientation = FetchOrientation.FETCH_FIRST
        self._has_more_rows_flag: Optional[bool] = None

    @property
    def _has_more_rows(self) -> bool:
        # The flag is only known after the first row set was processed
        if self._has_more_rows_flag is not None:
            return self._has_more_rows_flag
        return self._has_result_set()

    def _process_fetch_response(self, response: FetchResultsResponse) -> Optional[RowSet]:
        Status.raise_for_status(response.status)
        self.fetch_orientation = FetchOrientation.FETCH_NEXT
        self._has_more_rows_flag = check_if_operation_has_more_rows(response)
        return response.results

    async def fetch_next(self, limit: int, disable_buffering: bool = False) -> Optional[RowSet]:
        if self.prefetched_results:
            logger.debug("Serving prefetched row set for %s", self.operation_handle.id)
            return self._process_fetch_response(self.prefetched_results.popleft())

        if self.return_only_prefetched_results:
            return None

        if not self._has_more_rows:
            return None

        logger.debug(
            "fetch_results(%s, %s, max_rows=%s)",
            self.operation_handle.id,
            self.fetch_orientation.name,
            limit,
        )
        response = await self.context.driver.fetch_results(
            self.operation_handle, self.fetch_orientation, limit, FetchType.DATA
        )
        return self._process_fetch_response(response)

    async def has_more(self) -> bool:
        # Prefetched data counts as more rows whatever the last flag said
        if self.prefetched_results:
            return True
        if self.return_only_prefetched_results:
            return False
        return self._has_more_rows
