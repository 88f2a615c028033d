import logging
from typing import Any, Dict, List

from databricks.aiosql.result.provider import ResultsProvider

logger = logging.getLogger(__name__)

Row = Dict[str, Any]


class ResultSlicer(ResultsProvider[List[Row]]):
    """Re-buffers upstream chunks of any size into pages of the requested size."""

    def __init__(self, source: ResultsProvider[List[Row]]):
        self.source = source
        self._remaining_results: List[Row] = []

    async def has_more(self) -> bool:
        if self._remaining_results:
            return True
        return await self.source.has_more()

    async def fetch_next(self, limit: int, disable_buffering: bool = False) -> List[Row]:
        if disable_buffering:
            # Serve whatever is at hand without re-slicing to `limit`
            if self._remaining_results:
                result, self._remaining_results = self._remaining_results, []
                return result
            return await self.source.fetch_next(limit, disable_buffering=True)

        result = self._remaining_results
        self._remaining_results = []

        try:
            while len(result) < limit:
                chunk = await self.source.fetch_next(limit)
                if not chunk:
                    break
                result.extend(chunk)
        except Exception:
            # Keep collected rows for the next call
            self._remaining_results = result
            raise

        if len(result) > limit:
            self._remaining_results = result[limit:]
            result = result[:limit]

        return result
