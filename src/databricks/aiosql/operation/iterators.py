from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Dict, List

if TYPE_CHECKING:
    from databricks.aiosql.operation.operation import Operation

Row = Dict[str, Any]


class _OperationIterator(ABC):
    """Base of the async iterators over an operation's results.

    With `auto_close` the operation is closed once the iterator is
    exhausted, or when `aclose()` is called early (also on leaving an
    `async with` block around the iterator).
    """

    def __init__(self, operation: "Operation", auto_close: bool = False, **fetch_options):
        self.operation = operation
        self.auto_close = auto_close
        self.fetch_options = fetch_options

    def __aiter__(self):
        return self

    async def __anext__(self):
        try:
            return await self._get_next()
        except StopAsyncIteration:
            if self.auto_close:
                await self.operation.close()
            raise

    @abstractmethod
    async def _get_next(self):
        pass

    async def aclose(self):
        if self.auto_close:
            await self.operation.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_value, traceback):
        await self.aclose()


class OperationChunksIterator(_OperationIterator):
    async def _get_next(self) -> List[Row]:
        if await self.operation.has_more_rows():
            return await self.operation.fetch_chunk(**self.fetch_options)
        raise StopAsyncIteration


class OperationRowsIterator(_OperationIterator):
    def __init__(self, operation: "Operation", auto_close: bool = False, **fetch_options):
        # Rows are handed out one by one, so raw server chunks need no re-slicing
        fetch_options["disable_buffering"] = True
        super().__init__(operation, auto_close=auto_close, **fetch_options)
        self._chunk: List[Row] = []
        self._index = 0

    async def _get_next(self) -> Row:
        while self._index >= len(self._chunk):
            if not await self.operation.has_more_rows():
                raise StopAsyncIteration
            self._chunk = await self.operation.fetch_chunk(**self.fetch_options)
            self._index = 0

        value = self._chunk[self._index]
        self._index += 1
        return value
