import asyncio
import logging
from typing import Any, Literal, Optional, Union

from databricks.aiosql.operation.iterators import (
    OperationChunksIterator,
    OperationRowsIterator,
)

logger = logging.getLogger(__name__)

StreamMode = Literal["chunks", "rows"]

_END = object()


class _ProducerError:
    def __init__(self, error: BaseException):
        self.error = error


class OperationStream:
    """Readable stream over an operation iterator.

    A producer task pulls from the iterator into a queue bounded by
    `high_water_mark`; it pauses while the queue is full, so the reader's
    pace drives fetching. Errors raised while producing are re-raised from
    `read()`.
    """

    def __init__(
        self,
        iterator: Union[OperationChunksIterator, OperationRowsIterator],
        high_water_mark: int = 16,
    ):
        self._iterator = iterator
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max(1, high_water_mark))
        self._producer: Optional[asyncio.Future] = None
        self._ended = False

    @property
    def ended(self) -> bool:
        return self._ended

    async def _produce(self):
        try:
            async for item in self._iterator:
                await self._queue.put(item)
        except Exception as e:
            logger.debug("Operation stream producer failed: %s", e)
            await self._queue.put(_ProducerError(e))
            return
        await self._queue.put(_END)

    async def read(self) -> Optional[Any]:
        """Return the next chunk or row, or None once the stream has ended"""
        if self._ended:
            return None
        if self._producer is None:
            self._producer = asyncio.ensure_future(self._produce())

        item = await self._queue.get()
        if item is _END:
            self._ended = True
            return None
        if isinstance(item, _ProducerError):
            self._ended = True
            raise item.error
        return item

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self.read()
        if item is None:
            raise StopAsyncIteration
        return item

    async def close(self):
        """Stop producing. Closes the operation when the iterator auto-closes."""
        self._ended = True
        if self._producer is not None and not self._producer.done():
            self._producer.cancel()
            try:
                await self._producer
            except asyncio.CancelledError:
                pass
        await self._iterator.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_value, traceback):
        await self.close()
