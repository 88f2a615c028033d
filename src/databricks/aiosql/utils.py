import logging
from typing import Generic, List, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CloseableCollection(Generic[T]):
    """Tracks open objects so their owner can close them all at once.

    Items must expose `close()` and an `on_close` callback slot. An item
    closed on its own deregisters itself through that callback.
    """

    def __init__(self):
        self._items: List[T] = []

    def __len__(self):
        return len(self._items)

    def __contains__(self, item) -> bool:
        return any(existing is item for existing in self._items)

    def add(self, item: T):
        item.on_close = lambda: self.delete(item)
        self._items.append(item)

    def delete(self, item: T):
        if item in self:
            item.on_close = None
            self._items = [existing for existing in self._items if existing is not item]

    async def close_all(self):
        for item in list(self._items):
            await item.close()
            self.delete(item)
