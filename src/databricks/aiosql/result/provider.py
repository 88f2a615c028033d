from abc import ABC, abstractmethod
from typing import Generic, TypeVar

T = TypeVar("T")


class ResultsProvider(ABC, Generic[T]):
    """A source of result chunks.

    Handlers, the converter and the slicer all implement this interface and
    wrap one another, so each only needs to know the interface of its source.
    """

    @abstractmethod
    async def fetch_next(self, limit: int, disable_buffering: bool = False) -> T:
        """Return the next chunk, fetching at most about `limit` rows upstream"""
        pass

    @abstractmethod
    async def has_more(self) -> bool:
        pass
