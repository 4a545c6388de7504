from abc import ABC, abstractmethod
from typing import Optional, Set


class KeyValueStore(ABC):
    """
    Minimal async key-value interface the vault needs.

    Implementations raise `StorageUnavailableError` when the backend cannot be
    reached; a missing key is not an error and yields None / empty results.
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Return the value stored under `key`, or None."""

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Store `value` under `key`, replacing any previous value."""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove `key`; return True if it existed."""

    @abstractmethod
    async def sadd(self, key: str, member: str) -> None:
        """Add `member` to the set stored under `key`."""

    @abstractmethod
    async def srem(self, key: str, member: str) -> None:
        """Remove `member` from the set stored under `key`."""

    @abstractmethod
    async def smembers(self, key: str) -> Set[str]:
        """Return every member of the set stored under `key`."""

    async def close(self) -> None:
        return None
