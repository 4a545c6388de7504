"""
In-memory key-value store for tests and local development.
"""

from __future__ import annotations

import asyncio
from typing import Dict, Optional, Set

from .base import KeyValueStore


class InMemoryKeyValueStore(KeyValueStore):
    def __init__(self) -> None:
        self._values: Dict[str, str] = {}
        self._sets: Dict[str, Set[str]] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    async def set(self, key: str, value: str) -> None:
        async with self._lock:
            self._values[key] = value

    async def delete(self, key: str) -> bool:
        async with self._lock:
            existed = self._values.pop(key, None) is not None
            existed = self._sets.pop(key, None) is not None or existed
            return existed

    async def sadd(self, key: str, member: str) -> None:
        async with self._lock:
            self._sets.setdefault(key, set()).add(member)

    async def srem(self, key: str, member: str) -> None:
        async with self._lock:
            members = self._sets.get(key)
            if members is None:
                return
            members.discard(member)
            if not members:
                del self._sets[key]

    async def smembers(self, key: str) -> Set[str]:
        return set(self._sets.get(key, ()))

    def snapshot(self) -> Dict[str, str]:
        """Copy of every plain value, used to compare stored state."""
        return dict(self._values)

    def __len__(self) -> int:
        return len(self._values)
