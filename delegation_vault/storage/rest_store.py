"""
Key-value store reached over a Redis-compatible REST API (Vercel KV / Upstash).

Each command is posted as a JSON array, e.g. `["SET", "key", "value"]`, with a
bearer token; the reply is `{"result": ...}` or `{"error": "..."}`.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Set

import httpx

from ..exceptions import StorageUnavailableError
from .base import KeyValueStore

logger = logging.getLogger(__name__)


class RestKeyValueStore(KeyValueStore):
    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        timeout: float = 10.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.http_client = http_client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout),
        )
        self._headers = {"Authorization": f"Bearer {token}"}

    async def _command(self, *args: str) -> Any:
        operation, key = args[0].lower(), args[1]
        try:
            response = await self.http_client.post("/", json=list(args), headers=self._headers)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as exc:
            logger.warning("KV REST %s failed for %s: HTTP %s", operation, key, exc.response.status_code)
            raise StorageUnavailableError(
                "Key-value store rejected the request",
                operation=operation,
                key=key,
                status=exc.response.status_code,
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("KV REST %s failed for %s: %s", operation, key, type(exc).__name__)
            raise StorageUnavailableError("Key-value store unavailable", operation=operation, key=key) from exc

        if not isinstance(body, dict) or "error" in body:
            raise StorageUnavailableError("Key-value store returned an error", operation=operation, key=key)
        return body.get("result")

    async def get(self, key: str) -> Optional[str]:
        result = await self._command("GET", key)
        if result is None:
            return None
        return result if isinstance(result, str) else str(result)

    async def set(self, key: str, value: str) -> None:
        await self._command("SET", key, value)

    async def delete(self, key: str) -> bool:
        return bool(await self._command("DEL", key))

    async def sadd(self, key: str, member: str) -> None:
        await self._command("SADD", key, member)

    async def srem(self, key: str, member: str) -> None:
        await self._command("SREM", key, member)

    async def smembers(self, key: str) -> Set[str]:
        result = await self._command("SMEMBERS", key)
        return set(result or ())

    async def close(self) -> None:
        await self.http_client.aclose()
