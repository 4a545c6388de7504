"""
Key-value store backends for the delegation vault.

Priority when building from settings:
1. REST key-value API (if KV_REST_API_URL and KV_REST_API_TOKEN are set)
2. Redis at KV_URL (defaults to redis://localhost:6379)
"""

from ..config import DelegationSettings
from .base import KeyValueStore
from .memory import InMemoryKeyValueStore
from .redis_store import RedisKeyValueStore
from .rest_store import RestKeyValueStore


def create_store(settings: DelegationSettings) -> KeyValueStore:
    if settings.uses_rest_store:
        return RestKeyValueStore(
            settings.kv_rest_api_url,  # type: ignore[arg-type]
            settings.kv_rest_api_token.get_secret_value(),  # type: ignore[union-attr]
        )
    return RedisKeyValueStore(settings.kv_url)


__all__ = [
    "KeyValueStore",
    "InMemoryKeyValueStore",
    "RedisKeyValueStore",
    "RestKeyValueStore",
    "create_store",
]
