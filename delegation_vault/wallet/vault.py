"""
Durable vault of encrypted delegation records.

Storage model:
- Only `EncryptedRecord` JSON is ever written; secret fields are already sealed
  by the codec before they reach the vault.
- Writes are last-writer-wins per key; the vault adds no locking of its own.
- `get` returns None both for keys that were never written and for keys that
  were removed; callers cannot (and need not) tell the two apart.

Key structure:
- delegation:record:{userId}:{chain}:{walletId} - encrypted record (JSON)
- delegation:address:{address}:{chain} - pointer to the record key (JSON)
- delegations:{userId} - set of record keys (JSON) for a user

Every part is percent-encoded, and the `record` / `address` segments keep the
two families apart, so distinct identities never share a storage key.

Usage:
    vault = DelegationVault(InMemoryKeyValueStore())
    await vault.put(record_key, encrypted_record)

    blob = await vault.get(record_key)
    if blob is None:
        ...  # not delegated (yet)
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import List, Optional
from urllib.parse import quote

from pydantic import ValidationError

from ..exceptions import MalformedRecordError
from ..models import DelegationKey, EncryptedRecord
from ..storage.base import KeyValueStore

logger = logging.getLogger(__name__)


def _address_key(address: str, chain: str) -> str:
    return f"delegation:address:{quote(address.lower(), safe='')}:{quote(chain, safe='')}"


def _user_key(user_id: str) -> str:
    return f"delegations:{quote(user_id, safe='')}"


def _encode_pointer(key: DelegationKey) -> str:
    return json.dumps([key.user_id, key.chain, key.wallet_id], separators=(",", ":"))


def _decode_pointer(value: str, source: str) -> DelegationKey:
    try:
        user_id, chain, wallet_id = json.loads(value)
        return DelegationKey(user_id, chain, wallet_id)
    except (ValueError, TypeError) as exc:
        raise MalformedRecordError("Vault index entry is corrupt", key=source) from exc


class DelegationVault:
    """Async store of `EncryptedRecord`s keyed by `(user_id, chain, wallet_id)`."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    async def put(self, key: DelegationKey, blob: EncryptedRecord) -> None:
        """
        Write (or supersede) the record stored under `key`.

        The record identity must match `key`. Secondary indexes for address and
        user lookups are refreshed; a superseded record's address pointer is
        dropped when the address changed.
        """
        if blob.key != key:
            raise ValueError(f"Record identity {blob.key} does not match vault key {key}")

        previous = await self._get_readable(key)
        await self.store.set(key.storage_key, blob.to_json())
        await self.store.set(_address_key(blob.address, blob.chain), _encode_pointer(key))
        await self.store.sadd(_user_key(key.user_id), _encode_pointer(key))

        if previous is not None and previous.address.lower() != blob.address.lower():
            await self._drop_address_pointer(previous)

        logger.info("Stored delegation record for %s", key)

    async def get(self, key: DelegationKey) -> Optional[EncryptedRecord]:
        raw = await self.store.get(key.storage_key)
        if raw is None:
            return None
        blob = self._parse(raw, key.storage_key)
        if blob.key != key:
            raise MalformedRecordError("Stored record belongs to another identity", key=str(key))
        return blob

    async def get_by_address(self, address: str, chain: str) -> Optional[EncryptedRecord]:
        """Resolve a record through the address index (case-insensitive)."""
        index_key = _address_key(address, chain)
        pointer = await self.store.get(index_key)
        if pointer is None:
            return None
        blob = await self.get(_decode_pointer(pointer, index_key))
        if blob is None or blob.chain != chain or blob.address.lower() != address.lower():
            return None
        return blob

    async def list_for_user(self, user_id: str) -> List[EncryptedRecord]:
        """Every live record of a user across chains and wallets."""
        index_key = _user_key(user_id)
        members = await self.store.smembers(index_key)
        keys = [_decode_pointer(member, index_key) for member in sorted(members)]
        records = await asyncio.gather(*(self.get(key) for key in keys))
        return [record for record in records if record is not None]

    async def delete(self, key: DelegationKey) -> bool:
        """
        Explicit revocation: remove the record and its index entries.

        Returns:
            True if a record existed and was removed, False otherwise.
        """
        previous = await self._get_readable(key)
        removed = await self.store.delete(key.storage_key)
        await self.store.srem(_user_key(key.user_id), _encode_pointer(key))
        if previous is not None:
            await self._drop_address_pointer(previous)

        if removed:
            logger.info("Removed delegation record for %s", key)
        return removed

    async def _get_readable(self, key: DelegationKey) -> Optional[EncryptedRecord]:
        """Like `get`, but a corrupt record counts as absent so it can be replaced."""
        try:
            return await self.get(key)
        except MalformedRecordError:
            logger.warning("Replacing unreadable delegation record for %s", key)
            return None

    async def _drop_address_pointer(self, record: EncryptedRecord) -> None:
        index_key = _address_key(record.address, record.chain)
        pointer = await self.store.get(index_key)
        if pointer is not None and pointer == _encode_pointer(record.key):
            await self.store.delete(index_key)

    @staticmethod
    def _parse(raw: str, storage_key: str) -> EncryptedRecord:
        try:
            return EncryptedRecord.model_validate_json(raw)
        except ValidationError as exc:
            raise MalformedRecordError("Stored delegation record is corrupt", key=storage_key) from exc
