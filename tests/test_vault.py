import pytest

from delegation_vault.exceptions import MalformedRecordError
from delegation_vault.models import DelegationKey, DelegationRecord
from delegation_vault.storage import InMemoryKeyValueStore
from delegation_vault.wallet.security import decode_record, encode_record
from delegation_vault.wallet.vault import DelegationVault
from doubles import ADDRESS, API_KEY, SHARE, make_key


def _blob(user_id="u1", chain="eip155:1", wallet_id="w1", address=ADDRESS, share=None):
    record = DelegationRecord(
        userId=user_id,
        chain=chain,
        walletId=wallet_id,
        address=address,
        delegatedShare=share or SHARE,
        walletApiKey=API_KEY,
    )
    return encode_record(record, make_key(0).public_key())


@pytest.fixture
def store():
    return InMemoryKeyValueStore()


@pytest.fixture
def vault(store):
    return DelegationVault(store)


@pytest.mark.asyncio
async def test_put_then_get(vault):
    key = DelegationKey("u1", "eip155:1", "w1")
    await vault.put(key, _blob())

    stored = await vault.get(key)

    assert stored is not None
    assert decode_record(stored, make_key(0)).delegated_share == SHARE


@pytest.mark.asyncio
async def test_get_missing_returns_none(vault):
    assert await vault.get(DelegationKey("nobody", "eip155:1", "w1")) is None


@pytest.mark.asyncio
async def test_put_supersedes_previous_record(vault):
    key = DelegationKey("u1", "eip155:1", "w1")
    await vault.put(key, _blob(share={"secretShare": "old"}))
    await vault.put(key, _blob(share={"secretShare": "new"}))

    stored = await vault.get(key)

    assert decode_record(stored, make_key(0)).delegated_share == {"secretShare": "new"}
    assert len(await vault.list_for_user("u1")) == 1


@pytest.mark.asyncio
async def test_put_rejects_identity_mismatch(vault):
    with pytest.raises(ValueError):
        await vault.put(DelegationKey("u2", "eip155:1", "w1"), _blob())


@pytest.mark.asyncio
async def test_lookup_by_address_is_case_insensitive(vault):
    await vault.put(DelegationKey("u1", "eip155:1", "w1"), _blob())

    found = await vault.get_by_address(ADDRESS.lower(), "eip155:1")

    assert found is not None
    assert found.wallet_id == "w1"
    assert await vault.get_by_address(ADDRESS, "eip155:137") is None


@pytest.mark.asyncio
async def test_address_change_drops_stale_pointer(vault):
    key = DelegationKey("u1", "eip155:1", "w1")
    new_address = "0x0000000000000000000000000000000000000002"
    await vault.put(key, _blob())
    await vault.put(key, _blob(address=new_address))

    assert await vault.get_by_address(ADDRESS, "eip155:1") is None
    assert (await vault.get_by_address(new_address, "eip155:1")).address == new_address


@pytest.mark.asyncio
async def test_list_for_user_spans_chains_and_wallets(vault):
    await vault.put(DelegationKey("u1", "eip155:1", "w1"), _blob())
    await vault.put(DelegationKey("u1", "eip155:137", "w2"), _blob(chain="eip155:137", wallet_id="w2"))
    await vault.put(DelegationKey("u2", "eip155:1", "w3"), _blob(user_id="u2", wallet_id="w3"))

    records = await vault.list_for_user("u1")

    assert sorted(r.wallet_id for r in records) == ["w1", "w2"]


@pytest.mark.asyncio
async def test_delete_removes_record_and_indexes(vault, store):
    key = DelegationKey("u1", "eip155:1", "w1")
    await vault.put(key, _blob())

    assert await vault.delete(key) is True

    assert await vault.get(key) is None
    assert await vault.get_by_address(ADDRESS, "eip155:1") is None
    assert await vault.list_for_user("u1") == []
    assert len(store) == 0


@pytest.mark.asyncio
async def test_delete_missing_returns_false(vault):
    assert await vault.delete(DelegationKey("u1", "eip155:1", "w1")) is False


@pytest.mark.asyncio
async def test_corrupt_record_raises_on_get_but_can_be_replaced(vault, store):
    key = DelegationKey("u1", "eip155:1", "w1")
    await store.set(key.storage_key, "{not json")

    with pytest.raises(MalformedRecordError):
        await vault.get(key)

    await vault.put(key, _blob())
    assert (await vault.get(key)).wallet_id == "w1"


@pytest.mark.asyncio
async def test_identities_with_separators_do_not_collide(vault, store):
    first = DelegationKey("x", "a:b", "c")
    second = DelegationKey("x:a", "b", "c")
    await vault.put(first, _blob(user_id="x", chain="a:b", wallet_id="c", share={"secretShare": "first"}))
    await vault.put(second, _blob(user_id="x:a", chain="b", wallet_id="c", share={"secretShare": "second"}))

    assert first.storage_key != second.storage_key
    assert decode_record(await vault.get(first), make_key(0)).delegated_share == {"secretShare": "first"}
    assert decode_record(await vault.get(second), make_key(0)).delegated_share == {"secretShare": "second"}
    assert [r.user_id for r in await vault.list_for_user("x")] == ["x"]
    assert [r.user_id for r in await vault.list_for_user("x:a")] == ["x:a"]


@pytest.mark.asyncio
async def test_record_stored_under_foreign_key_is_rejected(vault, store):
    key = DelegationKey("victim", "eip155:1", "w1")
    await store.set(key.storage_key, _blob().to_json())

    with pytest.raises(MalformedRecordError):
        await vault.get(key)
