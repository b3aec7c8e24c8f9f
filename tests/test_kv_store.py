import pytest

from passkeygate.core.database import DatabaseManager
from passkeygate.core.exceptions import StoreError
from passkeygate.core.kv import MemoryKeyValueStore, SQLKeyValueStore, create_store


@pytest.fixture
async def sql_kv(tmp_path, clock):
    db_manager = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path}/kv.db")
    yield SQLKeyValueStore(db_manager, clock)
    await db_manager.dispose()


@pytest.fixture(params=["memory", "sql"])
def any_kv(request, kv, sql_kv):
    return kv if request.param == "memory" else sql_kv


@pytest.mark.asyncio
async def test_put_get_delete(any_kv):
    await any_kv.put("k", {"a": 1, "b": [1, 2]})
    assert await any_kv.get("k") == {"a": 1, "b": [1, 2]}
    await any_kv.put("k", {"a": 2})
    assert await any_kv.get("k") == {"a": 2}
    await any_kv.delete("k")
    assert await any_kv.get("k") is None
    await any_kv.delete("k")  # missing key is fine


@pytest.mark.asyncio
async def test_ttl_expiry(any_kv, clock):
    await any_kv.put("short", {"v": 1}, ttl=300)
    await any_kv.put("forever", {"v": 2})
    clock.advance(299)
    assert await any_kv.get("short") == {"v": 1}
    clock.advance(1)
    assert await any_kv.get("short") is None
    assert await any_kv.get("forever") == {"v": 2}


@pytest.mark.asyncio
async def test_zero_ttl_expires_immediately(any_kv):
    await any_kv.put("gone", {"v": 1}, ttl=0)
    assert await any_kv.get("gone") is None


@pytest.mark.asyncio
async def test_pop_reads_once(any_kv):
    await any_kv.put("once", {"v": 1}, ttl=60)
    assert await any_kv.pop("once") == {"v": 1}
    assert await any_kv.pop("once") is None
    assert await any_kv.get("once") is None


@pytest.mark.asyncio
async def test_pop_of_expired_key_returns_none(any_kv, clock):
    await any_kv.put("stale", {"v": 1}, ttl=10)
    clock.advance(11)
    assert await any_kv.pop("stale") is None


@pytest.mark.asyncio
async def test_unserializable_value_raises_store_error(any_kv):
    with pytest.raises(StoreError):
        await any_kv.put("bad", {"v": object()})


@pytest.mark.asyncio
async def test_corrupt_document_raises_store_error(kv):
    kv._data["broken"] = ("{not json", None)
    with pytest.raises(StoreError, match="Corrupt value"):
        await kv.get("broken")


@pytest.mark.asyncio
async def test_memory_store_len_counts_live_keys(kv, clock):
    await kv.put("a", 1, ttl=5)
    await kv.put("b", 2)
    assert len(kv) == 2
    clock.advance(5)
    assert len(kv) == 1


def test_create_store_honours_backend_setting():
    assert isinstance(create_store(), MemoryKeyValueStore)
