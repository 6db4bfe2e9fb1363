import asyncio

import pytest

from spamcrasher.datatypes.identifiers import ChannelID, UserID
from spamcrasher.store.memory_store import MemoryTrustStore
from spamcrasher.store.trust_store import TrustStore, user_key


def test_user_key_scheme():
    assert user_key(UserID(42)) == "user:42"
    assert user_key(42, -1001) == "user:42:channel:-1001"


def test_memory_store_satisfies_protocol():
    assert isinstance(MemoryTrustStore(), TrustStore)


@pytest.mark.asyncio
async def test_increment_returns_new_count(memory_store: MemoryTrustStore):
    assert await memory_store.is_empty()
    assert await memory_store.get_user_count(UserID(1)) == 0
    assert await memory_store.get_user_record(UserID(1)) is None

    assert await memory_store.increment_user_count(UserID(1)) == 1
    assert await memory_store.increment_user_count(UserID(1), amount=4) == 5

    record = await memory_store.get_user_record(UserID(1))
    assert record is not None
    assert record.key == "user:1"
    assert record.interaction_count == 5
    assert record.last_seen is not None
    assert not await memory_store.is_empty()


@pytest.mark.asyncio
async def test_channel_scoped_counters_are_independent(memory_store: MemoryTrustStore):
    await memory_store.increment_user_count(UserID(1), ChannelID(10))
    await memory_store.increment_user_count(UserID(1), ChannelID(10))
    await memory_store.increment_user_count(UserID(1), ChannelID(20))

    assert await memory_store.get_user_count(UserID(1), ChannelID(10)) == 2
    assert await memory_store.get_user_count(UserID(1), ChannelID(20)) == 1
    assert await memory_store.get_user_count(UserID(1)) == 0


@pytest.mark.asyncio
async def test_concurrent_increments_are_not_lost(memory_store: MemoryTrustStore):
    results = await asyncio.gather(*(memory_store.increment_user_count(UserID(7)) for _ in range(200)))

    assert await memory_store.get_user_count(UserID(7)) == 200
    assert sorted(results) == list(range(1, 201))


@pytest.mark.asyncio
async def test_non_positive_amount_rejected(memory_store: MemoryTrustStore):
    with pytest.raises(ValueError):
        await memory_store.increment_user_count(UserID(1), amount=0)


@pytest.mark.asyncio
async def test_close_marks_store_closed(memory_store: MemoryTrustStore):
    await memory_store.close()
    assert memory_store.closed
