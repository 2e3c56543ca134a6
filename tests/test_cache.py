import asyncio

import pytest

from querygate.db.cache import ConnectionCache
from querygate.db.errors import ConnectionNotFoundError
from querygate.gateway.resolver import DescriptorResolver

from fakes import FakeConnectionStore


def test_set_then_get_returns_descriptor(descriptor):
    cache = ConnectionCache()

    cache.set(descriptor.id, descriptor)

    assert cache.get(descriptor.id) == descriptor
    assert descriptor.id in cache
    assert len(cache) == 1


def test_get_miss_returns_none():
    assert ConnectionCache().get("unknown") is None


def test_invalidate_and_clear(descriptor):
    cache = ConnectionCache()
    cache.set(descriptor.id, descriptor)

    assert cache.invalidate(descriptor.id) is True
    assert cache.invalidate(descriptor.id) is False
    assert cache.get(descriptor.id) is None

    cache.set(descriptor.id, descriptor)
    cache.clear()
    assert len(cache) == 0


def test_descriptor_password_is_hidden_from_repr(descriptor):
    assert "s3cret" not in repr(descriptor)


@pytest.mark.asyncio
async def test_miss_fetches_from_store_once(descriptor):
    store = FakeConnectionStore({descriptor.id: descriptor})
    resolver = DescriptorResolver(store, ConnectionCache())

    first = await resolver.resolve(descriptor.id)
    second = await resolver.resolve(descriptor.id)

    assert first == second == descriptor
    assert store.fetch_calls == [descriptor.id]


@pytest.mark.asyncio
async def test_concurrent_misses_share_one_fetch(descriptor):
    store = FakeConnectionStore({descriptor.id: descriptor}, delay=0.05)
    resolver = DescriptorResolver(store, ConnectionCache())

    results = await asyncio.gather(*(resolver.resolve(descriptor.id) for _ in range(10)))

    assert all(result == descriptor for result in results)
    assert store.fetch_calls == [descriptor.id]


@pytest.mark.asyncio
async def test_invalidate_forces_a_reload(descriptor):
    store = FakeConnectionStore({descriptor.id: descriptor})
    resolver = DescriptorResolver(store, ConnectionCache())

    await resolver.resolve(descriptor.id)
    resolver.invalidate(descriptor.id)
    await resolver.resolve(descriptor.id)

    assert store.fetch_calls == [descriptor.id, descriptor.id]


@pytest.mark.asyncio
async def test_unknown_connection_is_not_cached():
    store = FakeConnectionStore({})
    cache = ConnectionCache()
    resolver = DescriptorResolver(store, cache)

    with pytest.raises(ConnectionNotFoundError):
        await resolver.resolve("missing")

    assert cache.get("missing") is None
