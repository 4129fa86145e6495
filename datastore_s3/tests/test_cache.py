"""
Unit Tests: Read-Through Cache

Tests:
    - Hits, misses and negative hits
    - Separate TTLs for positive and not-found entries
    - Coherence with datastore writes
    - Invalidation racing an in-flight load
    - Bounded size and generation cleanup
"""

import asyncio
import traceback

import pytest

from datastore_s3.core.errors import NotFoundError, UnknownBackendError
from datastore_s3.core.types import Err, Key, Ok
from datastore_s3.storage.backends import InMemoryObjectStoreClient
from datastore_s3.storage.cache import ReadThroughCache
from datastore_s3.storage.config import DatastoreConfig
from datastore_s3.storage.datastore import S3Datastore


BUCKET = "test-bucket"


class FakeClock:
    """Manually advanced nanosecond clock."""

    def __init__(self):
        self.now_ns = 0

    def __call__(self):
        return self.now_ns

    def advance_ms(self, ms):
        self.now_ns += ms * 1_000_000


def make_store(clock, cache_enabled=True, **config):
    client = InMemoryObjectStoreClient(buckets=[BUCKET])
    config = DatastoreConfig(
        path="root",
        cache_enabled=cache_enabled,
        cache_ttl_ms=10_000,
        not_found_cache_ttl_ms=2_000,
        **config,
    )
    return client, S3Datastore(client, BUCKET, config, clock=clock)


class TestReadThroughCache:
    """Tests for ReadThroughCache in isolation."""

    def test_disabled_passes_through(self):
        """Test a disabled cache always calls the loader and stores nothing."""
        cache = ReadThroughCache(enabled=False)
        calls = []

        async def loader():
            calls.append(1)
            return Ok(b"v")

        async def scenario():
            await cache.get("n", loader)
            await cache.get("n", loader)

        asyncio.run(scenario())
        assert len(calls) == 2
        assert len(cache) == 0

    def test_invalid_ttl(self):
        """Test non-positive TTLs are rejected."""
        with pytest.raises(ValueError):
            ReadThroughCache(enabled=True, ttl_ms=0)

    def test_stats(self):
        """Test hit, miss and negative-hit accounting."""
        clock = FakeClock()
        cache = ReadThroughCache(enabled=True, clock=clock)

        async def found():
            return Ok(b"v")

        async def missing():
            return Err(NotFoundError.for_key("/m"))

        async def scenario():
            await cache.get("a", found)
            await cache.get("a", found)
            await cache.get("m", missing)
            await cache.get("m", missing)

        asyncio.run(scenario())
        assert cache.stats.misses == 2
        assert cache.stats.hits == 1
        assert cache.stats.negative_hits == 1
        assert cache.stats.hit_rate == pytest.approx(0.5)

    def test_other_errors_not_cached(self):
        """Test only NotFoundError is remembered."""
        cache = ReadThroughCache(enabled=True, clock=FakeClock())
        calls = []

        async def failing():
            calls.append(1)
            return Err(UnknownBackendError.from_backend("get_object", "/a", "500"))

        async def scenario():
            await cache.get("a", failing)
            await cache.get("a", failing)

        asyncio.run(scenario())
        assert len(calls) == 2

    def test_invalidate_during_load(self):
        """Test a load that started before invalidation is not stored."""
        cache = ReadThroughCache(enabled=True, clock=FakeClock())

        async def scenario():
            gate = asyncio.Event()

            async def loader():
                await gate.wait()
                return Ok(b"stale")

            task = asyncio.create_task(cache.get("n", loader))
            await asyncio.sleep(0)
            cache.invalidate("n")
            gate.set()
            result = await task
            assert result.unwrap() == b"stale"

        asyncio.run(scenario())
        assert len(cache) == 0
        assert cache.stats.invalidations == 1

    def test_clear_during_load(self):
        """Test clear() also discards in-flight loads."""
        cache = ReadThroughCache(enabled=True, clock=FakeClock())

        async def scenario():
            gate = asyncio.Event()

            async def loader():
                await gate.wait()
                return Ok(True)

            task = asyncio.create_task(cache.has("n", loader))
            await asyncio.sleep(0)
            cache.clear()
            gate.set()
            await task

        asyncio.run(scenario())
        assert len(cache) == 0

    def test_invalid_max_entries(self):
        """Test a non-positive capacity is rejected."""
        with pytest.raises(ValueError):
            ReadThroughCache(enabled=True, max_entries=0)

    def test_negative_hits_are_fresh_errors(self):
        """Test each negative hit returns its own NotFoundError."""
        cache = ReadThroughCache(enabled=True, clock=FakeClock())
        loaded = NotFoundError.for_key("/m")

        async def missing():
            return Err(loaded)

        async def scenario():
            await cache.get("m", missing)
            first = await cache.get("m", missing)
            second = await cache.get("m", missing)
            return first.error, second.error

        first, second = asyncio.run(scenario())
        assert first is not second
        assert first is not loaded
        assert first.message == loaded.message
        assert first.context == {"key": "/m"}
        assert cache.stats.negative_hits == 2

    def test_lru_eviction(self):
        """Test the least recently used name is evicted beyond capacity."""
        cache = ReadThroughCache(enabled=True, clock=FakeClock(), max_entries=2)
        loads = []

        def loader_for(name):
            async def loader():
                loads.append(name)
                return Ok(name.encode())
            return loader

        async def scenario():
            await cache.get("a", loader_for("a"))
            await cache.get("b", loader_for("b"))
            await cache.get("a", loader_for("a"))
            await cache.get("c", loader_for("c"))
            await cache.get("a", loader_for("a"))
            await cache.get("b", loader_for("b"))

        asyncio.run(scenario())
        assert loads == ["a", "b", "c", "b"]
        assert cache.stats.evictions == 2
        assert len(cache) == 2

    def test_expired_entries_swept_on_store(self):
        """Test expired entries do not linger until their own name is read."""
        clock = FakeClock()
        cache = ReadThroughCache(enabled=True, clock=clock, ttl_ms=1_000)

        async def found():
            return Ok(b"v")

        async def scenario():
            for i in range(50):
                await cache.get(f"n{i}", found)
            clock.advance_ms(1_000)
            await cache.get("fresh", found)

        asyncio.run(scenario())
        assert len(cache) == 1
        assert cache.stats.expirations == 50
        assert cache.stats.evictions == 0

    def test_generations_dropped_after_load(self):
        """Test generation counters only exist while a load is in flight."""
        cache = ReadThroughCache(enabled=True, clock=FakeClock())

        async def scenario():
            gate = asyncio.Event()

            async def loader():
                await gate.wait()
                return Ok(b"v")

            for i in range(10):
                cache.invalidate(f"idle{i}")
            assert cache.tracked_generations == 0

            task = asyncio.create_task(cache.get("n", loader))
            await asyncio.sleep(0)
            cache.invalidate("n")
            assert cache.tracked_generations == 1
            gate.set()
            await task
            assert cache.tracked_generations == 0

            # Loads started after the invalidation are stored normally
            assert (await cache.get("n", loader)).unwrap() == b"v"

        asyncio.run(scenario())
        assert len(cache) == 1

    def test_generation_kept_for_overlapping_loads(self):
        """Test a stale load finishing first does not unprotect a later one."""
        cache = ReadThroughCache(enabled=True, clock=FakeClock())

        async def scenario():
            stale_gate = asyncio.Event()
            fresh_gate = asyncio.Event()

            async def stale():
                await stale_gate.wait()
                return Ok(b"old")

            async def fresh():
                await fresh_gate.wait()
                return Ok(b"new")

            first = asyncio.create_task(cache.get("n", stale))
            await asyncio.sleep(0)
            cache.invalidate("n")
            second = asyncio.create_task(cache.get("n", fresh))
            await asyncio.sleep(0)

            stale_gate.set()
            await first
            assert len(cache) == 0
            fresh_gate.set()
            await second

        asyncio.run(scenario())
        assert len(cache) == 1
        assert cache.tracked_generations == 0


class TestDatastoreCache:
    """Tests for cache behaviour through S3Datastore."""

    def test_get_served_from_cache(self):
        """Test a second get does not reach the backend."""
        clock = FakeClock()
        client, store = make_store(clock)

        async def scenario():
            await store.put(Key("/a"), b"1")
            assert await store.get(Key("/a")) == b"1"
            assert await store.get(Key("/a")) == b"1"

        asyncio.run(scenario())
        assert client.calls["get_object"] == 1

    def test_coherent_after_put_and_delete(self):
        """Test writes through the datastore are visible immediately."""
        clock = FakeClock()
        _, store = make_store(clock)

        async def scenario():
            await store.put(Key("/a"), b"1")
            assert await store.get(Key("/a")) == b"1"
            assert await store.has(Key("/a"))

            await store.put(Key("/a"), b"2")
            assert await store.get(Key("/a")) == b"2"

            await store.delete(Key("/a"))
            with pytest.raises(NotFoundError):
                await store.get(Key("/a"))
            assert not await store.has(Key("/a"))

            await store.put(Key("/a"), b"3")
            assert await store.has(Key("/a"))
            assert await store.get(Key("/a")) == b"3"

        asyncio.run(scenario())

    def test_negative_entry_expires(self):
        """Test not-found is remembered for the not-found TTL only."""
        clock = FakeClock()
        client, store = make_store(clock)
        key = Key("/late")

        async def scenario():
            with pytest.raises(NotFoundError):
                await store.get(key)

            # Written behind the datastore's back
            await client.put_object(BUCKET, store.codec.full_key(key), b"v")

            with pytest.raises(NotFoundError):
                await store.get(key)
            assert client.calls["get_object"] == 1

            clock.advance_ms(1_999)
            with pytest.raises(NotFoundError):
                await store.get(key)

            clock.advance_ms(1)
            assert await store.get(key) == b"v"
            assert client.calls["get_object"] == 2

        asyncio.run(scenario())

    def test_positive_entry_expires(self):
        """Test values are remembered for the default TTL only."""
        clock = FakeClock()
        client, store = make_store(clock)
        key = Key("/a")

        async def scenario():
            await store.put(key, b"1")
            await store.get(key)
            await client.put_object(BUCKET, store.codec.full_key(key), b"2")

            clock.advance_ms(2_000)
            assert await store.get(key) == b"1"

            clock.advance_ms(8_000)
            assert await store.get(key) == b"2"

        asyncio.run(scenario())
        assert store.cache.stats.expirations == 1

    def test_has_negative_expiry(self):
        """Test has() False uses the not-found TTL."""
        clock = FakeClock()
        client, store = make_store(clock)
        key = Key("/h")

        async def scenario():
            assert not await store.has(key)
            await client.put_object(BUCKET, store.codec.full_key(key), b"v")
            assert not await store.has(key)
            clock.advance_ms(2_000)
            assert await store.has(key)

        asyncio.run(scenario())
        assert client.calls["head_object"] == 2

    def test_disabled_cache(self):
        """Test every read reaches the backend when disabled."""
        clock = FakeClock()
        client, store = make_store(clock, cache_enabled=False)

        async def scenario():
            await store.put(Key("/a"), b"1")
            await store.get(Key("/a"))
            await store.get(Key("/a"))

        asyncio.run(scenario())
        assert client.calls["get_object"] == 2

    def test_close_clears(self):
        """Test close() drops cached entries."""
        clock = FakeClock()
        _, store = make_store(clock)

        async def scenario():
            await store.put(Key("/a"), b"1")
            await store.get(Key("/a"))
            assert len(store.cache) == 1
            await store.close()
            assert len(store.cache) == 0

        asyncio.run(scenario())

    def test_repeated_misses_keep_traceback_short(self):
        """Test raising a cached not-found many times does not grow its traceback."""
        clock = FakeClock()
        client, store = make_store(clock)
        depths = []
        errors = []

        async def scenario():
            for _ in range(20):
                with pytest.raises(NotFoundError) as info:
                    await store.get(Key("/missing"))
                errors.append(info.value)
                depths.append(len(traceback.extract_tb(info.value.__traceback__)))

        asyncio.run(scenario())
        assert client.calls["get_object"] == 1
        assert len({id(e) for e in errors}) == 20
        assert len(set(depths[1:])) == 1

    def test_size_bounded_under_many_keys(self):
        """Test many distinct keys stay within the configured capacity."""
        clock = FakeClock()
        _, store = make_store(clock, cache_max_entries=16)

        async def scenario():
            for i in range(200):
                key = Key(f"/blocks/{i}")
                await store.put(key, b"x")
                await store.get(key)
                await store.has(key)
            clock.advance_ms(3_600_000)
            await store.delete(Key("/blocks/0"))

        asyncio.run(scenario())
        assert len(store.cache) <= 32
        assert store.cache.tracked_generations == 0
        assert store.cache.stats.evictions > 0
