"""
Integration Tests: Repository Lock and Shutdown Registry

Tests:
    - Lock / contended lock / release / re-lock
    - Fail-closed probing
    - Conditional create races
    - Shutdown registry release on exit, error and signal
"""

import asyncio
import signal

import pytest

from datastore_s3.coordination.lock import S3RepoLock
from datastore_s3.coordination.shutdown import (
    ShutdownRegistry,
    get_shutdown_registry,
    managed_lifecycle,
)
from datastore_s3.core.errors import (
    AlreadyLockedError,
    DeleteFailedError,
    UnknownBackendError,
    WriteFailedError,
)
from datastore_s3.storage.backends import InMemoryObjectStoreClient
from datastore_s3.storage.config import DatastoreConfig
from datastore_s3.storage.datastore import S3Datastore
from datastore_s3.storage.protocols import BackendCondition


BUCKET = "test-bucket"


def make_lock(**config):
    client = InMemoryObjectStoreClient(buckets=[BUCKET])
    store = S3Datastore(client, BUCKET, DatastoreConfig(path=".ipfs", **config))
    registry = ShutdownRegistry()
    return client, store, registry, S3RepoLock(store, registry)


class RecordingHandle:
    """Releasable that records close() calls."""

    def __init__(self, fail=False):
        self.closed = 0
        self._fail = fail

    async def close(self):
        self.closed += 1
        if self._fail:
            raise RuntimeError("stuck")


class TestS3RepoLock:
    """Tests for S3RepoLock."""

    def test_lock_path(self):
        """Test the sentinel lives at <scope>/repo.lock under the root."""
        _, _, _, repo_lock = make_lock()
        assert repo_lock.lock_path() == ".ipfs/repo.lock"
        assert repo_lock.lock_path("/repo") == ".ipfs/repo/repo.lock"
        assert repo_lock.lock_path("repo/") == ".ipfs/repo/repo.lock"

    def test_lock_sequence(self):
        """Test lock, second lock fails, close, third lock succeeds."""
        client, _, registry, repo_lock = make_lock()

        async def scenario():
            assert not await repo_lock.locked("/repo")

            handle = await repo_lock.lock("/repo")
            assert await repo_lock.locked("/repo")
            assert handle in registry
            assert client.objects(BUCKET)[".ipfs/repo/repo.lock"] == b""

            with pytest.raises(AlreadyLockedError):
                await repo_lock.lock("/repo")

            await handle.close()
            assert handle.closed
            assert handle not in registry
            assert not await repo_lock.locked("/repo")

            third = await repo_lock.lock("/repo")
            await third.close()

        asyncio.run(scenario())

    def test_scopes_independent(self):
        """Test locks on different scopes do not contend."""
        _, _, _, repo_lock = make_lock()

        async def scenario():
            a = await repo_lock.lock("/a")
            b = await repo_lock.lock("/b")
            await a.close()
            await b.close()

        asyncio.run(scenario())

    def test_close_idempotent(self):
        """Test repeated close and an already-missing sentinel are tolerated."""
        client, _, _, repo_lock = make_lock()

        async def scenario():
            handle = await repo_lock.lock()
            await client.delete_object(BUCKET, handle.path)
            await handle.close()
            await handle.close()

        asyncio.run(scenario())
        assert client.calls["delete_object"] == 2

    def test_close_tolerates_not_found(self):
        """Test a NOT_FOUND answer to the delete counts as released."""
        client, _, _, repo_lock = make_lock()

        async def scenario():
            handle = await repo_lock.lock()
            client.inject_failure("delete_object", BackendCondition.NOT_FOUND)
            await handle.close()
            assert handle.closed

        asyncio.run(scenario())

    def test_close_failure_keeps_handle(self):
        """Test a failed release can be retried."""
        client, _, registry, repo_lock = make_lock()

        async def scenario():
            handle = await repo_lock.lock()
            client.inject_failure("delete_object", BackendCondition.UNKNOWN)
            with pytest.raises(DeleteFailedError):
                await handle.close()
            assert not handle.closed
            assert handle in registry
            await handle.close()
            assert handle.closed

        asyncio.run(scenario())

    def test_context_manager(self):
        """Test the handle releases on exit."""
        _, _, _, repo_lock = make_lock()

        async def scenario():
            async with await repo_lock.lock() as handle:
                assert await repo_lock.locked()
            assert handle.closed
            assert not await repo_lock.locked()

        asyncio.run(scenario())

    def test_probe_error_fails_closed(self):
        """Test an ambiguous probe refuses the lock."""
        client, _, _, repo_lock = make_lock()
        client.inject_failure("head_object", BackendCondition.UNKNOWN)
        with pytest.raises(AlreadyLockedError):
            asyncio.run(repo_lock.lock())
        assert client.calls["put_object"] == 0

    def test_locked_raises_on_probe_error(self):
        """Test locked() surfaces unrecognized probe failures."""
        client, _, _, repo_lock = make_lock()
        client.inject_failure("head_object", BackendCondition.FORBIDDEN)
        with pytest.raises(UnknownBackendError):
            asyncio.run(repo_lock.locked())

    def test_conditional_create_race(self):
        """Test a sentinel appearing after the probe loses the race."""
        client, _, registry, repo_lock = make_lock()

        async def scenario():
            await client.put_object(BUCKET, repo_lock.lock_path(), b"")
            # Stale probe: the competing sentinel is not yet visible
            client.inject_failure("head_object", BackendCondition.NOT_FOUND)
            with pytest.raises(AlreadyLockedError):
                await repo_lock.lock()

        asyncio.run(scenario())
        assert len(registry) == 0

    def test_unconditional_create(self):
        """Test without conditional puts the probe is the only guard."""
        client, _, _, repo_lock = make_lock(lock_conditional_put=False)

        async def scenario():
            await client.put_object(BUCKET, repo_lock.lock_path(), b"")
            client.inject_failure("head_object", BackendCondition.NOT_FOUND)
            handle = await repo_lock.lock()
            await handle.close()

        asyncio.run(scenario())

    def test_sentinel_write_failure(self):
        """Test a failed sentinel write is a write failure."""
        client, _, registry, repo_lock = make_lock()
        client.inject_failure("put_object", BackendCondition.UNKNOWN)
        with pytest.raises(WriteFailedError):
            asyncio.run(repo_lock.lock())
        assert len(registry) == 0


class TestShutdownRegistry:
    """Tests for ShutdownRegistry and managed_lifecycle."""

    def test_release_all(self):
        """Test every handle is closed and failures do not stop the others."""
        registry = ShutdownRegistry()
        handles = [RecordingHandle(), RecordingHandle(fail=True), RecordingHandle()]
        for handle in handles:
            registry.register(handle)

        released = asyncio.run(registry.release_all())
        assert released == 2
        assert [h.closed for h in handles] == [1, 1, 1]
        assert len(registry) == 0

    def test_deregister(self):
        """Test deregistered handles are left alone."""
        registry = ShutdownRegistry()
        handle = RecordingHandle()
        registry.register(handle)
        registry.deregister(handle)
        asyncio.run(registry.release_all())
        assert handle.closed == 0

    def test_empty_registry_is_used(self):
        """Test a supplied registry is honored even while it holds nothing."""
        registry = ShutdownRegistry()
        assert len(registry) == 0
        _, store, _, _ = make_lock()
        repo_lock = S3RepoLock(store, registry)

        async def scenario():
            async with managed_lifecycle(registry) as active:
                assert active is registry
                handle = await repo_lock.lock()
                assert handle in registry
                assert handle not in get_shutdown_registry()
                raise ValueError("crash")

        with pytest.raises(ValueError):
            asyncio.run(scenario())
        assert len(registry) == 0
        assert asyncio.run(repo_lock.locked()) is False

    def test_default_registry(self):
        """Test omitting the registry falls back to the process-wide one."""
        _, store, _, _ = make_lock()
        repo_lock = S3RepoLock(store)

        async def scenario():
            handle = await repo_lock.lock()
            assert handle in get_shutdown_registry()
            await handle.close()
            assert handle not in get_shutdown_registry()

        asyncio.run(scenario())

    def test_lifecycle_on_exception(self):
        """Test handles are released when the block raises."""
        registry = ShutdownRegistry()
        handle = RecordingHandle()

        async def scenario():
            async with managed_lifecycle(registry):
                registry.register(handle)
                raise ValueError("boom")

        with pytest.raises(ValueError):
            asyncio.run(scenario())
        assert handle.closed == 1

    def test_install_once_per_loop(self):
        """Test handlers are installed once and removed on exit."""
        registry = ShutdownRegistry()

        async def scenario():
            loop = asyncio.get_running_loop()
            async with managed_lifecycle(registry):
                assert registry.install(loop) is False
            assert registry.install(loop) is True
            registry.uninstall(loop)

        asyncio.run(scenario())

    def test_signal_cancels_and_releases(self):
        """Test a shutdown signal cancels the task and releases held locks."""
        _, _, registry, repo_lock = make_lock()

        async def scenario():
            held = []

            async def worker():
                async with managed_lifecycle(registry):
                    held.append(await repo_lock.lock())
                    await asyncio.sleep(3600)

            task = asyncio.create_task(worker())
            while not held:
                await asyncio.sleep(0)
            registry._on_signal(signal.SIGTERM, task)
            with pytest.raises(asyncio.CancelledError):
                await task
            assert held[0].closed
            assert not await repo_lock.locked()

        asyncio.run(scenario())
        assert len(registry) == 0
