"""
Repository Lock: Cooperative Mutual Exclusion via a Sentinel Object

The lock for a scope is held while the object ``<scope>/repo.lock``
exists under the datastore root. Acquiring creates it, releasing
deletes it.

Safety:
    - Fail closed: if the lock state cannot be determined, acquisition
      is refused with AlreadyLockedError.
    - With conditional puts (default) the sentinel is created with
      If-None-Match: *, so two racing lockers cannot both win. Without
      them the existence check and the create are separate requests.
    - There is no lease: a crashed holder leaves the sentinel behind
      until someone deletes it.
"""

from __future__ import annotations

from typing import Any, Optional, TYPE_CHECKING

from datastore_s3.core import constants as C
from datastore_s3.core.errors import AlreadyLockedError, DatastoreError
from datastore_s3.core.types import Key
from datastore_s3.coordination.shutdown import ShutdownRegistry, get_shutdown_registry
from datastore_s3.observability.logging import StructuredLogger

if TYPE_CHECKING:
    from datastore_s3.storage.datastore import S3Datastore


logger = StructuredLogger("datastore_s3.coordination.lock")


class LockHandle:
    """
    Proof of a held repository lock.

    close() deletes the sentinel. It is idempotent and tolerates the
    sentinel already being gone.
    """

    __slots__ = ("_store", "_path", "_registry", "_closed")

    def __init__(self, store: S3Datastore, path: str, registry: ShutdownRegistry) -> None:
        self._store = store
        self._path = path
        self._registry = registry
        self._closed = False

    @property
    def path(self) -> str:
        """Physical name of the sentinel object."""
        return self._path

    @property
    def closed(self) -> bool:
        return self._closed

    async def close(self) -> None:
        """
        Release the lock.

        Raises:
            DeleteFailedError: The sentinel could not be deleted; the
                handle stays open so close() can be retried.
        """
        if self._closed:
            return
        result = await self._store.facade.delete_name(self._path, missing_ok=True)
        self._store.cache.invalidate(self._path)
        result.unwrap_or_raise()
        self._closed = True
        self._registry.deregister(self)
        logger.info("Lock released", bucket=self._store.bucket, lock_path=self._path)

    async def __aenter__(self) -> LockHandle:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def __repr__(self) -> str:
        state = "closed" if self._closed else "held"
        return f"LockHandle({self._path!r}, {state})"


class S3RepoLock:
    """
    Repository lock stored in an S3Datastore's bucket.

    Example:
        repo_lock = S3RepoLock(store)
        handle = await repo_lock.lock("/repo")
        try:
            ...
        finally:
            await handle.close()
    """

    __slots__ = ("_store", "_registry")

    def __init__(
        self,
        store: S3Datastore,
        registry: Optional[ShutdownRegistry] = None,
    ) -> None:
        self._store = store
        self._registry = registry if registry is not None else get_shutdown_registry()

    def lock_path(self, scope: str = "/") -> str:
        """Physical name of the sentinel for ``scope``."""
        return self._store.codec.full_key(Key(scope).child(C.LOCK_FILE_NAME))

    async def locked(self, scope: str = "/") -> bool:
        """
        Whether the lock for ``scope`` is currently held.

        Raises:
            UnknownBackendError: The sentinel could not be probed.
        """
        path = self.lock_path(scope)
        return (await self._store.facade.exists(path)).unwrap_or_raise()

    async def lock(self, scope: str = "/") -> LockHandle:
        """
        Acquire the lock for ``scope``.

        Raises:
            AlreadyLockedError: Held by someone else, or its state could
                not be determined.
            WriteFailedError: The sentinel could not be written.
        """
        path = self.lock_path(scope)
        bucket = self._store.bucket

        try:
            held = await self.locked(scope)
        except DatastoreError as e:
            logger.warning("Lock state unknown, refusing", bucket=bucket, lock_path=path, error=str(e))
            raise AlreadyLockedError.for_path(path, cause=e) from e

        if held:
            logger.info("Lock contended", bucket=bucket, lock_path=path)
            raise AlreadyLockedError.for_path(path)

        created = await self._store.facade.put_object_if_absent(
            path,
            C.EMPTY_BODY,
            conditional=self._store.config.lock_conditional_put,
        )
        self._store.cache.invalidate(path)
        if created.is_err():
            if isinstance(created.error, AlreadyLockedError):
                logger.info("Lock lost race", bucket=bucket, lock_path=path)
            created.unwrap_or_raise()

        handle = LockHandle(self._store, path, self._registry)
        self._registry.register(handle)
        logger.info("Lock acquired", bucket=bucket, lock_path=path)
        return handle


__all__ = [
    "LockHandle",
    "S3RepoLock",
]
