"""
S3 Datastore: Ordered Key-Value Store over an S3-Compatible Bucket

Public surface of the package. Composes the key codec, the object
store facade, the read-through cache, the pagination engine and the
batch accumulator. Every method raises a DatastoreError subclass on
failure.

Example:
    store = S3Datastore(client, "my-bucket", DatastoreConfig(path=".ipfs/datastore"))
    async with store:
        await store.put(Key("/hello"), b"world")
        assert await store.get(Key("/hello")) == b"world"

        async for entry in store.query(prefix="/he"):
            print(entry.key, entry.value)
"""

from __future__ import annotations

from typing import (
    Any,
    AsyncIterable,
    AsyncIterator,
    Iterable,
    Optional,
    Sequence,
    Tuple,
    Union,
)

from datastore_s3.core.errors import OpenFailedError
from datastore_s3.core.types import Key
from datastore_s3.observability.logging import StructuredLogger
from datastore_s3.storage.batch import Batch
from datastore_s3.storage.cache import Clock, ReadThroughCache
from datastore_s3.storage.config import DatastoreConfig
from datastore_s3.storage.facade import ObjectStoreFacade
from datastore_s3.storage.keys import KeyCodec
from datastore_s3.storage.protocols import ObjectStoreClient
from datastore_s3.storage.query import (
    AbortSignal,
    Filter,
    KeyResults,
    Order,
    Query,
    QueryEntry,
    QueryResults,
)


logger = StructuredLogger("datastore_s3.storage.datastore")

KeyLike = Union[Key, str]
Pair = Union[Tuple[KeyLike, bytes], QueryEntry]


def _as_key(key: KeyLike) -> Key:
    return key if isinstance(key, Key) else Key(key)


async def _iterate(source: Union[Iterable[Any], AsyncIterable[Any]]) -> AsyncIterator[Any]:
    if hasattr(source, "__aiter__"):
        async for item in source:
            yield item
    else:
        for item in source:
            yield item


class S3Datastore:
    """
    Ordered key-value datastore persisted in one S3 bucket.

    Thread Safety:
        Intended for a single event loop. Operations may run
        concurrently; the cache is the only shared mutable state.
    """

    __slots__ = (
        "_client",
        "_bucket",
        "_config",
        "_codec",
        "_facade",
        "_cache",
        "_owns_client",
        "_opened",
    )

    def __init__(
        self,
        client: ObjectStoreClient,
        bucket: str,
        config: Optional[DatastoreConfig] = None,
        *,
        owns_client: bool = False,
        clock: Optional[Clock] = None,
    ) -> None:
        """
        Args:
            client: Object store client.
            bucket: Bucket holding every object of this datastore.
            config: Datastore behaviour; defaults to DatastoreConfig().
            owns_client: close() also closes the client.
            clock: Nanosecond clock for cache deadlines.

        Raises:
            ValueError: If client or bucket is missing.
            TypeError: If client does not implement ObjectStoreClient.
        """
        if client is None:
            raise ValueError("An S3 client must be supplied")
        if not bucket:
            raise ValueError("A bucket must be supplied")
        if not isinstance(client, ObjectStoreClient):
            raise TypeError(f"{type(client).__name__} does not implement ObjectStoreClient")

        self._client = client
        self._bucket = bucket
        self._config = config or DatastoreConfig()
        self._codec = KeyCodec(self._config.path)
        self._facade = ObjectStoreFacade(client, bucket, self._codec, self._config)
        self._cache = ReadThroughCache(
            enabled=self._config.cache_enabled,
            ttl_ms=self._config.cache_ttl_ms,
            not_found_ttl_ms=self._config.not_found_cache_ttl_ms,
            max_entries=self._config.cache_max_entries,
            clock=clock,
        )
        self._owns_client = owns_client
        self._opened = False

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def bucket(self) -> str:
        return self._bucket

    @property
    def config(self) -> DatastoreConfig:
        return self._config

    @property
    def codec(self) -> KeyCodec:
        return self._codec

    @property
    def facade(self) -> ObjectStoreFacade:
        return self._facade

    @property
    def cache(self) -> ReadThroughCache:
        return self._cache

    @property
    def is_open(self) -> bool:
        return self._opened

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def open(self) -> None:
        """
        Verify (and if allowed create) the bucket and root marker.

        Raises:
            OpenFailedError: The bucket or root could not be verified.
        """
        if self._opened:
            return

        connect = getattr(self._client, "connect", None)
        if self._owns_client and connect is not None:
            connected = await connect()
            if connected.is_err():
                raise OpenFailedError.for_bucket(
                    self._bucket, str(connected.error), cause=connected.error,
                )

        (await self._facade.open()).unwrap_or_raise()
        self._opened = True
        logger.info("Datastore opened", bucket=self._bucket, root=self._codec.root)

    async def close(self) -> None:
        """Drop cached entries; close the client if owned. Idempotent."""
        self._cache.clear()
        if self._owns_client:
            await self._facade.close()
        if self._opened:
            logger.info("Datastore closed", bucket=self._bucket, root=self._codec.root)
        self._opened = False

    async def __aenter__(self) -> S3Datastore:
        await self.open()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # -------------------------------------------------------------------------
    # CRUD
    # -------------------------------------------------------------------------

    async def put(self, key: KeyLike, value: bytes) -> Key:
        """
        Store ``value`` under ``key``.

        Raises:
            WriteFailedError: On any failure, including a missing bucket
                that could not (or may not) be created.
        """
        key = _as_key(key)
        (await self._facade.put(key, value)).unwrap_or_raise()
        self._cache.invalidate(self._codec.full_key(key))
        return key

    async def get(self, key: KeyLike) -> bytes:
        """
        Raises:
            NotFoundError: No object for ``key``.
            UnknownBackendError: Any other failure.
        """
        key = _as_key(key)
        result = await self._cache.get(
            self._codec.full_key(key), lambda: self._facade.get(key),
        )
        return result.unwrap_or_raise()

    async def has(self, key: KeyLike) -> bool:
        key = _as_key(key)
        result = await self._cache.has(
            self._codec.full_key(key), lambda: self._facade.has(key),
        )
        return result.unwrap_or_raise()

    async def delete(self, key: KeyLike) -> None:
        """
        Raises:
            DeleteFailedError: On any failure.
        """
        key = _as_key(key)
        try:
            (await self._facade.delete(key)).unwrap_or_raise()
        finally:
            self._cache.invalidate(self._codec.full_key(key))

    # -------------------------------------------------------------------------
    # Streaming helpers
    # -------------------------------------------------------------------------

    async def put_many(
        self,
        source: Union[Iterable[Pair], AsyncIterable[Pair]],
    ) -> AsyncIterator[Tuple[Key, bytes]]:
        """Put each (key, value) in turn, yielding it once stored."""
        async for item in _iterate(source):
            if isinstance(item, QueryEntry):
                key, value = item.key, item.value
            else:
                key, value = item
            stored = await self.put(key, value)
            yield stored, value

    async def get_many(
        self,
        keys: Union[Iterable[KeyLike], AsyncIterable[KeyLike]],
    ) -> AsyncIterator[bytes]:
        async for key in _iterate(keys):
            yield await self.get(key)

    async def delete_many(
        self,
        keys: Union[Iterable[KeyLike], AsyncIterable[KeyLike]],
    ) -> AsyncIterator[Key]:
        async for key in _iterate(keys):
            key = _as_key(key)
            await self.delete(key)
            yield key

    # -------------------------------------------------------------------------
    # Query / batch
    # -------------------------------------------------------------------------

    def query(
        self,
        prefix: Optional[str] = None,
        keys_only: bool = False,
        abort: Optional[AbortSignal] = None,
        filters: Sequence[Filter] = (),
        orders: Sequence[Order] = (),
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> QueryResults:
        """
        Enumerate entries under ``prefix``.

        The result is a restartable async iterable; nothing is listed
        until it is iterated. A listing failure raises
        UnknownBackendError from the iteration.
        """
        query = Query(
            prefix=prefix,
            keys_only=keys_only,
            filters=tuple(filters),
            orders=tuple(orders),
            offset=offset,
            limit=limit,
        )
        return QueryResults(self._facade, query, self.get, abort=abort)

    def query_keys(
        self,
        prefix: Optional[str] = None,
        abort: Optional[AbortSignal] = None,
        filters: Sequence[Filter] = (),
        orders: Sequence[Order] = (),
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> KeyResults:
        """Enumerate keys under ``prefix`` without fetching values."""
        return KeyResults(self.query(
            prefix=prefix,
            keys_only=True,
            abort=abort,
            filters=filters,
            orders=orders,
            offset=offset,
            limit=limit,
        ))

    def batch(self) -> Batch:
        return Batch.for_datastore(self)

    def __repr__(self) -> str:
        return f"S3Datastore(bucket={self._bucket!r}, root={self._codec.root!r})"


__all__ = [
    "S3Datastore",
]
