"""
Object Store Facade: CRUD Intents -> Remote Requests

Translates datastore operations on Keys into object-store requests on
physical names and maps every BackendError onto the closed error
taxonomy. Everything here returns Result; S3Datastore raises.

Error mapping:
    put      NO_SUCH_BUCKET -> create bucket + retry once (create_if_missing)
             anything else  -> WriteFailedError
    get      NOT_FOUND      -> NotFoundError
             anything else  -> UnknownBackendError
    has      NOT_FOUND      -> False
             FORBIDDEN      -> False only with treat_forbidden_as_missing
             anything else  -> UnknownBackendError
    delete   anything       -> DeleteFailedError
    list     anything       -> UnknownBackendError
    open     anything       -> OpenFailedError
"""

from __future__ import annotations

import inspect
from typing import Any, Optional

from datastore_s3.core import constants as C
from datastore_s3.core.errors import (
    AlreadyLockedError,
    DatastoreError,
    DeleteFailedError,
    NotFoundError,
    OpenFailedError,
    UnknownBackendError,
    WriteFailedError,
)
from datastore_s3.core.types import Err, Key, Ok, Result
from datastore_s3.observability.logging import StructuredLogger
from datastore_s3.storage.config import DatastoreConfig
from datastore_s3.storage.keys import KeyCodec
from datastore_s3.storage.protocols import (
    BackendCondition,
    BackendError,
    ListPage,
    ObjectStoreClient,
)


logger = StructuredLogger("datastore_s3.storage.facade")

# create_bucket answers for a bucket a concurrent writer just created
_BUCKET_EXISTS_CODES = frozenset({"BucketAlreadyOwnedByYou"})


# =============================================================================
# BODY NORMALIZATION
# =============================================================================
async def read_body(body: Any) -> bytes:
    """
    Collect a response body into bytes.

    Accepts bytes-like values, str (UTF-8), objects with a sync or async
    ``read()``, and sync or async iterables of chunks.

    Raises:
        TypeError: If the body has none of these shapes.
    """
    if isinstance(body, bytes):
        return body
    if isinstance(body, (bytearray, memoryview)):
        return bytes(body)
    if isinstance(body, str):
        return body.encode("utf-8")

    read = getattr(body, "read", None)
    if callable(read):
        data = read()
        if inspect.isawaitable(data):
            data = await data
        return await read_body(data)

    if hasattr(body, "__aiter__"):
        chunks = [await read_body(chunk) async for chunk in body]
        return b"".join(chunks)

    if hasattr(body, "__iter__"):
        return b"".join([await read_body(chunk) for chunk in body])

    raise TypeError(f"Unsupported response body type: {type(body).__name__}")


# =============================================================================
# FACADE
# =============================================================================
class ObjectStoreFacade:
    """
    Bucket-bound CRUD over an ObjectStoreClient.

    Example:
        facade = ObjectStoreFacade(client, "blocks", KeyCodec(".ipfs"), config)
        result = await facade.get(Key("/a"))
        if result.is_ok():
            data = result.unwrap()
    """

    __slots__ = ("_client", "_bucket", "_codec", "_config")

    def __init__(
        self,
        client: ObjectStoreClient,
        bucket: str,
        codec: KeyCodec,
        config: DatastoreConfig,
    ) -> None:
        self._client = client
        self._bucket = bucket
        self._codec = codec
        self._config = config

    @property
    def bucket(self) -> str:
        return self._bucket

    @property
    def codec(self) -> KeyCodec:
        return self._codec

    # -------------------------------------------------------------------------
    # Bucket management
    # -------------------------------------------------------------------------

    async def _create_bucket(self) -> Result[None, BackendError]:
        result = await self._client.create_bucket(self._bucket)
        if result.is_err() and result.error.code in _BUCKET_EXISTS_CODES:
            return Ok(None)
        if result.is_ok():
            logger.info("Created missing bucket", bucket=self._bucket)
        return result

    async def open(self) -> Result[None, DatastoreError]:
        """
        Make sure the bucket and the root marker exist.

        With a root path the marker object named after the root is
        probed and written if absent; at the bucket root a one-key
        listing probes the bucket instead.
        """
        root = self._codec.root

        if root:
            probe = await self._client.head_object(self._bucket, root)
        else:
            probe = await self._client.list_objects(self._bucket, "", max_keys=1)

        if probe.is_ok():
            logger.debug("Datastore root present", bucket=self._bucket, root=root)
            return Ok(None)

        error = probe.error

        if error.condition is BackendCondition.NOT_FOUND and root:
            written = await self._put_name(root, C.EMPTY_BODY, label=root)
            if written.is_err():
                return Err(OpenFailedError.for_bucket(
                    self._bucket, written.error.message, cause=written.error,
                ))
            logger.info("Created datastore root", bucket=self._bucket, root=root)
            return Ok(None)

        if error.condition is BackendCondition.NO_SUCH_BUCKET:
            if not self._config.create_if_missing:
                return Err(OpenFailedError.for_bucket(
                    self._bucket, "bucket does not exist", cause=error,
                ))
            created = await self._create_bucket()
            if created.is_err():
                return Err(OpenFailedError.for_bucket(
                    self._bucket, f"bucket creation failed: {created.error}",
                    cause=created.error,
                ))
            if root:
                written = await self._put_name(root, C.EMPTY_BODY, label=root)
                if written.is_err():
                    return Err(OpenFailedError.for_bucket(
                        self._bucket, written.error.message, cause=written.error,
                    ))
            return Ok(None)

        return Err(OpenFailedError.for_bucket(self._bucket, str(error), cause=error))

    # -------------------------------------------------------------------------
    # CRUD
    # -------------------------------------------------------------------------

    async def _put_name(
        self,
        name: str,
        body: bytes,
        label: str,
    ) -> Result[None, WriteFailedError]:
        result = await self._client.put_object(self._bucket, name, body)
        if result.is_ok():
            return Ok(None)

        error = result.error
        if error.condition is not BackendCondition.NO_SUCH_BUCKET:
            return Err(WriteFailedError.for_key(label, str(error), cause=error))

        if not self._config.create_if_missing:
            return Err(WriteFailedError.bucket_missing(self._bucket, label, cause=error))

        created = await self._create_bucket()
        if created.is_err():
            return Err(WriteFailedError.for_key(
                label, f"bucket creation failed: {created.error}", cause=created.error,
            ))

        retried = await self._client.put_object(self._bucket, name, body)
        if retried.is_err():
            return Err(WriteFailedError.for_key(label, str(retried.error), cause=retried.error))
        return Ok(None)

    async def put(self, key: Key, value: bytes) -> Result[None, WriteFailedError]:
        """Upload ``value`` under ``key``."""
        return await self._put_name(self._codec.full_key(key), bytes(value), label=str(key))

    async def get(self, key: Key) -> Result[bytes, DatastoreError]:
        """Fetch the value stored under ``key``."""
        result = await self._client.get_object(self._bucket, self._codec.full_key(key))
        if result.is_err():
            error = result.error
            if error.is_not_found:
                return Err(NotFoundError.for_key(str(key), cause=error))
            return Err(UnknownBackendError.from_backend("get_object", str(key), str(error), cause=error))

        body = result.unwrap().body
        if body is None:
            return Err(UnknownBackendError.from_backend("get_object", str(key), "response has no body"))
        try:
            return Ok(await read_body(body))
        except (TypeError, OSError) as e:
            return Err(UnknownBackendError.from_backend("get_object", str(key), str(e), cause=e))

    async def exists(
        self,
        name: str,
        label: Optional[str] = None,
        forbidden_as_missing: bool = False,
    ) -> Result[bool, UnknownBackendError]:
        """HEAD probe of a physical name."""
        result = await self._client.head_object(self._bucket, name)
        if result.is_ok():
            return Ok(True)

        error = result.error
        if error.is_not_found:
            return Ok(False)
        if error.condition is BackendCondition.FORBIDDEN and forbidden_as_missing:
            return Ok(False)
        return Err(UnknownBackendError.from_backend("head_object", label or name, str(error), cause=error))

    async def has(self, key: Key) -> Result[bool, UnknownBackendError]:
        return await self.exists(
            self._codec.full_key(key),
            label=str(key),
            forbidden_as_missing=self._config.treat_forbidden_as_missing,
        )

    async def delete_name(
        self,
        name: str,
        label: Optional[str] = None,
        missing_ok: bool = False,
    ) -> Result[None, DeleteFailedError]:
        result = await self._client.delete_object(self._bucket, name)
        if result.is_err():
            if missing_ok and result.error.is_not_found:
                return Ok(None)
            return Err(DeleteFailedError.for_key(label or name, cause=result.error))
        return Ok(None)

    async def delete(self, key: Key) -> Result[None, DeleteFailedError]:
        return await self.delete_name(self._codec.full_key(key), label=str(key))

    async def put_object_if_absent(
        self,
        name: str,
        body: bytes = C.EMPTY_BODY,
        conditional: bool = True,
    ) -> Result[None, DatastoreError]:
        """
        Create ``name`` only if it does not exist yet.

        With ``conditional`` off this is a plain put and the caller's
        earlier existence check is the only guard.
        """
        result = await self._client.put_object(
            self._bucket, name, body, if_none_match=conditional,
        )
        if result.is_ok():
            return Ok(None)
        error = result.error
        if error.condition is BackendCondition.PRECONDITION_FAILED:
            return Err(AlreadyLockedError.for_path(name, cause=error))
        return Err(WriteFailedError.for_key(name, str(error), cause=error))

    async def list_page(
        self,
        prefix: str,
        start_after: Optional[str] = None,
        max_keys: Optional[int] = None,
    ) -> Result[ListPage, UnknownBackendError]:
        """One listing page of physical names under ``prefix``."""
        result = await self._client.list_objects(
            self._bucket,
            prefix,
            start_after=start_after,
            max_keys=max_keys or self._config.list_page_size,
        )
        if result.is_err():
            return Err(UnknownBackendError.from_backend(
                "list_objects", prefix, str(result.error), cause=result.error,
            ))
        return result

    async def close(self) -> None:
        """Close the underlying client if it has a close()."""
        close = getattr(self._client, "close", None)
        if close is None:
            return
        outcome = close()
        if inspect.isawaitable(outcome):
            await outcome


__all__ = [
    "ObjectStoreFacade",
    "read_body",
]
