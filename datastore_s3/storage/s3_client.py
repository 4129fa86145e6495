"""
S3-Compatible Object Store Client
=================================

aioboto3 implementation of the ObjectStoreClient protocol, supporting
AWS S3, MinIO, Cloudflare R2, and other S3-compatible services.

Design Principles:
------------------
1. **Result Monad**: No exceptions cross the protocol boundary
2. **Single Translation Point**: Every backend error shape (botocore
   ClientError codes, HTTP statuses, timeouts) is normalized by
   ``classify_client_error`` and nowhere else
3. **Bucket per call**: One client can serve several buckets

Algorithmic Complexity:
-----------------------
| Operation       | Time     | Space    | Notes                      |
|-----------------|----------|----------|----------------------------|
| put_object      | O(n)     | O(n)     | n = object size            |
| get_object      | O(n)     | O(n)     | Full download to memory    |
| head_object     | O(1)     | O(1)     | Metadata only              |
| list_objects    | O(k)     | O(k)     | k = page size (<= 1000)    |
| delete_object   | O(1)     | O(1)     |                            |

Thread Safety:
--------------
- aioboto3 clients are safe for concurrent async operations
- Only the metrics counters are mutated, from the event loop thread

License: MIT
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, TYPE_CHECKING

from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from datastore_s3.core.types import Result, Ok, Err
from datastore_s3.observability.logging import StructuredLogger
from datastore_s3.storage.config import S3Config
from datastore_s3.storage.protocols import (
    BackendCondition,
    BackendError,
    GetObjectOutput,
    ListPage,
)

if TYPE_CHECKING:
    from types_aiobotocore_s3 import S3Client


logger = StructuredLogger("datastore_s3.storage.s3")


# =============================================================================
# ERROR TRANSLATION
# =============================================================================

_NOT_FOUND_CODES = frozenset({"NoSuchKey", "NotFound", "404"})
_NO_SUCH_BUCKET_CODES = frozenset({"NoSuchBucket"})
_FORBIDDEN_CODES = frozenset({"AccessDenied", "Forbidden", "403"})
_PRECONDITION_CODES = frozenset({"PreconditionFailed", "412"})


def classify_client_error(error: BaseException, operation: str) -> BackendError:
    """
    Translate any exception raised by the S3 SDK into a BackendError.

    The error code takes precedence over the HTTP status: a 404 carrying
    ``NoSuchBucket`` is a missing bucket, not a missing object. HEAD
    responses have no body, so their code is the bare status ("404").

    Args:
        error: Exception raised by aioboto3/botocore.
        operation: Remote operation name, for diagnostics.

    Returns:
        BackendError with the normalized condition.
    """
    if isinstance(error, BackendError):
        return error

    if isinstance(error, ClientError):
        details = error.response.get("Error", {}) or {}
        code = str(details.get("Code", "") or "")
        message = str(details.get("Message", "") or code or error)
        status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode")

        if code in _NO_SUCH_BUCKET_CODES:
            condition = BackendCondition.NO_SUCH_BUCKET
        elif code in _NOT_FOUND_CODES or (not code and status == 404):
            condition = BackendCondition.NOT_FOUND
        elif code in _PRECONDITION_CODES or status == 412:
            condition = BackendCondition.PRECONDITION_FAILED
        elif code in _FORBIDDEN_CODES or status == 403:
            condition = BackendCondition.FORBIDDEN
        elif status == 404:
            condition = BackendCondition.NOT_FOUND
        else:
            condition = BackendCondition.UNKNOWN

        return BackendError(
            condition=condition,
            operation=operation,
            message=message,
            code=code or None,
            http_status=status,
            cause=error,
        )

    if isinstance(error, (asyncio.TimeoutError, ConnectTimeoutError, ReadTimeoutError)):
        return BackendError(
            condition=BackendCondition.UNKNOWN,
            operation=operation,
            message=f"timeout: {error}",
            code="Timeout",
            cause=error,
        )

    if isinstance(error, (EndpointConnectionError, BotoCoreError)):
        return BackendError(
            condition=BackendCondition.UNKNOWN,
            operation=operation,
            message=f"connection error: {error}",
            code=type(error).__name__,
            cause=error,
        )

    return BackendError(
        condition=BackendCondition.UNKNOWN,
        operation=operation,
        message=str(error) or type(error).__name__,
        code=type(error).__name__,
        cause=error,
    )


# =============================================================================
# METRICS COLLECTOR
# =============================================================================

@dataclass(slots=True)
class S3Metrics:
    """
    Nanosecond-precision metrics for S3 operations.

    Tracks request counts, transferred bytes and latency.
    """
    put_count: int = 0
    get_count: int = 0
    head_count: int = 0
    delete_count: int = 0
    list_count: int = 0
    create_bucket_count: int = 0

    bytes_uploaded: int = 0
    bytes_downloaded: int = 0

    put_latency_sum_ns: int = 0
    get_latency_sum_ns: int = 0

    error_count: int = 0

    def record_upload(self, size_bytes: int, latency_ns: int) -> None:
        self.put_count += 1
        self.bytes_uploaded += size_bytes
        self.put_latency_sum_ns += latency_ns

    def record_download(self, size_bytes: int, latency_ns: int) -> None:
        self.get_count += 1
        self.bytes_downloaded += size_bytes
        self.get_latency_sum_ns += latency_ns


# =============================================================================
# S3 OBJECT STORE CLIENT
# =============================================================================

class S3ObjectStoreClient:
    """
    Production S3-compatible client implementing ObjectStoreClient.

    Example:
        >>> config = S3Config(bucket_name="my-bucket")
        >>> async with S3ObjectStoreClient(config) as client:
        ...     await client.put_object("my-bucket", "a/b", b"data")

    A client created around an existing aiobotocore client (``client=``)
    does not own it and will not close it.
    """

    __slots__ = (
        "_config",
        "_client",
        "_client_cm",
        "_session",
        "_metrics",
        "_connected",
    )

    def __init__(
        self,
        config: S3Config,
        client: Optional["S3Client"] = None,
    ) -> None:
        """
        Args:
            config: S3 connection configuration.
            client: Already-entered aiobotocore S3 client to use instead
                of creating one in connect().
        """
        self._config = config
        self._client: Optional["S3Client"] = client
        self._client_cm: Any = None
        self._session: Any = None
        self._metrics = S3Metrics()
        self._connected = client is not None

    # -------------------------------------------------------------------------
    # CONNECTION MANAGEMENT
    # -------------------------------------------------------------------------

    async def connect(self) -> Result[None, BackendError]:
        """
        Create the aioboto3 session and S3 client.

        Safe to call when already connected. No request is issued; the
        datastore's open() probes the bucket itself.
        """
        if self._connected:
            return Ok(None)

        try:
            import aioboto3
        except ImportError as e:
            return Err(BackendError(
                condition=BackendCondition.UNKNOWN,
                operation="connect",
                message="aioboto3 package not installed: pip install aioboto3",
                cause=e,
            ))

        try:
            self._session = aioboto3.Session(**self._config.get_session_kwargs())

            client_config = Config(
                max_pool_connections=self._config.max_concurrency,
                connect_timeout=self._config.connect_timeout_seconds,
                read_timeout=self._config.read_timeout_seconds,
                retries={"max_attempts": self._config.max_retries, "mode": "standard"},
                s3={"addressing_style": self._config.addressing_style},
            )

            self._client_cm = self._session.client(
                "s3",
                config=client_config,
                **self._config.get_client_kwargs(),
            )
            self._client = await self._client_cm.__aenter__()
            self._connected = True

            logger.info(
                "S3 client connected",
                region=self._config.region,
                endpoint=self._config.endpoint_url,
            )
            return Ok(None)

        except Exception as e:
            self._metrics.error_count += 1
            return Err(classify_client_error(e, "connect"))

    async def close(self) -> None:
        """
        Close S3 client and release resources.

        Safe to call multiple times.
        """
        if self._client_cm is not None:
            await self._client_cm.__aexit__(None, None, None)
            self._client_cm = None
            self._client = None
        self._connected = False

    async def __aenter__(self) -> S3ObjectStoreClient:
        result = await self.connect()
        result.unwrap_or_raise()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def _require_client(self, operation: str) -> Result["S3Client", BackendError]:
        if not self._connected or self._client is None:
            return Err(BackendError(
                condition=BackendCondition.UNKNOWN,
                operation=operation,
                message="Not connected",
            ))
        return Ok(self._client)

    def _failed(self, error: BaseException, operation: str, bucket: str, name: str) -> Err[BackendError]:
        self._metrics.error_count += 1
        backend_error = classify_client_error(error, operation)
        logger.debug(
            "S3 request failed",
            operation=operation,
            bucket=bucket,
            object_name=name,
            condition=backend_error.condition.name,
            error_code=backend_error.code,
            http_status=backend_error.http_status,
        )
        return Err(backend_error)

    # -------------------------------------------------------------------------
    # CORE OPERATIONS
    # -------------------------------------------------------------------------

    async def put_object(
        self,
        bucket: str,
        name: str,
        body: bytes,
        *,
        if_none_match: bool = False,
    ) -> Result[None, BackendError]:
        """
        Upload object.

        ``if_none_match`` sends ``If-None-Match: *`` so the write fails
        with 412 when the name is already taken.
        """
        client_result = self._require_client("put_object")
        if client_result.is_err():
            return client_result
        client = client_result.unwrap()

        start_ns = time.perf_counter_ns()
        put_kwargs: Dict[str, Any] = {
            "Bucket": bucket,
            "Key": name,
            "Body": body,
        }
        if if_none_match:
            put_kwargs["IfNoneMatch"] = "*"

        try:
            await client.put_object(**put_kwargs)
        except Exception as e:
            return self._failed(e, "put_object", bucket, name)

        self._metrics.record_upload(len(body), time.perf_counter_ns() - start_ns)
        return Ok(None)

    async def get_object(
        self,
        bucket: str,
        name: str,
    ) -> Result[GetObjectOutput, BackendError]:
        """
        Download object.

        The streaming body is drained here, while the response is still
        open, so the returned body is bytes.
        """
        client_result = self._require_client("get_object")
        if client_result.is_err():
            return client_result
        client = client_result.unwrap()

        start_ns = time.perf_counter_ns()
        try:
            response = await client.get_object(Bucket=bucket, Key=name)
            body = response.get("Body")
            if body is not None and hasattr(body, "read"):
                async with body as stream:
                    body = await stream.read()
        except Exception as e:
            return self._failed(e, "get_object", bucket, name)

        size = len(body) if isinstance(body, (bytes, bytearray)) else 0
        self._metrics.record_download(size, time.perf_counter_ns() - start_ns)

        return Ok(GetObjectOutput(
            body=body,
            content_length=response.get("ContentLength"),
            etag=(response.get("ETag") or "").strip('"') or None,
        ))

    async def head_object(
        self,
        bucket: str,
        name: str,
    ) -> Result[None, BackendError]:
        """Metadata-only probe."""
        client_result = self._require_client("head_object")
        if client_result.is_err():
            return client_result
        client = client_result.unwrap()

        try:
            await client.head_object(Bucket=bucket, Key=name)
        except Exception as e:
            return self._failed(e, "head_object", bucket, name)

        self._metrics.head_count += 1
        return Ok(None)

    async def delete_object(
        self,
        bucket: str,
        name: str,
    ) -> Result[None, BackendError]:
        """
        Delete object.

        S3 answers 204 for absent keys too; other stores may not.
        """
        client_result = self._require_client("delete_object")
        if client_result.is_err():
            return client_result
        client = client_result.unwrap()

        try:
            await client.delete_object(Bucket=bucket, Key=name)
        except Exception as e:
            return self._failed(e, "delete_object", bucket, name)

        self._metrics.delete_count += 1
        return Ok(None)

    async def list_objects(
        self,
        bucket: str,
        prefix: str,
        start_after: Optional[str] = None,
        max_keys: int = 1000,
    ) -> Result[ListPage, BackendError]:
        """
        List one page with ListObjectsV2.

        Pagination uses StartAfter (the last name of the previous page)
        rather than continuation tokens, so a walk can be resumed from
        any name.
        """
        client_result = self._require_client("list_objects")
        if client_result.is_err():
            return client_result
        client = client_result.unwrap()

        list_kwargs: Dict[str, Any] = {
            "Bucket": bucket,
            "MaxKeys": max_keys,
        }
        if prefix:
            list_kwargs["Prefix"] = prefix
        if start_after:
            list_kwargs["StartAfter"] = start_after

        try:
            response = await client.list_objects_v2(**list_kwargs)
        except Exception as e:
            return self._failed(e, "list_objects", bucket, prefix)

        self._metrics.list_count += 1

        names = []
        for obj in response.get("Contents", []) or []:
            name = obj.get("Key")
            if name is None:
                return Err(BackendError(
                    condition=BackendCondition.UNKNOWN,
                    operation="list_objects",
                    message="listing entry without a Key",
                ))
            names.append(name)

        return Ok(ListPage(
            names=tuple(names),
            truncated=bool(response.get("IsTruncated", False)),
        ))

    async def create_bucket(self, bucket: str) -> Result[None, BackendError]:
        """
        Create a bucket in the configured region.

        us-east-1 rejects an explicit LocationConstraint.
        """
        client_result = self._require_client("create_bucket")
        if client_result.is_err():
            return client_result
        client = client_result.unwrap()

        create_kwargs: Dict[str, Any] = {"Bucket": bucket}
        if self._config.region and self._config.region != "us-east-1":
            create_kwargs["CreateBucketConfiguration"] = {
                "LocationConstraint": self._config.region,
            }

        try:
            await client.create_bucket(**create_kwargs)
        except Exception as e:
            return self._failed(e, "create_bucket", bucket, "")

        self._metrics.create_bucket_count += 1
        logger.info("Bucket created", bucket=bucket, region=self._config.region)
        return Ok(None)

    @property
    def metrics(self) -> S3Metrics:
        """Get current metrics snapshot."""
        return self._metrics


# =============================================================================
# MODULE EXPORTS
# =============================================================================

__all__ = [
    "S3ObjectStoreClient",
    "S3Metrics",
    "classify_client_error",
]
