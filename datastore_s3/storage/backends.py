"""
In-Memory Object Store Client: Development and Testing Implementation

Provides an S3-compatible fake implementing ObjectStoreClient:
- Sorted object names per bucket, paginated listings with StartAfter
- Conditional create (If-None-Match: *)
- Failure injection per operation for error-path testing
- Per-operation call counters

Design Principles:
    - Full protocol compliance for seamless production swap
    - Error shapes mirror S3 (HEAD on a missing bucket is a bare 404)
    - Thread-safe operations via asyncio locks

Performance Characteristics:
    - Put/Get/Head/Delete: O(1) average case
    - List: O(n log n) per page, n = objects in the bucket

License: MIT
"""

from __future__ import annotations

import asyncio
import hashlib
from collections import Counter
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional

from datastore_s3.core import constants as C
from datastore_s3.core.types import Result, Ok, Err
from datastore_s3.storage.protocols import (
    BackendCondition,
    BackendError,
    GetObjectOutput,
    ListPage,
)


# S3 error code and HTTP status reported for each injected condition
_CONDITION_SHAPES: Dict[BackendCondition, tuple[str, int]] = {
    BackendCondition.NOT_FOUND: ("NoSuchKey", 404),
    BackendCondition.NO_SUCH_BUCKET: ("NoSuchBucket", 404),
    BackendCondition.FORBIDDEN: ("AccessDenied", 403),
    BackendCondition.PRECONDITION_FAILED: ("PreconditionFailed", 412),
    BackendCondition.UNKNOWN: ("InternalError", 500),
}


@dataclass
class _Fault:
    """A queued injected failure."""
    operation: str
    error: BackendError
    remaining: Optional[int]
    name: Optional[str] = None

    def matches(self, operation: str, name: str) -> bool:
        if self.operation != operation:
            return False
        return self.name is None or self.name == name


class InMemoryObjectStoreClient:
    """
    In-memory S3 stand-in.

    Example:
        client = InMemoryObjectStoreClient(buckets=["blocks"], page_size=2)
        await client.put_object("blocks", "root/a", b"1")

        # Next head_object answers 403
        client.inject_failure("head_object", BackendCondition.FORBIDDEN)

    Attributes:
        calls: Number of requests received, by operation name.
    """

    __slots__ = (
        "_buckets",
        "_lock",
        "_faults",
        "_page_size",
        "_latency_seconds",
        "_body_wrapper",
        "calls",
    )

    def __init__(
        self,
        buckets: Iterable[str] = (),
        page_size: int = C.MAX_LIST_PAGE_SIZE,
        latency_seconds: float = 0.0,
        body_wrapper: Optional[Callable[[bytes], Any]] = None,
    ) -> None:
        """
        Args:
            buckets: Buckets that exist initially.
            page_size: Server-side cap on names per listing page.
            latency_seconds: Delay added to every request.
            body_wrapper: Transforms stored bytes into the body returned
                by get_object (e.g. a stream), to exercise body handling.
        """
        if page_size <= 0:
            raise ValueError(f"page_size must be > 0, got {page_size}")
        self._buckets: Dict[str, Dict[str, bytes]] = {b: {} for b in buckets}
        self._lock = asyncio.Lock()
        self._faults: List[_Fault] = []
        self._page_size = page_size
        self._latency_seconds = latency_seconds
        self._body_wrapper = body_wrapper
        self.calls: Counter[str] = Counter()

    # -------------------------------------------------------------------------
    # Test helpers
    # -------------------------------------------------------------------------

    def inject_failure(
        self,
        operation: str,
        condition: BackendCondition = BackendCondition.UNKNOWN,
        *,
        times: Optional[int] = 1,
        name: Optional[str] = None,
        code: Optional[str] = None,
        http_status: Optional[int] = None,
    ) -> None:
        """
        Make the next ``times`` calls of ``operation`` fail.

        Args:
            operation: Protocol method name, e.g. "get_object".
            condition: Condition reported by the failure.
            times: Number of failing calls; None fails forever.
            name: Only fail calls for this object name.
            code: Override the S3 error code.
            http_status: Override the HTTP status.
        """
        default_code, default_status = _CONDITION_SHAPES[condition]
        error = BackendError(
            condition=condition,
            operation=operation,
            message=f"injected {condition.name.lower()}",
            code=code or default_code,
            http_status=http_status or default_status,
        )
        self._faults.append(_Fault(operation, error, times, name))

    def clear_failures(self) -> None:
        self._faults.clear()

    def objects(self, bucket: str) -> Dict[str, bytes]:
        """Snapshot of a bucket's contents."""
        return dict(self._buckets.get(bucket, {}))

    def has_bucket(self, bucket: str) -> bool:
        return bucket in self._buckets

    def _take_fault(self, operation: str, name: str) -> Optional[BackendError]:
        for fault in self._faults:
            if fault.matches(operation, name):
                if fault.remaining is not None:
                    fault.remaining -= 1
                    if fault.remaining <= 0:
                        self._faults.remove(fault)
                return fault.error
        return None

    async def _enter(self, operation: str, name: str) -> Optional[BackendError]:
        self.calls[operation] += 1
        if self._latency_seconds:
            await asyncio.sleep(self._latency_seconds)
        return self._take_fault(operation, name)

    @staticmethod
    def _missing_bucket(operation: str, bucket: str) -> Err[BackendError]:
        return Err(BackendError(
            condition=BackendCondition.NO_SUCH_BUCKET,
            operation=operation,
            message=f"The specified bucket does not exist: {bucket}",
            code="NoSuchBucket",
            http_status=404,
        ))

    @staticmethod
    def _missing_object(operation: str, name: str, code: str = "NoSuchKey") -> Err[BackendError]:
        return Err(BackendError(
            condition=BackendCondition.NOT_FOUND,
            operation=operation,
            message=f"The specified key does not exist: {name}",
            code=code,
            http_status=404,
        ))

    # -------------------------------------------------------------------------
    # ObjectStoreClient implementation
    # -------------------------------------------------------------------------

    async def put_object(
        self,
        bucket: str,
        name: str,
        body: bytes,
        *,
        if_none_match: bool = False,
    ) -> Result[None, BackendError]:
        fault = await self._enter("put_object", name)
        if fault is not None:
            return Err(fault)

        async with self._lock:
            objects = self._buckets.get(bucket)
            if objects is None:
                return self._missing_bucket("put_object", bucket)
            if if_none_match and name in objects:
                return Err(BackendError(
                    condition=BackendCondition.PRECONDITION_FAILED,
                    operation="put_object",
                    message="At least one of the pre-conditions you specified did not hold",
                    code="PreconditionFailed",
                    http_status=412,
                ))
            objects[name] = bytes(body)
            return Ok(None)

    async def get_object(
        self,
        bucket: str,
        name: str,
    ) -> Result[GetObjectOutput, BackendError]:
        fault = await self._enter("get_object", name)
        if fault is not None:
            return Err(fault)

        async with self._lock:
            objects = self._buckets.get(bucket)
            if objects is None:
                return self._missing_bucket("get_object", bucket)
            if name not in objects:
                return self._missing_object("get_object", name)
            data = objects[name]

        body = self._body_wrapper(data) if self._body_wrapper else data
        return Ok(GetObjectOutput(
            body=body,
            content_length=len(data),
            etag=hashlib.md5(data).hexdigest(),
        ))

    async def head_object(
        self,
        bucket: str,
        name: str,
    ) -> Result[None, BackendError]:
        """HEAD responses carry no body, so S3 reports only the status."""
        fault = await self._enter("head_object", name)
        if fault is not None:
            return Err(fault)

        async with self._lock:
            objects = self._buckets.get(bucket)
            if objects is None or name not in objects:
                return self._missing_object("head_object", name, code="404")
            return Ok(None)

    async def delete_object(
        self,
        bucket: str,
        name: str,
    ) -> Result[None, BackendError]:
        """Deleting an absent object succeeds, as on S3."""
        fault = await self._enter("delete_object", name)
        if fault is not None:
            return Err(fault)

        async with self._lock:
            objects = self._buckets.get(bucket)
            if objects is None:
                return self._missing_bucket("delete_object", bucket)
            objects.pop(name, None)
            return Ok(None)

    async def list_objects(
        self,
        bucket: str,
        prefix: str,
        start_after: Optional[str] = None,
        max_keys: int = C.MAX_LIST_PAGE_SIZE,
    ) -> Result[ListPage, BackendError]:
        fault = await self._enter("list_objects", prefix)
        if fault is not None:
            return Err(fault)

        async with self._lock:
            objects = self._buckets.get(bucket)
            if objects is None:
                return self._missing_bucket("list_objects", bucket)

            names = sorted(
                n for n in objects
                if n.startswith(prefix) and (start_after is None or n > start_after)
            )

        limit = min(max_keys, self._page_size)
        return Ok(ListPage(
            names=tuple(names[:limit]),
            truncated=len(names) > limit,
        ))

    async def create_bucket(self, bucket: str) -> Result[None, BackendError]:
        fault = await self._enter("create_bucket", bucket)
        if fault is not None:
            return Err(fault)

        async with self._lock:
            if bucket in self._buckets:
                return Err(BackendError(
                    condition=BackendCondition.UNKNOWN,
                    operation="create_bucket",
                    message=f"Bucket already owned by you: {bucket}",
                    code="BucketAlreadyOwnedByYou",
                    http_status=409,
                ))
            self._buckets[bucket] = {}
            return Ok(None)


__all__ = [
    "InMemoryObjectStoreClient",
]
