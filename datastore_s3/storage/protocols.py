"""
Object Store Protocol Definitions
=================================

Structural subtyping protocol (PEP 544) for the remote blob store the
datastore is built on. The datastore depends only on these six calls,
so the production aioboto3 client and the in-memory fake are
interchangeable.

Design Principles:
    - Async-first for non-blocking I/O
    - Result[T, BackendError] returns; no exceptions cross the protocol
    - Backend-specific error shapes are normalized into BackendCondition
      by the implementation, once

License: MIT
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Optional, Protocol, runtime_checkable

from datastore_s3.core.types import Result


# =============================================================================
# NORMALIZED BACKEND CONDITIONS
# =============================================================================
class BackendCondition(Enum):
    """
    Remote failure conditions the datastore reacts to.

    Anything not listed is UNKNOWN and surfaces as UnknownBackendError
    (or the operation's own taxonomy error for put/delete/open).
    """
    NOT_FOUND = auto()            # object (or, for HEAD, possibly bucket) absent
    NO_SUCH_BUCKET = auto()       # bucket absent
    FORBIDDEN = auto()            # 403 - may hide a missing object
    PRECONDITION_FAILED = auto()  # conditional write lost
    UNKNOWN = auto()


@dataclass
class BackendError(Exception):
    """
    A remote call failure, normalized.

    Attributes:
        condition: Normalized condition used for control flow.
        operation: Remote operation name (e.g. "head_object").
        message: Human-readable description.
        code: Backend error code (e.g. "NoSuchKey"), if any.
        http_status: HTTP status code, if any.
        cause: Original exception.
    """
    condition: BackendCondition
    operation: str
    message: str
    code: Optional[str] = None
    http_status: Optional[int] = None
    cause: Optional[BaseException] = field(default=None, repr=False)

    def __post_init__(self) -> None:
        super().__init__(self.message)
        if self.cause is not None:
            self.__cause__ = self.cause

    @property
    def is_not_found(self) -> bool:
        return self.condition is BackendCondition.NOT_FOUND

    def __str__(self) -> str:
        status = f" http={self.http_status}" if self.http_status is not None else ""
        code = f" code={self.code}" if self.code else ""
        return f"{self.operation}: {self.message}{code}{status}"


# =============================================================================
# RESPONSE MODELS
# =============================================================================
@dataclass(frozen=True, slots=True)
class ListPage:
    """
    One page of a prefix listing.

    Attributes:
        names: Object names on this page, in ascending order.
        truncated: More names exist after the last one.
    """
    names: tuple[str, ...]
    truncated: bool = False

    @property
    def last_name(self) -> Optional[str]:
        return self.names[-1] if self.names else None


@dataclass(frozen=True, slots=True)
class GetObjectOutput:
    """
    Result of a get.

    ``body`` is whatever the transport hands back: bytes, str, a
    file-like or async stream, or an iterable of chunks. The datastore
    normalizes it to bytes.
    """
    body: Any
    content_length: Optional[int] = None
    etag: Optional[str] = None


# =============================================================================
# OBJECT STORE CLIENT PROTOCOL
# =============================================================================
@runtime_checkable
class ObjectStoreClient(Protocol):
    """
    Minimal async object-store client consumed by the datastore.

    Example:
        class MyClient(ObjectStoreClient):
            async def head_object(self, bucket, name):
                ...
    """

    @abstractmethod
    async def put_object(
        self,
        bucket: str,
        name: str,
        body: bytes,
        *,
        if_none_match: bool = False,
    ) -> Result[None, BackendError]:
        """
        Upload ``body`` under ``name``.

        With ``if_none_match`` the write only succeeds if no object with
        that name exists (PRECONDITION_FAILED otherwise).
        """
        ...

    @abstractmethod
    async def get_object(
        self,
        bucket: str,
        name: str,
    ) -> Result[GetObjectOutput, BackendError]:
        """Fetch an object."""
        ...

    @abstractmethod
    async def head_object(
        self,
        bucket: str,
        name: str,
    ) -> Result[None, BackendError]:
        """Metadata-only existence probe."""
        ...

    @abstractmethod
    async def delete_object(
        self,
        bucket: str,
        name: str,
    ) -> Result[None, BackendError]:
        """Delete an object."""
        ...

    @abstractmethod
    async def list_objects(
        self,
        bucket: str,
        prefix: str,
        start_after: Optional[str] = None,
        max_keys: int = 1000,
    ) -> Result[ListPage, BackendError]:
        """
        List one page of names starting with ``prefix``.

        Names are strictly greater than ``start_after`` when given.
        """
        ...

    @abstractmethod
    async def create_bucket(self, bucket: str) -> Result[None, BackendError]:
        """Create a bucket."""
        ...


__all__ = [
    "BackendCondition",
    "BackendError",
    "ListPage",
    "GetObjectOutput",
    "ObjectStoreClient",
]
