"""
Closed Error Taxonomy for the S3 Datastore

Every failure surfaced to a datastore caller is one of:

    NotFoundError        get/has target absent
    WriteFailedError     put failed (including a missing bucket)
    DeleteFailedError    delete failed for any reason
    OpenFailedError      root probe or bucket ensure failed during open
    AlreadyLockedError   lock contended, or lock probe ambiguous
    UnknownBackendError  remote error matching no recognized condition

Each error type includes:
- Unique error code for programmatic handling
- Human-readable message for logging
- Optional cause chain for root cause analysis
- Timestamp for correlation with logs

Usage:
    try:
        value = await store.get(key)
    except NotFoundError:
        ...
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from datastore_s3.core.types import Timestamp


# =============================================================================
# ERROR CODE ENUMERATION
# =============================================================================
class ErrorCode(Enum):
    """
    Unique error codes for programmatic error handling.

    Values follow the codes used by the repository's datastore
    interface so errors can be matched across implementations.
    """

    NOT_FOUND = "ERR_NOT_FOUND"
    WRITE_FAILED = "ERR_DB_WRITE_FAILED"
    DELETE_FAILED = "ERR_DB_DELETE_FAILED"
    OPEN_FAILED = "ERR_DB_OPEN_FAILED"
    ALREADY_LOCKED = "ERR_ALREADY_LOCKED"
    UNKNOWN_BACKEND = "ERR_UNKNOWN_BACKEND"


# =============================================================================
# BASE ERROR CLASS
# =============================================================================
@dataclass
class DatastoreError(Exception):
    """
    Base class for all datastore errors.

    Provides common infrastructure for error handling:
    - Unique error ID for log correlation
    - Error code for programmatic handling
    - Timestamp for correlation
    - Cause chain for root cause analysis
    """

    code: ErrorCode
    message: str
    error_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: Timestamp = field(default_factory=Timestamp.now)
    cause: Optional[BaseException] = None
    context: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(self.message)
        if self.cause is not None:
            self.__cause__ = self.cause

    def to_dict(self) -> dict[str, Any]:
        """
        Serialize error to dictionary for logging.

        Excludes the cause object; only its text is kept.
        """
        data: dict[str, Any] = {
            "error_id": self.error_id,
            "code": self.code.value,
            "message": self.message,
            "timestamp_nanos": self.timestamp.nanos,
            "context": self.context,
        }
        if self.cause is not None:
            data["cause"] = str(self.cause)
        return data

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.message} (id={self.error_id[:8]})"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"code={self.code.name}, "
            f"message={self.message!r}, "
            f"error_id={self.error_id!r})"
        )


# =============================================================================
# TAXONOMY
# =============================================================================
@dataclass
class NotFoundError(DatastoreError):
    """The requested key does not exist."""

    @classmethod
    def for_key(cls, key: str, cause: Optional[BaseException] = None) -> NotFoundError:
        return cls(
            code=ErrorCode.NOT_FOUND,
            message=f"Not found: {key}",
            cause=cause,
            context={"key": key},
        )


@dataclass
class WriteFailedError(DatastoreError):
    """A put could not be completed."""

    @classmethod
    def for_key(
        cls,
        key: str,
        reason: str,
        cause: Optional[BaseException] = None,
    ) -> WriteFailedError:
        return cls(
            code=ErrorCode.WRITE_FAILED,
            message=f"Write failed for {key}: {reason}",
            cause=cause,
            context={"key": key, "reason": reason},
        )

    @classmethod
    def bucket_missing(
        cls,
        bucket: str,
        key: str,
        cause: Optional[BaseException] = None,
    ) -> WriteFailedError:
        """Bucket absent and auto-creation disabled."""
        return cls(
            code=ErrorCode.WRITE_FAILED,
            message=f"Bucket '{bucket}' does not exist and createIfMissing is off",
            cause=cause,
            context={"bucket": bucket, "key": key},
        )


@dataclass
class DeleteFailedError(DatastoreError):
    """A delete could not be completed."""

    @classmethod
    def for_key(cls, key: str, cause: Optional[BaseException] = None) -> DeleteFailedError:
        return cls(
            code=ErrorCode.DELETE_FAILED,
            message=f"Delete failed for {key}",
            cause=cause,
            context={"key": key},
        )


@dataclass
class OpenFailedError(DatastoreError):
    """Opening the datastore failed (root probe or bucket ensure)."""

    @classmethod
    def for_bucket(
        cls,
        bucket: str,
        reason: str,
        cause: Optional[BaseException] = None,
    ) -> OpenFailedError:
        return cls(
            code=ErrorCode.OPEN_FAILED,
            message=f"Failed to open datastore in bucket '{bucket}': {reason}",
            cause=cause,
            context={"bucket": bucket, "reason": reason},
        )


@dataclass
class AlreadyLockedError(DatastoreError):
    """The repository lock is held, or its state could not be determined."""

    @classmethod
    def for_path(
        cls,
        lock_path: str,
        cause: Optional[BaseException] = None,
    ) -> AlreadyLockedError:
        return cls(
            code=ErrorCode.ALREADY_LOCKED,
            message=f"The repo is already locked ({lock_path})",
            cause=cause,
            context={"lock_path": lock_path},
        )


@dataclass
class UnknownBackendError(DatastoreError):
    """
    Remote error that matched no recognized condition.

    Callers must not assume the failure is recoverable.
    """

    @classmethod
    def from_backend(
        cls,
        operation: str,
        key: str,
        reason: str,
        cause: Optional[BaseException] = None,
    ) -> UnknownBackendError:
        return cls(
            code=ErrorCode.UNKNOWN_BACKEND,
            message=f"Backend error during {operation} of {key}: {reason}",
            cause=cause,
            context={"operation": operation, "key": key, "reason": reason},
        )
