"""
Core module: Type definitions and the closed error taxonomy.

This module provides the foundational abstractions for the datastore:
- Result/Either monad for the lower storage layers
- Hierarchical Key with byte-wise ordering
- Error hierarchy surfaced to datastore callers
"""

from datastore_s3.core.types import (
    Result,
    Ok,
    Err,
    Timestamp,
    Key,
)
from datastore_s3.core.errors import (
    ErrorCode,
    DatastoreError,
    NotFoundError,
    WriteFailedError,
    DeleteFailedError,
    OpenFailedError,
    AlreadyLockedError,
    UnknownBackendError,
)

__all__ = [
    "Result",
    "Ok",
    "Err",
    "Timestamp",
    "Key",
    "ErrorCode",
    "DatastoreError",
    "NotFoundError",
    "WriteFailedError",
    "DeleteFailedError",
    "OpenFailedError",
    "AlreadyLockedError",
    "UnknownBackendError",
]
