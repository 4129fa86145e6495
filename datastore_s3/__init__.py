"""
S3 Datastore: An S3-Compatible Bucket as an Ordered Key-Value Store

Pluggable storage backend for content-addressed repositories (root
metadata, blocks, pins, keys), persisting every key as one object:
- Key codec mapping hierarchical keys to object names under a root path
- CRUD with a closed error taxonomy
- Paginated prefix queries with abort support
- Optional read-through cache with a shorter not-found TTL
- Best-effort batches
- Cooperative repository lock on a sentinel object

License: MIT
"""

__version__ = "1.0.0"

# =============================================================================
# PUBLIC API EXPORTS
# =============================================================================
from datastore_s3.core.types import (
    Result,
    Ok,
    Err,
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
from datastore_s3.storage import (
    DatastoreConfig,
    S3Config,
    S3Datastore,
    InMemoryObjectStoreClient,
    ObjectStoreClient,
    QueryEntry,
    Batch,
    create_datastore,
)
from datastore_s3.coordination import (
    LockHandle,
    S3RepoLock,
    ShutdownRegistry,
    managed_lifecycle,
)
from datastore_s3.observability import setup_logging, StructuredLogger

__all__ = [
    "__version__",
    # Core types
    "Result",
    "Ok",
    "Err",
    "Key",
    # Errors
    "ErrorCode",
    "DatastoreError",
    "NotFoundError",
    "WriteFailedError",
    "DeleteFailedError",
    "OpenFailedError",
    "AlreadyLockedError",
    "UnknownBackendError",
    # Datastore
    "DatastoreConfig",
    "S3Config",
    "S3Datastore",
    "InMemoryObjectStoreClient",
    "ObjectStoreClient",
    "QueryEntry",
    "Batch",
    "create_datastore",
    # Coordination
    "LockHandle",
    "S3RepoLock",
    "ShutdownRegistry",
    "managed_lifecycle",
    # Observability
    "setup_logging",
    "StructuredLogger",
]
