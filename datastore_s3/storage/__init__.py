"""
Storage Module: S3 Bucket as an Ordered Key-Value Datastore
===========================================================

Provides:
- ObjectStoreClient protocol and its aioboto3 / in-memory implementations
- Key codec, object store facade, read-through cache
- Pagination engine, batch accumulator and the S3Datastore facade
- Factory function for backend selection

Design Principles:
-----------------
1. **Backend Agnostic**: Same datastore over S3 and over the in-memory fake
2. **Factory Pattern**: Runtime backend selection via configuration
3. **Lazy Loading**: aioboto3 imported only when a real client connects
4. **Result Monad**: Lower layers return Result; S3Datastore raises

Example:
    >>> # Development (in-memory)
    >>> store = create_datastore()

    >>> # Production (configured)
    >>> store = create_datastore(S3Config(bucket_name="blocks"), DatastoreConfig(path=".ipfs"))
    >>> async with store:
    ...     await store.put(Key("/a"), b"1")
"""

from __future__ import annotations

from typing import Optional

from datastore_s3.storage.protocols import (
    BackendCondition,
    BackendError,
    GetObjectOutput,
    ListPage,
    ObjectStoreClient,
)
from datastore_s3.storage.config import DatastoreConfig, S3Config
from datastore_s3.storage.keys import KeyCodec, normalize_root
from datastore_s3.storage.backends import InMemoryObjectStoreClient
from datastore_s3.storage.facade import ObjectStoreFacade, read_body
from datastore_s3.storage.cache import CacheStats, ReadThroughCache
from datastore_s3.storage.query import (
    KeyResults,
    PaginatedKeyWalker,
    Query,
    QueryEntry,
    QueryResults,
)
from datastore_s3.storage.batch import Batch
from datastore_s3.storage.datastore import S3Datastore


DEV_BUCKET_NAME = "datastore-dev"


# =============================================================================
# FACTORY FUNCTIONS
# =============================================================================

def create_datastore(
    s3_config: Optional[S3Config] = None,
    config: Optional[DatastoreConfig] = None,
) -> S3Datastore:
    """
    Create a datastore that owns its client.

    Args:
        s3_config: S3 connection for production. None selects an
            in-memory bucket named ``DEV_BUCKET_NAME``.
        config: Datastore behaviour.

    Returns:
        S3Datastore; the client is connected by open() and closed by
        close().

    Example:
        >>> store = create_datastore(S3Config.from_env(), DatastoreConfig.from_env())
    """
    if s3_config is not None:
        from datastore_s3.storage.s3_client import S3ObjectStoreClient
        return S3Datastore(
            S3ObjectStoreClient(s3_config),
            s3_config.bucket_name,
            config,
            owns_client=True,
        )

    return S3Datastore(
        InMemoryObjectStoreClient(buckets=[DEV_BUCKET_NAME]),
        DEV_BUCKET_NAME,
        config,
        owns_client=True,
    )


# =============================================================================
# MODULE EXPORTS
# =============================================================================

__all__ = [
    # Protocols
    "BackendCondition",
    "BackendError",
    "GetObjectOutput",
    "ListPage",
    "ObjectStoreClient",
    # Configuration
    "DatastoreConfig",
    "S3Config",
    # Components
    "KeyCodec",
    "normalize_root",
    "InMemoryObjectStoreClient",
    "ObjectStoreFacade",
    "read_body",
    "CacheStats",
    "ReadThroughCache",
    "KeyResults",
    "PaginatedKeyWalker",
    "Query",
    "QueryEntry",
    "QueryResults",
    "Batch",
    "S3Datastore",
    # Factory functions
    "create_datastore",
    "DEV_BUCKET_NAME",
]
