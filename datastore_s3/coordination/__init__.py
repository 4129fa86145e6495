"""
Coordination Module: Repository Lock and Process Shutdown

Provides:
- S3RepoLock: sentinel-object lock shared by every process using a bucket
- ShutdownRegistry: releases held locks when the process is told to stop
"""

from datastore_s3.coordination.shutdown import (
    ShutdownRegistry,
    get_shutdown_registry,
    managed_lifecycle,
)
from datastore_s3.coordination.lock import (
    LockHandle,
    S3RepoLock,
)

__all__ = [
    "ShutdownRegistry",
    "get_shutdown_registry",
    "managed_lifecycle",
    "LockHandle",
    "S3RepoLock",
]
