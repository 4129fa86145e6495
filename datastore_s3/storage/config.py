"""
Datastore Configuration Module
==============================

Type-safe, immutable configuration dataclasses for the S3 datastore.
All configurations use frozen dataclasses for thread-safety and hash-ability.

Design Principles:
------------------
1. **Immutability**: All configs are frozen to prevent runtime mutation
2. **Validation**: Pre-conditions checked at construction time
3. **Defaults**: Sensible defaults for development; explicit for production
4. **Environment**: Supports loading from environment variables

License: MIT
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

from datastore_s3.core import constants as C


def _env_reader(prefix: str):
    """Return (get, get_int, get_bool) readers bound to an env prefix."""

    def _get(key: str, default: str = "") -> str:
        return os.environ.get(f"{prefix}_{key}", default)

    def _get_int(key: str, default: int) -> int:
        val = _get(key)
        return int(val) if val else default

    def _get_bool(key: str, default: bool) -> bool:
        val = _get(key).lower()
        if val in ("true", "1", "yes"):
            return True
        if val in ("false", "0", "no"):
            return False
        return default

    return _get, _get_int, _get_bool


# =============================================================================
# S3 CONFIGURATION
# =============================================================================

@dataclass(frozen=True, slots=True)
class S3Config:
    """
    S3-compatible object store connection configuration.

    Supports AWS S3, MinIO, Cloudflare R2, and other S3-compatible stores.

    Thread Safety:
    -------------
    Frozen dataclass - immutable after construction.

    Attributes:
        bucket_name: S3 bucket name (required).
        region: AWS region.
        endpoint_url: Custom endpoint for MinIO/R2 (None for AWS).
        access_key_id: AWS access key (None for IAM role auth).
        secret_access_key: AWS secret key (None for IAM role auth).
        session_token: Temporary session token for STS.
        addressing_style: "auto", "path" or "virtual".
        max_concurrency: Connection pool size.
        connect_timeout_seconds: TCP connect timeout.
        read_timeout_seconds: Read operation timeout.
        max_retries: Max botocore retry attempts for transient failures.
        use_ssl: Use HTTPS for connections.
        verify_ssl: Verify SSL certificates (disable for self-signed).
    """
    bucket_name: str
    region: str = "us-east-1"
    endpoint_url: Optional[str] = None
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    session_token: Optional[str] = None
    addressing_style: str = "auto"

    max_concurrency: int = 10
    connect_timeout_seconds: int = 5
    read_timeout_seconds: int = 60
    max_retries: int = 3

    use_ssl: bool = True
    verify_ssl: bool = True

    def __post_init__(self) -> None:
        """
        Validate configuration invariants.

        Raises:
            ValueError: If any invariant is violated.
        """
        if not self.bucket_name or len(self.bucket_name) < 3:
            raise ValueError("bucket_name must be at least 3 characters")

        if self.addressing_style not in ("auto", "path", "virtual"):
            raise ValueError(
                f"addressing_style must be auto|path|virtual, got {self.addressing_style!r}"
            )

        if self.max_concurrency <= 0:
            raise ValueError(f"max_concurrency must be > 0, got {self.max_concurrency}")

        if self.connect_timeout_seconds <= 0:
            raise ValueError("connect_timeout_seconds must be > 0")
        if self.read_timeout_seconds <= 0:
            raise ValueError("read_timeout_seconds must be > 0")
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")

    @classmethod
    def from_env(cls, prefix: str = "S3") -> "S3Config":
        """
        Construct configuration from environment variables.

        Environment Variables:
        - {prefix}_BUCKET: Bucket name (required)
        - {prefix}_REGION: AWS region (default: us-east-1)
        - {prefix}_ENDPOINT_URL: Custom endpoint URL
        - {prefix}_ACCESS_KEY_ID: AWS access key ID
        - {prefix}_SECRET_ACCESS_KEY: AWS secret access key
        - AWS_SESSION_TOKEN: STS session token
        - {prefix}_ADDRESSING_STYLE: auto|path|virtual
        - {prefix}_MAX_CONCURRENCY: Connection pool size (default: 10)
        - {prefix}_USE_SSL: Use HTTPS (default: true)
        - {prefix}_VERIFY_SSL: Verify certs (default: true)

        Raises:
            ValueError: If required bucket_name is missing.
        """
        _get, _get_int, _get_bool = _env_reader(prefix)

        bucket = _get("BUCKET")
        if not bucket:
            raise ValueError(f"Environment variable {prefix}_BUCKET is required")

        return cls(
            bucket_name=bucket,
            region=_get("REGION", "us-east-1"),
            endpoint_url=_get("ENDPOINT_URL") or None,
            access_key_id=_get("ACCESS_KEY_ID") or os.environ.get("AWS_ACCESS_KEY_ID"),
            secret_access_key=_get("SECRET_ACCESS_KEY") or os.environ.get("AWS_SECRET_ACCESS_KEY"),
            session_token=os.environ.get("AWS_SESSION_TOKEN"),
            addressing_style=_get("ADDRESSING_STYLE", "auto"),
            max_concurrency=_get_int("MAX_CONCURRENCY", 10),
            connect_timeout_seconds=_get_int("CONNECT_TIMEOUT", 5),
            read_timeout_seconds=_get_int("READ_TIMEOUT", 60),
            max_retries=_get_int("MAX_RETRIES", 3),
            use_ssl=_get_bool("USE_SSL", True),
            verify_ssl=_get_bool("VERIFY_SSL", True),
        )

    def get_client_kwargs(self) -> Dict[str, Any]:
        """
        Generate keyword arguments for ``session.client("s3", ...)``.

        The botocore ``Config`` object is added by the client itself.
        """
        kwargs: Dict[str, Any] = {
            "region_name": self.region,
            "use_ssl": self.use_ssl,
        }

        if self.endpoint_url:
            kwargs["endpoint_url"] = self.endpoint_url

        if not self.verify_ssl:
            kwargs["verify"] = False

        return kwargs

    def get_session_kwargs(self) -> Dict[str, Any]:
        """Credentials for ``aioboto3.Session``; empty means the default chain."""
        kwargs: Dict[str, Any] = {}
        if self.access_key_id and self.secret_access_key:
            kwargs["aws_access_key_id"] = self.access_key_id
            kwargs["aws_secret_access_key"] = self.secret_access_key
        if self.session_token:
            kwargs["aws_session_token"] = self.session_token
        return kwargs


# =============================================================================
# DATASTORE CONFIGURATION
# =============================================================================

@dataclass(frozen=True, slots=True)
class DatastoreConfig:
    """
    Behaviour of one S3Datastore instance.

    Attributes:
        path: Root prefix inside the bucket for every object. S3 shards
            internally on prefixes, so a separator-delimited path helps
            spread load.
        create_if_missing: Create the bucket when open() or put() finds
            it missing.
        cache_enabled: Enable the read-through cache for get/has.
        cache_ttl_ms: Lifetime of positive cache entries (> 0).
        not_found_cache_ttl_ms: Lifetime of negative (not-found) cache
            entries (> 0).
        cache_max_entries: Capacity of each cache table; the least
            recently used entry is evicted beyond it (> 0).
        treat_forbidden_as_missing: Report has() == False on HTTP 403.
            Buckets whose policy lacks s3:ListBucket answer 403 for missing
            objects; off by default because it can also mask a
            misconfigured policy.
        lock_conditional_put: Create lock sentinels with If-None-Match so
            two racing lockers cannot both succeed. Disable for stores that
            reject conditional writes.
        list_page_size: MaxKeys for each listing page (1..1000).
    """
    path: str = ""
    create_if_missing: bool = False
    cache_enabled: bool = False
    cache_ttl_ms: int = C.DEFAULT_CACHE_TTL_MS
    not_found_cache_ttl_ms: int = C.DEFAULT_NOT_FOUND_CACHE_TTL_MS
    cache_max_entries: int = C.DEFAULT_CACHE_MAX_ENTRIES
    treat_forbidden_as_missing: bool = False
    lock_conditional_put: bool = True
    list_page_size: int = C.DEFAULT_LIST_PAGE_SIZE

    def __post_init__(self) -> None:
        """
        Validate configuration invariants.

        Pre-conditions (enforced):
        - cache_ttl_ms > 0
        - not_found_cache_ttl_ms > 0
        - cache_max_entries > 0
        - 1 <= list_page_size <= 1000

        Raises:
            ValueError: If any invariant is violated.
        """
        if self.path is None:
            raise ValueError("path must be a string (use '' for the bucket root)")
        if self.cache_ttl_ms <= 0:
            raise ValueError(f"cache_ttl_ms must be > 0, got {self.cache_ttl_ms}")
        if self.not_found_cache_ttl_ms <= 0:
            raise ValueError(
                f"not_found_cache_ttl_ms must be > 0, got {self.not_found_cache_ttl_ms}"
            )
        if self.cache_max_entries <= 0:
            raise ValueError(f"cache_max_entries must be > 0, got {self.cache_max_entries}")
        if not (1 <= self.list_page_size <= C.MAX_LIST_PAGE_SIZE):
            raise ValueError(
                f"list_page_size must be in [1, {C.MAX_LIST_PAGE_SIZE}], "
                f"got {self.list_page_size}"
            )

    @classmethod
    def from_env(cls, prefix: str = "DATASTORE") -> "DatastoreConfig":
        """
        Construct configuration from environment variables.

        Environment Variables:
        - {prefix}_PATH: Root prefix inside the bucket
        - {prefix}_CREATE_IF_MISSING: true|false
        - {prefix}_CACHE_ENABLED: true|false
        - {prefix}_CACHE_TTL_MS: Positive-entry TTL (default: 10000)
        - {prefix}_NOT_FOUND_CACHE_TTL_MS: Negative-entry TTL (default: 2000)
        - {prefix}_CACHE_MAX_ENTRIES: Entries per cache table (default: 10000)
        - {prefix}_TREAT_FORBIDDEN_AS_MISSING: true|false
        - {prefix}_LOCK_CONDITIONAL_PUT: true|false
        - {prefix}_LIST_PAGE_SIZE: 1..1000
        """
        _get, _get_int, _get_bool = _env_reader(prefix)

        return cls(
            path=_get("PATH", ""),
            create_if_missing=_get_bool("CREATE_IF_MISSING", False),
            cache_enabled=_get_bool("CACHE_ENABLED", False),
            cache_ttl_ms=_get_int("CACHE_TTL_MS", C.DEFAULT_CACHE_TTL_MS),
            not_found_cache_ttl_ms=_get_int(
                "NOT_FOUND_CACHE_TTL_MS", C.DEFAULT_NOT_FOUND_CACHE_TTL_MS
            ),
            cache_max_entries=_get_int("CACHE_MAX_ENTRIES", C.DEFAULT_CACHE_MAX_ENTRIES),
            treat_forbidden_as_missing=_get_bool("TREAT_FORBIDDEN_AS_MISSING", False),
            lock_conditional_put=_get_bool("LOCK_CONDITIONAL_PUT", True),
            list_page_size=_get_int("LIST_PAGE_SIZE", C.DEFAULT_LIST_PAGE_SIZE),
        )


# =============================================================================
# MODULE EXPORTS
# =============================================================================

__all__ = [
    "S3Config",
    "DatastoreConfig",
]
