"""
Datastore-Wide Constants

All magic numbers and configuration defaults centralized here.
"""

from typing import Final

# =============================================================================
# TIME UNITS
# =============================================================================
SECOND_MS: Final[int] = 1000
NS_PER_MS: Final[int] = 1_000_000

# =============================================================================
# READ-THROUGH CACHE
# =============================================================================
DEFAULT_CACHE_TTL_MS: Final[int] = 10 * SECOND_MS
# Absence is more likely to change soon (concurrent create), so it is
# remembered for a shorter window.
DEFAULT_NOT_FOUND_CACHE_TTL_MS: Final[int] = 2 * SECOND_MS
# Per table (data, existence); least recently used entries go first.
DEFAULT_CACHE_MAX_ENTRIES: Final[int] = 10_000

# =============================================================================
# LISTING
# =============================================================================
# S3 never returns more than 1000 keys per ListObjectsV2 page.
MAX_LIST_PAGE_SIZE: Final[int] = 1000
DEFAULT_LIST_PAGE_SIZE: Final[int] = MAX_LIST_PAGE_SIZE

# =============================================================================
# REPOSITORY LOCK
# =============================================================================
LOCK_FILE_NAME: Final[str] = "repo.lock"
EMPTY_BODY: Final[bytes] = b""
