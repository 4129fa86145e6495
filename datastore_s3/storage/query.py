"""
Pagination Engine: Prefix Enumeration over Paged Listings

Walks a prefix listing page by page with a StartAfter cursor, decodes
physical names back to Keys, and optionally hydrates values.

Algorithm (PaginatedKeyWalker):
    cursor = None
    loop:
        abort set?            -> stop
        page = list(prefix, StartAfter=cursor)
        abort set?            -> stop (page discarded)
        yield decoded keys matching the logical prefix
        not truncated or empty page -> stop
        cursor = last name of page

The physical prefix is only a coarse filter: "/ab" lists "/abc/x" as
well, so every decoded key is checked against the logical prefix.

Results are restartable: each ``async for`` re-runs the listing.
"""

from __future__ import annotations

import functools
import inspect
from dataclasses import dataclass, field
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Optional,
    Protocol,
    Sequence,
    TYPE_CHECKING,
)

from datastore_s3.core.errors import NotFoundError
from datastore_s3.core.types import KEY_SEPARATOR, Key, collapse_separators
from datastore_s3.observability.logging import StructuredLogger

if TYPE_CHECKING:
    from datastore_s3.storage.facade import ObjectStoreFacade


logger = StructuredLogger("datastore_s3.storage.query")


class AbortSignal(Protocol):
    """Anything with ``is_set()``, typically an asyncio.Event."""

    def is_set(self) -> bool:
        ...


@dataclass(frozen=True, slots=True)
class QueryEntry:
    """One query result; ``value`` is None for keys-only queries."""
    key: Key
    value: Optional[bytes] = None


Filter = Callable[[QueryEntry], Any]
Order = Callable[[QueryEntry, QueryEntry], int]


@dataclass(frozen=True)
class Query:
    """
    Query parameters.

    Attributes:
        prefix: Logical key prefix; None enumerates the whole root.
        keys_only: Skip value hydration.
        filters: Predicates an entry must all satisfy (sync or async).
        orders: Comparators returning <0, 0 or >0; the first is the
            primary order. Any order buffers the whole result.
        offset: Entries to skip after filtering and ordering.
        limit: Maximum entries to yield.
    """
    prefix: Optional[str] = None
    keys_only: bool = False
    filters: Sequence[Filter] = field(default_factory=tuple)
    orders: Sequence[Order] = field(default_factory=tuple)
    offset: int = 0
    limit: Optional[int] = None

    def __post_init__(self) -> None:
        if self.offset < 0:
            raise ValueError(f"offset must be >= 0, got {self.offset}")
        if self.limit is not None and self.limit < 0:
            raise ValueError(f"limit must be >= 0, got {self.limit}")


def logical_prefix(prefix: Optional[str]) -> Optional[str]:
    """
    Prefix in key form: one leading separator, none doubled.

    A trailing separator is kept, so "/a/" excludes "/ab".
    """
    if not prefix:
        return None
    return collapse_separators(KEY_SEPARATOR + prefix)


# =============================================================================
# KEY WALKER
# =============================================================================
class PaginatedKeyWalker:
    """
    Restartable async iterable of every Key under a prefix.

    Example:
        async for key in PaginatedKeyWalker(facade, "/blocks", abort=event):
            ...

    Raises (during iteration):
        UnknownBackendError: A listing call failed.
    """

    __slots__ = ("_facade", "_prefix", "_abort")

    def __init__(
        self,
        facade: ObjectStoreFacade,
        prefix: Optional[str] = None,
        abort: Optional[AbortSignal] = None,
    ) -> None:
        self._facade = facade
        self._prefix = logical_prefix(prefix)
        self._abort = abort

    def _aborted(self) -> bool:
        return self._abort is not None and self._abort.is_set()

    def __aiter__(self) -> AsyncIterator[Key]:
        return self._walk()

    async def _walk(self) -> AsyncIterator[Key]:
        codec = self._facade.codec
        physical_prefix = codec.query_prefix(self._prefix)
        start_after: Optional[str] = None
        pages = 0

        while True:
            if self._aborted():
                logger.debug("Listing aborted", prefix=physical_prefix, pages=pages)
                return

            page = (await self._facade.list_page(physical_prefix, start_after)).unwrap_or_raise()
            pages += 1

            if self._aborted():
                logger.debug("Listing aborted", prefix=physical_prefix, pages=pages)
                return

            for name in page.names:
                if not codec.owns(name):
                    continue
                key = codec.decode_key(name)
                if self._prefix is not None and not str(key).startswith(self._prefix):
                    continue
                yield key

            if not page.truncated or page.last_name is None:
                return
            start_after = page.last_name


# =============================================================================
# QUERY RESULTS
# =============================================================================
async def _accepts(filters: Sequence[Filter], entry: QueryEntry) -> bool:
    for predicate in filters:
        verdict = predicate(entry)
        if inspect.isawaitable(verdict):
            verdict = await verdict
        if not verdict:
            return False
    return True


class QueryResults:
    """
    Restartable async iterable of QueryEntry for one Query.

    Values are fetched with ``getter`` as each key is reached; keys
    deleted between listing and fetch are skipped.
    """

    __slots__ = ("_facade", "_query", "_getter", "_abort")

    def __init__(
        self,
        facade: ObjectStoreFacade,
        query: Query,
        getter: Callable[[Key], Awaitable[bytes]],
        abort: Optional[AbortSignal] = None,
    ) -> None:
        self._facade = facade
        self._query = query
        self._getter = getter
        self._abort = abort

    def __aiter__(self) -> AsyncIterator[QueryEntry]:
        return self._results()

    async def _entries(self) -> AsyncIterator[QueryEntry]:
        walker = PaginatedKeyWalker(self._facade, self._query.prefix, self._abort)
        async for key in walker:
            if self._query.keys_only:
                entry = QueryEntry(key)
            else:
                try:
                    entry = QueryEntry(key, await self._getter(key))
                except NotFoundError:
                    logger.debug("Key vanished during query", key=str(key))
                    continue
            if await _accepts(self._query.filters, entry):
                yield entry

    async def _results(self) -> AsyncIterator[QueryEntry]:
        query = self._query
        if query.limit == 0:
            return

        source = self._entries()
        if query.orders:
            buffered = [entry async for entry in source]
            for order in reversed(query.orders):
                buffered.sort(key=functools.cmp_to_key(order))
            source = _replay(buffered)

        skipped = 0
        emitted = 0
        async for entry in source:
            if skipped < query.offset:
                skipped += 1
                continue
            yield entry
            emitted += 1
            if query.limit is not None and emitted >= query.limit:
                return


async def _replay(entries: Sequence[QueryEntry]) -> AsyncIterator[QueryEntry]:
    for entry in entries:
        yield entry


class KeyResults:
    """Restartable async iterable of the Keys of a keys-only query."""

    __slots__ = ("_results",)

    def __init__(self, results: QueryResults) -> None:
        self._results = results

    def __aiter__(self) -> AsyncIterator[Key]:
        return self._keys()

    async def _keys(self) -> AsyncIterator[Key]:
        async for entry in self._results:
            yield entry.key


__all__ = [
    "AbortSignal",
    "Query",
    "QueryEntry",
    "PaginatedKeyWalker",
    "QueryResults",
    "KeyResults",
    "logical_prefix",
]
