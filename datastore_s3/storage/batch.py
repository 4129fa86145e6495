"""
Batch Accumulator: Queued Puts and Deletes, Committed Concurrently

Batches are best-effort, not transactions: commit() starts every queued
operation at once and waits for all of them. If some fail, the others
may already have been applied and are not rolled back. The first
failure (in queue order) is raised after everything has settled; all
failures are logged.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, TYPE_CHECKING

from datastore_s3.core.types import Key
from datastore_s3.observability.logging import StructuredLogger

if TYPE_CHECKING:
    from datastore_s3.storage.datastore import S3Datastore


logger = StructuredLogger("datastore_s3.storage.batch")


class BatchOp(Enum):
    PUT = "put"
    DELETE = "delete"


@dataclass(frozen=True, slots=True)
class BatchEntry:
    op: BatchOp
    key: Key
    value: Optional[bytes] = None


class Batch:
    """
    Single-use queue of writes against one datastore.

    Example:
        batch = store.batch()
        batch.put(Key("/a"), b"1")
        batch.delete(Key("/b"))
        await batch.commit()
    """

    __slots__ = ("_put", "_delete", "_entries", "_committed")

    def __init__(
        self,
        put: Callable[[Key, bytes], Awaitable[Any]],
        delete: Callable[[Key], Awaitable[None]],
    ) -> None:
        self._put = put
        self._delete = delete
        self._entries: List[BatchEntry] = []
        self._committed = False

    @classmethod
    def for_datastore(cls, store: S3Datastore) -> Batch:
        return cls(store.put, store.delete)

    def _check_open(self) -> None:
        if self._committed:
            raise RuntimeError("Batch has already been committed")

    def put(self, key: Key, value: bytes) -> None:
        self._check_open()
        self._entries.append(BatchEntry(BatchOp.PUT, key, bytes(value)))

    def delete(self, key: Key) -> None:
        self._check_open()
        self._entries.append(BatchEntry(BatchOp.DELETE, key))

    @property
    def pending(self) -> int:
        return len(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    async def commit(self) -> None:
        """
        Apply every queued operation concurrently.

        Raises:
            RuntimeError: If the batch was already committed.
            DatastoreError: The first failure in queue order.
        """
        self._check_open()
        self._committed = True
        entries, self._entries = self._entries, []
        if not entries:
            return

        outcomes = await asyncio.gather(
            *(self._apply(entry) for entry in entries),
            return_exceptions=True,
        )

        failures = [
            (entry, outcome)
            for entry, outcome in zip(entries, outcomes)
            if isinstance(outcome, BaseException)
        ]
        if not failures:
            logger.debug("Batch committed", operations=len(entries))
            return

        for entry, error in failures:
            logger.warning(
                "Batch operation failed",
                op=entry.op.value,
                key=str(entry.key),
                error=str(error),
            )
        logger.error(
            "Batch partially applied",
            operations=len(entries),
            failed=len(failures),
        )
        raise failures[0][1]

    async def _apply(self, entry: BatchEntry) -> None:
        if entry.op is BatchOp.PUT:
            await self._put(entry.key, entry.value)
        else:
            await self._delete(entry.key)


__all__ = [
    "Batch",
    "BatchEntry",
    "BatchOp",
]
