"""
Process Shutdown Hooks: Release Held Locks on Exit

One registry per process tracks every held lock handle. Signal handlers
are installed once per event loop instead of once per lock, so
acquiring many locks never stacks handlers.

On SIGTERM, SIGINT or SIGHUP the owning task is cancelled, which
unwinds through managed_lifecycle() and releases everything still
registered. Uncaught exceptions take the same path.

Usage:
    async def main():
        async with managed_lifecycle():
            handle = await S3RepoLock(store).lock("/repo")
            ...
"""

from __future__ import annotations

import asyncio
import signal
import weakref
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, Protocol

from datastore_s3.observability.logging import StructuredLogger


logger = StructuredLogger("datastore_s3.coordination.shutdown")

SHUTDOWN_SIGNALS: tuple[signal.Signals, ...] = tuple(
    getattr(signal, name) for name in ("SIGTERM", "SIGINT", "SIGHUP") if hasattr(signal, name)
)


class Releasable(Protocol):
    async def close(self) -> None:
        ...


class ShutdownRegistry:
    """
    Registry of resources to release when the process shuts down.

    Example:
        registry = ShutdownRegistry()
        registry.register(handle)
        ...
        await registry.release_all()
    """

    __slots__ = ("_handles", "_loops")

    def __init__(self) -> None:
        self._handles: dict[int, Releasable] = {}
        self._loops: weakref.WeakSet[asyncio.AbstractEventLoop] = weakref.WeakSet()

    def register(self, handle: Releasable) -> None:
        self._handles[id(handle)] = handle

    def deregister(self, handle: Releasable) -> None:
        self._handles.pop(id(handle), None)

    def __len__(self) -> int:
        return len(self._handles)

    def __contains__(self, handle: object) -> bool:
        return self._handles.get(id(handle)) is handle

    def install(
        self,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        task: Optional[asyncio.Task] = None,
    ) -> bool:
        """
        Install shutdown signal handlers on ``loop``.

        Args:
            loop: Event loop; defaults to the running loop.
            task: Task cancelled when a signal arrives; defaults to the
                current task.

        Returns:
            False if handlers were already installed on this loop, or
            the platform does not support loop signal handlers.
        """
        loop = loop or asyncio.get_running_loop()
        if loop in self._loops:
            return False
        task = task or asyncio.current_task(loop)

        for sig in SHUTDOWN_SIGNALS:
            try:
                loop.add_signal_handler(sig, self._on_signal, sig, task)
            except (NotImplementedError, RuntimeError, ValueError) as e:
                # Windows event loops, or a loop outside the main thread
                logger.debug("Signal handlers unavailable", error=str(e))
                return False

        self._loops.add(loop)
        return True

    def uninstall(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        loop = loop or asyncio.get_running_loop()
        if loop not in self._loops:
            return
        for sig in SHUTDOWN_SIGNALS:
            loop.remove_signal_handler(sig)
        self._loops.discard(loop)

    def _on_signal(self, sig: signal.Signals, task: Optional[asyncio.Task]) -> None:
        logger.warning(
            "Shutdown signal received",
            signal=sig.name,
            held=len(self._handles),
        )
        if task is not None and not task.done():
            task.cancel()

    async def release_all(self) -> int:
        """
        Close every registered handle.

        Failures are logged and skipped so one stuck lock does not keep
        the others held.

        Returns:
            Number of handles closed successfully.
        """
        handles = list(self._handles.values())
        released = 0
        for handle in handles:
            try:
                await handle.close()
                released += 1
            except Exception:
                logger.exception("Failed to release handle during shutdown", handle=repr(handle))
            finally:
                self.deregister(handle)

        if handles:
            logger.info("Released held handles", released=released, total=len(handles))
        return released


_default_registry = ShutdownRegistry()


def get_shutdown_registry() -> ShutdownRegistry:
    """Process-wide registry used by S3RepoLock unless one is supplied."""
    return _default_registry


@asynccontextmanager
async def managed_lifecycle(
    registry: Optional[ShutdownRegistry] = None,
) -> AsyncIterator[ShutdownRegistry]:
    """
    Install shutdown hooks for the current task and always release
    registered handles on exit, whether the block finishes, raises, or
    is cancelled by a signal.
    """
    if registry is None:
        registry = get_shutdown_registry()
    loop = asyncio.get_running_loop()
    installed = registry.install(loop, asyncio.current_task())
    try:
        yield registry
    finally:
        try:
            await registry.release_all()
        finally:
            if installed:
                registry.uninstall(loop)


__all__ = [
    "SHUTDOWN_SIGNALS",
    "ShutdownRegistry",
    "get_shutdown_registry",
    "managed_lifecycle",
]
