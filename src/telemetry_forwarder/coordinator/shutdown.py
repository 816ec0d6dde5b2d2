"""
Process-wide shutdown fan-out.

A ShutdownRegistry keeps weak references to drainable instances (process
drivers, clients) and drains them all when the process is asked to stop. It
never owns their lifecycle: an instance that is garbage collected simply
disappears from the registry.
"""

from __future__ import annotations

import asyncio
import atexit
import signal
import weakref
from typing import Iterable, Optional

from loguru import logger

from .types import Drainable

DEFAULT_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class ShutdownRegistry:
    """Registry of active instances with add/remove/broadcast.

    Example:
        registry = ShutdownRegistry()
        registry.add(driver)
        registry.install()          # SIGINT/SIGTERM drain everything first
        ...
        await registry.broadcast()  # or drain explicitly
    """

    def __init__(self) -> None:
        self._members: "weakref.WeakSet[Drainable]" = weakref.WeakSet()
        self._shutting_down = False
        self._installed_signals: list[int] = []
        self._atexit_installed = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def __len__(self) -> int:
        return len(self._members)

    def __contains__(self, target: object) -> bool:
        return target in self._members

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    def add(self, target: Drainable) -> None:
        """Register an instance. Raises TypeError if it cannot be drained."""
        if not callable(getattr(target, "drain", None)):
            raise TypeError(f"{type(target).__name__} has no drain() method")
        self._members.add(target)
        logger.debug(f"Shutdown registry: added {type(target).__name__} (total: {len(self)})")

    def remove(self, target: Drainable) -> None:
        """Unregister an instance. No-op if it is not registered."""
        self._members.discard(target)

    async def broadcast(self) -> None:
        """Drain every registered instance concurrently. Runs at most once."""
        if self._shutting_down:
            return
        self._shutting_down = True

        members = list(self._members)
        if not members:
            return
        logger.info(f"Draining {len(members)} telemetry instance(s) before exit")
        results = await asyncio.gather(*(m.drain() for m in members), return_exceptions=True)
        for member, result in zip(members, results):
            if isinstance(result, BaseException):
                logger.error(f"Error draining {type(member).__name__}: {result}")

    def install(
        self,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        signals: Iterable[int] = DEFAULT_SIGNALS,
    ) -> None:
        """Wire termination signals and an exit check into the running loop.

        On each signal the registry broadcasts, then re-raises the signal with
        its default disposition so the process exits as it normally would.
        Calling install() again is a no-op for already wired signals. Handlers
        belong to one loop: installing from a new loop (a later asyncio.run())
        moves them there.
        """
        loop = loop or asyncio.get_running_loop()
        if self._loop is not None and loop is not self._loop:
            self._release_signals()
        self._loop = loop
        for sig in signals:
            if sig in self._installed_signals:
                continue
            try:
                self._loop.add_signal_handler(sig, self._on_signal, sig)
            except (NotImplementedError, RuntimeError) as exc:
                # e.g. Windows event loops, or not the main thread
                logger.debug(f"Cannot install handler for {signal.Signals(sig).name}: {exc}")
                continue
            self._installed_signals.append(sig)

        if not self._atexit_installed:
            atexit.register(self.warn_if_not_drained)
            self._atexit_installed = True

    def uninstall(self) -> None:
        self._release_signals()
        if self._atexit_installed:
            atexit.unregister(self.warn_if_not_drained)
            self._atexit_installed = False

    @property
    def installed_signals(self) -> tuple[int, ...]:
        return tuple(self._installed_signals)

    def _release_signals(self) -> None:
        if self._loop is not None and not self._loop.is_closed():
            for sig in self._installed_signals:
                self._loop.remove_signal_handler(sig)
        self._installed_signals.clear()

    def warn_if_not_drained(self) -> bool:
        """Exit hook: warn when instances are still registered and never drained."""
        if self._shutting_down or not len(self._members):
            return False
        logger.warning("Process exiting without proper shutdown. Some telemetry may be lost.")
        return True

    def _on_signal(self, sig: int) -> None:
        logger.info(f"Received {signal.Signals(sig).name}, gracefully shutting down...")
        assert self._loop is not None
        self._loop.create_task(self._drain_then_reraise(sig))

    async def _drain_then_reraise(self, sig: int) -> None:
        try:
            await self.broadcast()
        finally:
            if self._loop is not None and sig in self._installed_signals:
                self._loop.remove_signal_handler(sig)
                self._installed_signals.remove(sig)
            signal.raise_signal(sig)


# --- Default instance for in-process use ---

_registry: Optional[ShutdownRegistry] = None


def default_registry() -> ShutdownRegistry:
    """Shared registry used when callers do not inject their own."""
    global _registry
    if _registry is None:
        _registry = ShutdownRegistry()
        logger.debug("ShutdownRegistry default instance initialized")
    return _registry
