"""Self-change suppression for writes made through the sync service."""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

logger = logging.getLogger("tasksync.suppressor")


class SelfChangeSuppressor:
    """Time-boxed flag raised around the service's own writes.

    Each ``begin()`` is paired with an ``end()`` that releases its hold only
    after ``grace_delay`` seconds. Holds are counted, so an early release
    never clears suppression for a later write that is still in flight.
    """

    def __init__(self, grace_delay: float = 1.0):
        self.grace_delay = grace_delay
        self._pending = 0
        self._handles: set[asyncio.TimerHandle] = set()
        self.expires_at: Optional[float] = None  # loop time of the latest scheduled release

    @property
    def active(self) -> bool:
        return self._pending > 0

    @property
    def pending(self) -> int:
        return self._pending

    def begin(self) -> None:
        self._pending += 1

    def end(self) -> None:
        if self._pending == 0:
            return
        loop = asyncio.get_running_loop()
        handle: asyncio.TimerHandle

        def release() -> None:
            self._handles.discard(handle)
            self._pending = max(0, self._pending - 1)
            if self._pending == 0:
                self.expires_at = None
                logger.debug("Self-change suppression cleared")

        handle = loop.call_later(self.grace_delay, release)
        self._handles.add(handle)
        self.expires_at = handle.when()

    def dispose(self) -> None:
        for handle in self._handles:
            handle.cancel()
        self._handles.clear()
        self._pending = 0
        self.expires_at = None
