"""File watcher backed change detection using watchfiles.

Instead of stat-ing the task store on every poll, the detector only compares
fingerprints after the OS reported an event for the file. Suppression,
rate limiting and fingerprint semantics are those of :class:`ChangeDetector`.
"""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

from watchfiles import Change, awatch

from tasksync.sync.fingerprint import ChangeDetector

logger = logging.getLogger("tasksync.watcher")


class WatchfilesChangeDetector(ChangeDetector):
    """Change detector gated on file system events.

    Uses `watchfiles` (Rust-accelerated) to watch the store's directory.
    Falls back to plain polling behaviour if the watcher cannot run.
    """

    def __init__(self, path: Path, **kwargs):
        super().__init__(path, **kwargs)
        self._events_pending = True  # first check always stats
        self._degraded = False
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def degraded(self) -> bool:
        return self._degraded

    async def start(self) -> None:
        """Start watching the store directory in a background task."""
        if self._running:
            logger.warning("File watcher already running")
            return

        self._running = True
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._watch_loop())
        logger.info(f"File watcher started for {self.path}")

    def close(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()
        if self._task is not None:
            self._task.cancel()
        self._running = False

    async def stop(self) -> None:
        """Stop the file watcher."""
        self.close()
        if self._task:
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("File watcher stopped")

    def notify(self) -> None:
        self._events_pending = True

    def has_changed(self) -> bool:
        if not (self._events_pending or self._degraded):
            return False
        result = self._check()
        if result is not None:
            self._events_pending = False
        return bool(result)

    async def _watch_loop(self) -> None:
        watch_dir = self.path.parent
        if not watch_dir.exists():
            logger.warning(f"{watch_dir} does not exist, falling back to polling")
            self._degraded = True
            self._running = False
            return

        try:
            async for changes in awatch(watch_dir, stop_event=self._stop_event, recursive=False):
                if not self._running:
                    break
                if self._is_relevant(changes):
                    self.notify()
        except asyncio.CancelledError:
            logger.info("File watcher task cancelled")
        except Exception as e:
            logger.error(f"File watcher error, falling back to polling: {e}")
            self._degraded = True
        finally:
            self._running = False

    def _is_relevant(self, changes: set[tuple[Change, str]]) -> bool:
        """Only events on the store file itself count; temp files from atomic writes do not."""
        target = self.path.name
        return any(Path(path_str).name == target for _, path_str in changes)
