"""Stat-based change detection for the task store file.

A fingerprint is the ``(mtime, size)`` pair of the file, a cheap proxy for
"contents changed" that never reads the document itself.
"""
from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from tasksync.sync.suppressor import SelfChangeSuppressor

logger = logging.getLogger("tasksync.detector")


@dataclass(frozen=True)
class Fingerprint:
    mtime: int  # st_mtime_ns
    size: int

    @classmethod
    def from_stat(cls, stat: os.stat_result) -> "Fingerprint":
        return cls(mtime=stat.st_mtime_ns, size=stat.st_size)


@dataclass
class FingerprintStore:
    current: Optional[Fingerprint] = None
    last_change_at: Optional[float] = None  # clock time of the last reported change


class ChangeDetector:
    """Rate-limited comparison of the file's stat against the stored fingerprint.

    ``has_changed()`` never raises. The very first successful observation
    reports a change so that callers perform an initial load.
    """

    def __init__(
        self,
        path: Path,
        suppressor: SelfChangeSuppressor | None = None,
        check_interval: float = 1.0,
        min_mtime_delta: float = 0.1,
        clock: Callable[[], float] = time.monotonic,
        store: FingerprintStore | None = None,
    ):
        self.path = Path(path)
        self.suppressor = suppressor
        self.check_interval = check_interval
        self.min_mtime_delta = min_mtime_delta
        self.store = store or FingerprintStore()
        self._clock = clock
        self._last_check: Optional[float] = None

    @property
    def fingerprint(self) -> Optional[Fingerprint]:
        return self.store.current

    async def start(self) -> None:
        """Hook for event-driven backends; polling needs no setup."""

    def close(self) -> None:
        """Hook for event-driven backends; polling holds no resources."""

    def has_changed(self) -> bool:
        return bool(self._check())

    def _check(self) -> Optional[bool]:
        """Compare against the stored fingerprint.

        Returns ``None`` when no verdict was reached: the check was skipped
        (suppressed, missing file, rate-limited, stat failure) or an
        mtime-only difference was deferred by the flutter guard.
        """
        if self.suppressor is not None and self.suppressor.active:
            return None

        try:
            if not self.path.exists():
                return None
        except OSError:
            return None

        now = self._clock()
        if self._last_check is not None and now - self._last_check < self.check_interval:
            return None
        self._last_check = now

        try:
            current = Fingerprint.from_stat(self.path.stat())
        except OSError as exc:
            logger.debug("Could not stat %s: %s", self.path, exc)
            return None

        previous = self.store.current
        if previous is None:
            self._record(current, now)
            return True

        if current == previous:
            return False

        if (
            current.size == previous.size
            and self.store.last_change_at is not None
            and now - self.store.last_change_at < self.min_mtime_delta
        ):
            # mtime-only flutter right after a reported change; undecided until the guard expires
            return None

        self._record(current, now)
        return True

    def _record(self, fingerprint: Fingerprint, now: float) -> None:
        self.store.current = fingerprint
        self.store.last_change_at = now
        logger.debug("Change detected in %s (%s)", self.path, fingerprint)

    def mark_seen(self) -> None:
        """Adopt the file's current fingerprint without reporting a change."""
        try:
            self.store.current = Fingerprint.from_stat(self.path.stat())
        except FileNotFoundError:
            self.store.current = None
        except OSError as exc:
            logger.debug("Could not refresh fingerprint for %s: %s", self.path, exc)

    def reset(self) -> None:
        self.store.current = None
        self.store.last_change_at = None
        self._last_check = None
