"""Debounced polling loop that turns detected file changes into read model updates."""
from __future__ import annotations

import asyncio
import inspect
import logging
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

from tasksync.models import ReadModel
from tasksync.sync.fingerprint import ChangeDetector
from tasksync.sync.read_model import ReadModelBuilder
from tasksync.sync.settings import SyncSettings

logger = logging.getLogger("tasksync.poller")

ReadModelCallback = Callable[[ReadModel], Union[None, Awaitable[None]]]


class PollerState(str, Enum):
    IDLE = "idle"
    CHECKING = "checking"
    BATCH_PENDING = "batch_pending"


class DebouncedPoller:
    """Recurring check → batch window → single rebuild → callback.

    A detected change marks the poller dirty and (re)starts the batch timer,
    so bursts of writes collapse into one rebuild. A rebuild is skipped while
    another is in flight or cooling down, or when the previous dispatch was
    less than ``min_update_interval`` ago; the dirty mark survives a skip and
    the next tick retries.
    """

    def __init__(
        self,
        detector: ChangeDetector,
        builder: ReadModelBuilder,
        callback: ReadModelCallback,
        settings: SyncSettings,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.detector = detector
        self.builder = builder
        self.callback = callback
        self.settings = settings
        self._clock = clock

        self.state = PollerState.IDLE
        self.is_updating = False
        self.last_update_time: Optional[float] = None
        self.dispatch_count = 0

        self._dirty = False
        self._disposed = False
        self._task: Optional[asyncio.Task] = None
        self._rebuild_task: Optional[asyncio.Task] = None
        self._batch_handle: Optional[asyncio.TimerHandle] = None
        self._cooldown_handle: Optional[asyncio.TimerHandle] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._disposed

    @property
    def disposed(self) -> bool:
        return self._disposed

    def start(self) -> None:
        if self._disposed:
            raise RuntimeError("Poller has been disposed")
        if self._task is not None:
            logger.warning("Poller already running")
            return
        self._task = asyncio.get_running_loop().create_task(self._run())
        # subscribers always get an initial model, even before the store exists
        self.trigger()
        logger.info(
            "Polling %s every %.2fs (batch %.2fs, min spacing %.2fs)",
            self.detector.path,
            self.settings.poll_interval,
            self.settings.batch_window,
            self.settings.min_update_interval,
        )

    async def _run(self) -> None:
        try:
            while not self._disposed:
                try:
                    self.tick()
                except Exception as e:
                    logger.error(f"Poll tick failed: {e}")
                await asyncio.sleep(self.settings.poll_interval)
        except asyncio.CancelledError:
            logger.debug("Poll loop cancelled")

    def tick(self) -> None:
        if self._disposed:
            return
        self.state = PollerState.CHECKING
        changed = self.detector.has_changed()
        if changed:
            self._dirty = True
        if changed or (self._dirty and self._batch_handle is None):
            self._schedule_batch()
        self.state = PollerState.BATCH_PENDING if self._batch_handle is not None else PollerState.IDLE

    def trigger(self) -> None:
        """Request a rebuild through the usual batch and spacing rules."""
        if self._disposed:
            return
        self._dirty = True
        self._schedule_batch()
        self.state = PollerState.BATCH_PENDING

    def _schedule_batch(self) -> None:
        if self._batch_handle is not None:
            self._batch_handle.cancel()
        loop = asyncio.get_running_loop()
        self._batch_handle = loop.call_later(self.settings.batch_window, self._on_batch_elapsed)

    def _on_batch_elapsed(self) -> None:
        self._batch_handle = None
        self.state = PollerState.IDLE
        if self._disposed:
            return

        now = self._clock()
        if self.is_updating:
            logger.debug("Rebuild skipped: update in flight")
            return
        if self.last_update_time is not None and now - self.last_update_time < self.settings.min_update_interval:
            logger.debug("Rebuild skipped: last dispatch %.3fs ago", now - self.last_update_time)
            return

        self.is_updating = True
        self._dirty = False
        self._rebuild_task = asyncio.get_running_loop().create_task(self._rebuild())

    async def refresh(self) -> ReadModel:
        """Rebuild and dispatch now, bypassing the batch window and spacing."""
        if self._batch_handle is not None:
            self._batch_handle.cancel()
            self._batch_handle = None
            self.state = PollerState.IDLE
        self._dirty = False
        return await self._build_and_dispatch()

    async def _build_and_dispatch(self) -> ReadModel:
        self.detector.mark_seen()
        model = await self.builder.build()
        if not self._disposed:
            self.last_update_time = self._clock()
            self.dispatch_count += 1
            await self._dispatch(model)
        return model

    async def _rebuild(self) -> None:
        try:
            await self._build_and_dispatch()
        finally:
            if self._disposed:
                self.is_updating = False
            else:
                loop = asyncio.get_running_loop()
                self._cooldown_handle = loop.call_later(self.settings.cooldown, self._end_cooldown)

    async def _dispatch(self, model: ReadModel) -> None:
        try:
            result: Any = self.callback(model)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Read model callback failed")

    def _end_cooldown(self) -> None:
        self._cooldown_handle = None
        self.is_updating = False

    def dispose(self) -> None:
        """Stop polling and cancel pending timers. Safe to call repeatedly."""
        if self._disposed:
            return
        self._disposed = True
        if self._task is not None:
            self._task.cancel()
        for handle in (self._batch_handle, self._cooldown_handle):
            if handle is not None:
                handle.cancel()
        self._batch_handle = None
        self._cooldown_handle = None
        self.state = PollerState.IDLE
        logger.info("Poller disposed")

    async def stop(self) -> None:
        self.dispose()
        if self._task is not None:
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
