"""Timing knobs for change detection, batching and suppression."""
from __future__ import annotations

from pydantic import BaseModel, Field

from tasksync import config


class SyncSettings(BaseModel):
    poll_interval_ms: int = Field(2000, ge=0)
    poll_floor_ms: int = Field(2000, ge=0)
    check_interval_ms: int = Field(1000, ge=0)
    min_mtime_delta_ms: int = Field(100, ge=0)  # 0 disables the spurious-change guard
    batch_window_ms: int = Field(300, ge=0)
    min_update_interval_ms: int = Field(1500, ge=0)
    cooldown_ms: int = Field(500, ge=0)
    suppression_grace_ms: int = Field(1000, ge=0)
    watch_backend: str = "poll"  # "poll" | "watchfiles"

    @classmethod
    def from_config(cls) -> "SyncSettings":
        return cls(
            poll_interval_ms=config.POLL_INTERVAL_MS,
            poll_floor_ms=config.POLL_FLOOR_MS,
            check_interval_ms=config.CHECK_INTERVAL_MS,
            min_mtime_delta_ms=config.MIN_MTIME_DELTA_MS,
            batch_window_ms=config.BATCH_WINDOW_MS,
            min_update_interval_ms=config.MIN_UPDATE_INTERVAL_MS,
            cooldown_ms=config.COOLDOWN_MS,
            suppression_grace_ms=config.SUPPRESSION_GRACE_MS,
            watch_backend=config.WATCH_BACKEND,
        )

    # Seconds, as consumed by asyncio timers.

    @property
    def poll_interval(self) -> float:
        return max(self.poll_interval_ms, self.poll_floor_ms) / 1000

    @property
    def check_interval(self) -> float:
        return self.check_interval_ms / 1000

    @property
    def min_mtime_delta(self) -> float:
        return self.min_mtime_delta_ms / 1000

    @property
    def batch_window(self) -> float:
        return self.batch_window_ms / 1000

    @property
    def min_update_interval(self) -> float:
        return self.min_update_interval_ms / 1000

    @property
    def cooldown(self) -> float:
        return self.cooldown_ms / 1000

    @property
    def suppression_grace(self) -> float:
        return self.suppression_grace_ms / 1000
