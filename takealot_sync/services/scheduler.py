"""In-process scheduler that triggers a scheduled sync on an interval.

The runner keeps lightweight state in memory; every run it triggers is
recorded in ``sync_runs`` by the sync service itself.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import asdict, dataclass
from typing import Any, Literal

from ..domain.models import SCHEDULE_LABELS, TakealotApiResponse
from ..infrastructure.db import iso_utcnow
from ..infrastructure.observability import get_logger

ScheduleCallable = Callable[[str], TakealotApiResponse[Any]]
SchedulerStatus = Literal["idle", "running", "paused", "stopping"]

# Interval used when the config does not give one, keyed by schedule slug.
DEFAULT_INTERVALS: dict[str, float] = {
    "hourly": 60 * 60,
    "three-hourly": 3 * 60 * 60,
    "six-hourly": 6 * 60 * 60,
    "twelve-hourly": 12 * 60 * 60,
    "nightly": 24 * 60 * 60,
    "weekly": 7 * 24 * 60 * 60,
}


@dataclass
class ScheduleConfig:
    schedule: str
    interval_seconds: float | None = None

    def __post_init__(self) -> None:
        if self.schedule not in SCHEDULE_LABELS:
            raise ValueError(f"unknown schedule '{self.schedule}'")

    @property
    def resolved_interval(self) -> float:
        if self.interval_seconds is not None:
            return self.interval_seconds
        return DEFAULT_INTERVALS[self.schedule]


@dataclass
class SchedulerState:
    """Current state snapshot for the scheduler."""

    status: SchedulerStatus = "idle"
    config: ScheduleConfig | None = None
    runs_completed: int = 0
    current_run_started_at: str | None = None
    last_finished_at: str | None = None
    last_result: dict[str, Any] | None = None
    last_error: str | None = None
    paused_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class ScheduledSyncRunner:
    """Background worker that repeatedly runs one sync schedule."""

    def __init__(self, *, schedule_callable: ScheduleCallable) -> None:
        self._schedule_callable = schedule_callable
        self._logger = get_logger(__name__)

        self._state = SchedulerState()
        self._task: asyncio.Task | None = None
        self._lock = asyncio.Lock()
        self._pause_event = asyncio.Event()
        self._stop_event = asyncio.Event()
        self._pause_event.set()

    @property
    def state(self) -> SchedulerState:
        return self._state

    async def start(self, config: ScheduleConfig) -> SchedulerState:
        """Start the loop, or resume it when paused."""
        async with self._lock:
            if self._task and not self._task.done() and self._state.status == "running":
                raise RuntimeError("Scheduler is already running")

            self._state.config = config
            self._state.last_error = None
            self._state.paused_at = None
            self._stop_event.clear()
            self._pause_event.set()

            if self._task is None or self._task.done():
                self._task = asyncio.create_task(self._run_loop())

            self._state.status = "running"
            self._logger.info(
                "Scheduler started for '%s' every %ss",
                config.schedule,
                config.resolved_interval,
            )
            return self._state

    async def pause(self) -> SchedulerState:
        async with self._lock:
            if self._task is None or self._task.done():
                return self._state
            self._pause_event.clear()
            self._state.paused_at = iso_utcnow()
            self._state.status = "paused"
            self._logger.info("Scheduler paused")
            return self._state

    async def stop(self) -> SchedulerState:
        """Stop the loop and wait for an in-flight run to finish."""
        async with self._lock:
            self._stop_event.set()
            self._pause_event.set()
            self._state.status = "stopping"

        if self._task is not None:
            await self._task

        async with self._lock:
            self._task = None
            self._state.status = "idle"
            self._logger.info("Scheduler stopped")
            return self._state

    def get_status(self) -> dict[str, Any]:
        return self._state.to_dict()

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            await self._pause_event.wait()
            if self._stop_event.is_set():
                break

            config = self._state.config
            if config is None:
                self._logger.error("Scheduler loop started without config")
                break

            self._state.current_run_started_at = iso_utcnow()
            try:
                response = await asyncio.to_thread(self._schedule_callable, config.schedule)
            except Exception as exc:
                self._logger.exception("Scheduled sync '%s' crashed", config.schedule)
                self._state.last_error = str(exc)
            else:
                self._state.last_result = response.to_dict()
                self._state.last_error = response.error
                self._logger.info(
                    "Scheduled sync '%s' finished (success=%s)",
                    config.schedule,
                    response.success,
                )
            self._state.runs_completed += 1
            self._state.current_run_started_at = None
            self._state.last_finished_at = iso_utcnow()

            interval = config.resolved_interval
            if interval <= 0:
                break
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue

        self._state.status = "idle"
