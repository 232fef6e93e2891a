import asyncio

import pytest

from takealot_sync.domain.models import TakealotApiResponse
from takealot_sync.services import ScheduleConfig, ScheduledSyncRunner
from takealot_sync.services.scheduler import DEFAULT_INTERVALS


class StubSchedule:
    def __init__(self) -> None:
        self.calls: list[str] = []

    def __call__(self, schedule: str) -> TakealotApiResponse:
        self.calls.append(schedule)
        return TakealotApiResponse.ok({"schedule": schedule, "runs": []})


def test_schedule_config_validates_slug() -> None:
    with pytest.raises(ValueError):
        ScheduleConfig("monthly")
    assert ScheduleConfig("nightly").resolved_interval == DEFAULT_INTERVALS["nightly"]
    assert ScheduleConfig("hourly", interval_seconds=5).resolved_interval == 5


def test_runner_runs_once_with_zero_interval() -> None:
    async def run() -> None:
        stub = StubSchedule()
        runner = ScheduledSyncRunner(schedule_callable=stub)

        await runner.start(ScheduleConfig("nightly", interval_seconds=0))
        for _ in range(50):
            if runner.state.runs_completed:
                break
            await asyncio.sleep(0.01)
        await runner.stop()

        assert stub.calls == ["nightly"]
        status = runner.get_status()
        assert status["status"] == "idle"
        assert status["runs_completed"] == 1
        assert status["last_result"]["success"] is True

    asyncio.run(run())


def test_runner_records_crashes_and_keeps_going() -> None:
    async def run() -> None:
        def crash(_schedule: str) -> TakealotApiResponse:
            raise RuntimeError("db gone")

        runner = ScheduledSyncRunner(schedule_callable=crash)
        await runner.start(ScheduleConfig("hourly", interval_seconds=0))
        for _ in range(50):
            if runner.state.runs_completed:
                break
            await asyncio.sleep(0.01)
        await runner.stop()

        assert runner.state.last_error == "db gone"

    asyncio.run(run())


def test_pause_and_stop_long_interval() -> None:
    async def run() -> None:
        stub = StubSchedule()
        runner = ScheduledSyncRunner(schedule_callable=stub)

        await runner.start(ScheduleConfig("hourly", interval_seconds=3600))
        for _ in range(50):
            if stub.calls:
                break
            await asyncio.sleep(0.01)

        paused = await runner.pause()
        assert paused.status == "paused"
        assert paused.paused_at is not None

        with pytest.raises(RuntimeError):
            # resuming is allowed, starting twice while running is not
            await runner.start(ScheduleConfig("hourly", interval_seconds=3600))
            await runner.start(ScheduleConfig("hourly", interval_seconds=3600))

        stopped = await runner.stop()
        assert stopped.status == "idle"
        assert stub.calls == ["hourly"]

    asyncio.run(run())
