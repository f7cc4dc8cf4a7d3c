"""
Tests for the persistent scheduler.
"""

import asyncio
import json
from datetime import datetime, timedelta, timezone

from tunerproxy.scheduler import PersistentScheduler, parse_instant, utcnow

HOUR_MS = 60 * 60 * 1000


def write_schedule(path, interval_ms, next_run_at):
    path.write_text(json.dumps({"interval_ms": interval_ms, "next_run_at": next_run_at}))


def read_schedule(path):
    data = json.loads(path.read_text())
    return data["interval_ms"], parse_instant(data["next_run_at"])


def make_task():
    calls = []

    async def task():
        calls.append(utcnow())

    return task, calls


def test_first_start_creates_file(tmp_path):
    """No schedule file: run is due now and the file is written immediately."""
    path = tmp_path / "schedule_lineup.json"
    task, _ = make_task()
    before = utcnow()

    scheduler = PersistentScheduler(path, "lineup", HOUR_MS, task)

    assert path.exists()
    interval_ms, next_run_at = read_schedule(path)
    assert interval_ms == HOUR_MS
    assert before <= next_run_at <= utcnow()
    assert scheduler.state == "idle"


def test_corrupt_file_resets_to_default(tmp_path):
    path = tmp_path / "schedule.json"
    path.write_text("{not json")
    task, _ = make_task()

    scheduler = PersistentScheduler(path, "lineup", HOUR_MS, task)

    assert scheduler.interval_ms == HOUR_MS
    assert scheduler.remaining_ms() <= 0
    interval_ms, _ = read_schedule(path)
    assert interval_ms == HOUR_MS


def test_unparsable_time_resets_to_now(tmp_path):
    path = tmp_path / "schedule.json"
    write_schedule(path, 5000, "not a date")
    task, _ = make_task()

    scheduler = PersistentScheduler(path, "lineup", HOUR_MS, task)

    # Interval from the file is kept, only the time is reset
    assert scheduler.interval_ms == 5000
    assert scheduler.remaining_ms() <= 0
    _, next_run_at = read_schedule(path)
    assert next_run_at == scheduler.next_run_at


def test_legacy_rfc1123_time_is_accepted(tmp_path):
    path = tmp_path / "schedule.json"
    write_schedule(path, 5000, "Sun, 18 Oct 2026 09:30:00 GMT")
    task, _ = make_task()

    scheduler = PersistentScheduler(path, "lineup", HOUR_MS, task)

    assert scheduler.next_run_at == datetime(2026, 10, 18, 9, 30, tzinfo=timezone.utc)


def test_due_schedule_runs_immediately(tmp_path):
    path = tmp_path / "schedule.json"
    task, calls = make_task()

    async def main():
        scheduler = PersistentScheduler(path, "lineup", HOUR_MS, task)
        await scheduler.schedule_next_run()
        state = scheduler.state
        scheduler.cancel()
        return scheduler, state

    scheduler, state = asyncio.run(main())
    assert len(calls) == 1
    assert state == "armed"
    assert scheduler.remaining_ms() > HOUR_MS - 5000


def test_persisted_state_round_trips(tmp_path):
    """A fresh instance reloads the same interval and absolute next run."""
    path = tmp_path / "schedule.json"
    task, calls = make_task()

    async def main():
        first = PersistentScheduler(path, "lineup", HOUR_MS, task)
        await first.force_run_now()
        first.cancel()

        second = PersistentScheduler(path, "lineup", 1234, task)
        await second.schedule_next_run()
        state = second.state
        second.cancel()
        return first, second, state

    first, second, state = asyncio.run(main())
    assert second.interval_ms == HOUR_MS
    assert second.next_run_at == first.next_run_at
    assert abs(second.remaining_ms() - first.remaining_ms()) < 1000
    assert state == "armed"
    # Reloading did not run the task again
    assert len(calls) == 1


def test_long_delay_is_chained(tmp_path):
    """Waits longer than the max delay are split and never fire early."""
    path = tmp_path / "schedule.json"
    task, calls = make_task()
    waits = []

    async def main():
        target = utcnow() + timedelta(milliseconds=300)
        write_schedule(path, HOUR_MS, target.isoformat())
        scheduler = PersistentScheduler(path, "lineup", HOUR_MS, task, max_delay_ms=50)

        original_wait = scheduler._wait

        async def recording_wait(seconds):
            waits.append(seconds)
            await original_wait(seconds)

        scheduler._wait = recording_wait

        await scheduler.schedule_next_run()
        assert scheduler.state == "armed"

        await asyncio.sleep(0.15)
        assert calls == []

        for _ in range(100):
            if calls:
                break
            await asyncio.sleep(0.02)
        scheduler.cancel()
        return target

    target = asyncio.run(main())
    assert len(calls) == 1
    assert calls[0] >= target
    assert calls[0] - target < timedelta(milliseconds=500)
    assert len(waits) >= 6
    assert max(waits) <= 0.05


def test_cancel_then_force_runs_once(tmp_path):
    path = tmp_path / "schedule.json"
    task, calls = make_task()
    write_schedule(path, HOUR_MS, (utcnow() + timedelta(hours=5)).isoformat())

    async def main():
        scheduler = PersistentScheduler(path, "lineup", HOUR_MS, task)
        await scheduler.schedule_next_run()
        assert scheduler.state == "armed"

        scheduler.cancel()
        assert scheduler.state == "idle"

        before = utcnow()
        await scheduler.force_run_now()
        after = utcnow()

        await asyncio.sleep(0.1)
        scheduler.cancel()
        return before, after

    before, after = asyncio.run(main())
    assert len(calls) == 1
    _, next_run_at = read_schedule(path)
    interval = timedelta(milliseconds=HOUR_MS)
    assert before + interval <= next_run_at <= after + interval


def test_cancel_is_idempotent(tmp_path):
    task, _ = make_task()
    scheduler = PersistentScheduler(tmp_path / "schedule.json", "lineup", HOUR_MS, task)
    scheduler.cancel()
    scheduler.cancel()
    assert scheduler.state == "idle"


def test_cancelled_arm_does_not_double_run(tmp_path):
    """Re-arming after a cancel leaves only one live timer chain."""
    path = tmp_path / "schedule.json"
    task, calls = make_task()
    write_schedule(path, HOUR_MS, (utcnow() + timedelta(milliseconds=100)).isoformat())

    async def main():
        scheduler = PersistentScheduler(path, "lineup", HOUR_MS, task, max_delay_ms=20)
        await scheduler.schedule_next_run()
        scheduler.cancel()
        await scheduler.schedule_next_run()
        await scheduler.schedule_next_run()
        await asyncio.sleep(0.4)
        scheduler.cancel()

    asyncio.run(main())
    assert len(calls) == 1


def test_task_error_does_not_break_cycle(tmp_path):
    path = tmp_path / "schedule.json"
    attempts = []

    async def failing():
        attempts.append(1)
        raise RuntimeError("device offline")

    async def main():
        scheduler = PersistentScheduler(path, "lineup", HOUR_MS, failing)
        await scheduler.schedule_next_run()
        state = scheduler.state
        scheduler.cancel()
        return scheduler, state

    scheduler, state = asyncio.run(main())
    assert attempts == [1]
    assert state == "armed"
    assert scheduler.run_count == 1
    _, next_run_at = read_schedule(path)
    assert next_run_at == scheduler.next_run_at
    assert scheduler.remaining_ms() > HOUR_MS - 5000


def test_write_failure_keeps_cycle_going(tmp_path, caplog):
    """A schedule file that can't be written is logged; runs still re-arm."""
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("")
    path = blocker / "schedule.json"
    task, calls = make_task()

    async def main():
        scheduler = PersistentScheduler(path, "lineup", HOUR_MS, task)
        before = scheduler.next_run_at
        await scheduler.force_run_now()
        state = scheduler.state
        scheduler.cancel()
        return scheduler, before, state

    scheduler, before, state = asyncio.run(main())
    assert len(calls) == 1
    assert scheduler.next_run_at > before
    assert scheduler.remaining_ms() > HOUR_MS - 5000
    assert state == "armed"
    assert not path.exists()
    assert "Could not write schedule file" in caplog.text


def test_non_positive_interval_resets_schedule(tmp_path):
    path = tmp_path / "schedule.json"
    write_schedule(path, 0, (utcnow() + timedelta(days=3)).isoformat())
    task, _ = make_task()

    scheduler = PersistentScheduler(path, "lineup", HOUR_MS, task)

    assert scheduler.interval_ms == HOUR_MS
    assert scheduler.remaining_ms() <= 0
    interval_ms, _ = read_schedule(path)
    assert interval_ms == HOUR_MS


def test_shutdown_during_run_does_not_rearm(tmp_path):
    """A run that finishes after shutdown leaves no timer behind."""
    release = None
    calls = []

    async def slow_task():
        calls.append(1)
        await release.wait()

    async def main():
        nonlocal release
        release = asyncio.Event()
        scheduler = PersistentScheduler(tmp_path / "schedule.json", "lineup", HOUR_MS, slow_task)
        run = asyncio.create_task(scheduler.force_run_now())
        await asyncio.sleep(0.05)
        assert scheduler.state == "running"

        scheduler.shutdown()
        release.set()
        await run
        return scheduler

    scheduler = asyncio.run(main())
    assert calls == [1]
    assert scheduler.run_count == 1
    assert scheduler.state == "idle"
