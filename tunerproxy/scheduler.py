"""
Persistent recurring scheduler.

Each scheduler owns a small JSON file holding its interval and the absolute
time of its next run, so a restart picks up exactly where the last process
left off::

    {"interval_ms": 2592000000, "next_run_at": "2026-11-17T09:30:00.123456+00:00"}

States: ``idle`` (nothing pending), ``armed`` (waiting for ``next_run_at``),
``running`` (task callback executing).

Long waits are split into links of at most ``max_delay_ms``; every link
re-reads the absolute target, and every arm gets a fresh generation number
so a link left over from a cancelled arm exits without running anything.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from pathlib import Path

from .errors import PersistenceError
from .models import ScheduleState

logger = logging.getLogger(__name__)

# Largest single-shot timer delay (signed 32-bit milliseconds)
MAX_DELAY_MS = 2_147_483_647

TaskFn = Callable[[], Awaitable[object]]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_instant(value: str) -> datetime:
    """Parse an ISO-8601 or RFC 1123 timestamp into an aware UTC datetime."""
    if not isinstance(value, str) or not value:
        raise ValueError(f"Not a timestamp: {value!r}")
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        try:
            parsed = parsedate_to_datetime(value)
        except (TypeError, ValueError, IndexError) as exc:
            raise ValueError(f"Not a timestamp: {value!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def read_schedule_file(path: Path) -> tuple[int, str]:
    """Return ``(interval_ms, raw next_run_at)`` from a schedule file.

    Raises ``PersistenceError`` when the file can't be read or decoded. The
    timestamp is returned unparsed; a bad one only resets the next run time.
    """
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        interval_ms = int(data["interval_ms"])
        raw_next = data["next_run_at"]
    except (OSError, ValueError, KeyError, TypeError) as exc:
        raise PersistenceError(f"Unreadable schedule file {path}: {exc}") from exc
    if interval_ms <= 0:
        raise PersistenceError(f"Invalid interval {interval_ms} in {path}")
    return interval_ms, raw_next


def save_state(path: Path, state: ScheduleState) -> None:
    """Rewrite the whole file atomically (temp file + rename)."""
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    payload = {
        "interval_ms": state.interval_ms,
        "next_run_at": state.next_run_at.isoformat(),
    }
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(tmp_path, "w", encoding="utf-8") as fh:
            json.dump(payload, fh, indent=4)
        os.replace(tmp_path, path)
    except OSError as exc:
        raise PersistenceError(f"Could not write schedule file {path}: {exc}") from exc


class PersistentScheduler:
    """Runs ``task_fn`` every ``interval_ms``, surviving restarts."""

    def __init__(
        self,
        schedule_file: Path | str,
        label: str,
        interval_ms: int,
        task_fn: TaskFn,
        max_delay_ms: int = MAX_DELAY_MS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.schedule_file = Path(schedule_file)
        self.label = label
        self._task_fn = task_fn
        self._max_delay_ms = max_delay_ms
        self._clock = clock

        self._generation = 0
        self._timer: asyncio.Task | None = None
        self._run_lock = asyncio.Lock()
        self._running = False
        self._stopped = False
        self.run_count = 0

        self._state = self._load(interval_ms)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def _load(self, default_interval_ms: int) -> ScheduleState:
        if not self.schedule_file.exists():
            state = ScheduleState(interval_ms=default_interval_ms, next_run_at=self._clock())
            self._persist(state)
            return state

        try:
            interval_ms, raw_next = read_schedule_file(self.schedule_file)
        except PersistenceError as exc:
            logger.error("%s: %s; starting a fresh schedule", self.label, exc)
            state = ScheduleState(interval_ms=default_interval_ms, next_run_at=self._clock())
            self._persist(state)
            return state

        try:
            return ScheduleState(interval_ms=interval_ms, next_run_at=parse_instant(raw_next))
        except ValueError:
            logger.error("Invalid %s time string: %r", self.label, raw_next)
            state = ScheduleState(interval_ms=interval_ms, next_run_at=self._clock())
            self._persist(state)
            return state

    def _persist(self, state: ScheduleState | None = None) -> None:
        try:
            save_state(self.schedule_file, state or self._state)
        except PersistenceError as exc:
            logger.error("%s: %s", self.label, exc)

    # ------------------------------------------------------------------
    # Public helpers
    # ------------------------------------------------------------------
    @property
    def interval_ms(self) -> int:
        return self._state.interval_ms

    @property
    def next_run_at(self) -> datetime:
        return self._state.next_run_at

    @property
    def state(self) -> str:
        if self._running:
            return "running"
        if self._timer is not None and not self._timer.done():
            return "armed"
        return "idle"

    def remaining_ms(self) -> float:
        return (self._state.next_run_at - self._clock()).total_seconds() * 1000

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------
    async def schedule_next_run(self) -> None:
        """Run now if the persisted time has passed, otherwise arm for it."""
        if self.remaining_ms() <= 0:
            await self.run_task()
        else:
            logger.info("%s scheduled for %s", self.label, self._state.next_run_at.isoformat())
            self._arm()

    async def force_run_now(self) -> None:
        """Skip the wait and run the task immediately."""
        await self.run_task()

    async def run_task(self) -> None:
        self.cancel()
        async with self._run_lock:
            self._running = True
            try:
                logger.info("Running %s...", self.label)
                try:
                    await self._task_fn()
                except Exception:
                    logger.exception("%s failed; will retry at the next interval", self.label)
                self.run_count += 1

                self._state.next_run_at = self._clock() + timedelta(
                    milliseconds=self._state.interval_ms
                )
                logger.info(
                    "%s finished running. Next run scheduled for %s",
                    self.label,
                    self._state.next_run_at.isoformat(),
                )
                self._persist()
            finally:
                self._running = False
            self._arm()

    def cancel(self) -> None:
        """Drop any pending wait. Safe to call in any state."""
        self._generation += 1
        timer, self._timer = self._timer, None
        if timer is not None and not timer.done():
            timer.cancel()

    def shutdown(self) -> None:
        """Cancel for good: a run still in progress will not re-arm."""
        self._stopped = True
        self.cancel()

    def _arm(self) -> None:
        self.cancel()
        if self._stopped:
            return
        gen = self._generation
        self._timer = asyncio.create_task(self._chain(gen))

    async def _chain(self, gen: int) -> None:
        while True:
            if gen != self._generation:
                return
            remaining = self.remaining_ms()
            if remaining <= 0:
                break
            await self._wait(min(remaining, self._max_delay_ms) / 1000)

        if gen != self._generation:
            return
        # Detach so run_task's cancel() doesn't cancel the task running it
        self._timer = None
        await self.run_task()

    async def _wait(self, seconds: float) -> None:
        await asyncio.sleep(seconds)
