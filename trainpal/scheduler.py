"""Time-window task scheduler.

Every day the scheduler lays out a fixed list of tasks around each active
journey's departure time, then ticks once a minute and fires any task whose
scheduled time fell within the last two minutes. Missed windows are not
caught up. The whole tick, including the day-rollover rebuild, runs under a
single lock.
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Callable

from trainpal.config import JourneyConfig, ScheduleConfig
from trainpal.errors import DeliveryError, FetchError, NotFound, ParseError, TrainpalError
from trainpal.monitor import LineMonitor, TrainMonitor

LOGGER = logging.getLogger(__name__)

TICK_INTERVAL = timedelta(minutes=1)
TOLERANCE_WINDOW = timedelta(minutes=2)

DELAY_CHECK_OFFSETS = (60, 45, 30, 15)
STATUS_UPDATE_OFFSETS = (60, 30)
ARRIVAL_FIRST_CHECK = timedelta(minutes=70)
ARRIVAL_POLL_STEP = timedelta(minutes=5)
LINE_CHECK_LEAD = timedelta(minutes=60)
LINE_CHECK_STEP = timedelta(minutes=5)
SUMMARY_LEAD = timedelta(minutes=15)

# Upper bound on how long a stop/cancel request waits to be noticed.
STOP_POLL_SECONDS = 1.0


class TaskKind(str, Enum):
    DELAY_CHECK = "delay_check"
    STATUS_UPDATE = "status_update"
    ARRIVAL_CHECK = "arrival_check"
    LINE_STATUS_CHECK = "line_status_check"
    LINE_STATUS_SUMMARY = "line_status_summary"


@dataclass
class Task:
    kind: TaskKind
    scheduled_at: datetime
    journey: int | None = None
    executed: bool = False
    recurring: bool = False

    @property
    def is_pending(self) -> bool:
        return self.recurring or not self.executed


def is_within_window(
    scheduled_at: datetime, now: datetime, window: timedelta = TOLERANCE_WINDOW
) -> bool:
    diff = now - scheduled_at
    return timedelta(0) <= diff < window


class Scheduler:
    def __init__(
        self,
        schedule: ScheduleConfig,
        train_monitor: TrainMonitor,
        line_monitor: LineMonitor,
        clock: Callable[[], datetime] | None = None,
        tick_interval: timedelta = TICK_INTERVAL,
    ) -> None:
        self._schedule = schedule
        self._tz = schedule.tz
        self._train = train_monitor
        self._line = line_monitor
        self._clock = clock or (lambda: datetime.now(self._tz))
        self._tick_interval = tick_interval

        self._lock = threading.Lock()
        self._tasks: list[Task] = []
        self._current_day: date | None = None
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def tasks(self) -> list[Task]:
        with self._lock:
            return list(self._tasks)

    @property
    def current_day(self) -> date | None:
        with self._lock:
            return self._current_day

    def start(self, cancel_event: threading.Event | None = None) -> None:
        """Run the tick loop in a background thread until stopped or cancelled."""

        if self._thread is not None and self._thread.is_alive():
            raise RuntimeError("Scheduler is already running")
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self.run, args=(cancel_event,), name="trainpal-scheduler", daemon=True
        )
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        """Signal the loop to exit and wait for the current tick to finish."""

        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def run(self, cancel_event: threading.Event | None = None) -> None:
        cancel = cancel_event or threading.Event()
        try:
            self.setup_daily_tasks()
        except Exception:
            # The first tick sees no current day and retries the build.
            LOGGER.exception("Failed to set up daily tasks")

        interval = self._tick_interval.total_seconds()
        next_tick = time.monotonic() + interval
        while not self._wait_until(next_tick, cancel):
            self.tick()
            next_tick += interval
            now = time.monotonic()
            if next_tick <= now:
                # Ticks are not queued: a slow tick just delays the next one.
                missed = int((now - next_tick) // interval) + 1
                LOGGER.warning("Tick overran; skipping %d tick(s)", missed)
                next_tick += missed * interval

    def _wait_until(self, deadline: float, cancel: threading.Event) -> bool:
        """Sleep until ``deadline``; return True if asked to stop first."""

        while True:
            if cancel.is_set():
                LOGGER.info("Scheduler stopped: context cancelled")
                return True
            if self._stop_event.is_set():
                LOGGER.info("Scheduler stopped: stop signal received")
                return True
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            self._stop_event.wait(min(remaining, STOP_POLL_SECONDS))

    def setup_daily_tasks(self, day: date | None = None) -> None:
        day = day or self._clock().date()
        with self._lock:
            self._rebuild(day)

    def tick(self, now: datetime | None = None) -> None:
        now = now or self._clock()
        with self._lock:
            if now.date() != self._current_day:
                LOGGER.info("Day changed to %s, resetting tasks", now.date().isoformat())
                self._train.reset_notification_state()
                self._line.reset_notification_state()
                try:
                    self._rebuild(now.date())
                except Exception:
                    LOGGER.exception("Failed to build tasks for %s; retrying next tick", now.date())
                    return

            for task in self._tasks:
                if not task.is_pending:
                    continue
                if is_within_window(task.scheduled_at, now):
                    self._execute(task)

    def _rebuild(self, day: date) -> None:
        # Yesterday's tasks never run again, even if the build fails.
        self._tasks = []
        self._tasks = self._build_tasks(day)
        self._current_day = day

    def _build_tasks(self, day: date) -> list[Task]:
        tasks: list[Task] = []
        active = [
            (index, journey)
            for index, journey in enumerate(self._schedule.journeys)
            if journey.is_active_on(day)
        ]
        if not active:
            LOGGER.info("No trains scheduled for %s", day.strftime("%A"))
            return tasks

        for index, journey in active:
            try:
                departure = journey.departure_time(day, self._tz)
            except ParseError as exc:
                LOGGER.error("Failed to parse departure time for %s: %s", journey.describe(), exc)
                continue

            tasks.extend(
                Task(TaskKind.DELAY_CHECK, departure - timedelta(minutes=offset), journey=index)
                for offset in DELAY_CHECK_OFFSETS
            )
            tasks.extend(
                Task(TaskKind.STATUS_UPDATE, departure - timedelta(minutes=offset), journey=index)
                for offset in STATUS_UPDATE_OFFSETS
            )
            tasks.append(
                Task(
                    TaskKind.ARRIVAL_CHECK,
                    departure + ARRIVAL_FIRST_CHECK,
                    journey=index,
                    recurring=True,
                )
            )

            if index == 0:
                tasks.extend(self._line_tasks(journey, departure, day))

        LOGGER.info(
            "Daily tasks scheduled for %s (%s): %d tasks",
            day.isoformat(),
            day.strftime("%A"),
            len(tasks),
        )
        return tasks

    def _line_tasks(self, journey: JourneyConfig, departure: datetime, day: date) -> list[Task]:
        tasks: list[Task] = []
        check_at = departure - LINE_CHECK_LEAD
        while check_at <= departure:
            tasks.append(Task(TaskKind.LINE_STATUS_CHECK, check_at))
            check_at += LINE_CHECK_STEP

        try:
            arrival = self._train.expected_arrival_time(journey, day)
        except TrainpalError as exc:
            LOGGER.warning("Failed to get arrival time, skipping status summary: %s", exc)
            return tasks
        except Exception:
            LOGGER.exception("Unexpected error getting arrival time, skipping status summary")
            return tasks

        summary_at = arrival - SUMMARY_LEAD
        tasks.append(Task(TaskKind.LINE_STATUS_SUMMARY, summary_at))
        LOGGER.info(
            "Scheduled line status summary at %s (arrival %s)",
            summary_at.strftime("%H:%M"),
            arrival.strftime("%H:%M"),
        )
        return tasks

    def _execute(self, task: Task) -> None:
        LOGGER.debug(
            "Executing %s task scheduled for %s",
            task.kind.value,
            task.scheduled_at.strftime("%H:%M"),
        )
        day = self._current_day
        journey = self._schedule.journeys[task.journey] if task.journey is not None else None

        try:
            if task.kind is TaskKind.DELAY_CHECK:
                self._train.check_delay(journey, day)
            elif task.kind is TaskKind.STATUS_UPDATE:
                self._train.check_status(journey, day)
            elif task.kind is TaskKind.ARRIVAL_CHECK:
                arrived = False
                try:
                    arrived = self._train.check_arrival(journey, day)
                finally:
                    if arrived:
                        task.recurring = False
                    else:
                        task.scheduled_at += ARRIVAL_POLL_STEP
            elif task.kind is TaskKind.LINE_STATUS_CHECK:
                self._line.check_status()
            elif task.kind is TaskKind.LINE_STATUS_SUMMARY:
                self._line.send_status_summary()
        except ParseError as exc:
            LOGGER.error("Abandoning %s task for this tick: %s", task.kind.value, exc)
            return
        except NotFound as exc:
            LOGGER.warning("%s task found nothing: %s", task.kind.value, exc)
        except (FetchError, DeliveryError) as exc:
            LOGGER.error("Task execution failed (%s): %s", task.kind.value, exc)
        except Exception:
            LOGGER.exception("Unexpected error while executing %s task", task.kind.value)

        if not task.recurring:
            task.executed = True
