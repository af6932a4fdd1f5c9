import sys
import threading
import time
import unittest
from datetime import date, datetime, timedelta
from pathlib import Path
from unittest import mock
from zoneinfo import ZoneInfo

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from trainpal.config import JourneyConfig, ScheduleConfig
from trainpal.errors import FetchError, NotFound, ParseError
from trainpal.monitor import LineMonitor, TrainMonitor
from trainpal.rtt import LocationDetail, RttClient, SearchResult, Service
from trainpal.scheduler import Scheduler, TaskKind, is_within_window

LONDON = ZoneInfo("Europe/London")
MONDAY = date(2025, 3, 10)
TUESDAY = date(2025, 3, 11)

MORNING = JourneyConfig(origin="HRN", destination="KGX", departure="0800")
EVENING = JourneyConfig(origin="KGX", destination="HRN", departure="1745")


def at(day: date, hour: int, minute: int, second: int = 0) -> datetime:
    return datetime(day.year, day.month, day.day, hour, minute, second, tzinfo=LONDON)


class FakeTrainMonitor:
    def __init__(self, arrival: datetime | None = None):
        self.calls: list[tuple[str, str]] = []
        self.resets = 0
        self.arrival = arrival
        self.arrived_after = None
        self.fail_on: dict[str, list[Exception]] = {}

    def _record(self, name, journey):
        self.calls.append((name, journey.departure))
        errors = self.fail_on.get(name)
        if errors:
            raise errors.pop(0)

    def reset_notification_state(self):
        self.resets += 1

    def check_delay(self, journey, day):
        self._record("delay", journey)

    def check_status(self, journey, day):
        self._record("status", journey)

    def check_arrival(self, journey, day):
        self._record("arrival", journey)
        count = sum(1 for name, _ in self.calls if name == "arrival")
        return self.arrived_after is not None and count >= self.arrived_after

    def expected_arrival_time(self, journey, day):
        if self.arrival is None:
            raise NotFound("no matching service")
        return self.arrival


class FakeLineMonitor:
    def __init__(self):
        self.calls: list[str] = []
        self.resets = 0

    def reset_notification_state(self):
        self.resets += 1

    def check_status(self):
        self.calls.append("line")

    def send_status_summary(self):
        self.calls.append("summary")


def make_scheduler(journeys=(MORNING, EVENING), arrival=None, clock=None):
    schedule = ScheduleConfig(journeys=tuple(journeys), timezone="Europe/London")
    train = FakeTrainMonitor(arrival=arrival)
    line = FakeLineMonitor()
    scheduler = Scheduler(schedule, train, line, clock=clock)
    return scheduler, train, line


class WindowTest(unittest.TestCase):
    def test_window_bounds(self):
        scheduled = at(MONDAY, 7, 0)
        self.assertTrue(is_within_window(scheduled, at(MONDAY, 7, 0)))
        self.assertTrue(is_within_window(scheduled, at(MONDAY, 7, 1, 30)))
        self.assertFalse(is_within_window(scheduled, at(MONDAY, 7, 2)))
        self.assertFalse(is_within_window(scheduled, at(MONDAY, 6, 59, 59)))


class DailyTaskTest(unittest.TestCase):
    def test_tasks_for_both_journeys(self):
        scheduler, _, _ = make_scheduler(arrival=at(MONDAY, 8, 40))
        scheduler.setup_daily_tasks(MONDAY)
        tasks = scheduler.tasks

        kinds = [task.kind for task in tasks]
        self.assertEqual(kinds.count(TaskKind.DELAY_CHECK), 8)
        self.assertEqual(kinds.count(TaskKind.STATUS_UPDATE), 4)
        self.assertEqual(kinds.count(TaskKind.ARRIVAL_CHECK), 2)
        self.assertEqual(kinds.count(TaskKind.LINE_STATUS_CHECK), 13)
        self.assertEqual(kinds.count(TaskKind.LINE_STATUS_SUMMARY), 1)

        morning_delays = [t.scheduled_at for t in tasks if t.kind is TaskKind.DELAY_CHECK and t.journey == 0]
        self.assertEqual(
            morning_delays,
            [at(MONDAY, 7, 0), at(MONDAY, 7, 15), at(MONDAY, 7, 30), at(MONDAY, 7, 45)],
        )
        line_checks = [t.scheduled_at for t in tasks if t.kind is TaskKind.LINE_STATUS_CHECK]
        self.assertEqual(line_checks[0], at(MONDAY, 7, 0))
        self.assertEqual(line_checks[-1], at(MONDAY, 8, 0))

        arrivals = [t for t in tasks if t.kind is TaskKind.ARRIVAL_CHECK]
        self.assertEqual([t.scheduled_at for t in arrivals], [at(MONDAY, 9, 10), at(MONDAY, 18, 55)])
        self.assertTrue(all(t.recurring for t in arrivals))

        summary = [t for t in tasks if t.kind is TaskKind.LINE_STATUS_SUMMARY][0]
        self.assertEqual(summary.scheduled_at, at(MONDAY, 8, 25))

    def test_arrival_lookup_failure_only_skips_summary(self):
        scheduler, _, _ = make_scheduler(arrival=None)
        scheduler.setup_daily_tasks(MONDAY)
        kinds = [task.kind for task in scheduler.tasks]
        self.assertNotIn(TaskKind.LINE_STATUS_SUMMARY, kinds)
        self.assertEqual(len(kinds), 27)

    def test_inactive_weekday_builds_nothing(self):
        weekend = JourneyConfig(origin="HRN", destination="KGX", departure="0800", days=frozenset({"saturday"}))
        scheduler, train, line = make_scheduler(journeys=(weekend,))
        scheduler.setup_daily_tasks(MONDAY)
        self.assertEqual(scheduler.tasks, [])

        for minute in range(0, 60):
            scheduler.tick(at(MONDAY, 7, minute))
        self.assertEqual(train.calls, [])
        self.assertEqual(line.calls, [])

    def test_only_evening_active_has_no_line_tasks(self):
        weekend_morning = JourneyConfig(
            origin="HRN", destination="KGX", departure="0800", days=frozenset({"sunday"})
        )
        scheduler, _, _ = make_scheduler(journeys=(weekend_morning, EVENING), arrival=at(MONDAY, 8, 40))
        scheduler.setup_daily_tasks(MONDAY)
        kinds = {task.kind for task in scheduler.tasks}
        self.assertNotIn(TaskKind.LINE_STATUS_CHECK, kinds)
        self.assertEqual(len(scheduler.tasks), 7)


class TickTest(unittest.TestCase):
    def test_task_fires_within_window_once(self):
        scheduler, train, line = make_scheduler(journeys=(MORNING,))
        scheduler.setup_daily_tasks(MONDAY)

        scheduler.tick(at(MONDAY, 7, 0, 30))
        scheduler.tick(at(MONDAY, 7, 1, 30))

        self.assertEqual(train.calls, [("delay", "0800"), ("status", "0800")])
        self.assertEqual(line.calls, ["line"])

    def test_tick_late_in_window_still_fires(self):
        scheduler, train, _ = make_scheduler(journeys=(MORNING,))
        scheduler.setup_daily_tasks(MONDAY)
        scheduler.tick(at(MONDAY, 7, 1, 30))
        self.assertIn(("delay", "0800"), train.calls)

    def test_missed_window_is_never_caught_up(self):
        scheduler, train, line = make_scheduler(journeys=(MORNING,))
        scheduler.setup_daily_tasks(MONDAY)

        scheduler.tick(at(MONDAY, 7, 3))
        scheduler.tick(at(MONDAY, 7, 4))

        self.assertEqual(train.calls, [])
        self.assertEqual(line.calls, [])
        first = scheduler.tasks[0]
        self.assertEqual(first.scheduled_at, at(MONDAY, 7, 0))
        self.assertFalse(first.executed)

    def test_arrival_check_recurs_until_arrived(self):
        scheduler, train, _ = make_scheduler(journeys=(MORNING,))
        train.arrived_after = 2
        scheduler.setup_daily_tasks(MONDAY)

        scheduler.tick(at(MONDAY, 9, 10, 30))
        arrival_task = [t for t in scheduler.tasks if t.kind is TaskKind.ARRIVAL_CHECK][0]
        self.assertEqual(arrival_task.scheduled_at, at(MONDAY, 9, 15))
        self.assertTrue(arrival_task.recurring)

        scheduler.tick(at(MONDAY, 9, 11, 30))
        scheduler.tick(at(MONDAY, 9, 15, 30))
        self.assertFalse(arrival_task.recurring)
        self.assertTrue(arrival_task.executed)

        scheduler.tick(at(MONDAY, 9, 15, 45))
        scheduler.tick(at(MONDAY, 9, 20, 30))
        self.assertEqual([name for name, _ in train.calls], ["arrival", "arrival"])

    def test_arrival_fetch_error_still_advances(self):
        scheduler, train, _ = make_scheduler(journeys=(MORNING,))
        train.fail_on["arrival"] = [FetchError("rtt down")]
        scheduler.setup_daily_tasks(MONDAY)

        scheduler.tick(at(MONDAY, 9, 10))
        arrival_task = [t for t in scheduler.tasks if t.kind is TaskKind.ARRIVAL_CHECK][0]
        self.assertEqual(arrival_task.scheduled_at, at(MONDAY, 9, 15))
        self.assertTrue(arrival_task.recurring)
        self.assertFalse(arrival_task.executed)

    def test_failing_task_does_not_block_others(self):
        scheduler, train, line = make_scheduler(journeys=(MORNING,))
        train.fail_on["delay"] = [FetchError("rtt down")]
        scheduler.setup_daily_tasks(MONDAY)

        scheduler.tick(at(MONDAY, 7, 0))

        self.assertEqual(train.calls, [("delay", "0800"), ("status", "0800")])
        self.assertEqual(line.calls, ["line"])
        delay_task = scheduler.tasks[0]
        self.assertTrue(delay_task.executed)

    def test_unexpected_error_is_contained(self):
        scheduler, train, line = make_scheduler(journeys=(MORNING,))
        train.fail_on["status"] = [RuntimeError("boom")]
        scheduler.setup_daily_tasks(MONDAY)

        scheduler.tick(at(MONDAY, 7, 0))
        scheduler.tick(at(MONDAY, 7, 15))

        self.assertEqual(
            train.calls,
            [("delay", "0800"), ("status", "0800"), ("delay", "0800")],
        )
        self.assertEqual(line.calls, ["line", "line"])

    def test_parse_error_leaves_task_pending_within_window(self):
        scheduler, train, _ = make_scheduler(journeys=(MORNING,))
        train.fail_on["delay"] = [ParseError("bad time")]
        scheduler.setup_daily_tasks(MONDAY)

        scheduler.tick(at(MONDAY, 7, 0))
        self.assertFalse(scheduler.tasks[0].executed)

        scheduler.tick(at(MONDAY, 7, 1))
        self.assertTrue(scheduler.tasks[0].executed)
        self.assertEqual([name for name, _ in train.calls].count("delay"), 2)

    def test_day_rollover_resets_state_and_rebuilds(self):
        scheduler, train, line = make_scheduler(journeys=(MORNING,))
        scheduler.setup_daily_tasks(MONDAY)
        scheduler.tick(at(MONDAY, 7, 0))
        self.assertEqual(train.resets, 0)

        scheduler.tick(at(TUESDAY, 7, 0, 30))

        self.assertEqual(train.resets, 1)
        self.assertEqual(line.resets, 1)
        self.assertEqual(scheduler.current_day, TUESDAY)
        self.assertEqual(scheduler.tasks[0].scheduled_at, at(TUESDAY, 7, 0))
        self.assertEqual([name for name, _ in train.calls].count("delay"), 2)

    def test_first_tick_builds_tasks(self):
        scheduler, train, _ = make_scheduler(journeys=(MORNING,))
        scheduler.tick(at(MONDAY, 7, 0))
        self.assertEqual(scheduler.current_day, MONDAY)
        self.assertIn(("delay", "0800"), train.calls)


class NullBodySession:
    """RTT session whose service-detail lookups answer with a JSON null body."""

    def __init__(self):
        self.headers = {}
        self.auth = None

    def get(self, url, timeout=None):
        if "/json/service/" in url:
            return StubResponse(None)
        return StubResponse(
            {"services": [{"serviceUid": "W1", "locationDetail": {"gbttBookedDeparture": "0800"}}]}
        )


class StubResponse:
    status_code = 200

    def __init__(self, payload):
        self.payload = payload

    def raise_for_status(self):
        pass

    def json(self):
        return self.payload


class RebuildFailureTest(unittest.TestCase):
    def test_unexpected_arrival_lookup_error_only_skips_summary(self):
        scheduler, train, line = make_scheduler(journeys=(MORNING,))
        train.expected_arrival_time = mock.Mock(side_effect=RuntimeError("bad payload"))

        scheduler.tick(at(MONDAY, 7, 0))

        kinds = [task.kind for task in scheduler.tasks]
        self.assertNotIn(TaskKind.LINE_STATUS_SUMMARY, kinds)
        self.assertEqual(len(kinds), 20)
        self.assertEqual(scheduler.current_day, MONDAY)
        self.assertIn(("delay", "0800"), train.calls)
        self.assertEqual(line.calls, ["line"])

    def test_null_service_detail_does_not_break_tick(self):
        rtt = RttClient("u", "p", session=NullBodySession())
        notifier = mock.Mock()
        tfl = mock.Mock(line="northern")
        tfl.get_line_status.side_effect = FetchError("tfl down")
        schedule = ScheduleConfig(journeys=(MORNING,), timezone="Europe/London")
        scheduler = Scheduler(
            schedule,
            TrainMonitor(rtt, notifier, LONDON),
            LineMonitor(tfl, notifier),
        )

        scheduler.tick(at(MONDAY, 7, 0))

        self.assertEqual(scheduler.current_day, MONDAY)
        kinds = [task.kind for task in scheduler.tasks]
        self.assertNotIn(TaskKind.LINE_STATUS_SUMMARY, kinds)

        # The recurring arrival check hits the same null body and keeps polling.
        scheduler.tick(at(MONDAY, 9, 10))
        arrival = [t for t in scheduler.tasks if t.kind is TaskKind.ARRIVAL_CHECK][0]
        self.assertEqual(arrival.scheduled_at, at(MONDAY, 9, 15))

    def test_failed_rollover_build_drops_old_tasks_and_retries(self):
        scheduler, train, _ = make_scheduler(journeys=(MORNING,))
        scheduler.setup_daily_tasks(MONDAY)
        build = scheduler._build_tasks

        with mock.patch.object(scheduler, "_build_tasks", side_effect=RuntimeError("boom")):
            scheduler.tick(at(TUESDAY, 7, 0))

        self.assertEqual(scheduler.tasks, [])
        self.assertEqual(scheduler.current_day, MONDAY)
        self.assertEqual(train.calls, [])

        with mock.patch.object(scheduler, "_build_tasks", side_effect=build):
            scheduler.tick(at(TUESDAY, 7, 1))

        self.assertEqual(scheduler.current_day, TUESDAY)
        self.assertIn(("delay", "0800"), train.calls)

    def test_loop_survives_failing_setup(self):
        scheduler, _, _ = make_scheduler(journeys=(MORNING,), clock=lambda: at(MONDAY, 12, 0))
        scheduler._tick_interval = timedelta(milliseconds=20)
        build = mock.Mock(side_effect=RuntimeError("boom"))
        scheduler._build_tasks = build
        scheduler.start()
        try:
            time.sleep(0.2)
            self.assertTrue(scheduler._thread.is_alive())
            self.assertIsNone(scheduler.current_day)
            # Setup plus at least one retry from the tick loop.
            self.assertGreaterEqual(build.call_count, 2)
        finally:
            scheduler.stop(timeout=5)


class LifecycleTest(unittest.TestCase):
    def make_running(self, cancel=None):
        scheduler, _, _ = make_scheduler(journeys=(MORNING,), clock=lambda: at(MONDAY, 12, 0))
        scheduler._tick_interval = timedelta(milliseconds=20)
        scheduler.start(cancel)
        return scheduler

    def test_stop_waits_for_loop_exit(self):
        scheduler = self.make_running()
        thread = scheduler._thread
        scheduler.stop(timeout=5)
        self.assertFalse(thread.is_alive())
        self.assertEqual(scheduler.current_day, MONDAY)

    def test_external_cancellation_ends_loop(self):
        cancel = threading.Event()
        scheduler = self.make_running(cancel)
        thread = scheduler._thread
        cancel.set()
        thread.join(timeout=5)
        self.assertFalse(thread.is_alive())
        scheduler.stop(timeout=5)

    def test_current_day_waits_for_running_tick(self):
        scheduler, _, _ = make_scheduler(journeys=(MORNING,))
        scheduler.setup_daily_tasks(MONDAY)
        seen = []

        with scheduler._lock:
            reader = threading.Thread(target=lambda: seen.append(scheduler.current_day))
            reader.start()
            reader.join(timeout=0.1)
            self.assertTrue(reader.is_alive())
            self.assertEqual(seen, [])

        reader.join(timeout=5)
        self.assertEqual(seen, [MONDAY])

    def test_start_twice_is_rejected(self):
        scheduler = self.make_running()
        try:
            with self.assertRaises(RuntimeError):
                scheduler.start()
        finally:
            scheduler.stop(timeout=5)


class DelayCheckIntegrationTest(unittest.TestCase):
    """Real monitors and dedup driven by the scheduler against stub sources."""

    class StubRtt:
        def __init__(self):
            self.realtime = "0735"

        def search(self, origin, destination, when):
            detail = LocationDetail(gbtt_booked_departure="0720", realtime_departure=self.realtime)
            return SearchResult(services=[Service("W1", "2025-03-10", "GN", detail)])

        def get_service(self, service_uid, run_date):
            raise FetchError("not needed")

    class StubTfl:
        line = "northern"

        def get_line_status(self):
            raise FetchError("tfl down")

    class Recorder:
        def __init__(self):
            self.sent = []

        def deliver(self, title, body, priority=0):
            self.sent.append(title)

    def test_bucket_escalation_across_ticks_and_days(self):
        rtt = self.StubRtt()
        notifier = self.Recorder()
        journey = JourneyConfig(origin="HRN", destination="KGX", departure="0720")
        schedule = ScheduleConfig(journeys=(journey,), timezone="Europe/London")
        scheduler = Scheduler(
            schedule,
            TrainMonitor(rtt, notifier, LONDON),
            LineMonitor(self.StubTfl(), notifier),
        )
        scheduler.setup_daily_tasks(MONDAY)

        # 06:20 runs both the gated delay check and the status update.
        scheduler.tick(at(MONDAY, 6, 20))
        rtt.realtime = "0738"
        scheduler.tick(at(MONDAY, 6, 35))
        rtt.realtime = "0741"
        scheduler.tick(at(MONDAY, 6, 50))

        self.assertEqual(
            notifier.sent,
            ["Train Delay Alert", "Train Delay Alert", "Train Delay Alert", "Train Delay Alert"],
        )

        rtt.realtime = "0735"
        scheduler.tick(at(TUESDAY, 6, 20))
        self.assertEqual(notifier.sent.count("Train Delay Alert"), 6)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
