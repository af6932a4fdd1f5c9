"""Journey and line checks run by the scheduler.

The monitors fetch from the status sources, ask the dedup state machines
whether the observation is worth an alert, and hand the result to the
notification sink. Fetch failures propagate to the caller; the scheduler
decides what a failed task means.
"""
from __future__ import annotations

import logging
from datetime import date, datetime, tzinfo
from typing import Iterable

from trainpal import notify
from trainpal.config import JourneyConfig
from trainpal.dedup import JourneyAction, JourneyDedup, JourneyObservation, LineAction, LineDedup
from trainpal.errors import DeliveryError, NotFound
from trainpal.rtt import RttClient, Service
from trainpal.tfl import TflClient
from trainpal.timeutil import at_time_on, delay_minutes

LOGGER = logging.getLogger(__name__)

DEFAULT_PLATFORM = "TBC"
DEFAULT_CANCEL_REASON = "No reason provided"
DEFAULT_DISRUPTION_REASON = "No additional details"


def find_matching_service(services: Iterable[Service], departure: str) -> Service | None:
    """First service whose booked departure equals or starts with ``departure``."""

    for service in services:
        booked = service.location_detail.gbtt_booked_departure
        if booked == departure or booked.startswith(departure):
            return service
    return None


class TrainMonitor:
    def __init__(
        self,
        rtt_client: RttClient,
        notifier: notify.Notifier,
        tz: tzinfo,
        dedup: JourneyDedup | None = None,
    ) -> None:
        self._rtt = rtt_client
        self._notifier = notifier
        self._tz = tz
        self.dedup = dedup or JourneyDedup()

    def reset_notification_state(self) -> None:
        self.dedup.reset()

    def _find_service(self, journey: JourneyConfig, day: date) -> Service | None:
        departure = journey.departure_time(day, self._tz)
        result = self._rtt.search(journey.origin, journey.destination, departure)
        if not result.services:
            LOGGER.warning("No services found for %s", journey.describe())
            return None

        service = find_matching_service(result.services, journey.departure)
        if service is None:
            LOGGER.warning("No matching service found for departure %s", journey.departure)
        return service

    def check_delay(self, journey: JourneyConfig, day: date) -> None:
        """Alert on cancellations and on each new 5-minute delay band."""

        LOGGER.info("Checking train delay for %s", journey.describe())
        service = self._find_service(journey, day)
        if service is not None:
            self._process_service(service, journey, always_notify=False)

    def check_status(self, journey: JourneyConfig, day: date) -> None:
        """Always report: delayed, on time, or (once) cancelled."""

        LOGGER.info("Checking train status for %s", journey.describe())
        service = self._find_service(journey, day)
        if service is not None:
            self._process_service(service, journey, always_notify=True)

    def _process_service(self, service: Service, journey: JourneyConfig, always_notify: bool) -> None:
        detail = service.location_detail
        cancelled = detail.is_cancelled
        delay = 0
        if not cancelled:
            delay = delay_minutes(detail.gbtt_booked_departure, detail.realtime_departure)

        observation = JourneyObservation(
            service_id=service.service_uid, cancelled=cancelled, delay_minutes=delay
        )
        action = self.dedup.evaluate(observation, always_notify)
        platform = detail.platform or DEFAULT_PLATFORM

        if action is JourneyAction.CANCELLATION:
            reason = detail.cancel_reason_short_text or DEFAULT_CANCEL_REASON
            LOGGER.warning("Train %s cancelled: %s", service.service_uid, reason)
            notify.send_train_cancellation(
                self._notifier, service.service_uid, journey.origin, journey.destination, reason
            )
        elif action is JourneyAction.DELAY:
            LOGGER.warning(
                "Train %s delayed by %d minutes (expected %s, platform %s)",
                service.service_uid,
                delay,
                detail.realtime_departure,
                platform,
            )
            notify.send_train_delay(
                self._notifier,
                service.service_uid,
                journey.origin,
                journey.destination,
                delay,
                detail.realtime_departure,
                platform,
            )
        elif action is JourneyAction.ON_TIME:
            LOGGER.info("Train %s running on time (platform %s)", service.service_uid, platform)
            notify.send_train_on_time(
                self._notifier,
                service.service_uid,
                journey.origin,
                journey.destination,
                detail.gbtt_booked_departure,
                platform,
            )
        elif cancelled:
            LOGGER.debug("Cancellation already notified for %s", service.service_uid)
        elif delay > 0:
            LOGGER.debug(
                "Delay of %d minutes already notified for %s", delay, service.service_uid
            )
        else:
            LOGGER.info("Train %s running on time", service.service_uid)

    def check_arrival(self, journey: JourneyConfig, day: date) -> bool:
        """Return True once the train is confirmed at the destination."""

        LOGGER.info("Checking train arrival for %s", journey.describe())
        service = self._find_service(journey, day)
        if service is None:
            return False

        detail = self._rtt.get_service(service.service_uid, day)
        stop = detail.stop(journey.destination)
        if stop is None or not stop.realtime_arrival_actual:
            return False

        arrival = stop.realtime_arrival or stop.gbtt_booked_arrival
        LOGGER.info("Train %s arrived at %s at %s", service.service_uid, journey.destination, arrival)
        try:
            notify.send_train_arrival(self._notifier, service.service_uid, journey.destination, arrival)
        except DeliveryError as exc:
            # Arrival is still confirmed; the recurring check must stop.
            LOGGER.error("Failed to send arrival notification: %s", exc)
        return True

    def expected_arrival_time(self, journey: JourneyConfig, day: date) -> datetime:
        service = self._find_service(journey, day)
        if service is None:
            raise NotFound(f"no matching service for {journey.describe()}")

        detail = self._rtt.get_service(service.service_uid, day)
        stop = detail.stop(journey.destination)
        if stop is None:
            LOGGER.debug(
                "Destination %s not in service %s stops: %s",
                journey.destination,
                service.service_uid,
                [location.crs for location in detail.locations],
            )
            raise NotFound(f"destination {journey.destination} not found in service")

        arrival = stop.realtime_arrival or stop.gbtt_booked_arrival
        if not arrival:
            raise NotFound("no arrival time found for destination")
        return at_time_on(day, arrival, self._tz)


class LineMonitor:
    def __init__(
        self,
        tfl_client: TflClient,
        notifier: notify.Notifier,
        dedup: LineDedup | None = None,
    ) -> None:
        self._tfl = tfl_client
        self._notifier = notifier
        self.dedup = dedup or LineDedup()

    def reset_notification_state(self) -> None:
        self.dedup.reset()

    def _line_name(self, name: str) -> str:
        base = name or self._tfl.line.replace("-", " ").title()
        return f"{base} Line"

    def check_status(self) -> None:
        status = self._tfl.get_line_status()
        line_name = self._line_name(status.name)
        current = status.current
        if current is None:
            LOGGER.warning("No status information available for %s", line_name)
            return

        action = self.dedup.evaluate(current)
        LOGGER.info(
            "%s status: %s (severity=%d) %s",
            line_name,
            current.description,
            current.severity,
            current.reason,
        )
        if action is not LineAction.DISRUPTION:
            return

        reason = current.reason or DEFAULT_DISRUPTION_REASON
        LOGGER.warning("%s disruption detected: %s", line_name, current.description)
        notify.send_line_disruption(self._notifier, line_name, current.description, reason)

    def send_status_summary(self) -> None:
        status = self._tfl.get_line_status()
        line_name = self._line_name(status.name)
        current = status.current
        if current is None:
            notify.send_line_status(self._notifier, line_name, "Unknown", "Unable to retrieve status")
            return

        LOGGER.info("Sending %s status summary: %s", line_name, current.description)
        notify.send_line_status(self._notifier, line_name, current.description, current.reason)
