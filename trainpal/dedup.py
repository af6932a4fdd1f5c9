"""Per-entity notification memory.

Each monitored entity keeps an immutable state record. ``decide_journey`` and
``decide_line`` are pure: they take the previous record plus a fresh
observation and return what to send together with the next record. The
``JourneyDedup`` / ``LineDedup`` owners hold the current record behind a lock
so a read-decide-write is atomic per entity.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Mapping

from trainpal.tfl import StatusDetail

BUCKET_MINUTES = 5


class JourneyAction(str, Enum):
    NONE = "none"
    CANCELLATION = "cancellation"
    DELAY = "delay"
    ON_TIME = "on_time"


class LineAction(str, Enum):
    NONE = "none"
    DISRUPTION = "disruption"


@dataclass(frozen=True)
class JourneyObservation:
    service_id: str
    cancelled: bool
    delay_minutes: int


@dataclass(frozen=True)
class JourneyDedupState:
    notified_delay_buckets: Mapping[str, int] = field(default_factory=dict)
    notified_cancellations: frozenset[str] = frozenset()


@dataclass(frozen=True)
class LineDedupState:
    # None means nothing observed yet today; "" is an observed empty value.
    last_description: str | None = None
    last_reason: str | None = None

    @property
    def is_first_observation(self) -> bool:
        return self.last_description is None


def delay_bucket(delay_minutes: int) -> int:
    return max(delay_minutes, 0) // BUCKET_MINUTES * BUCKET_MINUTES


def decide_journey(
    state: JourneyDedupState,
    observation: JourneyObservation,
    always_notify: bool,
) -> tuple[JourneyAction, JourneyDedupState]:
    service_id = observation.service_id

    if observation.cancelled:
        if service_id in state.notified_cancellations:
            return JourneyAction.NONE, state
        latched = replace(
            state, notified_cancellations=state.notified_cancellations | {service_id}
        )
        return JourneyAction.CANCELLATION, latched

    delay = max(observation.delay_minutes, 0)
    if delay == 0:
        return (JourneyAction.ON_TIME if always_notify else JourneyAction.NONE), state

    if always_notify:
        return JourneyAction.DELAY, state

    bucket = delay_bucket(delay)
    if bucket <= state.notified_delay_buckets.get(service_id, 0):
        return JourneyAction.NONE, state

    buckets = dict(state.notified_delay_buckets)
    buckets[service_id] = bucket
    return JourneyAction.DELAY, replace(state, notified_delay_buckets=buckets)


def decide_line(
    state: LineDedupState, status: StatusDetail
) -> tuple[LineAction, LineDedupState]:
    new_state = LineDedupState(last_description=status.description, last_reason=status.reason)

    changed = (state.last_description, state.last_reason) != (status.description, status.reason)
    if not changed:
        return LineAction.NONE, new_state

    first = state.is_first_observation
    if first and status.is_good_service:
        return LineAction.NONE, new_state

    if status.has_disruption or not first:
        return LineAction.DISRUPTION, new_state
    return LineAction.NONE, new_state


class JourneyDedup:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._state = JourneyDedupState()

    @property
    def state(self) -> JourneyDedupState:
        with self._lock:
            return self._state

    def evaluate(self, observation: JourneyObservation, always_notify: bool) -> JourneyAction:
        with self._lock:
            action, self._state = decide_journey(self._state, observation, always_notify)
        return action

    def reset(self) -> None:
        with self._lock:
            self._state = JourneyDedupState()


class LineDedup:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._state = LineDedupState()

    @property
    def state(self) -> LineDedupState:
        with self._lock:
            return self._state

    def evaluate(self, status: StatusDetail) -> LineAction:
        with self._lock:
            action, self._state = decide_line(self._state, status)
        return action

    def reset(self) -> None:
        with self._lock:
            self._state = LineDedupState()
