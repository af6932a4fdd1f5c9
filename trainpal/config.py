"""Schedule descriptor and credential loading.

The schedule lives in a small YAML file::

    morning_train:
      from: HRN
      to: KGX
      departure: "0720"
      days: [monday, tuesday, wednesday, thursday, friday]
    evening_train:
      from: KGX
      to: HRN
      departure: "1745"
    line: northern
    timezone: Europe/London

Credentials never live in the YAML file; they are read from the environment
(optionally populated from ``.env`` by python-dotenv in the entry points).
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from trainpal.errors import ConfigError, ParseError
from trainpal.timeutil import at_time_on, parse_hhmm

DEFAULT_LINE = "northern"
DEFAULT_TIMEZONE = "Europe/London"

WEEKDAYS = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)


@dataclass(frozen=True)
class JourneyConfig:
    origin: str
    destination: str
    departure: str
    days: frozenset[str] = field(default_factory=frozenset)

    def departure_time(self, day: date, tz: ZoneInfo) -> datetime:
        return at_time_on(day, self.departure, tz)

    def is_active_on(self, day: date) -> bool:
        """True if ``day`` is an active weekday; an empty set means every day."""

        if not self.days:
            return True
        return WEEKDAYS[day.weekday()] in self.days

    def describe(self) -> str:
        return f"{self.origin} -> {self.destination} @ {self.departure}"


@dataclass(frozen=True)
class ScheduleConfig:
    journeys: tuple[JourneyConfig, ...]
    line: str = DEFAULT_LINE
    timezone: str = DEFAULT_TIMEZONE

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def validate(self) -> None:
        if not self.journeys:
            raise ConfigError("morning_train: from, to, and departure are required")
        if len(self.journeys) > 2:
            raise ConfigError("At most two journeys can be monitored")
        for label, journey in zip(("morning_train", "evening_train"), self.journeys):
            if not journey.origin or not journey.destination or not journey.departure:
                raise ConfigError(f"{label}: from, to, and departure are required")
            try:
                parse_hhmm(journey.departure)
            except ParseError as exc:
                raise ConfigError(f"{label}: invalid departure time {journey.departure!r}") from exc
            unknown = sorted(journey.days - set(WEEKDAYS))
            if unknown:
                raise ConfigError(f"{label}: unknown day(s) {', '.join(unknown)}")
        if not self.line:
            raise ConfigError("line must not be empty")
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ConfigError(f"Unknown timezone: {self.timezone!r}") from exc


@dataclass(frozen=True)
class Credentials:
    rtt_username: str
    rtt_password: str
    pushover_token: str | None = None
    pushover_user: str | None = None
    discord_webhook_url: str | None = None
    discord_username: str | None = None
    discord_avatar_url: str | None = None


def _parse_journey(raw: object, label: str) -> JourneyConfig:
    if not isinstance(raw, dict):
        raise ConfigError(f"{label}: expected a mapping")
    days = raw.get("days") or []
    if isinstance(days, str):
        days = [days]
    departure = raw.get("departure")
    # YAML 1.1 reads an unquoted 0720 as octal.
    if isinstance(departure, int) and not isinstance(departure, bool):
        raise ConfigError(f'{label}: departure must be quoted, e.g. "0720"')
    return JourneyConfig(
        origin=str(raw.get("from") or "").strip().upper(),
        destination=str(raw.get("to") or "").strip().upper(),
        departure=str(departure or "").strip(),
        days=frozenset(str(day).strip().lower() for day in days),
    )


def parse_config(raw: dict) -> ScheduleConfig:
    if not isinstance(raw, dict):
        raise ConfigError("Config file must contain a mapping")

    journeys = [_parse_journey(raw.get("morning_train"), "morning_train")]
    if raw.get("evening_train") is not None:
        journeys.append(_parse_journey(raw["evening_train"], "evening_train"))

    config = ScheduleConfig(
        journeys=tuple(journeys),
        line=str(raw.get("line") or DEFAULT_LINE).strip().lower(),
        timezone=str(raw.get("timezone") or DEFAULT_TIMEZONE).strip(),
    )
    config.validate()
    return config


def load_config(path: str | Path) -> ScheduleConfig:
    path = Path(path)
    try:
        with path.open("r", encoding="utf-8") as handle:
            raw = yaml.safe_load(handle) or {}
    except OSError as exc:
        raise ConfigError(f"reading config file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"parsing config file {path}: {exc}") from exc
    return parse_config(raw)


def load_credentials(
    environ: dict[str, str] | None = None, require_rtt: bool = True
) -> Credentials:
    env = os.environ if environ is None else environ

    rtt_username = env.get("RTT_USERNAME") or ""
    rtt_password = env.get("RTT_PASSWORD") or ""
    if require_rtt and (not rtt_username or not rtt_password):
        raise ConfigError("RTT_USERNAME and RTT_PASSWORD environment variables are required")

    credentials = Credentials(
        rtt_username=rtt_username,
        rtt_password=rtt_password,
        pushover_token=env.get("PUSHOVER_TOKEN") or None,
        pushover_user=env.get("PUSHOVER_USER") or None,
        discord_webhook_url=env.get("DISCORD_WEBHOOK_URL") or None,
        discord_username=env.get("DISCORD_USERNAME") or None,
        discord_avatar_url=env.get("DISCORD_AVATAR_URL") or None,
    )
    if bool(credentials.pushover_token) != bool(credentials.pushover_user):
        raise ConfigError("PUSHOVER_TOKEN and PUSHOVER_USER must be set together")
    return credentials
