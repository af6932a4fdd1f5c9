"""TfL unified API client for a single line's service status."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import requests

from trainpal import __version__
from trainpal.errors import FetchError, NotFound

LOGGER = logging.getLogger(__name__)

TFL_BASE_URL = "https://api.tfl.gov.uk"
HTTP_TIMEOUT = 30.0

# statusSeverity codes from the TfL API. Lower is worse, except that 6
# ("Service Closed") is the normal overnight state.
STATUS_PLANNED_CLOSURE = 0
STATUS_PART_CLOSURE = 1
STATUS_SUSPENDED = 2
STATUS_PART_SUSPENDED = 3
STATUS_SEVERE_DELAYS = 4
STATUS_MINOR_DELAYS = 5
STATUS_SERVICE_CLOSED = 6
STATUS_SPECIAL_SERVICE = 9
STATUS_GOOD_SERVICE = 10


@dataclass(frozen=True)
class StatusDetail:
    severity: int
    description: str
    reason: str = ""

    @property
    def is_good_service(self) -> bool:
        return self.severity == STATUS_GOOD_SERVICE

    @property
    def has_disruption(self) -> bool:
        return self.severity < STATUS_GOOD_SERVICE and self.severity != STATUS_SERVICE_CLOSED

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "StatusDetail":
        try:
            severity = int(payload.get("statusSeverity", STATUS_GOOD_SERVICE))
        except (TypeError, ValueError):
            severity = STATUS_GOOD_SERVICE
        return cls(
            severity=severity,
            description=payload.get("statusSeverityDescription") or "",
            reason=payload.get("reason") or "",
        )


@dataclass
class LineStatus:
    line_id: str
    name: str
    statuses: list[StatusDetail] = field(default_factory=list)

    @property
    def current(self) -> StatusDetail | None:
        return self.statuses[0] if self.statuses else None

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "LineStatus":
        return cls(
            line_id=payload.get("id") or "",
            name=payload.get("name") or "",
            statuses=[StatusDetail.from_dict(item) for item in payload.get("lineStatuses") or []],
        )


class TflClient:
    def __init__(
        self,
        line: str = "northern",
        timeout: float = HTTP_TIMEOUT,
        base_url: str = TFL_BASE_URL,
        session: requests.Session | None = None,
    ) -> None:
        self.line = line
        self._timeout = timeout
        self._url = f"{base_url.rstrip('/')}/Line/{line}/Status"
        self._session = session or requests.Session()
        self._session.headers.update({"User-Agent": f"trainpal/{__version__}"})

    def get_line_status(self) -> LineStatus:
        LOGGER.debug("Requesting %s", self._url)
        try:
            response = self._session.get(self._url, timeout=self._timeout)
            response.raise_for_status()
            payload = response.json()
        except requests.RequestException as exc:
            raise FetchError(f"TfL request failed: {exc}") from exc
        except ValueError as exc:
            raise FetchError(f"TfL returned invalid JSON: {exc}") from exc

        if not isinstance(payload, list):
            raise FetchError(f"TfL returned {type(payload).__name__} instead of a list for {self.line}")
        if not payload:
            raise NotFound(f"No status returned for line {self.line}")
        return LineStatus.from_dict(payload[0])
