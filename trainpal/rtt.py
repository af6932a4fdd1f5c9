"""RealTimeTrains (api.rtt.io) client and payload types."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

import requests

from trainpal.errors import FetchError, NotFound

LOGGER = logging.getLogger(__name__)

RTT_BASE_URL = "https://api.rtt.io/api/v1"
HTTP_TIMEOUT = 30.0

CANCELLED_DISPLAY = {"CANCELLED_CALL", "CANCELLED"}


@dataclass
class LocationDetail:
    """Timing at the searched origin for one service."""

    gbtt_booked_arrival: str = ""
    gbtt_booked_departure: str = ""
    realtime_arrival: str = ""
    realtime_departure: str = ""
    realtime_arrival_actual: bool = False
    realtime_departure_actual: bool = False
    platform: str = ""
    display_as: str = ""
    cancel_reason_code: str = ""
    cancel_reason_short_text: str = ""

    @property
    def is_cancelled(self) -> bool:
        return self.display_as in CANCELLED_DISPLAY

    @classmethod
    def from_dict(cls, payload: dict[str, Any] | None) -> "LocationDetail":
        payload = payload or {}
        return cls(
            gbtt_booked_arrival=payload.get("gbttBookedArrival") or "",
            gbtt_booked_departure=payload.get("gbttBookedDeparture") or "",
            realtime_arrival=payload.get("realtimeArrival") or "",
            realtime_departure=payload.get("realtimeDeparture") or "",
            realtime_arrival_actual=bool(payload.get("realtimeArrivalActual")),
            realtime_departure_actual=bool(payload.get("realtimeDepartureActual")),
            platform=payload.get("platform") or "",
            display_as=payload.get("displayAs") or "",
            cancel_reason_code=payload.get("cancelReasonCode") or "",
            cancel_reason_short_text=payload.get("cancelReasonShortText") or "",
        )


@dataclass
class Service:
    service_uid: str
    run_date: str
    atoc_name: str
    location_detail: LocationDetail

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "Service":
        return cls(
            service_uid=payload.get("serviceUid") or "",
            run_date=payload.get("runDate") or "",
            atoc_name=payload.get("atocName") or "",
            location_detail=LocationDetail.from_dict(payload.get("locationDetail")),
        )


@dataclass
class SearchResult:
    services: list[Service] = field(default_factory=list)

    @classmethod
    def from_dict(cls, payload: dict[str, Any] | None) -> "SearchResult":
        # RTT returns "services": null when nothing runs in the window.
        raw_services = (payload or {}).get("services") or []
        return cls(services=[Service.from_dict(item) for item in raw_services])


@dataclass
class ServiceLocation:
    crs: str
    description: str
    gbtt_booked_arrival: str = ""
    realtime_arrival: str = ""
    realtime_arrival_actual: bool = False

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "ServiceLocation":
        return cls(
            crs=payload.get("crs") or "",
            description=payload.get("description") or "",
            gbtt_booked_arrival=payload.get("gbttBookedArrival") or "",
            realtime_arrival=payload.get("realtimeArrival") or "",
            realtime_arrival_actual=bool(payload.get("realtimeArrivalActual")),
        )


@dataclass
class ServiceDetail:
    service_uid: str
    run_date: str
    locations: list[ServiceLocation] = field(default_factory=list)

    def stop(self, crs: str) -> ServiceLocation | None:
        for location in self.locations:
            if location.crs == crs:
                return location
        return None

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "ServiceDetail":
        return cls(
            service_uid=payload.get("serviceUid") or "",
            run_date=payload.get("runDate") or "",
            locations=[ServiceLocation.from_dict(item) for item in payload.get("locations") or []],
        )


class RttClient:
    def __init__(
        self,
        username: str,
        password: str,
        timeout: float = HTTP_TIMEOUT,
        base_url: str = RTT_BASE_URL,
        session: requests.Session | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._session = session or requests.Session()
        self._session.auth = (username, password)
        self._session.headers.update({"Accept": "application/json"})

    def _get_json(self, url: str) -> dict[str, Any]:
        LOGGER.debug("Requesting %s", url)
        try:
            response = self._session.get(url, timeout=self._timeout)
            if response.status_code == 404:
                raise NotFound(f"RTT returned 404 for {url}")
            response.raise_for_status()
            payload = response.json()
        except requests.RequestException as exc:
            raise FetchError(f"RTT request failed: {exc}") from exc
        except ValueError as exc:
            raise FetchError(f"RTT returned invalid JSON: {exc}") from exc

        if not isinstance(payload, dict):
            raise FetchError(f"RTT returned {type(payload).__name__} instead of an object for {url}")
        return payload

    def search(self, origin: str, destination: str, when: datetime) -> SearchResult:
        """Services from ``origin`` to ``destination`` around ``when``."""

        url = (
            f"{self._base_url}/json/search/{origin}/to/{destination}/"
            f"{when:%Y/%m/%d}/{when:%H%M}"
        )
        return SearchResult.from_dict(self._get_json(url))

    def get_service(self, service_uid: str, run_date: date) -> ServiceDetail:
        url = f"{self._base_url}/json/service/{service_uid}/{run_date:%Y/%m/%d}"
        return ServiceDetail.from_dict(self._get_json(url))
