"""Push notification sinks and the message wording.

``Notifier`` implementations only need ``deliver(title, body, priority)``;
the ``send_*`` helpers build the actual alert text on top of it so every
sink says the same thing.
"""
from __future__ import annotations

import logging
from typing import Protocol

import requests

from trainpal.errors import DeliveryError

LOGGER = logging.getLogger(__name__)

PRIORITY_NORMAL = 0
PRIORITY_HIGH = 1

PUSHOVER_URL = "https://api.pushover.net/1/messages.json"
HTTP_TIMEOUT = 30.0


class Notifier(Protocol):
    def deliver(self, title: str, body: str, priority: int = PRIORITY_NORMAL) -> None:
        ...


class PushoverNotifier:
    def __init__(
        self,
        token: str,
        user: str,
        timeout: float = HTTP_TIMEOUT,
        url: str = PUSHOVER_URL,
    ) -> None:
        self._token = token
        self._user = user
        self._timeout = timeout
        self._url = url

    def deliver(self, title: str, body: str, priority: int = PRIORITY_NORMAL) -> None:
        payload = {
            "token": self._token,
            "user": self._user,
            "title": title,
            "message": body,
            "priority": priority,
        }
        try:
            response = requests.post(self._url, data=payload, timeout=self._timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise DeliveryError(f"sending pushover notification: {exc}") from exc

        LOGGER.debug("Notification sent: %s (status=%s)", title, response.status_code)


class DiscordWebhookNotifier:
    def __init__(
        self,
        webhook_url: str,
        username: str | None = None,
        avatar_url: str | None = None,
        timeout: float = HTTP_TIMEOUT,
    ) -> None:
        self._webhook_url = webhook_url
        self._username = username
        self._avatar_url = avatar_url
        self._timeout = timeout

    def deliver(self, title: str, body: str, priority: int = PRIORITY_NORMAL) -> None:
        marker = ":warning: " if priority >= PRIORITY_HIGH else ""
        payload: dict[str, object] = {"content": f"{marker}**{title}**\n{body}"}
        if self._username:
            payload["username"] = self._username
        if self._avatar_url:
            payload["avatar_url"] = self._avatar_url

        try:
            response = requests.post(self._webhook_url, json=payload, timeout=self._timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise DeliveryError(f"posting Discord webhook: {exc}") from exc
        LOGGER.debug("Posted Discord webhook: %s", title)


class LoggingNotifier:
    """Dry-run sink: logs the payload instead of sending it."""

    def deliver(self, title: str, body: str, priority: int = PRIORITY_NORMAL) -> None:
        LOGGER.info("[DRY-RUN] priority=%d %s: %s", priority, title, body.replace("\n", " | "))


def send_train_delay(
    notifier: Notifier,
    train_id: str,
    origin: str,
    destination: str,
    delay_minutes: int,
    expected: str,
    platform: str,
) -> None:
    body = (
        f"Train {train_id} from {origin} to {destination} is delayed by {delay_minutes} minutes.\n"
        f"Expected: {expected}, Platform: {platform}"
    )
    notifier.deliver("Train Delay Alert", body, PRIORITY_HIGH)


def send_train_on_time(
    notifier: Notifier,
    train_id: str,
    origin: str,
    destination: str,
    departure: str,
    platform: str,
) -> None:
    body = (
        f"Train {train_id} from {origin} to {destination} is running on time.\n"
        f"Departure: {departure}, Platform: {platform}"
    )
    notifier.deliver("Train Status", body, PRIORITY_NORMAL)


def send_train_cancellation(
    notifier: Notifier, train_id: str, origin: str, destination: str, reason: str
) -> None:
    body = (
        f"Train {train_id} from {origin} to {destination} has been CANCELLED.\n"
        f"Reason: {reason}"
    )
    notifier.deliver("Train Cancellation Alert", body, PRIORITY_HIGH)


def send_train_arrival(notifier: Notifier, train_id: str, station: str, arrival: str) -> None:
    body = f"Train {train_id} has arrived at {station} at {arrival}"
    notifier.deliver("Train Arrival", body, PRIORITY_NORMAL)


def send_line_disruption(notifier: Notifier, line_name: str, status: str, reason: str) -> None:
    notifier.deliver("Tube Disruption Alert", f"{line_name}: {status}\n{reason}", PRIORITY_HIGH)


def send_line_status(notifier: Notifier, line_name: str, status: str, reason: str) -> None:
    body = f"{status}\n{reason}" if reason else status
    notifier.deliver(f"{line_name} Status", body, PRIORITY_NORMAL)
