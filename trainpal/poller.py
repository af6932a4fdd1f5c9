#!/usr/bin/env python3
"""Run the commute scheduler until interrupted.

Data flow:
  config.yaml -> daily tasks -> RTT / TfL checks -> dedup -> push notification
"""
from __future__ import annotations

import argparse
import logging
import os
import signal
import threading
from pathlib import Path

from dotenv import load_dotenv

from trainpal.config import Credentials, ScheduleConfig, load_config, load_credentials
from trainpal.errors import ConfigError
from trainpal.monitor import LineMonitor, TrainMonitor
from trainpal.notify import DiscordWebhookNotifier, LoggingNotifier, Notifier, PushoverNotifier
from trainpal.rtt import RttClient
from trainpal.scheduler import Scheduler
from trainpal.tfl import TflClient

LOGGER = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent.parent


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Watch a commute and push delay, cancellation and line disruption alerts."
    )
    parser.add_argument(
        "--config",
        default=os.getenv("TRAINPAL_CONFIG", "config.yaml"),
        help="Path to the schedule YAML file (default: TRAINPAL_CONFIG or config.yaml).",
    )
    parser.add_argument(
        "--http-timeout",
        type=float,
        default=30.0,
        help="Seconds to wait for each upstream request (default: 30).",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log notifications instead of sending them.",
    )
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "INFO"),
        help="Logging level (default: LOG_LEVEL or INFO).",
    )
    return parser.parse_args(argv)


def build_notifier(credentials: Credentials, timeout: float, dry_run: bool = False) -> Notifier:
    if dry_run:
        return LoggingNotifier()
    if credentials.pushover_token and credentials.pushover_user:
        return PushoverNotifier(credentials.pushover_token, credentials.pushover_user, timeout=timeout)
    if credentials.discord_webhook_url:
        return DiscordWebhookNotifier(
            credentials.discord_webhook_url,
            username=credentials.discord_username,
            avatar_url=credentials.discord_avatar_url,
            timeout=timeout,
        )
    raise ConfigError(
        "No notification sink configured. Set PUSHOVER_TOKEN and PUSHOVER_USER, "
        "or DISCORD_WEBHOOK_URL."
    )


def build_scheduler(
    schedule: ScheduleConfig,
    credentials: Credentials,
    notifier: Notifier,
    timeout: float,
) -> Scheduler:
    rtt_client = RttClient(credentials.rtt_username, credentials.rtt_password, timeout=timeout)
    tfl_client = TflClient(schedule.line, timeout=timeout)
    train_monitor = TrainMonitor(rtt_client, notifier, schedule.tz)
    line_monitor = LineMonitor(tfl_client, notifier)
    return Scheduler(schedule, train_monitor, line_monitor)


def main(argv: list[str] | None = None) -> None:
    load_dotenv(dotenv_path=PROJECT_ROOT / ".env")
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(message)s",
    )

    try:
        schedule = load_config(args.config)
        credentials = load_credentials()
        notifier = build_notifier(credentials, args.http_timeout, args.dry_run)
    except ConfigError as exc:
        raise SystemExit(f"Invalid configuration: {exc}") from exc

    scheduler = build_scheduler(schedule, credentials, notifier, args.http_timeout)

    cancel = threading.Event()

    def _handle_shutdown(signum, frame):
        LOGGER.info("Received signal %s; shutting down.", signum)
        cancel.set()

    signal.signal(signal.SIGTERM, _handle_shutdown)
    signal.signal(signal.SIGINT, _handle_shutdown)

    for label, journey in zip(("morning_train", "evening_train"), schedule.journeys):
        LOGGER.info("Watching %s: %s", label, journey.describe())
    LOGGER.info("Starting trainpal (line=%s, timezone=%s)", schedule.line, schedule.timezone)

    scheduler.start(cancel)
    try:
        # Short waits keep the main thread responsive to signals.
        while not cancel.wait(1.0):
            pass
    finally:
        scheduler.stop()
        LOGGER.info("trainpal stopped")


if __name__ == "__main__":
    main()
