#!/usr/bin/env python3
"""Utility to exercise the notification paths without running the scheduler."""
from __future__ import annotations

import argparse
import logging
import os
import sys

from dotenv import load_dotenv

from trainpal import notify
from trainpal.config import DEFAULT_LINE, load_credentials
from trainpal.errors import ConfigError, DeliveryError, FetchError
from trainpal.monitor import LineMonitor
from trainpal.poller import PROJECT_ROOT, build_notifier
from trainpal.tfl import TflClient

LOGGER = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=(
            "Send a test notification through the configured sink and/or the "
            "current line status summary."
        )
    )
    parser.add_argument(
        "--check-alert",
        action="store_true",
        help="Send a sample high-priority alert.",
    )
    parser.add_argument(
        "--check-line",
        action="store_true",
        help="Fetch the line status and send the summary notification.",
    )
    parser.add_argument(
        "--line",
        default=os.getenv("TRAINPAL_LINE", DEFAULT_LINE),
        help=f"TfL line id for --check-line (default: {DEFAULT_LINE}).",
    )
    parser.add_argument(
        "--http-timeout",
        type=float,
        default=30.0,
        help="Seconds to wait for each request (default: 30).",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log payloads instead of sending them.",
    )
    return parser.parse_args(argv)


def ensure_bool_flags(namespace: argparse.Namespace) -> None:
    if not namespace.check_alert and not namespace.check_line:
        raise SystemExit("Nothing to do. Use --check-alert and/or --check-line.")


def main(argv: list[str] | None = None) -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    load_dotenv(dotenv_path=PROJECT_ROOT / ".env")

    args = parse_args(argv)
    ensure_bool_flags(args)

    try:
        credentials = load_credentials(require_rtt=False)
        notifier = build_notifier(credentials, args.http_timeout, args.dry_run)
    except ConfigError as exc:
        raise SystemExit(f"Invalid configuration: {exc}") from exc

    failed = False
    if args.check_alert:
        try:
            notifier.deliver(
                "trainpal alert test",
                "This is a manual notification to validate the push configuration.",
                notify.PRIORITY_HIGH,
            )
        except DeliveryError as exc:
            LOGGER.error("Test alert failed: %s", exc)
            failed = True

    if args.check_line:
        monitor = LineMonitor(TflClient(args.line, timeout=args.http_timeout), notifier)
        try:
            monitor.send_status_summary()
        except (FetchError, DeliveryError) as exc:
            LOGGER.error("Line status summary failed: %s", exc)
            failed = True

    if failed:
        sys.exit(1)


if __name__ == "__main__":
    main()
