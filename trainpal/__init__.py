"""Commute delay, cancellation and line-disruption notifier."""

__version__ = "1.0.0"
