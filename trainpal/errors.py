"""Exception hierarchy shared by the scheduler, monitors and adapters."""
from __future__ import annotations


class TrainpalError(Exception):
    """Base class for all trainpal errors."""


class ConfigError(TrainpalError):
    """Missing credentials or an invalid schedule. Fatal before start-up."""


class FetchError(TrainpalError):
    """A status source could not be reached or returned garbage."""


class NotFound(FetchError):
    """The source answered but had nothing for the requested journey or stop."""


class DeliveryError(TrainpalError):
    """The notification sink rejected or failed to accept a message."""


class ParseError(TrainpalError, ValueError):
    """A time string was not in HHMM / HH:MM form."""
