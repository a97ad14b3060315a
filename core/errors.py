"""Error taxonomy shared by the backtesting core and its collaborators."""

from __future__ import annotations


class StraddleError(Exception):
    """Base class for every error raised by the straddle backtester."""


class ValidationError(StraddleError, ValueError):
    """Malformed configuration or input record (e.g. non-positive pip value)."""


class InsufficientDataError(StraddleError):
    """Not enough candles or samples for a required window or period."""


class NoEventsError(ValidationError):
    """A backtest was requested without any eligible calendar event."""


class DataSourceError(StraddleError):
    """Failure surfaced from a collaborator (database, file system, feed)."""
