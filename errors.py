"""
Exceptions shared by the forecast comparison and built-up statistics tools.

A missing forecast record is not an error: sources return ``None`` for it.
"""


class ForecastToolsError(Exception):
    """Base class for all errors raised by this project."""


class InvalidRangeError(ForecastToolsError, ValueError):
    """End date precedes start date."""


class MissingConfigError(ForecastToolsError, ValueError):
    """A required configuration value or request input is absent or malformed."""


class FetchTransientError(ForecastToolsError, RuntimeError):
    """The forecast service was unreachable or returned a malformed response."""
