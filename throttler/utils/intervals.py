"""Interval helpers."""

from __future__ import annotations

from datetime import timedelta

from throttler.errors import InvalidConfigurationError

UNIT_MS = {
    "second": 1000,
    "minute": 60 * 1000,
    "hour": 60 * 60 * 1000,
    "day": 24 * 60 * 60 * 1000,
}


def interval_to_ms(value: int | float | str | timedelta) -> int:
    """Normalize an interval to whole milliseconds.

    Accepts a millisecond count, a ``timedelta`` or one of the unit keywords
    ``second``, ``minute``, ``hour`` and ``day``.
    """
    if isinstance(value, str):
        try:
            return UNIT_MS[value]
        except KeyError:
            raise InvalidConfigurationError(f"{value!r} is not a valid interval unit") from None
    if isinstance(value, timedelta):
        ms = value.total_seconds() * 1000
    elif isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidConfigurationError(f"Unsupported interval {value!r}")
    else:
        ms = value
    if ms <= 0:
        raise InvalidConfigurationError(f"Interval must be positive, got {value!r}")
    return max(1, round(ms))
