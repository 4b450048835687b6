"""Common time utilities."""

from __future__ import annotations

import datetime as dt

NOW_MARKER = "now"
EPOCH = dt.datetime(1970, 1, 1, tzinfo=dt.UTC)
_MILLISECOND = dt.timedelta(milliseconds=1)


def utcnow() -> dt.datetime:
    """Return an aware UTC timestamp."""
    return dt.datetime.now(dt.UTC)


def to_epoch_millis(value: dt.datetime) -> int:
    """Convert an aware datetime to milliseconds since the Unix epoch."""
    if value.tzinfo is None:
        msg = "datetime must be timezone-aware"
        raise ValueError(msg)
    return (value - EPOCH) // _MILLISECOND


def format_start_marker(value: str | int | dt.datetime) -> str:
    """Return the feed start marker for ``now``, epoch millis or a datetime.

    Raises
    ------
    ValueError
        If the value is negative, naive, or a string other than ``now`` or
        a decimal integer.

    """
    if isinstance(value, dt.datetime):
        return str(to_epoch_millis(value))
    if isinstance(value, bool):
        msg = f"start marker must be 'now' or epoch milliseconds, got: {value!r}"
        raise ValueError(msg)
    if isinstance(value, int):
        millis = value
    else:
        text = value.strip().lower()
        if text == NOW_MARKER:
            return NOW_MARKER
        if not text.isdigit():
            msg = f"start marker must be 'now' or epoch milliseconds, got: {value!r}"
            raise ValueError(msg)
        millis = int(text)
    if millis < 0:
        msg = f"start marker must not be negative, got: {millis}"
        raise ValueError(msg)
    return str(millis)
