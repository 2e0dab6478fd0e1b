"""Timestamp helpers: millisecond-precision UTC datetimes and lax parsing."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pendulum

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def now_utc() -> datetime:
    """Return the current UTC datetime truncated to milliseconds."""
    return truncate_ms(datetime.now(UTC))


def truncate_ms(dt: datetime) -> datetime:
    """Drop sub-millisecond precision, attaching UTC to naive datetimes."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.replace(microsecond=dt.microsecond - dt.microsecond % 1000)


def to_epoch_ms(dt: datetime) -> int:
    """Convert a datetime to integer epoch milliseconds."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    delta = dt - _EPOCH
    return delta.days * 86_400_000 + delta.seconds * 1000 + delta.microseconds // 1000


def from_epoch_ms(value: int | float) -> datetime:
    """Convert epoch milliseconds to a UTC datetime.

    Raises ValueError when the value is outside the supported datetime range.
    """
    try:
        return _EPOCH + timedelta(milliseconds=int(value))
    except OverflowError as exc:
        raise ValueError(f"Timestamp out of range: {value!r}") from exc


def parse_datetime(value: str | int | datetime, default_tz: str = "UTC") -> datetime:
    """Parse a stored timestamp into a millisecond-precision UTC datetime.

    Accepts:
    - integers or numeric strings, taken as epoch milliseconds
    - ISO 8601 strings and the other lax formats pendulum understands
    - datetime objects (naive ones get ``default_tz``)

    Raises ValueError when the value cannot be parsed.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=pendulum.timezone(default_tz))  # type: ignore[arg-type]
        return truncate_ms(value.astimezone(UTC))

    if isinstance(value, int):
        return from_epoch_ms(value)

    value_str = value.strip()
    if value_str.lstrip("-").isdigit():
        return from_epoch_ms(int(value_str))

    try:
        parsed = pendulum.parse(value_str, tz=default_tz, strict=False)
    except ValueError as exc:
        raise ValueError(f"Unrecognized timestamp: {value_str!r}") from exc
    if not isinstance(parsed, pendulum.DateTime):
        # pendulum.parse returns Date for date-only strings
        parsed = pendulum.datetime(
            parsed.year, parsed.month, parsed.day, tz=default_tz  # type: ignore[union-attr]
        )
    return truncate_ms(parsed.astimezone(UTC))


def format_iso(dt: datetime) -> str:
    """Format datetime as ISO 8601 for display."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.isoformat(timespec="milliseconds")
