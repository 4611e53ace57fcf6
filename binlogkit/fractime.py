"""Formatting of temporal values read from row events."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone, tzinfo


@dataclass(frozen=True)
class FracTime:
    """A point in time with a fixed number of fractional-second digits."""

    time: datetime
    dec: int = 0
    timestamp_string_location: tzinfo | None = None

    def __post_init__(self) -> None:
        if not 0 <= self.dec <= 6:
            raise ValueError(f"fractional digits must be in [0, 6], got {self.dec}")

    def __str__(self) -> str:
        t = self.time
        if self.timestamp_string_location is not None:
            t = t.astimezone(self.timestamp_string_location)
        text = (
            f"{t.year:04d}-{t.month:02d}-{t.day:02d} "
            f"{t.hour:02d}:{t.minute:02d}:{t.second:02d}"
        )
        if self.dec:
            text += "." + f"{t.microsecond:06d}"[: self.dec]
        return text


def format_zero_time(frac: int, dec: int) -> str:
    """Format the all-zero datetime with ``dec`` fractional digits."""
    if dec == 0:
        return "0000-00-00 00:00:00"
    text = f"0000-00-00 00:00:00.{frac:06d}"
    return text[: len(text) - (6 - dec)]


def format_before_unix_zero_time(
    year: int,
    month: int,
    day: int,
    hour: int,
    minute: int,
    second: int,
    frac: int,
    dec: int,
) -> str:
    """Format a datetime that cannot be represented as a Unix time."""
    text = f"{year:04d}-{month:02d}-{day:02d} {hour:02d}:{minute:02d}:{second:02d}"
    if dec == 0:
        return text
    text = f"{text}.{frac:06d}"
    return text[: len(text) - (6 - dec)]


def micro_sec_timestamp_to_time(ts: int) -> datetime | None:
    """Convert microseconds since the epoch to local time; ``None`` for zero."""
    if ts == 0:
        return None
    seconds, micros = divmod(ts, 1_000_000)
    moment = datetime.fromtimestamp(seconds, timezone.utc) + timedelta(microseconds=micros)
    return moment.astimezone()