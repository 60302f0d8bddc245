"""Time source abstraction.

Every governance timestamp is produced from an injected ``Clock``; nothing in this
package reads the wall clock directly except ``SystemClock``. Timestamps are UTC
ISO-8601 with millisecond precision (``2026-02-18T10:00:00.000Z``), which keeps them
lexically sortable.
"""
from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Protocol

from .errors import InvalidTimestampError

ISO_8601_PATTERN = re.compile(
    r"^(?P<date>\d{4}-\d{2}-\d{2})"
    r"(?:T(?P<time>\d{2}:\d{2}(?::\d{2}(?:\.\d{1,9})?)?)"
    r"(?P<tz>Z|[+-]\d{2}:\d{2})?)?$"
)


def parse_iso(value: str) -> datetime:
    """Parse a strict ISO-8601 date or date-time into an aware UTC datetime.

    Date-only values resolve to midnight UTC; date-times without an offset are read
    as UTC. Anything else (``17.02.2026``, ``Feb 18, 2026``) raises
    ``InvalidTimestampError``.
    """
    if not isinstance(value, str):
        raise InvalidTimestampError(f"Invalid ISO-8601 timestamp: {value!r}")
    raw = value.strip()
    m = ISO_8601_PATTERN.fullmatch(raw)
    if not m:
        raise InvalidTimestampError(f"Invalid ISO-8601 timestamp: {value}")

    text = m.group("date")
    if m.group("time"):
        clock_part = m.group("time")
        if "." in clock_part:
            # fromisoformat accepts at most microseconds
            head, frac = clock_part.split(".", 1)
            clock_part = f"{head}.{frac[:6].ljust(6, '0')}"
        text = f"{text}T{clock_part}{m.group('tz') or ''}"
    text = text.replace("Z", "+00:00")
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as exc:
        raise InvalidTimestampError(f"Invalid ISO-8601 timestamp: {value}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def is_iso_date_only(value: str) -> bool:
    m = ISO_8601_PATTERN.fullmatch(value.strip())
    return bool(m) and not m.group("time")


def format_iso(dt: datetime) -> str:
    utc = dt.astimezone(timezone.utc)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


def epoch_millis(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)


class Clock(Protocol):
    def now(self) -> datetime: ...

    def parse_iso(self, iso: str) -> datetime: ...


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def parse_iso(self, iso: str) -> datetime:
        return parse_iso(iso)


class FakeClock:
    """Settable, advanceable clock for deterministic tests."""

    def __init__(self, initial: datetime | str | None = None) -> None:
        if initial is None:
            initial = datetime.now(timezone.utc)
        self._current = self._coerce(initial)

    @staticmethod
    def _coerce(value: datetime | str) -> datetime:
        if isinstance(value, str):
            return parse_iso(value)
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def set(self, value: datetime | str) -> None:
        self._current = self._coerce(value)

    def advance(self, ms: int = 0, **delta: float) -> None:
        self._current = self._current + timedelta(milliseconds=ms, **delta)

    def now(self) -> datetime:
        return self._current

    def parse_iso(self, iso: str) -> datetime:
        return parse_iso(iso)


def now_iso(clock: Clock) -> str:
    return format_iso(clock.now())
