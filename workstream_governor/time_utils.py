"""Display-only time helpers. The source of truth stays UTC ISO-8601."""
from __future__ import annotations

from datetime import datetime
from zoneinfo import ZoneInfo

from .clock import Clock, SystemClock, parse_iso

BERLIN = ZoneInfo("Europe/Berlin")


def calculate_gap_minutes(last_seen_iso: str, now_iso: str) -> int:
    """Whole minutes elapsed between two ISO-8601 timestamps (floored)."""
    last_seen = parse_iso(last_seen_iso)
    now = parse_iso(now_iso)
    return int((now - last_seen).total_seconds() // 60)


def format_berlin(dt: datetime) -> str:
    return dt.astimezone(BERLIN).strftime("%d.%m.%Y, %H:%M:%S")


def format_berlin_date(iso: str, clock: Clock | None = None) -> str:
    parsed = (clock or SystemClock()).parse_iso(iso)
    return parsed.astimezone(BERLIN).strftime("%d.%m.%Y")


def format_berlin_datetime(iso: str, clock: Clock | None = None) -> str:
    parsed = (clock or SystemClock()).parse_iso(iso)
    return parsed.astimezone(BERLIN).strftime("%d.%m.%Y %H:%M")
