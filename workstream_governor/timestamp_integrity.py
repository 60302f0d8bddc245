"""Created/updated ordering checks and the correction monitor.

Invariant: ``updated_at >= created_at``. A violating pair is corrected by moving
``updated_at`` forward, never by touching ``created_at``. Corrections are recorded
on an explicitly owned ``TimestampCorrectionMonitor``; there is no module-level
registry.
"""
from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any

from .clock import Clock, SystemClock, format_iso, parse_iso
from .errors import InvalidTimestampError
from .util import log_event, setup_json_logger

_LOG = setup_json_logger("workstream_governor.timestamp_integrity")

DEFAULT_FUTURE_SKEW_MINUTES = 5
DEFAULT_CORRECTION_RATE_THRESHOLD = 10.0


@dataclass(frozen=True)
class TimestampPair:
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class TimestampIntegrityResult:
    valid: bool
    corrected: TimestampPair | None = None
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class TimestampCorrectionEvent:
    entity: str
    previous_created_at: str
    previous_updated_at: str
    corrected_updated_at: str
    source_layer: str
    timestamp: str

    def as_dict(self) -> dict[str, Any]:
        return {
            "entity": self.entity,
            "previous_createdAt": self.previous_created_at,
            "previous_updatedAt": self.previous_updated_at,
            "corrected_updatedAt": self.corrected_updated_at,
            "source_layer": self.source_layer,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class CorrectionMetrics:
    total_corrections: int
    corrections_by_layer: dict[str, int]
    corrections_by_entity: dict[str, int]
    last_correction: TimestampCorrectionEvent | None
    correction_rate: float


class TimestampCorrectionMonitor:
    """Bounded in-memory record of timestamp corrections."""

    def __init__(self, clock: Clock | None = None, *, max_history: int = 10_000) -> None:
        self.clock = clock or SystemClock()
        self.max_history = max_history
        self._events: list[TimestampCorrectionEvent] = []

    def record(self, event: TimestampCorrectionEvent) -> None:
        self._events.append(event)
        if len(self._events) > self.max_history:
            self._events = self._events[-self.max_history :]
        log_event(
            _LOG,
            "timestamp.correction.recorded",
            entity=event.entity,
            source_layer=event.source_layer,
            corrected_updated_at=event.corrected_updated_at,
        )

    @property
    def events(self) -> list[TimestampCorrectionEvent]:
        return list(self._events)

    def metrics(self, start: str | None = None, end: str | None = None) -> CorrectionMetrics:
        events = self._events
        if start or end:
            lo = parse_iso(start) if start else None
            hi = parse_iso(end) if end else self.clock.now()
            events = [
                e
                for e in events
                if (lo is None or parse_iso(e.timestamp) >= lo) and parse_iso(e.timestamp) <= hi
            ]

        rate = 0.0
        if start and end:
            hours = (parse_iso(end) - parse_iso(start)).total_seconds() / 3600
            if hours > 0:
                rate = len(events) / hours

        return CorrectionMetrics(
            total_corrections=len(events),
            corrections_by_layer=dict(Counter(e.source_layer for e in events)),
            corrections_by_entity=dict(Counter(e.entity for e in events)),
            last_correction=events[-1] if events else None,
            correction_rate=rate,
        )

    def exceeds_threshold(
        self,
        threshold: float = DEFAULT_CORRECTION_RATE_THRESHOLD,
        start: str | None = None,
        end: str | None = None,
    ) -> bool:
        return self.metrics(start, end).correction_rate > threshold

    def reset(self) -> None:
        self._events = []


def validate_timestamp_integrity(
    created_at: str,
    updated_at: str,
    clock: Clock | None = None,
    *,
    entity: str | None = None,
    source_layer: str | None = None,
    monitor: TimestampCorrectionMonitor | None = None,
    max_skew_minutes: int = DEFAULT_FUTURE_SKEW_MINUTES,
) -> TimestampIntegrityResult:
    """Check ``updated_at >= created_at`` and propose a correction when violated.

    The proposed correction sets ``updated_at`` to ``created_at``. A correction
    event is recorded only when a monitor, entity and source layer are all given.
    Without a clock the future-skew warning is skipped.
    """
    try:
        created = parse_iso(created_at)
    except InvalidTimestampError:
        return TimestampIntegrityResult(valid=False, errors=[f"Invalid createdAt format: {created_at}"])
    try:
        updated = parse_iso(updated_at)
    except InvalidTimestampError:
        return TimestampIntegrityResult(valid=False, errors=[f"Invalid updatedAt format: {updated_at}"])

    if updated < created:
        corrected = TimestampPair(created_at=created_at, updated_at=created_at)
        if monitor is not None and entity and source_layer:
            monitor.record(
                TimestampCorrectionEvent(
                    entity=entity,
                    previous_created_at=created_at,
                    previous_updated_at=updated_at,
                    corrected_updated_at=corrected.updated_at,
                    source_layer=source_layer,
                    timestamp=format_iso((clock or monitor.clock).now()),
                )
            )
        return TimestampIntegrityResult(
            valid=False,
            corrected=corrected,
            warnings=["Self-healed: updatedAt set to createdAt"],
            errors=[
                f"Timestamp integrity violation: updatedAt ({updated_at}) is before createdAt ({created_at})"
            ],
        )

    warnings: list[str] = []
    if clock is not None:
        future_minutes = int((updated - clock.now()).total_seconds() // 60)
        if future_minutes > max_skew_minutes:
            warnings.append(
                f"updatedAt is {future_minutes} minutes in the future "
                f"(beyond {max_skew_minutes} min skew tolerance)"
            )
    return TimestampIntegrityResult(valid=True, warnings=warnings)


def enforce_timestamp_integrity(created_at: str, updated_at: str) -> TimestampPair:
    result = validate_timestamp_integrity(created_at, updated_at)
    if result.corrected is not None:
        return result.corrected
    return TimestampPair(created_at=created_at, updated_at=updated_at)


def generate_creation_timestamps(clock: Clock) -> TimestampPair:
    now = format_iso(clock.now())
    return TimestampPair(created_at=now, updated_at=now)


def generate_update_timestamps(original_created_at: str, clock: Clock) -> TimestampPair:
    return TimestampPair(created_at=original_created_at, updated_at=format_iso(clock.now()))
