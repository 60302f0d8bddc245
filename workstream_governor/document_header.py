"""Header checks for governance Markdown documents.

A header is the first 30 lines of a document, with fields written as
``**Field:** value``. Recognized fields: Version, Owner, Layer, Last Updated (or the
Erstellt/Aktualisiert pair) and a Definition of Done section.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

from .clock import Clock, SystemClock, format_iso, is_iso_date_only
from .config import max_skew_from_env
from .errors import InvalidTimestampError
from .models import VALID_LAYERS, ValidationResult
from .time_utils import BERLIN
from .timestamp_integrity import TimestampCorrectionEvent, TimestampCorrectionMonitor
from .util import log_event, setup_json_logger

_LOG = setup_json_logger("workstream_governor.document_header")

HEADER_LINES = 30

MISSING_VERSION = "missing_header_version"
MISSING_OWNER = "missing_owner"
MISSING_LAYER = "missing_layer_tag"
MISSING_LAST_UPDATED = "missing_last_updated"
MISSING_DOD = "missing_dod"
INVALID_LAYER = "invalid_layer_tag"
INVALID_LAST_UPDATED = "invalid_last_updated_format"
LAST_UPDATED_IN_FUTURE = "last_updated_in_future"
INVALID_CREATED = "invalid_created_format"
TIMESTAMP_INTEGRITY_VIOLATION = "timestamp_integrity_violation"
DOCUMENT_NOT_FOUND = "document_not_found"
REPORT_DATE_MISMATCH = "report_date_mismatch"
INVALID_CREATED_AT = "invalid_created_at_format"


def _field(name: str) -> re.Pattern[str]:
    return re.compile(r"\*\*" + re.escape(name) + r":\*\*\s*(.+)")


_FIELDS = {
    "version": _field("Version"),
    "owner": _field("Owner"),
    "layer": _field("Layer"),
    "last_updated": _field("Last Updated"),
    "created": _field("Erstellt"),
    "updated": _field("Aktualisiert"),
}
_DOD_MARKER = "**Definition of Done:**"
_ANY_FIELD = re.compile(r"\*\*.*:\*\*")
_UPDATED_LINE = re.compile(r"(\*\*Aktualisiert:\*\*[ \t]*)(\S[^\r\n]*?)([ \t]*)(\r?\n?)$")


@dataclass(frozen=True)
class DocumentHeader:
    version: str | None = None
    owner: str | None = None
    layer: str | None = None
    last_updated: str | None = None
    created: str | None = None
    updated: str | None = None
    definition_of_done: str | None = None


@dataclass(frozen=True)
class HealResult:
    healed: bool
    content: str


def parse_header(content: str) -> DocumentHeader:
    lines = content.split("\n")[:HEADER_LINES]
    values: dict[str, str] = {}
    for index, line in enumerate(lines):
        for key, pattern in _FIELDS.items():
            m = pattern.search(line)
            if m:
                values.setdefault(key, m.group(1).strip())
        if _DOD_MARKER in line:
            section: list[str] = []
            for following in lines[index + 1 :]:
                if _ANY_FIELD.search(following) or following.startswith("---"):
                    break
                section.append(following)
            values["definition_of_done"] = "\n".join(section).strip()
    return DocumentHeader(**values)


def _blank(value: str | None) -> bool:
    return value is None or not value.strip()


class DocumentHeaderValidator:
    def __init__(
        self,
        clock: Clock | None = None,
        max_skew_minutes: int | None = None,
        monitor: TimestampCorrectionMonitor | None = None,
    ) -> None:
        self.clock = clock or SystemClock()
        self.max_skew_minutes = max_skew_from_env() if max_skew_minutes is None else max_skew_minutes
        self.monitor = monitor

    def validate_document(self, path: Path) -> ValidationResult:
        if not path.exists():
            return ValidationResult.blocked([DOCUMENT_NOT_FOUND])
        return self.validate_content(path.read_text(encoding="utf-8"))

    def validate_content(self, content: str) -> ValidationResult:
        header = parse_header(content)
        reasons: list[str] = []

        if _blank(header.version):
            reasons.append(MISSING_VERSION)
        if _blank(header.owner):
            reasons.append(MISSING_OWNER)
        if _blank(header.layer):
            reasons.append(MISSING_LAYER)
        if _blank(header.last_updated) and _blank(header.updated):
            reasons.append(MISSING_LAST_UPDATED)
        if _blank(header.definition_of_done):
            reasons.append(MISSING_DOD)

        if not _blank(header.layer) and header.layer.lower() not in VALID_LAYERS:
            reasons.append(INVALID_LAYER)

        if not _blank(header.last_updated):
            problem = self._check_last_updated(header.last_updated)
            if problem:
                reasons.append(problem)

        for reason in self._check_pair(header):
            if reason not in reasons:
                reasons.append(reason)

        return ValidationResult.from_reasons(reasons)

    def _check_last_updated(self, value: str) -> str | None:
        try:
            stamp = self.clock.parse_iso(value)
        except InvalidTimestampError:
            return INVALID_LAST_UPDATED
        ahead_minutes = int((stamp - self.clock.now()).total_seconds() // 60)
        if ahead_minutes > self.max_skew_minutes:
            return LAST_UPDATED_IN_FUTURE
        return None

    def _check_pair(self, header: DocumentHeader) -> list[str]:
        reasons: list[str] = []
        created = updated = None
        if not _blank(header.created):
            try:
                created = self.clock.parse_iso(header.created)
            except InvalidTimestampError:
                reasons.append(INVALID_CREATED)
        if not _blank(header.updated):
            try:
                updated = self.clock.parse_iso(header.updated)
            except InvalidTimestampError:
                reasons.append(INVALID_LAST_UPDATED)
        if created is not None and updated is not None and updated < created:
            reasons.append(TIMESTAMP_INTEGRITY_VIOLATION)
        return reasons

    def validate_report_freshness(self, created_at: str, requires_fresh_date: bool) -> str | None:
        """Compare a report's creation day with today, both in Europe/Berlin."""
        if not requires_fresh_date:
            return None
        try:
            created = self.clock.parse_iso(created_at)
        except InvalidTimestampError:
            return INVALID_CREATED_AT
        if created.astimezone(BERLIN).date() != self.clock.now().astimezone(BERLIN).date():
            return REPORT_DATE_MISMATCH
        return None

    def self_heal_timestamp_integrity(self, content: str, *, entity: str = "document") -> HealResult:
        """Move an out-of-order Aktualisiert forward to the current time.

        The new value is never earlier than Erstellt and keeps the date-only form
        when the original was date-only, so a second run is a no-op.
        """
        header = parse_header(content)
        if _blank(header.created) or _blank(header.updated):
            return HealResult(healed=False, content=content)
        try:
            created = self.clock.parse_iso(header.created)
            updated = self.clock.parse_iso(header.updated)
        except InvalidTimestampError:
            return HealResult(healed=False, content=content)
        if updated >= created:
            return HealResult(healed=False, content=content)

        target = max(self.clock.now(), created)
        replacement = format_iso(target)
        if is_iso_date_only(header.updated) and self.clock.parse_iso(target.date().isoformat()) >= created:
            replacement = target.date().isoformat()

        # split like parse_header
        lines = content.split("\n")
        rewritten = False
        for index, line in enumerate(lines[:HEADER_LINES]):
            if not _FIELDS["updated"].search(line):
                continue
            m = _UPDATED_LINE.search(line)
            if m:
                lines[index] = line[: m.start(2)] + replacement + line[m.end(2) :]
                rewritten = True
            break
        if not rewritten:
            return HealResult(healed=False, content=content)
        healed = "\n".join(lines)

        event = TimestampCorrectionEvent(
            entity=entity,
            previous_created_at=header.created,
            previous_updated_at=header.updated,
            corrected_updated_at=replacement,
            source_layer=(header.layer or "unknown").lower(),
            timestamp=format_iso(self.clock.now()),
        )
        if self.monitor is not None:
            self.monitor.record(event)
        log_event(
            _LOG,
            "document.timestamp.healed",
            entity=entity,
            previous_updated_at=header.updated,
            corrected_updated_at=replacement,
        )
        return HealResult(healed=True, content=healed)
