from __future__ import annotations

from pathlib import Path

import pytest

from workstream_governor.clock import FakeClock
from workstream_governor.document_header import (
    DOCUMENT_NOT_FOUND,
    INVALID_CREATED,
    INVALID_CREATED_AT,
    INVALID_LAST_UPDATED,
    INVALID_LAYER,
    LAST_UPDATED_IN_FUTURE,
    MISSING_DOD,
    MISSING_LAST_UPDATED,
    MISSING_LAYER,
    MISSING_OWNER,
    MISSING_VERSION,
    REPORT_DATE_MISMATCH,
    TIMESTAMP_INTEGRITY_VIOLATION,
    DocumentHeaderValidator,
    parse_header,
)
from workstream_governor.timestamp_integrity import TimestampCorrectionMonitor


def _doc(last_updated: str = "**Last Updated:** 2026-02-13T09:58:00.000Z", layer: str = "Architecture") -> str:
    return (
        "# Plan\n"
        "\n"
        "**Version:** 1.0\n"
        "**Owner:** platform\n"
        f"**Layer:** {layer}\n"
        f"{last_updated}\n"
        "**Definition of Done:**\n"
        "- gates are green\n"
        "\n"
        "---\n"
        "Body text.\n"
    )


def _pair_doc(created: str, updated: str, newline: str = "\n") -> str:
    lines = [
        "# Bericht",
        "**Version:** 2",
        "**Owner:** ops",
        "**Layer:** governance",
        f"**Erstellt:** {created}",
        f"**Aktualisiert:** {updated}",
        "**Definition of Done:**",
        "Report filed.",
        "---",
    ]
    return newline.join(lines) + newline


def test_complete_header_passes(fake_clock: FakeClock) -> None:
    assert DocumentHeaderValidator(fake_clock, max_skew_minutes=5).validate_content(_doc()).ok


def test_empty_document_lists_every_missing_field(fake_clock: FakeClock) -> None:
    result = DocumentHeaderValidator(fake_clock, max_skew_minutes=5).validate_content("# Title\n")
    assert result.reasons == [MISSING_VERSION, MISSING_OWNER, MISSING_LAYER, MISSING_LAST_UPDATED, MISSING_DOD]


def test_layer_must_be_known(fake_clock: FakeClock) -> None:
    result = DocumentHeaderValidator(fake_clock, max_skew_minutes=5).validate_content(_doc(layer="Marketing"))
    assert result.reasons == [INVALID_LAYER]


def test_last_updated_format_and_future_skew(fake_clock: FakeClock) -> None:
    validator = DocumentHeaderValidator(fake_clock, max_skew_minutes=5)

    bad = validator.validate_content(_doc("**Last Updated:** 13.02.2026"))
    assert bad.reasons == [INVALID_LAST_UPDATED]

    future = validator.validate_content(_doc("**Last Updated:** 2026-02-13T10:06:00.000Z"))
    assert future.reasons == [LAST_UPDATED_IN_FUTURE]

    assert validator.validate_content(_doc("**Last Updated:** 2026-02-13T10:05:00.000Z")).ok


def test_skew_tolerance_comes_from_env(fake_clock: FakeClock, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LAST_UPDATED_MAX_SKEW_MIN", "10")
    validator = DocumentHeaderValidator(fake_clock)
    assert validator.max_skew_minutes == 10
    assert validator.validate_content(_doc("**Last Updated:** 2026-02-13T10:06:00.000Z")).ok


def test_created_updated_pair_satisfies_last_updated(fake_clock: FakeClock) -> None:
    validator = DocumentHeaderValidator(fake_clock, max_skew_minutes=5)
    assert validator.validate_content(_pair_doc("2026-02-10", "2026-02-12")).ok
    # only Last Updated is checked for future skew
    assert validator.validate_content(_pair_doc("2026-02-10", "2026-02-15")).ok


def test_pair_ordering_and_formats(fake_clock: FakeClock) -> None:
    validator = DocumentHeaderValidator(fake_clock, max_skew_minutes=5)
    assert validator.validate_content(_pair_doc("2026-02-10", "2026-02-09")).reasons == [
        TIMESTAMP_INTEGRITY_VIOLATION
    ]
    assert validator.validate_content(_pair_doc("10.02.2026", "2026-02-09")).reasons == [INVALID_CREATED]
    assert validator.validate_content(_pair_doc("2026-02-10", "gestern")).reasons == [INVALID_LAST_UPDATED]


def test_definition_of_done_stops_at_next_field(fake_clock: FakeClock) -> None:
    content = _doc().replace("**Definition of Done:**\n- gates are green\n", "**Definition of Done:**\n**Status:** open\n")
    assert DocumentHeaderValidator(fake_clock, max_skew_minutes=5).validate_content(content).reasons == [MISSING_DOD]


def test_only_the_first_thirty_lines_are_read() -> None:
    content = "\n" * 30 + "**Version:** 9\n"
    assert parse_header(content).version is None
    assert parse_header("**Owner:** a\n**Owner:** b\n").owner == "a"


def test_validate_document_missing_file(tmp_path: Path, fake_clock: FakeClock) -> None:
    result = DocumentHeaderValidator(fake_clock, max_skew_minutes=5).validate_document(tmp_path / "nope.md")
    assert result.reasons == [DOCUMENT_NOT_FOUND]


def test_validate_document_reads_file(tmp_path: Path, fake_clock: FakeClock) -> None:
    path = tmp_path / "plan.md"
    path.write_text(_doc(), encoding="utf-8")
    assert DocumentHeaderValidator(fake_clock, max_skew_minutes=5).validate_document(path).ok


def test_self_heal_moves_updated_forward_and_is_idempotent(fake_clock: FakeClock) -> None:
    monitor = TimestampCorrectionMonitor(fake_clock)
    validator = DocumentHeaderValidator(fake_clock, max_skew_minutes=5, monitor=monitor)

    healed = validator.self_heal_timestamp_integrity(_pair_doc("2026-02-10", "2026-02-09"), entity="bericht.md")

    assert healed.healed
    assert "**Aktualisiert:** 2026-02-13\n" in healed.content
    assert "**Erstellt:** 2026-02-10\n" in healed.content
    assert validator.validate_content(healed.content).ok

    again = validator.self_heal_timestamp_integrity(healed.content)
    assert not again.healed
    assert again.content == healed.content

    [event] = monitor.events
    assert (event.entity, event.source_layer, event.corrected_updated_at) == ("bericht.md", "governance", "2026-02-13")


def test_self_heal_never_goes_before_created(fake_clock: FakeClock) -> None:
    validator = DocumentHeaderValidator(fake_clock, max_skew_minutes=5)
    healed = validator.self_heal_timestamp_integrity(_pair_doc("2026-03-01T12:00:00.000Z", "2026-02-01"))

    assert "**Aktualisiert:** 2026-03-01T12:00:00.000Z\n" in healed.content
    assert not validator.self_heal_timestamp_integrity(healed.content).healed


def test_self_heal_keeps_line_endings_and_later_lines(fake_clock: FakeClock) -> None:
    content = _pair_doc("2026-02-10", "2026-02-09", newline="\r\n") + "**Aktualisiert:** 2026-01-01\r\n"
    healed = DocumentHeaderValidator(fake_clock, max_skew_minutes=5).self_heal_timestamp_integrity(content)

    assert "**Aktualisiert:** 2026-02-13\r\n" in healed.content
    assert healed.content.endswith("**Aktualisiert:** 2026-01-01\r\n")


def test_self_heal_rewrites_the_parsed_line_despite_unicode_separators(fake_clock: FakeClock) -> None:
    title = "# Bericht" + "\u2028\x0c" * 20
    content = _pair_doc("2026-02-10", "2026-02-09").replace("# Bericht", title)
    healed = DocumentHeaderValidator(fake_clock, max_skew_minutes=5).self_heal_timestamp_integrity(content)

    assert healed.healed
    assert "**Aktualisiert:** 2026-02-13\n" in healed.content
    assert healed.content.startswith(title + "\n")
    assert parse_header(healed.content).updated == "2026-02-13"


def test_self_heal_reports_nothing_when_no_line_was_rewritten(fake_clock: FakeClock) -> None:
    monitor = TimestampCorrectionMonitor(fake_clock)
    validator = DocumentHeaderValidator(fake_clock, max_skew_minutes=5, monitor=monitor)
    content = _pair_doc("2026-02-10", "2026-02-09").replace("**Aktualisiert:** ", "**Aktualisiert:**\u00a0")

    result = validator.self_heal_timestamp_integrity(content)

    assert not result.healed
    assert result.content == content
    assert monitor.events == []


def test_self_heal_ignores_ordered_or_unparseable_pairs(fake_clock: FakeClock) -> None:
    validator = DocumentHeaderValidator(fake_clock, max_skew_minutes=5)
    assert not validator.self_heal_timestamp_integrity(_pair_doc("2026-02-10", "2026-02-11")).healed
    assert not validator.self_heal_timestamp_integrity(_pair_doc("10.02.2026", "2026-02-09")).healed
    assert not validator.self_heal_timestamp_integrity(_doc()).healed


def test_report_freshness_uses_berlin_calendar_day() -> None:
    validator = DocumentHeaderValidator(FakeClock("2026-02-13T23:30:00.000Z"), max_skew_minutes=5)

    assert validator.validate_report_freshness("2026-02-13T23:10:00.000Z", True) is None
    assert validator.validate_report_freshness("2026-02-13T22:45:00.000Z", True) == REPORT_DATE_MISMATCH
    assert validator.validate_report_freshness("2026-02-01T00:00:00.000Z", False) is None
    assert validator.validate_report_freshness("13.02.2026", True) == INVALID_CREATED_AT
