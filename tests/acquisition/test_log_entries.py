"""Tests for harvest log entries."""

from harvester.acquisition.log_entries import (
    LogEntry,
    LogLevel,
    LogType,
    missing_font_error,
    parse_log_entries,
    previously_missing_fonts,
)


def test_entry_string_form():
    assert str(missing_font_error("Andika")) == "Error MissingFont: Andika"
    assert str(LogEntry(LogLevel.WARN, LogType.MISSING_BASE_URL)) == "Warn MissingBaseUrl: "


def test_parse_entry():
    entry = LogEntry.parse("Error TimeoutError: Renderer terminated after 300 seconds.")

    assert entry == LogEntry(LogLevel.ERROR, LogType.TIMEOUT_ERROR, "Renderer terminated after 300 seconds.")


def test_parse_entry_without_message():
    assert LogEntry.parse("Warn MissingBaseUrl:") == LogEntry(LogLevel.WARN, LogType.MISSING_BASE_URL, "")


def test_parse_message_with_colons_and_newlines():
    entry = LogEntry.parse("Error ProcessingError: KeyError: 'x'\nmore")

    assert entry.message == "KeyError: 'x'\nmore"


def test_unrecognized_entries_are_ignored():
    raw = [
        "Error MissingFont: Andika",
        "Error SomeFutureType: whatever",
        "Critical MissingFont: Charis",
        "garbage",
        "",
        None,
    ]

    assert parse_log_entries(raw) == [missing_font_error("Andika")]


def test_previously_missing_fonts():
    raw = [
        str(LogEntry(LogLevel.WARN, LogType.MISSING_BASE_URL)),
        str(missing_font_error("Andika")),
        str(missing_font_error("Charis SIL")),
    ]

    assert previously_missing_fonts(raw) == ["Andika", "Charis SIL"]
    assert previously_missing_fonts(None) == []
