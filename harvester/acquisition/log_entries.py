"""Diagnostic records stored in a book's harvest log.

Each entry is persisted as a compact string of the form ``"<Level> <Type>: <message>"``,
for example ``"Error MissingFont: Andika"``. Entries whose level or type is not
recognized (e.g. written by a newer harvester) are ignored when parsed.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional


class LogLevel(Enum):
    ERROR = "Error"
    WARN = "Warn"
    INFO = "Info"


class LogType(Enum):
    MISSING_FONT = "MissingFont"
    MISSING_BASE_URL = "MissingBaseUrl"
    RENDER_ERROR = "RenderError"
    TIMEOUT_ERROR = "TimeoutError"
    PROCESSING_ERROR = "ProcessingError"
    FONT_PROBE_ERROR = "FontProbeError"


_ENTRY_PATTERN = re.compile(r"^(?P<level>\w+) (?P<type>\w+):(?: (?P<message>.*))?$", re.DOTALL)


@dataclass(frozen=True)
class LogEntry:
    """One harvest log record."""

    level: LogLevel
    type: LogType
    message: str = ""

    def __str__(self) -> str:
        return self.to_string()

    def to_string(self) -> str:
        return f"{self.level.value} {self.type.value}: {self.message}"

    @classmethod
    def parse(cls, text: Optional[str]) -> Optional["LogEntry"]:
        """Parse a persisted entry, returning None if it is not recognized."""
        if not text:
            return None

        match = _ENTRY_PATTERN.match(text)
        if not match:
            return None

        try:
            level = LogLevel(match.group("level"))
            entry_type = LogType(match.group("type"))
        except ValueError:
            return None

        return cls(level, entry_type, match.group("message") or "")


def missing_font_error(font_name: str) -> LogEntry:
    return LogEntry(LogLevel.ERROR, LogType.MISSING_FONT, font_name)


def parse_log_entries(raw_entries: Optional[Iterable[str]]) -> list[LogEntry]:
    """Parse a book's harvest log, discarding unrecognized entries."""
    if not raw_entries:
        return []

    entries = []
    for raw in raw_entries:
        entry = LogEntry.parse(raw)
        if entry is not None:
            entries.append(entry)
    return entries


def previously_missing_fonts(raw_entries: Optional[Iterable[str]]) -> list[str]:
    """Font names recorded as missing in a previous harvest attempt."""
    return [entry.message for entry in parse_log_entries(raw_entries) if entry.type == LogType.MISSING_FONT]
