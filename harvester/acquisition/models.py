"""Registry record types for harvested books."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class HarvestState(Enum):
    """Lifecycle tag persisted on each book (stored as its string value)."""

    NEW = "New"
    UPDATED = "Updated"
    UNKNOWN = "Unknown"
    IN_PROGRESS = "InProgress"
    DONE = "Done"
    FAILED = "Failed"
    ABORTED = "Aborted"

    @classmethod
    def parse(cls, value: Optional[str]) -> "HarvestState":
        """Parse a persisted state string. Unrecognized or missing values map to UNKNOWN."""
        for member in cls:
            if member.value == value:
                return member
        return cls.UNKNOWN


class HarvestMode(Enum):
    """Run-level selector for which books are eligible."""

    ALL = "All"
    FORCE_ALL = "ForceAll"
    NEW_OR_UPDATED_ONLY = "NewOrUpdatedOnly"
    RETRY_FAILURES_ONLY = "RetryFailuresOnly"
    DEFAULT = "Default"


@dataclass(frozen=True, order=True)
class Version:
    """(major, minor) build identifier. Ordering is lexicographic."""

    major: int
    minor: int

    @classmethod
    def parse(cls, text: str) -> "Version":
        parts = text.strip().split(".")
        major = int(parts[0])
        minor = int(parts[1]) if len(parts) > 1 else 0
        return cls(major, minor)

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}"


def parse_date(value: Any) -> Optional[datetime]:
    """Parse a registry date, either {"__type": "Date", "iso": ...} or a bare ISO string."""
    if not value:
        return None
    if isinstance(value, dict):
        value = value.get("iso")
        if not value:
            return None
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_date(value: datetime) -> dict:
    """Format a datetime as a registry Date object."""
    iso = value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
    return {"__type": "Date", "iso": iso}


@dataclass
class Book:
    """Working copy of a book record queried from the registry."""

    CLASS_NAME = "books"

    # Registry field names
    HARVEST_STATE_FIELD = "harvestState"
    HARVESTER_ID_FIELD = "harvesterId"
    HARVESTER_MAJOR_VERSION_FIELD = "harvesterMajorVersion"
    HARVESTER_MINOR_VERSION_FIELD = "harvesterMinorVersion"
    HARVEST_STARTED_AT_FIELD = "harvestStartedAt"
    HARVEST_LOG_FIELD = "harvestLog"

    object_id: str = ""
    base_url: str = ""
    title: str = ""
    harvest_state: str = HarvestState.UNKNOWN.value
    harvester_id: str = ""
    harvester_major_version: int = 0
    harvester_minor_version: int = 0
    harvest_started_at: Optional[datetime] = None
    harvest_log: list[str] = field(default_factory=list)

    @classmethod
    def from_json(cls, data: dict) -> "Book":
        return cls(
            object_id=data.get("objectId", ""),
            base_url=data.get("baseUrl") or "",
            title=data.get("title") or "",
            harvest_state=data.get(cls.HARVEST_STATE_FIELD) or HarvestState.UNKNOWN.value,
            harvester_id=data.get(cls.HARVESTER_ID_FIELD) or "",
            harvester_major_version=int(data.get(cls.HARVESTER_MAJOR_VERSION_FIELD) or 0),
            harvester_minor_version=int(data.get(cls.HARVESTER_MINOR_VERSION_FIELD) or 0),
            harvest_started_at=parse_date(data.get(cls.HARVEST_STARTED_AT_FIELD)),
            harvest_log=list(data.get(cls.HARVEST_LOG_FIELD) or []),
        )

    @property
    def state(self) -> HarvestState:
        return HarvestState.parse(self.harvest_state)

    @property
    def previous_version(self) -> Version:
        """Version of the harvester that last touched this book."""
        return Version(self.harvester_major_version, self.harvester_minor_version)


class BookUpdate:
    """Accumulates field deltas for one registry write and mirrors them onto the working copy."""

    def __init__(self):
        self.fields: dict[str, Any] = {}

    def set_state(self, state: HarvestState) -> "BookUpdate":
        self.fields[Book.HARVEST_STATE_FIELD] = state.value
        return self

    def set_harvester(self, identifier: str, version: Version) -> "BookUpdate":
        self.fields[Book.HARVESTER_ID_FIELD] = identifier
        self.fields[Book.HARVESTER_MAJOR_VERSION_FIELD] = version.major
        self.fields[Book.HARVESTER_MINOR_VERSION_FIELD] = version.minor
        return self

    def set_harvester_id(self, identifier: str) -> "BookUpdate":
        self.fields[Book.HARVESTER_ID_FIELD] = identifier
        return self

    def set_started_at(self, started_at: datetime) -> "BookUpdate":
        self.fields[Book.HARVEST_STARTED_AT_FIELD] = format_date(started_at)
        return self

    def set_log(self, entries: list[str]) -> "BookUpdate":
        self.fields[Book.HARVEST_LOG_FIELD] = list(entries)
        return self

    def apply_to(self, book: Book) -> None:
        """Apply the pending deltas to the in-memory book."""
        if Book.HARVEST_STATE_FIELD in self.fields:
            book.harvest_state = self.fields[Book.HARVEST_STATE_FIELD]
        if Book.HARVESTER_ID_FIELD in self.fields:
            book.harvester_id = self.fields[Book.HARVESTER_ID_FIELD]
        if Book.HARVESTER_MAJOR_VERSION_FIELD in self.fields:
            book.harvester_major_version = self.fields[Book.HARVESTER_MAJOR_VERSION_FIELD]
        if Book.HARVESTER_MINOR_VERSION_FIELD in self.fields:
            book.harvester_minor_version = self.fields[Book.HARVESTER_MINOR_VERSION_FIELD]
        if Book.HARVEST_STARTED_AT_FIELD in self.fields:
            book.harvest_started_at = parse_date(self.fields[Book.HARVEST_STARTED_AT_FIELD])
        if Book.HARVEST_LOG_FIELD in self.fields:
            book.harvest_log = list(self.fields[Book.HARVEST_LOG_FIELD])

    def to_dict(self) -> dict:
        return dict(self.fields)
