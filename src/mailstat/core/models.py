"""Frozen dataclasses for the mailstat domain model."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import UTC, datetime

# Backends emit dates at or before this point for malformed entries.
ERRONEOUS_DATE = datetime(1980, 1, 1, tzinfo=UTC)


@dataclass(frozen=True)
class MailEntry:
    """One message's metadata as listed by the mailbox."""

    id: str
    message_id: str
    from_address: str
    subject: str
    timestamp: datetime


@dataclass(frozen=True, eq=False)
class Record:
    """Snapshot entry. Identity is the protocol-level message_id."""

    id: str
    message_id: str
    from_address: str
    subject: str
    timestamp: datetime

    @classmethod
    def from_entry(cls, entry: MailEntry) -> Record:
        """Copy a listed entry verbatim. Validation belongs to the syncer."""
        return cls(
            id=entry.id,
            message_id=entry.message_id,
            from_address=entry.from_address,
            subject=entry.subject,
            timestamp=entry.timestamp,
        )

    @property
    def key(self) -> str:
        return self.message_id

    def same_fields(self, other: Record) -> bool:
        """Field-by-field comparison, including the timestamp's UTC offset."""
        return (
            self.id == other.id
            and self.message_id == other.message_id
            and self.from_address == other.from_address
            and self.subject == other.subject
            and self.timestamp == other.timestamp
            and self.timestamp.utcoffset() == other.timestamp.utcoffset()
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Record):
            return NotImplemented
        return self.message_id == other.message_id

    def __hash__(self) -> int:
        return hash(self.message_id)


class StopReason(enum.Enum):
    """Why a sync loop stopped requesting pages."""

    EXHAUSTED = "exhausted"
    CUTOFF_REACHED = "cutoff_reached"
    PAGE_LIMIT = "page_limit"


@dataclass(frozen=True)
class SyncResult:
    """Outcome of one sync run."""

    records: list[Record]
    stop_reason: StopReason
    pages_requested: int
    new_records: int
    cutoff: datetime


@dataclass
class SyncProgress:
    """Mutable progress tracker for sync status reporting."""

    page: int = 0
    last_seen: datetime | None = None
    records_loaded: int = 0
    records_new: int = 0
    duplicates_skipped: int = 0
    erroneous_skipped: int = 0
    current_stage: str = "idle"
    errors: list[str] = field(default_factory=list)
