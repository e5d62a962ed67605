from __future__ import annotations

from datetime import datetime, timedelta, timezone

from mailstat.core.models import MailEntry, Record

PLUS_TWO = timezone(timedelta(hours=2))
MINUS_FIVE = timezone(timedelta(hours=-5))

# Fixed "now" for deterministic cutoffs: 14 days back is 2024-03-01 12:00 +02:00
NOW = datetime(2024, 3, 15, 12, 0, 0, tzinfo=PLUS_TWO)
CUTOFF = NOW - timedelta(days=14)
SENTINEL_DATE = datetime(1980, 1, 1, tzinfo=timezone.utc)


def make_entry(
    message_id: str,
    timestamp: datetime,
    from_address: str = "alice@example.com",
    subject: str = "Hello",
    uid: str | None = None,
) -> MailEntry:
    return MailEntry(
        id=uid or f"uid-{message_id}",
        message_id=message_id,
        from_address=from_address,
        subject=subject,
        timestamp=timestamp,
    )


def make_record(
    message_id: str,
    timestamp: datetime,
    from_address: str = "alice@example.com",
    subject: str = "Hello",
) -> Record:
    return Record.from_entry(make_entry(message_id, timestamp, from_address, subject))


class FakeMailbox:
    """In-memory mailbox serving pre-built pages and recording requests."""

    def __init__(self, pages: list[list[MailEntry]]) -> None:
        self.pages = pages
        self.requests: list[tuple[str, int, int]] = []

    def list_page(self, folder: str, page_size: int, page_index: int) -> list[MailEntry]:
        self.requests.append((folder, page_size, page_index))
        if page_index < len(self.pages):
            return list(self.pages[page_index])
        return []
