"""Pure reductions over Record collections: counts per day and per sender domain."""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime
from email.utils import parseaddr

from mailstat.core.exceptions import AddressParseError
from mailstat.core.models import ERRONEOUS_DATE, Record

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DomainCounts:
    """Per-domain counts plus the number of records whose address did not parse."""

    counts: dict[str, int] = field(default_factory=dict)
    skipped: int = 0


def is_erroneous(record: Record, sentinel: datetime = ERRONEOUS_DATE) -> bool:
    return record.timestamp <= sentinel


def filter_since(records: Iterable[Record], cutoff: datetime) -> list[Record]:
    """Records at or after ``cutoff``: the current run's window."""
    return [record for record in records if record.timestamp >= cutoff]


def count_by_date(
    records: Iterable[Record], sentinel: datetime = ERRONEOUS_DATE
) -> dict[date, int]:
    """Count records per calendar day in each record's own UTC offset.

    Records at or before ``sentinel`` are excluded.
    """
    counts: Counter[date] = Counter()
    for record in records:
        if is_erroneous(record, sentinel):
            continue
        counts[record.timestamp.date()] += 1
    return dict(counts)


def sender_domain(address: str) -> str:
    """Extract the lower-cased domain of a mailbox address.

    Accepts bare addresses and ``Name <addr>`` forms.

    Raises:
        AddressParseError: If the address has no single ``local@domain`` part.
    """
    _name, addr = parseaddr(address)
    local, at, domain = addr.rpartition("@")
    if (
        not at
        or not local
        or not domain
        or "@" in local
        or any(ch.isspace() for ch in addr)
    ):
        raise AddressParseError(f"Cannot parse sender address: {address!r}")
    return domain.lower()


def count_by_domain(
    records: Iterable[Record], sentinel: datetime = ERRONEOUS_DATE
) -> DomainCounts:
    """Count records per sender domain.

    A record whose address does not parse is logged and counted in
    ``DomainCounts.skipped`` rather than aborting the whole aggregate.
    """
    counts: Counter[str] = Counter()
    skipped = 0
    for record in records:
        if is_erroneous(record, sentinel):
            continue
        try:
            domain = sender_domain(record.from_address)
        except AddressParseError as e:
            logger.warning("Skipping %s in domain counts: %s", record.message_id, e)
            skipped += 1
            continue
        counts[domain] += 1
    return DomainCounts(counts=dict(counts), skipped=skipped)


def sorted_date_counts(counts: dict[date, int]) -> list[tuple[date, int]]:
    """Date ascending."""
    return sorted(counts.items())


def sorted_domain_counts(counts: dict[str, int]) -> list[tuple[str, int]]:
    """Count descending, then domain ascending."""
    return sorted(counts.items(), key=lambda item: (-item[1], item[0]))
