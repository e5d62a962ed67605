"""Shared fixtures for mailstat tests."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

import pytest

from mailstat.core.models import Record
from tests.helpers import CUTOFF, MINUS_FIVE, NOW, PLUS_TWO, make_record


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def cutoff() -> datetime:
    return CUTOFF


@pytest.fixture
def sample_records() -> list[Record]:
    """Three records on two days, from two domains, in mixed offsets."""
    return [
        make_record("<m1@example.com>", datetime(2024, 3, 10, 9, 0, tzinfo=PLUS_TWO)),
        make_record(
            "<m2@example.org>",
            datetime(2024, 3, 10, 23, 30, tzinfo=MINUS_FIVE),
            from_address="Bob <bob@Example.ORG>",
        ),
        make_record("<m3@example.com>", datetime(2024, 3, 12, 8, 15, tzinfo=PLUS_TWO)),
    ]


@pytest.fixture
def tmp_snapshot_path(tmp_path: Path) -> Path:
    """Temporary snapshot path for tests."""
    return tmp_path / "data" / "snapshot.jsonl"
