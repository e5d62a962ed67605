"""mailstat - Incremental mailbox metadata snapshot with per-day and per-domain statistics."""

from mailstat.core.models import (
    MailEntry,
    Record,
    StopReason,
    SyncProgress,
    SyncResult,
)
from mailstat.pipeline.syncer import SnapshotSyncer, sync_snapshot

__all__ = [
    "MailEntry",
    "Record",
    "SnapshotSyncer",
    "StopReason",
    "SyncProgress",
    "SyncResult",
    "sync_snapshot",
]
