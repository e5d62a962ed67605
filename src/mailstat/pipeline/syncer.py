"""Sync pipeline: load snapshot → page through mailbox → merge → persist."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Protocol

from mailstat.config.settings import MailstatSettings
from mailstat.core.credentials import resolve_password
from mailstat.core.imap_client import ImapMailbox
from mailstat.core.models import (
    ERRONEOUS_DATE,
    MailEntry,
    Record,
    StopReason,
    SyncProgress,
    SyncResult,
)
from mailstat.storage.snapshot import SnapshotStore

logger = logging.getLogger(__name__)


class Mailbox(Protocol):
    def list_page(self, folder: str, page_size: int, page_index: int) -> list[MailEntry]: ...


def sync_snapshot(
    mailbox: Mailbox,
    records: list[Record],
    *,
    folder: str,
    page_size: int,
    cutoff: datetime,
    sentinel: datetime = ERRONEOUS_DATE,
    max_pages: int | None = None,
    progress: SyncProgress | None = None,
    notify: Callable[[], None] | None = None,
) -> SyncResult:
    """Merge newly listed entries into a copy of ``records``.

    Pages are requested one at a time starting at 0 and must be newest
    first. The loop stops on an empty page, or at the first entry older
    than ``cutoff`` (the rest of that page is discarded). Entries at or
    before ``sentinel`` are skipped; already-known message_ids are skipped.

    Args:
        mailbox: Anything with ``list_page(folder, page_size, page_index)``.
        records: The loaded snapshot; not mutated.
        folder: Folder to list.
        page_size: Entries per page request.
        cutoff: Oldest timestamp still ingested.
        sentinel: Timestamps at or before this are treated as corrupt.
        max_pages: Optional guard against a mailbox that never terminates.
        progress: Counters updated as the loop runs.
        notify: Called after each page and at the end.

    Returns:
        SyncResult holding the merged list and the stop reason.

    Raises:
        TransportError: Propagated from the mailbox; nothing is merged.
    """
    progress = progress or SyncProgress()
    merged = list(records)
    known = {record.key for record in merged}
    new_records = 0
    cursor = 0
    stop_reason: StopReason | None = None

    while stop_reason is None:
        if max_pages is not None and cursor >= max_pages:
            logger.warning("Stopping after %d pages (page limit)", cursor)
            stop_reason = StopReason.PAGE_LIMIT
            break

        if progress.last_seen is not None:
            logger.info("Last date: %s", progress.last_seen.isoformat())
        logger.info("Loading page %d...", cursor)
        progress.page = cursor
        page = mailbox.list_page(folder, page_size, cursor)
        cursor += 1

        if not page:
            stop_reason = StopReason.EXHAUSTED
            break

        for entry in page:
            if entry.timestamp <= sentinel:
                logger.warning(
                    "Skipping clearly erroneous entry %s (%s)",
                    entry.message_id, entry.timestamp.isoformat(),
                )
                progress.erroneous_skipped += 1
                continue
            progress.last_seen = entry.timestamp
            if entry.timestamp < cutoff:
                stop_reason = StopReason.CUTOFF_REACHED
                break
            if entry.message_id in known:
                progress.duplicates_skipped += 1
                continue
            record = Record.from_entry(entry)
            merged.append(record)
            known.add(record.key)
            new_records += 1
            progress.records_new += 1

        if notify:
            notify()

    logger.info(
        "Loaded %d entries, %d new (%s after %d pages)",
        len(merged), new_records, stop_reason.value, cursor,
    )
    return SyncResult(
        records=merged,
        stop_reason=stop_reason,
        pages_requested=cursor,
        new_records=new_records,
        cutoff=cutoff,
    )


class SnapshotSyncer:
    """Brings the persisted snapshot up to date with the mailbox.

    A run is: load snapshot (or start empty) → sync pages → save. Saving
    happens only after the page loop completes, so a transport failure
    leaves the file on disk untouched.
    """

    def __init__(
        self,
        settings: MailstatSettings | None = None,
        on_progress: Callable[[SyncProgress], None] | None = None,
    ) -> None:
        self._settings = settings or MailstatSettings()
        self._on_progress = on_progress
        self._progress = SyncProgress()

        # Components initialized lazily
        self._mailbox: Mailbox | None = None
        self._store: SnapshotStore | None = None
        if self._settings.snapshot_path is not None:
            self._store = SnapshotStore(self._settings.snapshot_path)

    @property
    def progress(self) -> SyncProgress:
        return self._progress

    @property
    def store(self) -> SnapshotStore | None:
        return self._store

    def _ensure_mailbox(self) -> Mailbox:
        """Resolve the password and build the IMAP client if not already done."""
        if self._mailbox is None:
            settings = self._settings
            password = resolve_password(settings.password_command)
            self._mailbox = ImapMailbox(
                settings.imap_host,
                settings.imap_port,
                username=settings.email,
                password=password,
                tls=settings.imap_tls,
                timeout_seconds=settings.imap_timeout_seconds,
                max_retries=settings.max_retries,
                initial_backoff_seconds=settings.initial_backoff_seconds,
                max_backoff_seconds=settings.max_backoff_seconds,
            )
        return self._mailbox

    def load_snapshot(self) -> list[Record]:
        """Load persisted records; missing or corrupt snapshots are empty."""
        if self._store is None:
            return []
        return self._store.load_or_empty()

    def run(self, now: datetime) -> SyncResult:
        """Run one sync against the configured mailbox.

        Args:
            now: Timezone-aware start time; the cutoff is ``now - lookback_days``.

        Returns:
            SyncResult with the merged snapshot.

        Raises:
            TransportError: On mailbox failure; nothing is persisted.
            SnapshotWriteError: If the merged snapshot cannot be saved.
        """
        if now.tzinfo is None:
            raise ValueError("now must be timezone-aware")
        cutoff = self._settings.cutoff(now)

        self._progress = SyncProgress(current_stage="load")
        records = self.load_snapshot()
        self._progress.records_loaded = len(records)
        logger.info("Messages cached: %d", len(records))
        self._notify()

        mailbox = self._ensure_mailbox()
        self._progress.current_stage = "sync"
        self._notify()

        try:
            result = sync_snapshot(
                mailbox,
                records,
                folder=self._settings.folder,
                page_size=self._settings.page_size,
                cutoff=cutoff,
                max_pages=self._settings.max_pages,
                progress=self._progress,
                notify=self._notify,
            )
        except Exception as e:
            self._progress.current_stage = "error"
            self._progress.errors.append(str(e))
            self._notify()
            raise

        if self._store is not None:
            self._progress.current_stage = "save"
            self._notify()
            self._store.save(result.records)

        self._progress.current_stage = "complete"
        self._notify()
        return result

    def close(self) -> None:
        """Clean up resources."""
        if isinstance(self._mailbox, ImapMailbox):
            self._mailbox.close()

    def _notify(self) -> None:
        """Send progress update to callback if registered."""
        if self._on_progress:
            self._on_progress(self._progress)
