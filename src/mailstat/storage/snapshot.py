"""JSON Lines snapshot of Records, persisted across runs."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path
from typing import Any

from mailstat.core.exceptions import (
    SnapshotNotFoundError,
    SnapshotParseError,
    SnapshotWriteError,
)
from mailstat.core.models import Record

logger = logging.getLogger(__name__)

FIELDS = ("id", "message_id", "from_address", "subject", "timestamp")


def record_to_json(record: Record) -> str:
    """Serialize one record as a single JSON line.

    The timestamp is ISO-8601 with its original offset, never normalized.
    """
    payload = {
        "id": record.id,
        "message_id": record.message_id,
        "from_address": record.from_address,
        "subject": record.subject,
        "timestamp": record.timestamp.isoformat(),
    }
    return json.dumps(payload, ensure_ascii=False)


def record_from_json(line: str) -> Record:
    """Parse a single JSON line into a Record.

    Raises:
        SnapshotParseError: On invalid JSON, missing keys, or a naive/invalid timestamp.
    """
    try:
        payload: Any = json.loads(line)
    except json.JSONDecodeError as e:
        raise SnapshotParseError(f"Invalid JSON: {e}") from e
    if not isinstance(payload, dict):
        raise SnapshotParseError("Snapshot line is not an object")

    missing = [name for name in FIELDS if not isinstance(payload.get(name), str)]
    if missing:
        raise SnapshotParseError(f"Missing or non-string fields: {', '.join(missing)}")

    try:
        timestamp = datetime.fromisoformat(payload["timestamp"])
    except ValueError as e:
        raise SnapshotParseError(f"Invalid timestamp {payload['timestamp']!r}") from e
    if timestamp.tzinfo is None:
        raise SnapshotParseError(f"Timestamp without UTC offset: {payload['timestamp']!r}")

    return Record(
        id=payload["id"],
        message_id=payload["message_id"],
        from_address=payload["from_address"],
        subject=payload["subject"],
        timestamp=timestamp,
    )


class SnapshotStore:
    """Load and atomically overwrite the snapshot file.

    One Record per line. No indexing, no partial writes: ``save`` always
    rewrites the whole file through a temp file and ``os.replace``.
    """

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> list[Record]:
        """Read all records from disk.

        Duplicate message_ids keep their first occurrence.

        Raises:
            SnapshotNotFoundError: If the file does not exist.
            SnapshotParseError: If the file cannot be read or any line is malformed.
        """
        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            raise SnapshotNotFoundError(f"Snapshot not found: {self._path}") from e
        except (OSError, UnicodeDecodeError) as e:
            raise SnapshotParseError(f"Cannot read snapshot {self._path}: {e}") from e

        records: list[Record] = []
        seen: set[str] = set()
        # "\n" only: splitlines() also breaks on U+2028, U+2029 and U+0085 inside subjects
        for line_no, line in enumerate(text.split("\n"), start=1):
            if not line.strip():
                continue
            try:
                record = record_from_json(line)
            except SnapshotParseError as e:
                raise SnapshotParseError(f"{self._path}:{line_no}: {e}") from e
            if record.key in seen:
                logger.debug("Dropping duplicate %s at line %d", record.key, line_no)
                continue
            seen.add(record.key)
            records.append(record)

        logger.debug("Loaded %d records from %s", len(records), self._path)
        return records

    def load_or_empty(self) -> list[Record]:
        """Like ``load``, but a missing or corrupt file yields an empty snapshot."""
        try:
            return self.load()
        except SnapshotNotFoundError:
            logger.warning("Snapshot file %s not found, will create new", self._path)
        except SnapshotParseError as e:
            logger.warning("Snapshot file unreadable, starting empty: %s", e)
        return []

    def save(self, records: Iterable[Record]) -> int:
        """Overwrite the snapshot with ``records``.

        Returns:
            Number of records written.

        Raises:
            SnapshotWriteError: If the file cannot be written.
        """
        lines = [record_to_json(record) for record in records]
        tmp_name: str | None = None
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self._path.name}.", suffix=".tmp", dir=self._path.parent
            )
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                for line in lines:
                    handle.write(line)
                    handle.write("\n")
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self._path)
            tmp_name = None
        except OSError as e:
            raise SnapshotWriteError(f"Failed to write snapshot {self._path}: {e}") from e
        finally:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)

        logger.info("Saved %d records to %s", len(lines), self._path)
        return len(lines)
