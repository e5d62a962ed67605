"""IMAP mailbox client: newest-first page listing of message headers."""

from __future__ import annotations

import email.header
import imaplib
import logging
import random
import re
import ssl
import time
from collections.abc import Callable
from datetime import UTC, datetime
from email import policy
from email.parser import BytesParser
from email.utils import parseaddr, parsedate_to_datetime
from typing import Any, TypeVar

from mailstat.core.exceptions import TransportError
from mailstat.core.models import MailEntry

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Substituted for missing or unparseable Date headers; falls below ERRONEOUS_DATE.
UNPARSEABLE_DATE = datetime(1970, 1, 1, tzinfo=UTC)

FETCH_ITEMS = "(UID BODY.PEEK[HEADER.FIELDS (FROM SUBJECT DATE MESSAGE-ID)])"

_SEQ_RE = re.compile(rb"^(\d+)")
_UID_RE = re.compile(rb"UID (\d+)")


def quote_mailbox_name(folder_name: str) -> str:
    escaped = folder_name.replace("\\", "\\\\").replace('"', r"\"")
    return f'"{escaped}"'


def decode_header_value(value: Any) -> str:
    """Decode RFC 2047 encoded words into a plain string."""
    if not value:
        return ""
    fragments = []
    for fragment, encoding in email.header.decode_header(str(value)):
        if isinstance(fragment, bytes):
            try:
                fragments.append(fragment.decode(encoding or "utf-8", errors="replace"))
            except LookupError:
                fragments.append(fragment.decode("utf-8", errors="replace"))
        else:
            fragments.append(fragment)
    return "".join(fragments).strip()


def parse_date(value: Any) -> datetime:
    """Parse an RFC 2822 Date header, keeping its original UTC offset.

    Returns UNPARSEABLE_DATE when the header is missing or malformed. A date
    without zone information (``-0000``) is taken as UTC.
    """
    if not value:
        return UNPARSEABLE_DATE
    try:
        parsed = parsedate_to_datetime(str(value))
    except (TypeError, ValueError, IndexError):
        logger.warning("Failed to parse date: %s", value)
        return UNPARSEABLE_DATE
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def parse_envelope(folder: str, uid: str, raw_headers: bytes) -> MailEntry:
    """Build a MailEntry from the header block returned by FETCH."""
    message = BytesParser(policy=policy.compat32).parsebytes(raw_headers, headersonly=True)

    sender = decode_header_value(message.get("From"))
    _name, from_address = parseaddr(sender)
    message_id = decode_header_value(message.get("Message-ID"))

    return MailEntry(
        id=uid,
        message_id=message_id or f"<{folder}/{uid}>",
        from_address=from_address or sender,
        subject=decode_header_value(message.get("Subject")),
        timestamp=parse_date(message.get("Date")),
    )


def parse_fetch_response(folder: str, fetch_data: list[Any]) -> list[MailEntry]:
    """Turn FETCH response parts into entries ordered newest (highest sequence) first."""
    numbered: list[tuple[int, MailEntry]] = []

    for index, part in enumerate(fetch_data):
        if not isinstance(part, tuple) or len(part) < 2:
            continue
        meta, headers = part[0], part[1]
        if not isinstance(meta, bytes) or not isinstance(headers, bytes):
            continue

        seq_match = _SEQ_RE.match(meta)
        if not seq_match:
            continue
        uid_match = _UID_RE.search(meta)
        # Some servers send UID after the literal, in the trailing bytes item
        if uid_match is None and index + 1 < len(fetch_data):
            trailer = fetch_data[index + 1]
            if isinstance(trailer, bytes):
                uid_match = _UID_RE.search(trailer)
        seq = int(seq_match.group(1))
        uid = uid_match.group(1).decode("ascii") if uid_match else str(seq)

        numbered.append((seq, parse_envelope(folder, uid, headers)))

    numbered.sort(key=lambda item: item[0], reverse=True)
    return [entry for _seq, entry in numbered]


class ImapMailbox:
    """Thin wrapper around imaplib exposing fixed-size, newest-first pages."""

    def __init__(
        self,
        host: str,
        port: int = 993,
        *,
        username: str,
        password: str,
        tls: str = "tls",
        timeout_seconds: float = 30.0,
        max_retries: int = 3,
        initial_backoff_seconds: float = 1.0,
        max_backoff_seconds: float = 30.0,
    ) -> None:
        if tls not in ("tls", "starttls", "none"):
            raise ValueError(f"Invalid TLS mode: {tls}")
        self._host = host
        self._port = port
        self._username = username
        self._password = password
        self._tls = tls
        self._timeout = timeout_seconds
        self._max_retries = max_retries
        self._initial_backoff = initial_backoff_seconds
        self._max_backoff = max_backoff_seconds

        self._conn: imaplib.IMAP4 | None = None
        self._selected: str | None = None
        # Message counts pinned at first select so page boundaries stay stable
        self._counts: dict[str, int] = {}

    def __enter__(self) -> ImapMailbox:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def _connect(self) -> imaplib.IMAP4:
        if self._conn is None:
            if self._tls == "tls":
                conn: imaplib.IMAP4 = imaplib.IMAP4_SSL(
                    self._host,
                    self._port,
                    ssl_context=ssl.create_default_context(),
                    timeout=self._timeout,
                )
            else:
                conn = imaplib.IMAP4(self._host, self._port, timeout=self._timeout)
                if self._tls == "starttls":
                    conn.starttls(ssl_context=ssl.create_default_context())
            conn.login(self._username, self._password)
            logger.info("Connected to %s:%d as %s", self._host, self._port, self._username)
            self._conn = conn
            self._selected = None
        return self._conn

    def _drop_connection(self) -> None:
        conn, self._conn = self._conn, None
        self._selected = None
        if conn is None:
            return
        try:
            conn.logout()
        except (imaplib.IMAP4.error, OSError) as e:
            logger.debug("Ignoring logout failure on dropped connection: %s", e)

    def close(self) -> None:
        """Log out and release the connection."""
        self._drop_connection()

    def _execute_with_retry(self, operation: Callable[[imaplib.IMAP4], T], context: str) -> T:
        """Run an IMAP operation, reconnecting with exponential backoff on connection loss.

        Args:
            operation: Callable receiving a logged-in connection.
            context: Description for log messages (e.g. "list page 3 of INBOX").

        Returns:
            Whatever the operation returns.

        Raises:
            TransportError: When retries are exhausted or the server rejects a command.
        """
        backoff = self._initial_backoff

        for attempt in range(self._max_retries + 1):
            try:
                return operation(self._connect())
            except (imaplib.IMAP4.abort, OSError) as e:
                self._drop_connection()
                if attempt >= self._max_retries:
                    raise TransportError(
                        f"Connection lost during {context} after "
                        f"{self._max_retries} retries: {e}"
                    ) from e
                sleep_time = min(backoff, self._max_backoff)
                jitter = random.uniform(0, sleep_time)
                logger.warning(
                    "Connection lost during %s (attempt %d/%d), sleeping %.2fs",
                    context, attempt + 1, self._max_retries, jitter,
                )
                time.sleep(jitter)
                backoff = min(backoff * 2, self._max_backoff)
            except imaplib.IMAP4.error as e:
                raise TransportError(f"Failed to {context}: {e}") from e

        raise TransportError(f"Connection lost during {context} after {self._max_retries} retries")

    def _select(self, conn: imaplib.IMAP4, folder: str) -> int:
        """Select the folder read-only and return its pinned message count."""
        if self._selected != folder:
            typ, data = conn.select(quote_mailbox_name(folder), readonly=True)
            if typ != "OK":
                raise TransportError(f"Failed to select folder {folder}: {data!r}")
            self._selected = folder
            if folder not in self._counts:
                self._counts[folder] = int(data[0] or 0)
                logger.debug("Folder %s holds %d messages", folder, self._counts[folder])
        return self._counts[folder]

    def list_page(self, folder: str, page_size: int, page_index: int) -> list[MailEntry]:
        """List one page of message metadata, newest first.

        Page 0 holds the ``page_size`` highest sequence numbers, page 1 the
        next block, and so on. A page past the oldest message is empty.

        Args:
            folder: Mailbox folder name.
            page_size: Number of entries per page.
            page_index: Zero-based page number.

        Returns:
            Entries ordered from newest to oldest sequence number.

        Raises:
            TransportError: On connection or protocol failure.
        """
        if page_size <= 0:
            raise ValueError("page_size must be positive")
        if page_index < 0:
            raise ValueError("page_index must be non-negative")

        def _list(conn: imaplib.IMAP4) -> list[MailEntry]:
            count = self._select(conn, folder)
            high = count - page_index * page_size
            if high < 1:
                return []
            low = max(1, high - page_size + 1)
            typ, data = conn.fetch(f"{low}:{high}", FETCH_ITEMS)
            if typ != "OK":
                raise TransportError(f"FETCH {low}:{high} in {folder} failed: {data!r}")
            return parse_fetch_response(folder, data or [])

        entries = self._execute_with_retry(_list, f"list page {page_index} of {folder}")
        logger.debug("Listed %d entries (page %d)", len(entries), page_index)
        return entries
