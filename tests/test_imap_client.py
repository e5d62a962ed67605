"""Tests for ImapMailbox with a mocked imaplib connection."""

from __future__ import annotations

import imaplib
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest

from mailstat.core.exceptions import TransportError
from mailstat.core.imap_client import (
    FETCH_ITEMS,
    UNPARSEABLE_DATE,
    ImapMailbox,
    decode_header_value,
    parse_date,
    parse_envelope,
    parse_fetch_response,
    quote_mailbox_name,
)
from mailstat.core.models import ERRONEOUS_DATE


def _headers(
    message_id: str = "<abc@example.com>",
    sender: str = "Alice <alice@example.com>",
    subject: str = "Hello",
    date: str = "Tue, 12 Mar 2024 08:15:00 +0200",
) -> bytes:
    lines = []
    if message_id:
        lines.append(f"Message-ID: {message_id}")
    if sender:
        lines.append(f"From: {sender}")
    if subject:
        lines.append(f"Subject: {subject}")
    if date:
        lines.append(f"Date: {date}")
    return ("\r\n".join(lines) + "\r\n\r\n").encode("utf-8")


def _fetch_part(seq: int, uid: int, headers: bytes) -> tuple[bytes, bytes]:
    meta = (
        f"{seq} (UID {uid} BODY[HEADER.FIELDS (FROM SUBJECT DATE MESSAGE-ID)] "
        f"{{{len(headers)}}}"
    ).encode("ascii")
    return (meta, headers)


@pytest.fixture
def mock_conn() -> MagicMock:
    """Logged-in IMAP connection with a 250-message INBOX."""
    conn = MagicMock()
    conn.select.return_value = ("OK", [b"250"])
    conn.fetch.return_value = ("OK", [])
    return conn


@pytest.fixture
def mailbox(mock_conn: MagicMock) -> ImapMailbox:
    """ImapMailbox with fast retry settings whose connection is the mock."""
    box = ImapMailbox(
        "imap.example.com",
        993,
        username="me@example.com",
        password="secret",
        max_retries=2,
        initial_backoff_seconds=0.0,
        max_backoff_seconds=0.0,
    )
    box._conn = mock_conn
    return box


# ---------- header helpers ----------


class TestParseDate:
    def test_keeps_original_offset(self) -> None:
        parsed = parse_date("Tue, 12 Mar 2024 08:15:00 +0200")
        assert parsed == datetime(2024, 3, 12, 8, 15, tzinfo=timezone(timedelta(hours=2)))
        assert parsed.utcoffset() == timedelta(hours=2)

    def test_missing_date(self) -> None:
        assert parse_date(None) == UNPARSEABLE_DATE
        assert parse_date("") == UNPARSEABLE_DATE

    def test_garbage_date(self) -> None:
        assert parse_date("not a date at all") == UNPARSEABLE_DATE

    def test_unparseable_date_is_erroneous(self) -> None:
        assert UNPARSEABLE_DATE <= ERRONEOUS_DATE

    def test_no_zone_is_utc(self) -> None:
        parsed = parse_date("Tue, 12 Mar 2024 08:15:00 -0000")
        assert parsed.utcoffset() == timedelta(0)


class TestDecodeHeaderValue:
    def test_plain(self) -> None:
        assert decode_header_value("Hello") == "Hello"

    def test_encoded_word(self) -> None:
        assert decode_header_value("=?utf-8?b?R3LDvMOfZQ==?=") == "Grüße"

    def test_empty(self) -> None:
        assert decode_header_value(None) == ""


class TestQuoteMailboxName:
    def test_quotes_and_escapes(self) -> None:
        assert quote_mailbox_name("INBOX") == '"INBOX"'
        assert quote_mailbox_name('My "Box"') == '"My \\"Box\\""'


class TestParseEnvelope:
    def test_extracts_fields(self) -> None:
        entry = parse_envelope("INBOX", "42", _headers())
        assert entry.id == "42"
        assert entry.message_id == "<abc@example.com>"
        assert entry.from_address == "alice@example.com"
        assert entry.subject == "Hello"
        assert entry.timestamp.utcoffset() == timedelta(hours=2)

    def test_missing_message_id_is_synthesized(self) -> None:
        entry = parse_envelope("INBOX", "42", _headers(message_id=""))
        assert entry.message_id == "<INBOX/42>"

    def test_missing_date_maps_to_unparseable(self) -> None:
        entry = parse_envelope("INBOX", "42", _headers(date=""))
        assert entry.timestamp == UNPARSEABLE_DATE

    def test_unparseable_from_kept_verbatim(self) -> None:
        entry = parse_envelope("INBOX", "42", _headers(sender="undisclosed-recipients:;"))
        assert entry.from_address == "undisclosed-recipients:;"


class TestParseFetchResponse:
    def test_orders_newest_first(self) -> None:
        data = [
            _fetch_part(1, 101, _headers(message_id="<one@x>")),
            b")",
            _fetch_part(3, 103, _headers(message_id="<three@x>")),
            b")",
            _fetch_part(2, 102, _headers(message_id="<two@x>")),
            b")",
        ]
        entries = parse_fetch_response("INBOX", data)
        assert [e.message_id for e in entries] == ["<three@x>", "<two@x>", "<one@x>"]
        assert [e.id for e in entries] == ["103", "102", "101"]

    def test_uid_after_literal(self) -> None:
        headers = _headers()
        meta = f"7 (BODY[HEADER.FIELDS (FROM)] {{{len(headers)}}}".encode("ascii")
        entries = parse_fetch_response("INBOX", [(meta, headers), b" UID 77)"])
        assert entries[0].id == "77"

    def test_ignores_noise(self) -> None:
        assert parse_fetch_response("INBOX", [None, b")", (b"junk", b"")]) == []


# ---------- list_page ----------


class TestListPage:
    """list_page maps page indexes onto descending sequence ranges."""

    def test_first_page_is_highest_sequence_numbers(
        self, mailbox: ImapMailbox, mock_conn: MagicMock
    ) -> None:
        mailbox.list_page("INBOX", 100, 0)
        mock_conn.select.assert_called_once_with('"INBOX"', readonly=True)
        mock_conn.fetch.assert_called_once_with("151:250", FETCH_ITEMS)

    def test_last_partial_page(self, mailbox: ImapMailbox, mock_conn: MagicMock) -> None:
        mailbox.list_page("INBOX", 100, 2)
        mock_conn.fetch.assert_called_once_with("1:50", FETCH_ITEMS)

    def test_page_past_end_is_empty(self, mailbox: ImapMailbox, mock_conn: MagicMock) -> None:
        assert mailbox.list_page("INBOX", 100, 3) == []
        mock_conn.fetch.assert_not_called()

    def test_empty_folder(self, mailbox: ImapMailbox, mock_conn: MagicMock) -> None:
        mock_conn.select.return_value = ("OK", [b"0"])
        assert mailbox.list_page("INBOX", 100, 0) == []

    def test_selects_once_and_pins_count(
        self, mailbox: ImapMailbox, mock_conn: MagicMock
    ) -> None:
        mailbox.list_page("INBOX", 100, 0)
        mock_conn.select.return_value = ("OK", [b"260"])
        mailbox.list_page("INBOX", 100, 1)
        assert mock_conn.select.call_count == 1
        assert mock_conn.fetch.call_args_list[1].args[0] == "51:150"

    def test_returns_parsed_entries(self, mailbox: ImapMailbox, mock_conn: MagicMock) -> None:
        mock_conn.fetch.return_value = (
            "OK",
            [_fetch_part(250, 900, _headers()), b")"],
        )
        entries = mailbox.list_page("INBOX", 100, 0)
        assert len(entries) == 1
        assert entries[0].id == "900"

    def test_select_failure(self, mailbox: ImapMailbox, mock_conn: MagicMock) -> None:
        mock_conn.select.return_value = ("NO", [b"no such folder"])
        with pytest.raises(TransportError, match="select"):
            mailbox.list_page("Missing", 100, 0)

    def test_fetch_failure(self, mailbox: ImapMailbox, mock_conn: MagicMock) -> None:
        mock_conn.fetch.return_value = ("BAD", [b"oops"])
        with pytest.raises(TransportError, match="FETCH"):
            mailbox.list_page("INBOX", 100, 0)

    def test_rejects_bad_arguments(self, mailbox: ImapMailbox) -> None:
        with pytest.raises(ValueError):
            mailbox.list_page("INBOX", 0, 0)
        with pytest.raises(ValueError):
            mailbox.list_page("INBOX", 10, -1)


class TestRetry:
    """Connection loss is retried with a fresh connection; protocol errors are not."""

    def test_reconnects_after_abort(self, mailbox: ImapMailbox, mock_conn: MagicMock) -> None:
        mock_conn.fetch.side_effect = imaplib.IMAP4.abort("socket closed")
        fresh = MagicMock()
        fresh.select.return_value = ("OK", [b"250"])
        fresh.fetch.return_value = ("OK", [])

        with (
            patch("mailstat.core.imap_client.imaplib.IMAP4_SSL", return_value=fresh) as ssl_cls,
            patch("mailstat.core.imap_client.time.sleep"),
        ):
            assert mailbox.list_page("INBOX", 100, 0) == []

        ssl_cls.assert_called_once()
        fresh.login.assert_called_once_with("me@example.com", "secret")
        fresh.fetch.assert_called_once_with("151:250", FETCH_ITEMS)

    def test_gives_up_after_max_retries(self, mailbox: ImapMailbox, mock_conn: MagicMock) -> None:
        mock_conn.fetch.side_effect = OSError("network down")
        with (
            patch(
                "mailstat.core.imap_client.imaplib.IMAP4_SSL",
                side_effect=OSError("network down"),
            ) as ssl_cls,
            patch("mailstat.core.imap_client.time.sleep"),
        ):
            with pytest.raises(TransportError, match="2 retries"):
                mailbox.list_page("INBOX", 100, 0)
        assert ssl_cls.call_count == 2

    def test_protocol_error_not_retried(self, mailbox: ImapMailbox, mock_conn: MagicMock) -> None:
        mock_conn.fetch.side_effect = imaplib.IMAP4.error("BAD command")
        with patch("mailstat.core.imap_client.imaplib.IMAP4_SSL") as ssl_cls:
            with pytest.raises(TransportError, match="BAD command"):
                mailbox.list_page("INBOX", 100, 0)
        ssl_cls.assert_not_called()


class TestConnect:
    def test_tls_mode(self) -> None:
        box = ImapMailbox("imap.example.com", 993, username="u", password="p")
        with patch("mailstat.core.imap_client.imaplib.IMAP4_SSL") as ssl_cls:
            box._connect()
        _args, kwargs = ssl_cls.call_args
        assert ssl_cls.call_args.args == ("imap.example.com", 993)
        assert kwargs["timeout"] == 30.0
        ssl_cls.return_value.login.assert_called_once_with("u", "p")

    def test_starttls_mode(self) -> None:
        box = ImapMailbox("imap.example.com", 143, username="u", password="p", tls="starttls")
        with patch("mailstat.core.imap_client.imaplib.IMAP4") as plain_cls:
            box._connect()
        plain_cls.return_value.starttls.assert_called_once()
        plain_cls.return_value.login.assert_called_once_with("u", "p")

    def test_plain_mode(self) -> None:
        box = ImapMailbox("localhost", 143, username="u", password="p", tls="none")
        with patch("mailstat.core.imap_client.imaplib.IMAP4") as plain_cls:
            box._connect()
        plain_cls.return_value.starttls.assert_not_called()

    def test_invalid_tls_mode(self) -> None:
        with pytest.raises(ValueError):
            ImapMailbox("h", 1, username="u", password="p", tls="ssl")

    def test_close_logs_out(self, mailbox: ImapMailbox, mock_conn: MagicMock) -> None:
        with mailbox:
            pass
        mock_conn.logout.assert_called_once()
        assert mailbox._conn is None
