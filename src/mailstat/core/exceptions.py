"""Custom exceptions for mailstat."""


class MailstatError(Exception):
    """Base exception for all mailstat errors."""


class AuthenticationError(MailstatError):
    """Failed to obtain a mailbox password."""


class TransportError(MailstatError):
    """IMAP or SMTP server failure."""


class ParseError(MailstatError):
    """Failed to parse persisted or remote data."""


class SnapshotParseError(ParseError):
    """The snapshot file exists but is malformed."""


class AddressParseError(ParseError):
    """A sender address has no usable domain."""


class SnapshotNotFoundError(MailstatError):
    """No snapshot file at the configured path."""


class SnapshotWriteError(MailstatError, OSError):
    """Failed to persist the snapshot."""
