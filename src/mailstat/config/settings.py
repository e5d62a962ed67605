"""Configuration via pydantic-settings with .env support."""

from __future__ import annotations

from datetime import datetime, timedelta
from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

TlsMode = Literal["tls", "starttls", "none"]
ReportView = Literal["window", "all_time"]


class MailstatSettings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(
        env_prefix="MAILSTAT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Account
    email: str = ""
    passwd_cmd: str | None = None

    # IMAP settings
    imap_host: str = "imap.gmail.com"
    imap_port: int = 993
    imap_tls: TlsMode = "tls"
    imap_timeout_seconds: float = 30.0
    folder: str = "INBOX"
    page_size: int = 100
    max_pages: int | None = None

    # Sync window
    lookback_days: int = 14

    # Paths
    snapshot_path: Path | None = None
    chart_path: Path = Path("var/count-by-date.png")

    # Report delivery
    report_view: ReportView = "window"
    send_report: bool = False
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 465
    smtp_tls: TlsMode = "tls"
    smtp_timeout_seconds: float = 30.0
    report_to: str | None = None

    # Retry
    max_retries: int = 3
    initial_backoff_seconds: float = 1.0
    max_backoff_seconds: float = 30.0

    # Logging
    log_level: str = "INFO"

    @property
    def password_command(self) -> str:
        """The credential command, defaulting to the pass store entry for the account."""
        return self.passwd_cmd or f"pass show mailstat/{self.email}"

    @property
    def report_recipient(self) -> str:
        return self.report_to or self.email

    def cutoff(self, now: datetime) -> datetime:
        """Earliest timestamp still in scope for a run started at ``now``."""
        return now - timedelta(days=self.lookback_days)

    def ensure_directories(self) -> None:
        """Create snapshot and chart directories if they don't exist."""
        if self.snapshot_path is not None:
            self.snapshot_path.parent.mkdir(parents=True, exist_ok=True)
        self.chart_path.parent.mkdir(parents=True, exist_ok=True)
