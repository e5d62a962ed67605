"""Command-line entry point for mailstat."""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import datetime

from mailstat.config.settings import MailstatSettings
from mailstat.core.aggregator import count_by_domain
from mailstat.core.credentials import resolve_password
from mailstat.core.models import Record, SyncProgress
from mailstat.core.smtp_client import SmtpSender
from mailstat.pipeline.syncer import SnapshotSyncer
from mailstat.report.emitter import Report, ReportEmitter


def setup_logging(level: str) -> None:
    """Configure logging with timestamp and module info."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def on_progress(progress: SyncProgress) -> None:
    """Print progress updates to stderr so stdout stays CSV."""
    last_seen = progress.last_seen.date().isoformat() if progress.last_seen else "-"
    print(
        f"[{progress.current_stage}] "
        f"page={progress.page} "
        f"last={last_seen} "
        f"cached={progress.records_loaded} "
        f"new={progress.records_new} "
        f"skipped={progress.erroneous_skipped}",
        end="\r",
        file=sys.stderr,
        flush=True,
    )


def _add_snapshot_args(subparser: argparse.ArgumentParser) -> None:
    """Add --cache, --days and --send flags to a subparser."""
    subparser.add_argument(
        "--cache",
        default=None,
        help="Snapshot file path (default: from settings)",
    )
    subparser.add_argument(
        "--days",
        "-d",
        type=int,
        default=None,
        help="Lookback window in days",
    )
    subparser.add_argument(
        "--all-time",
        action="store_true",
        dest="all_time",
        help="Chart and email the whole snapshot instead of the lookback window",
    )
    subparser.add_argument(
        "--send",
        action="store_true",
        default=None,
        help="Email the report",
    )


def _add_account_args(subparser: argparse.ArgumentParser) -> None:
    """Add mailbox connection flags to a subparser."""
    subparser.add_argument("--email", "-e", help="Mailbox login address")
    subparser.add_argument("--passwd-cmd", "-p", dest="passwd_cmd", help="Password command")
    subparser.add_argument("--imap-host", dest="imap_host", help="IMAP server host")
    subparser.add_argument("--imap-port", dest="imap_port", type=int, help="IMAP server port")
    subparser.add_argument(
        "--max-pages",
        dest="max_pages",
        type=int,
        default=None,
        help="Stop after this many pages",
    )


def _validate_args(args: argparse.Namespace) -> None:
    """Reject negative or zero numeric values."""
    if getattr(args, "days", None) is not None and args.days < 0:
        print("Error: --days must be non-negative", file=sys.stderr)
        sys.exit(1)
    if getattr(args, "max_pages", None) is not None and args.max_pages <= 0:
        print("Error: --max-pages must be positive", file=sys.stderr)
        sys.exit(1)
    if getattr(args, "imap_port", None) is not None and not 0 < args.imap_port < 65536:
        print("Error: --imap-port must be between 1 and 65535", file=sys.stderr)
        sys.exit(1)


def apply_overrides(settings: MailstatSettings, args: argparse.Namespace) -> MailstatSettings:
    """Return settings with any CLI flags that were given layered on top."""
    mapping = {
        "email": "email",
        "passwd_cmd": "passwd_cmd",
        "imap_host": "imap_host",
        "imap_port": "imap_port",
        "max_pages": "max_pages",
        "days": "lookback_days",
        "send": "send_report",
    }
    update: dict[str, object] = {}
    for arg_name, field_name in mapping.items():
        value = getattr(args, arg_name, None)
        if value is not None:
            update[field_name] = value
    cache = getattr(args, "cache", None)
    if cache is not None:
        update["snapshot_path"] = cache
    if getattr(args, "all_time", False):
        update["report_view"] = "all_time"
    if not update:
        return settings
    return MailstatSettings.model_validate({**settings.model_dump(), **update})


def build_emitter(settings: MailstatSettings) -> ReportEmitter:
    """Create the report emitter. No credentials are needed until sending."""
    return ReportEmitter(
        settings.chart_path,
        view=settings.report_view,
        from_address=settings.email,
        to_address=settings.report_recipient,
    )


def build_sender(settings: MailstatSettings) -> SmtpSender:
    """Create the SMTP sender, resolving the account password."""
    return SmtpSender(
        settings.smtp_host,
        settings.smtp_port,
        username=settings.email,
        password=resolve_password(settings.password_command),
        tls=settings.smtp_tls,
        timeout_seconds=settings.smtp_timeout_seconds,
    )


def print_report(report: Report) -> None:
    """Print both aggregates of the selected view as CSV on stdout."""
    view = report.selected
    print(view.date_csv(), end="", flush=True)
    print(view.domain_csv(), end="", flush=True)
    if view.domain_counts.skipped:
        print(
            f"{view.domain_counts.skipped} records with unparseable sender addresses",
            file=sys.stderr,
        )


def emit_report(settings: MailstatSettings, records: list[Record], cutoff: datetime) -> None:
    """Print the aggregates, then render the chart and optionally send the report.

    The CSV goes out first, so the aggregates are printed even when writing
    the chart or sending fails.
    """
    emitter = build_emitter(settings)
    report = emitter.build(records, cutoff)
    print_report(report)

    report = emitter.render_chart(report)
    if report.chart_path:
        print(f"Chart written to {report.chart_path}", file=sys.stderr)
    if settings.send_report:
        message = emitter.send(report, build_sender(settings))
        print(f"Report sent to {message.to}", file=sys.stderr)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="mailstat - Mailbox metadata snapshot and statistics"
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # sync command
    sync_parser = subparsers.add_parser("sync", help="Sync the snapshot and report")
    _add_account_args(sync_parser)
    _add_snapshot_args(sync_parser)

    # report command
    report_parser = subparsers.add_parser("report", help="Report from the snapshot only")
    _add_snapshot_args(report_parser)

    # status command
    status_parser = subparsers.add_parser("status", help="Show snapshot summary")
    status_parser.add_argument("--cache", default=None, help="Snapshot file path")

    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        sys.exit(1)

    _validate_args(args)

    settings = apply_overrides(MailstatSettings(), args)
    setup_logging(settings.log_level)
    settings.ensure_directories()

    now = datetime.now().astimezone()
    syncer = SnapshotSyncer(settings=settings, on_progress=on_progress)

    try:
        if args.command == "sync":
            if not settings.email:
                print("Error: --email (or MAILSTAT_EMAIL) is required", file=sys.stderr)
                sys.exit(1)
            result = syncer.run(now)
            print(
                f"\nLoaded {len(result.records)} envelopes, {result.new_records} new "
                f"({result.stop_reason.value})",
                file=sys.stderr,
            )
            emit_report(settings, result.records, result.cutoff)

        elif args.command == "report":
            records = syncer.load_snapshot()
            emit_report(settings, records, settings.cutoff(now))

        elif args.command == "status":
            store = syncer.store
            if store is None:
                print("Error: no snapshot configured (--cache)", file=sys.stderr)
                sys.exit(1)
            records = store.load_or_empty()
            print(f"Snapshot: {store.path}")
            print(f"  records: {len(records)}")
            if records:
                oldest = min(record.timestamp for record in records)
                newest = max(record.timestamp for record in records)
                print(f"  oldest:  {oldest.isoformat()}")
                print(f"  newest:  {newest.isoformat()}")
                domains = count_by_domain(records)
                print(f"  domains: {len(domains.counts)}")

    except KeyboardInterrupt:
        print("\n\nInterrupted by user", file=sys.stderr)
        sys.exit(130)
    except Exception as e:
        print(f"\nError: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        syncer.close()


if __name__ == "__main__":
    main()
