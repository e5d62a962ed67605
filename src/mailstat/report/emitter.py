"""Report assembly: aggregate views, text tables, chart, and the composed email."""

from __future__ import annotations

import html
import logging
from collections.abc import Sequence
from dataclasses import dataclass, replace
from datetime import date, datetime
from pathlib import Path

from mailstat.core.aggregator import (
    DomainCounts,
    count_by_date,
    count_by_domain,
    filter_since,
    sorted_date_counts,
    sorted_domain_counts,
)
from mailstat.core.exceptions import MailstatError
from mailstat.core.models import ERRONEOUS_DATE, Record
from mailstat.core.smtp_client import ComposedMessage, SmtpSender
from mailstat.report.chart import render_count_chart
from mailstat.report.formatter import csv_table, html_table

logger = logging.getLogger(__name__)

DATE_HEADER = ("date", "count")
DOMAIN_HEADER = ("domain", "count")


@dataclass(frozen=True)
class AggregateView:
    """Both aggregates over one slice of the snapshot."""

    name: str
    record_count: int
    date_counts: dict[date, int]
    domain_counts: DomainCounts

    def date_rows(self) -> list[tuple[date, int]]:
        return sorted_date_counts(self.date_counts)

    def domain_rows(self) -> list[tuple[str, int]]:
        return sorted_domain_counts(self.domain_counts.counts)

    def date_csv(self) -> str:
        return csv_table(DATE_HEADER, [(day.isoformat(), count) for day, count in self.date_rows()])

    def domain_csv(self) -> str:
        return csv_table(DOMAIN_HEADER, self.domain_rows())


@dataclass(frozen=True)
class Report:
    cutoff: datetime
    window: AggregateView
    all_time: AggregateView
    view: str = "window"
    chart_path: Path | None = None

    @property
    def selected(self) -> AggregateView:
        return self.all_time if self.view == "all_time" else self.window


def build_view(
    name: str, records: Sequence[Record], sentinel: datetime = ERRONEOUS_DATE
) -> AggregateView:
    return AggregateView(
        name=name,
        record_count=len(records),
        date_counts=count_by_date(records, sentinel),
        domain_counts=count_by_domain(records, sentinel),
    )


class ReportEmitter:
    """Turns a snapshot into tables, a chart, and optionally an email."""

    def __init__(
        self,
        chart_path: Path,
        *,
        view: str = "window",
        sender: SmtpSender | None = None,
        from_address: str = "",
        to_address: str = "",
        sentinel: datetime = ERRONEOUS_DATE,
    ) -> None:
        if view not in ("window", "all_time"):
            raise ValueError(f"Invalid report view: {view}")
        self._chart_path = chart_path
        self._view = view
        self._sender = sender
        self._from_address = from_address
        self._to_address = to_address
        self._sentinel = sentinel

    def build(self, records: Sequence[Record], cutoff: datetime) -> Report:
        """Aggregate both views. Nothing is written; see ``render_chart``."""
        return Report(
            cutoff=cutoff,
            window=build_view("window", filter_since(records, cutoff), self._sentinel),
            all_time=build_view("all_time", records, self._sentinel),
            view=self._view,
        )

    def render_chart(self, report: Report) -> Report:
        """Write the chart for the selected view and return the report pointing at it."""
        chart_path = render_count_chart(report.selected.date_counts, self._chart_path)
        return replace(report, chart_path=chart_path)

    def compose(self, report: Report) -> ComposedMessage:
        """Build the HTML report message with the chart attached."""
        view = report.selected
        if report.view == "all_time":
            heading = "Mail statistics (all time)"
        else:
            heading = f"Mail statistics since {report.cutoff:%Y-%m-%d}"

        parts = [
            f"<h2>{html.escape(heading)}</h2>",
            f"<p>{view.record_count} messages</p>",
            "<h3>By date</h3>",
            html_table(DATE_HEADER, [(d.isoformat(), c) for d, c in view.date_rows()]),
            "<h3>By sender domain</h3>",
            html_table(DOMAIN_HEADER, view.domain_rows()),
        ]
        if view.domain_counts.skipped:
            parts.append(
                f"<p>{view.domain_counts.skipped} messages with unparseable sender addresses</p>"
            )

        attachment = None
        if report.chart_path is not None and report.chart_path.exists():
            attachment = report.chart_path.read_bytes()

        return ComposedMessage(
            sender=self._from_address,
            to=self._to_address,
            subject=heading,
            html_body="\n".join(parts),
            attachment=attachment,
            attachment_mime_type="image/png",
            attachment_filename=report.chart_path.name if report.chart_path else "chart.png",
        )

    def send(self, report: Report, sender: SmtpSender | None = None) -> ComposedMessage:
        """Compose the report and hand it to ``sender`` or the configured SMTP sender."""
        sender = sender or self._sender
        if sender is None:
            raise MailstatError("No mail sender configured")
        message = self.compose(report)
        sender.send(message)
        return message
