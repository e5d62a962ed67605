"""CSV and HTML table rendering for aggregate rows."""

from __future__ import annotations

import csv
import html
import io
from collections.abc import Iterable, Sequence
from typing import Any


def csv_table(header: Sequence[str], rows: Iterable[Sequence[Any]]) -> str:
    """Render rows as CSV text with a header line, e.g. ``date,count``."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(header)
    for row in rows:
        writer.writerow([str(cell) for cell in row])
    return buffer.getvalue()


def html_table(header: Sequence[str], rows: Iterable[Sequence[Any]]) -> str:
    """Render rows as an HTML table with every cell escaped."""
    head = "".join(f"<th>{html.escape(str(name))}</th>" for name in header)
    lines = ["<table>", f"<thead><tr>{head}</tr></thead>", "<tbody>"]
    for row in rows:
        cells = "".join(f"<td>{html.escape(str(cell))}</td>" for cell in row)
        lines.append(f"<tr>{cells}</tr>")
    lines.append("</tbody>")
    lines.append("</table>")
    return "\n".join(lines)
