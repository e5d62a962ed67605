"""Line chart of message counts per day."""

from __future__ import annotations

import logging
from datetime import date
from pathlib import Path

import matplotlib

matplotlib.use("Agg")

import matplotlib.dates as mdates  # noqa: E402
import matplotlib.pyplot as plt  # noqa: E402

logger = logging.getLogger(__name__)

WIDTH_PX = 1024
HEIGHT_PX = 768
DPI = 100


def render_count_chart(
    date_counts: dict[date, int], path: Path, title: str = "Emails by date"
) -> Path | None:
    """Write a PNG line chart with day on the x-axis and count on the y-axis.

    Overwrites ``path``. Returns None without writing when there is nothing to plot.
    """
    if not date_counts:
        logger.info("No dated records, skipping chart")
        return None

    points = sorted(date_counts.items())
    days = [day for day, _count in points]
    counts = [count for _day, count in points]

    path.parent.mkdir(parents=True, exist_ok=True)
    fig, ax = plt.subplots(figsize=(WIDTH_PX / DPI, HEIGHT_PX / DPI), dpi=DPI)
    try:
        ax.plot(days, counts, color="red")
        ax.set_title(title)
        ax.set_xlabel("Date")
        ax.set_ylabel("Count")
        ax.set_ylim(bottom=0, top=max(counts) + 1)
        ax.xaxis.set_major_formatter(mdates.DateFormatter("%Y-%m-%d"))
        ax.grid(True, alpha=0.3)
        fig.autofmt_xdate()
        fig.savefig(path, dpi=DPI)
    finally:
        plt.close(fig)

    logger.debug("Wrote chart: %s", path)
    return path
