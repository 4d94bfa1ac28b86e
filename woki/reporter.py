"""Plain-text rendering of a scrape report."""

from __future__ import annotations

import sys
from typing import TextIO

from .demux import decode_output
from .models import Failed, ScrapeReport, TimedOut

BANNER = "=== woki - Simple Container Log Scraper ==="
SEPARATOR = "--------------------------------"


def render_report(report: ScrapeReport, out: TextIO | None = None) -> None:
    out = out or sys.stdout
    if report.discovered == 0:
        print("No containers found", file=out)
        return

    print(BANNER, file=out)
    print(f"Found {report.discovered} containers\n", file=out)

    for entry in report:
        container = entry.container
        print(f"Container: {container.name} (ID: {container.short_id})", file=out)

        outcome = entry.outcome
        if isinstance(outcome, Failed) and not entry.output:
            print(f"Error fetching logs for container {container.id}: {outcome.message}", file=out)
            print(file=out)
            continue

        print("--- Recent Logs ---", file=out)
        text = decode_output(entry.output)
        if text:
            out.write(text if text.endswith("\n") else text + "\n")
        print(f"\n{SEPARATOR}", file=out)

        if isinstance(outcome, TimedOut):
            print("Timeout reached when reading logs", file=out)
        elif isinstance(outcome, Failed):
            print(f"Error reading logs: {outcome.message}", file=out)

    summary = report.summary()
    print(
        f"Scraped {summary['scraped']} running containers: "
        f"{summary['completed']} completed, {summary['timed_out']} timed out, {summary['failed']} failed",
        file=out,
    )
    print("Log scraping completed", file=out)
