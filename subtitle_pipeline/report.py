"""Batch reports, the end-of-run summary and the track listing table."""

import csv
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence

from rich.console import Console
from rich.table import Table

from .models import BatchStatistics, ClassifiedTrack, FileResult, JobStatus
from .utils import format_duration

TRACK_NAME_WIDTH = 25


def save_report(
    results: Sequence[FileResult],
    stats: BatchStatistics,
    report_format: Optional[str],
    directory: Path = Path("."),
) -> Optional[Path]:
    """Write a JSON or CSV report of *results*; return its path."""
    if not report_format or not results:
        return None
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")

    if report_format == "json":
        report_file = directory / f"subtitle_pipeline_{timestamp}.json"
        with open(report_file, "w", encoding="utf-8") as fh:
            json.dump(
                {
                    "timestamp": timestamp,
                    "stats": stats.to_dict(),
                    "files": [r.to_dict() for r in results],
                },
                fh, indent=2,
            )
    elif report_format == "csv":
        report_file = directory / f"subtitle_pipeline_{timestamp}.csv"
        with open(report_file, "w", newline="", encoding="utf-8") as fh:
            writer = csv.writer(fh)
            writer.writerow(["File", "Status", "Output", "Corrections", "Error Kind", "Error", "Warnings"])
            for r in results:
                writer.writerow([
                    str(r.path),
                    "skipped" if r.skipped else r.status.value,
                    str(r.output_path) if r.output_path else "",
                    r.corrections_applied,
                    r.error_kind.value if r.error_kind else "",
                    r.error_message or "",
                    len(r.warnings),
                ])
    else:
        raise ValueError(f"unknown report format: {report_format}")

    logging.info(f"Report saved to: {report_file}")
    return report_file


def print_summary(
    stats: BatchStatistics,
    results: Sequence[FileResult],
    started: Optional[datetime] = None,
    finished: Optional[datetime] = None,
) -> None:
    """Log a human-readable batch summary."""
    skipped = sum(1 for r in results if r.skipped)
    warned = sum(1 for r in results if r.warnings)

    logging.info("=" * 50)
    logging.info("SUMMARY")
    logging.info("=" * 50)
    logging.info(f"Files queued:         {stats.total}")
    logging.info(f"Subtitles written:    {stats.completed - skipped}")
    logging.info(f"Files skipped:        {skipped}")
    logging.info(f"Errors encountered:   {stats.error}")
    logging.info(f"Cancelled:            {stats.cancelled}")
    logging.info(f"Corrections applied:  {stats.total_corrections}")
    if warned:
        logging.info(f"Files with warnings:  {warned}")

    for r in results:
        if r.status is JobStatus.ERROR:
            kind = r.error_kind.value if r.error_kind else "error"
            logging.info(f"  ✗ {r.path.name}: [{kind}] {r.error_message}")

    if started and finished:
        logging.info("")
        logging.info(f"Started:              {started.strftime('%Y-%m-%d %H:%M:%S')}")
        logging.info(f"Finished:             {finished.strftime('%Y-%m-%d %H:%M:%S')}")
        logging.info(f"Duration:             {format_duration((finished - started).total_seconds())}")


def display_track_list(
    video_file: Path,
    tracks: List[ClassifiedTrack],
    recommended: Optional[ClassifiedTrack],
    console: Optional[Console] = None,
) -> None:
    """Print a table of classified tracks with the recommended pick marked."""
    console = console or Console()
    console.rule(f"[bold]{video_file}")

    if not tracks:
        console.print("No subtitle tracks found")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("ID", style="cyan", width=6)
    table.add_column("Language", style="green", width=10)
    table.add_column("Codec", style="yellow", width=18)
    table.add_column("Format", width=14)
    table.add_column("Role", width=22)
    table.add_column("Speed", width=13)
    table.add_column("Track Name", width=TRACK_NAME_WIDTH)
    table.add_column("Pick", width=6)

    for t in tracks:
        name = t.track.display_name or "-"
        if len(name) > TRACK_NAME_WIDTH:
            name = name[:TRACK_NAME_WIDTH - 3] + "..."
        table.add_row(
            str(t.id),
            t.language,
            t.track.codec_id,
            t.format_class.value,
            t.role.value,
            t.speed_hint.value,
            name,
            "✓" if recommended is not None and t.id == recommended.id else "",
        )
    console.print(table)
