"""Progress sinks."""

import logging
from typing import Optional

from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeRemainingColumn,
)

from .interfaces import ProgressSink


def safe_report(sink: Optional[ProgressSink], processed: int, total: int, phase: str) -> None:
    """Forward to *sink*; a failing listener never affects the job."""
    if sink is None:
        return
    try:
        sink.report(processed, total, phase)
    except Exception as exc:
        logging.debug(f"Progress listener raised {type(exc).__name__}: {exc}")


class LoggingProgressSink:
    """Logs each report at DEBUG."""

    def report(self, processed: int, total: int, phase: str) -> None:
        logging.debug(f"  {phase}: {processed}/{total}")


class RichProgressSink:
    """Batch-level progress bar: one tick per finished file.

    Per-file reports only update the description so the bar stays readable.
    """

    def __init__(self, total_files: int) -> None:
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            TimeRemainingColumn(),
        )
        self.task = self.progress.add_task("Extracting subtitles", total=total_files)
        self.current = ""

    def __enter__(self) -> "RichProgressSink":
        self.progress.start()
        return self

    def __exit__(self, *exc) -> None:
        self.progress.stop()

    def start_file(self, name: str) -> None:
        self.current = name
        self.progress.update(self.task, description=f"{name}")

    def file_done(self) -> None:
        self.progress.advance(self.task)

    def report(self, processed: int, total: int, phase: str) -> None:
        self.progress.update(
            self.task, description=f"{self.current} [dim]{phase} {processed}/{total}[/dim]"
        )
