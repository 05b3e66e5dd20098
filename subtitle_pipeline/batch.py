"""Sequential batch queue with pause, resume and cancel."""

import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable, List, Optional

from .config import PipelineSettings
from .errors import InvalidArgument
from .interfaces import CorrectionRules, Prober, ProgressSink
from .job import FileJobRunner, reset, transition
from .models import BatchStatistics, ErrorKind, FileJob, FileResult, JobStatus
from .process import CancellationToken
from .strategy import StrategySelector


class BatchOrchestrator:
    """Runs queued files one at a time in FIFO order.

    A failing file never stops the batch; only :meth:`cancel_all` does.
    All queue access goes through one lock and readers get copies.
    """

    def __init__(
        self,
        prober: Prober,
        selector: StrategySelector,
        rules: CorrectionRules,
        settings: Optional[PipelineSettings] = None,
        progress: Optional[ProgressSink] = None,
        on_job_update: Optional[Callable[[FileJob], None]] = None,
    ) -> None:
        self._lock = threading.RLock()
        self._wake = threading.Condition(self._lock)
        self._jobs: List[FileJob] = []
        self._paused = False
        self._running = False
        self._current: Optional[FileJob] = None
        self._current_token: Optional[CancellationToken] = None
        self._thread: Optional[threading.Thread] = None
        self.on_job_update = on_job_update
        self.runner = FileJobRunner(
            prober,
            selector,
            rules,
            settings=settings,
            progress=progress,
            on_update=self._job_updated,
            lock=self._lock,
        )

    # ------------------------------------------------------------------
    # Queue management
    # ------------------------------------------------------------------

    def enqueue(self, paths: Iterable[Path]) -> List[FileJob]:
        """Add *paths* as PENDING jobs; paths already queued are ignored."""
        added: List[FileJob] = []
        with self._lock:
            known = {self._key(job.path) for job in self._jobs}
            for path in paths:
                path = Path(path)
                key = self._key(path)
                if key in known:
                    logging.debug(f"Already queued: {path}")
                    continue
                known.add(key)
                job = FileJob(path=path)
                self._jobs.append(job)
                added.append(job.snapshot())
            self._wake.notify_all()
        if added:
            logging.info(f"Queued {len(added)} file(s)")
        return added

    @staticmethod
    def _key(path: Path) -> str:
        return str(path.resolve())

    def reorder(self, from_index: int, to_index: int) -> None:
        """Move the PENDING job at *from_index* to the PENDING slot *to_index*."""
        with self._lock:
            size = len(self._jobs)
            if not (0 <= from_index < size and 0 <= to_index < size):
                raise InvalidArgument(f"reorder index out of range: {from_index} -> {to_index}")
            if self._jobs[from_index].status is not JobStatus.PENDING:
                raise InvalidArgument(f"job {from_index} is not pending")
            if self._jobs[to_index].status is not JobStatus.PENDING:
                raise InvalidArgument(f"position {to_index} is not a pending slot")
            job = self._jobs.pop(from_index)
            self._jobs.insert(to_index, job)

    def _pending_indexes(self) -> List[int]:
        return [i for i, job in enumerate(self._jobs) if job.status is JobStatus.PENDING]

    def move_to_top(self, index: int) -> None:
        with self._lock:
            pending = self._pending_indexes()
            if pending:
                self.reorder(index, pending[0])

    def move_to_bottom(self, index: int) -> None:
        with self._lock:
            pending = self._pending_indexes()
            if pending:
                self.reorder(index, pending[-1])

    def clear_completed(self) -> int:
        with self._lock:
            before = len(self._jobs)
            self._jobs = [j for j in self._jobs if j.status is not JobStatus.COMPLETED]
            removed = before - len(self._jobs)
        logging.info(f"Cleared {removed} completed item(s) from the queue")
        return removed

    def clear_all(self) -> int:
        """Drop every job except the one currently being processed."""
        with self._lock:
            before = len(self._jobs)
            self._jobs = [j for j in self._jobs if j is self._current]
            removed = before - len(self._jobs)
            self._wake.notify_all()
        logging.info(f"Cleared {removed} item(s) from the queue")
        return removed

    def retry(self, index: int) -> FileJob:
        """Put a finished job back into the queue as PENDING."""
        with self._lock:
            if not 0 <= index < len(self._jobs):
                raise InvalidArgument(f"no job at index {index}")
            job = self._jobs[index]
            reset(job)
            self._wake.notify_all()
            snapshot = job.snapshot()
        self._job_updated(snapshot)
        return snapshot

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    def snapshot(self) -> List[FileJob]:
        with self._lock:
            return [job.snapshot() for job in self._jobs]

    def results(self) -> List[FileResult]:
        with self._lock:
            return [job.result() for job in self._jobs if job.status.is_terminal]

    def statistics(self) -> BatchStatistics:
        """Counts per status, computed fresh in a single pass."""
        counts = {status: 0 for status in JobStatus}
        corrections = 0
        elapsed = 0.0
        with self._lock:
            for job in self._jobs:
                counts[job.status] += 1
                corrections += job.corrections_applied
                elapsed += job.elapsed_ms
        return BatchStatistics(
            **{status.value: n for status, n in counts.items()},
            total_corrections=corrections,
            total_elapsed_ms=elapsed,
        )

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._running

    @property
    def is_paused(self) -> bool:
        with self._lock:
            return self._paused

    def _job_updated(self, job: FileJob) -> None:
        if self.on_job_update is None:
            return
        try:
            self.on_job_update(job)
        except Exception as exc:
            logging.debug(f"on_job_update raised: {exc}")

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def pause(self) -> None:
        """Stop after the job in flight finishes."""
        with self._lock:
            self._paused = True
        logging.info("Batch paused")

    def resume(self) -> None:
        with self._lock:
            self._paused = False
            self._wake.notify_all()
        logging.info("Batch resumed")

    def cancel_all(self) -> None:
        """Cancel the job in flight and every PENDING job."""
        cancelled: List[FileJob] = []
        with self._lock:
            if self._current_token is not None:
                self._current_token.cancel()
            now = datetime.now()
            for job in self._jobs:
                # The job just handed to the runner is cancelled through its token.
                if job.status is JobStatus.PENDING and job is not self._current:
                    transition(job, JobStatus.CANCELLED)
                    job.error_kind = ErrorKind.CANCELLED
                    job.error_message = "cancelled by user"
                    job.finished_at = now
                    cancelled.append(job.snapshot())
            self._paused = False
            self._wake.notify_all()
        logging.info(f"Cancelling batch ({len(cancelled)} pending file(s) cancelled)")
        for job in cancelled:
            self._job_updated(job)

    def _next_job(self) -> Optional[FileJob]:
        """Return the first PENDING job, blocking while paused; None when drained."""
        with self._lock:
            while True:
                job = next((j for j in self._jobs if j.status is JobStatus.PENDING), None)
                if job is None:
                    return None
                if not self._paused:
                    break
                self._wake.wait()
            self._current = job
            self._current_token = CancellationToken()
            return job

    def start(self, base_directory: Optional[Path] = None) -> List[FileResult]:
        """Process the queue on the calling thread until no PENDING job remains."""
        with self._lock:
            if self._running:
                raise RuntimeError("batch is already running")
            self._running = True
        self.runner.base_directory = base_directory

        logging.info(f"Starting batch of {self.statistics().pending} file(s)")
        try:
            while True:
                job = self._next_job()
                if job is None:
                    break
                logging.info(f"Processing: {job.path}")
                self.runner.run(job, self._current_token)
                with self._lock:
                    self._current = None
                    self._current_token = None
        finally:
            with self._lock:
                self._running = False
                self._current = None
                self._current_token = None

        stats = self.statistics()
        logging.info(
            f"Batch finished: {stats.completed} completed, {stats.error} failed, "
            f"{stats.cancelled} cancelled, {stats.total_corrections} corrections"
        )
        return self.results()

    def start_async(self, base_directory: Optional[Path] = None) -> threading.Thread:
        """Run :meth:`start` on a daemon worker thread."""
        thread = threading.Thread(
            target=self.start, args=(base_directory,), name="subtitle-batch", daemon=True
        )
        self._thread = thread
        thread.start()
        return thread

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Join the worker started by :meth:`start_async`; True once it has exited."""
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()
