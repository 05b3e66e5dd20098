"""Per-file state machine: probe, extract, correct, write."""

import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, FrozenSet, Optional

from .classifier import select_best
from .config import PipelineSettings
from .correction import ConvergenceLoop, TextCorrector, apply_level
from .errors import InvalidTransition, NoTracksFound, OperationCancelled, PipelineError
from .interfaces import CorrectionRules, Prober, ProgressSink
from .language import normalize_language
from .models import ErrorKind, FileJob, JobStatus
from .process import CancellationToken
from .progress import safe_report
from .strategy import ExtractionRequest, StrategyKind, StrategySelector
from .subtitles import atomic_write, cue_count, output_path_for

_ALLOWED: Dict[JobStatus, FrozenSet[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.PROBING}),
    # PROBING -> COMPLETED is the "output already exists" skip.
    JobStatus.PROBING: frozenset({JobStatus.EXTRACTING, JobStatus.COMPLETED}),
    JobStatus.EXTRACTING: frozenset({JobStatus.CORRECTING}),
    JobStatus.CORRECTING: frozenset({JobStatus.COMPLETED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.ERROR: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}

# Fraction of a job done when each milestone is reached.
PROGRESS_PROBED = 0.1
PROGRESS_SIDECAR_READY = 0.3
PROGRESS_TEXT_EXTRACTED = 0.5
PROGRESS_OCR_START = 0.5
PROGRESS_OCR_END = 0.9
PROGRESS_CORRECTED = 0.95


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    if current.is_terminal:
        return False
    if target in (JobStatus.ERROR, JobStatus.CANCELLED):
        return True
    return target in _ALLOWED[current]


def transition(job: FileJob, target: JobStatus) -> None:
    """Move *job* to *target* or raise :class:`InvalidTransition`."""
    if not can_transition(job.status, target):
        raise InvalidTransition(job.status, target)
    job.status = target


def reset(job: FileJob) -> None:
    """Return a finished job to PENDING with its results cleared."""
    if not job.status.is_terminal:
        raise InvalidTransition(job.status, JobStatus.PENDING)
    job.status = JobStatus.PENDING
    job.selected_track = None
    job.output_path = None
    job.corrections_applied = 0
    job.passes_completed = 0
    job.error_kind = None
    job.error_message = None
    job.warnings = []
    job.started_at = None
    job.finished_at = None
    job.skipped = False
    job.progress = 0.0
    job.phase = ""


class FileJobRunner:
    """Drives one :class:`FileJob` from PENDING to a terminal state.

    Failures are recorded on the job, never raised. *lock* guards every
    mutation so other threads can take consistent snapshots.
    """

    def __init__(
        self,
        prober: Prober,
        selector: StrategySelector,
        rules: CorrectionRules,
        settings: Optional[PipelineSettings] = None,
        progress: Optional[ProgressSink] = None,
        on_update: Optional[Callable[[FileJob], None]] = None,
        lock: Optional[threading.RLock] = None,
    ) -> None:
        self.prober = prober
        self.selector = selector
        self.settings = settings or PipelineSettings()
        self.progress = progress
        self.on_update = on_update
        self.lock = lock or threading.RLock()
        self.loop = ConvergenceLoop(TextCorrector(rules), progress=progress)
        self.base_directory: Optional[Path] = None

    # ------------------------------------------------------------------
    # State helpers
    # ------------------------------------------------------------------

    def _move(self, job: FileJob, target: JobStatus, progress: float) -> None:
        with self.lock:
            transition(job, target)
            job.progress = progress
            job.phase = target.value
        logging.debug(f"{job.name}: -> {target.value}")
        safe_report(self.progress, int(progress * 100), 100, target.value)
        self._notify(job)

    def _set_progress(self, job: FileJob, progress: float, phase: str) -> None:
        with self.lock:
            job.progress = progress
            job.phase = phase

    def _notify(self, job: FileJob) -> None:
        if self.on_update is None:
            return
        with self.lock:
            snapshot = job.snapshot()
        try:
            self.on_update(snapshot)
        except Exception as exc:
            logging.debug(f"Job update listener raised: {exc}")

    def _finish(self, job: FileJob, status: JobStatus, kind: Optional[ErrorKind] = None,
                message: Optional[str] = None) -> None:
        with self.lock:
            transition(job, status)
            job.error_kind = kind
            job.error_message = message
            job.finished_at = datetime.now()
            job.phase = status.value
            if status is JobStatus.COMPLETED:
                job.progress = 1.0
        safe_report(self.progress, 100, 100, status.value)
        self._notify(job)

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(self, job: FileJob, cancel_token: Optional[CancellationToken] = None) -> FileJob:
        token = cancel_token or CancellationToken()
        settings = self.settings
        sidecar: Optional[Path] = None

        with self.lock:
            job.started_at = datetime.now()
            try:
                job.size_bytes = job.path.stat().st_size
            except OSError:
                job.size_bytes = 0

        try:
            token.raise_if_cancelled()
            self._move(job, JobStatus.PROBING, 0.0)
            tracks = self.prober.probe(job.path, token)
            if not tracks:
                raise NoTracksFound(f"no subtitle tracks in {job.name}")

            best = select_best(
                tracks,
                settings.language,
                prefer_forced=settings.prefer_forced,
                prefer_closed_captions=settings.prefer_closed_captions,
            )
            language = normalize_language(best.language)
            if language in ("", "und"):
                language = normalize_language(settings.language)
            output = output_path_for(job.path, language, settings.output_dir, self.base_directory)
            with self.lock:
                job.selected_track = best
                job.output_path = output
            logging.info(f"{job.name}: selected {best.describe()} ({best.format_class.value})")

            if output.exists() and not settings.overwrite:
                logging.info(f"{job.name}: {output.name} already exists, skipping")
                with self.lock:
                    job.skipped = True
                self._finish(job, JobStatus.COMPLETED)
                return job

            token.raise_if_cancelled()
            strategy = self.selector.select(best)
            request = ExtractionRequest(
                path=job.path,
                track=best,
                sidecar=output.with_suffix(".sup"),
                ocr_language=settings.effective_ocr_language,
                cancel_token=token,
                on_frame=lambda done, total: self._on_frame(job, done, total),
                on_sidecar=lambda: self._set_progress(job, PROGRESS_SIDECAR_READY, "ocr"),
            )
            # Refusing strategies fail here, before any extraction starts.
            strategy.check(request)

            self._move(job, JobStatus.EXTRACTING, PROGRESS_PROBED)
            if strategy.kind is StrategyKind.IMAGE_OCR:
                sidecar = request.sidecar
                sidecar.parent.mkdir(parents=True, exist_ok=True)
            outcome = strategy.extract(request)
            with self.lock:
                job.warnings.extend(outcome.warnings)
            if strategy.kind is StrategyKind.TEXT_COPY:
                self._set_progress(job, PROGRESS_TEXT_EXTRACTED, "extracted")

            token.raise_if_cancelled()
            self._move(job, JobStatus.CORRECTING, job.progress)
            result = apply_level(
                self.loop,
                outcome.text,
                settings.correction_level,
                settings.max_passes,
                settings.smart_convergence,
                token,
            )
            with self.lock:
                job.corrections_applied = result.total_corrections
                job.passes_completed = result.passes_completed
                job.warnings.extend(result.warnings)
            self._set_progress(job, PROGRESS_CORRECTED, "writing")

            token.raise_if_cancelled()
            atomic_write(output, result.corrected_text)
            self._finish(job, JobStatus.COMPLETED)
            logging.info(
                f"{job.name}: wrote {output.name} ({cue_count(result.corrected_text)} subtitles, "
                f"{result.total_corrections} corrections, {result.passes_completed} passes)"
            )

        except OperationCancelled:
            logging.info(f"{job.name}: cancelled")
            self._finish(job, JobStatus.CANCELLED, ErrorKind.CANCELLED, "cancelled by user")
        except PipelineError as exc:
            logging.error(f"{job.name}: {exc.message}")
            self._finish(job, JobStatus.ERROR, exc.kind, exc.message)
        except InvalidTransition:
            raise
        except Exception as exc:
            logging.debug(f"{job.name}: unexpected failure", exc_info=True)
            logging.error(f"{job.name}: {type(exc).__name__}: {exc}")
            self._finish(job, JobStatus.ERROR, ErrorKind.EXTRACTION_FAILED, str(exc))
        finally:
            if sidecar is not None:
                self._cleanup_sidecar(job, sidecar)

        return job

    def _on_frame(self, job: FileJob, done: int, total: int) -> None:
        fraction = done / total if total else 1.0
        self._set_progress(
            job, PROGRESS_OCR_START + (PROGRESS_OCR_END - PROGRESS_OCR_START) * fraction, "ocr"
        )
        safe_report(self.progress, done, total, "ocr")

    def _cleanup_sidecar(self, job: FileJob, sidecar: Path) -> None:
        keep = self.settings.preserve_sup and job.status is JobStatus.COMPLETED
        if keep or not sidecar.exists():
            return
        try:
            sidecar.unlink()
            logging.debug(f"Removed {sidecar}")
        except OSError as exc:
            logging.warning(f"Could not remove {sidecar}: {exc}")
