"""Exception taxonomy for the extraction pipeline.

Every failure that can end a job carries an :class:`ErrorKind` so callers can
tell "nothing to extract" apart from "extraction broke" without parsing
messages.
"""

from typing import Optional

from .models import ErrorKind, JobStatus


class PipelineError(Exception):
    """Base class for all errors that end a single file's processing."""

    kind: ErrorKind = ErrorKind.EXTRACTION_FAILED

    def __init__(self, message: str, kind: Optional[ErrorKind] = None) -> None:
        super().__init__(message)
        if kind is not None:
            self.kind = kind

    @property
    def message(self) -> str:
        return str(self)


class ProbeFailed(PipelineError):
    kind = ErrorKind.PROBE_FAILED


class NoTracksFound(PipelineError):
    kind = ErrorKind.NO_TRACKS_FOUND


class UnsupportedCodec(PipelineError):
    kind = ErrorKind.UNSUPPORTED_CODEC


class ManualToolRequired(PipelineError):
    kind = ErrorKind.MANUAL_TOOL_REQUIRED


class ExtractionFailed(PipelineError):
    kind = ErrorKind.EXTRACTION_FAILED


class OcrFailed(PipelineError):
    """Raised by an OCR engine for a single region; never ends a job."""

    kind = ErrorKind.OCR_FAILED


class CorrectionFailed(PipelineError):
    kind = ErrorKind.CORRECTION_FAILED


class OperationCancelled(PipelineError):
    kind = ErrorKind.CANCELLED


class ProcessTimeout(PipelineError):
    kind = ErrorKind.TIMEOUT


class InvalidArgument(ValueError):
    """Raised for caller mistakes such as ``max_passes < 1``."""


class InvalidTransition(RuntimeError):
    """Raised when a job is asked to move to a state it cannot reach."""

    def __init__(self, current: JobStatus, target: JobStatus) -> None:
        super().__init__(f"illegal job transition {current.value} -> {target.value}")
        self.current = current
        self.target = target
