"""Data model shared by the classifier, the job runner and the orchestrator."""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple


class FormatClass(str, Enum):
    """Normalised subtitle format, derived from the demuxer's codec id."""

    TEXT_SRT = "text_srt"
    TEXT_ASS = "text_ass"
    TEXT_WEBVTT = "text_webvtt"
    TEXT_GENERIC = "text_generic"
    IMAGE_PGS = "image_pgs"
    IMAGE_VOBSUB = "image_vobsub"
    IMAGE_DVB = "image_dvb"
    UNKNOWN = "unknown"

    @property
    def is_text(self) -> bool:
        return self.value.startswith("text_")

    @property
    def is_image(self) -> bool:
        return self.value.startswith("image_")


class SpeedHint(str, Enum):
    FAST = "fast"
    OCR_REQUIRED = "ocr_required"
    UNKNOWN = "unknown"


class TrackRole(str, Enum):
    FULL = "full"
    FORCED = "forced"
    CLOSED_CAPTION = "closed_caption"
    CLOSED_CAPTION_FORCED = "closed_caption_forced"


class JobStatus(str, Enum):
    PENDING = "pending"
    PROBING = "probing"
    EXTRACTING = "extracting"
    CORRECTING = "correcting"
    COMPLETED = "completed"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATUSES


_TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.ERROR, JobStatus.CANCELLED})


class ErrorKind(str, Enum):
    PROBE_FAILED = "probe_failed"
    NO_TRACKS_FOUND = "no_tracks_found"
    UNSUPPORTED_CODEC = "unsupported_codec"
    MANUAL_TOOL_REQUIRED = "manual_tool_required"
    EXTRACTION_FAILED = "extraction_failed"
    OCR_FAILED = "ocr_failed"
    CORRECTION_FAILED = "correction_failed"
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"


class CorrectionLevel(str, Enum):
    """Named correction presets.

    ``OFF`` never runs the loop, ``STANDARD`` stops as soon as a pass makes no
    changes (up to 3 passes) and ``THOROUGH`` always runs 5 passes.
    """

    OFF = "off"
    STANDARD = "standard"
    THOROUGH = "thorough"

    @property
    def max_passes(self) -> int:
        return _LEVEL_PRESETS[self][0]

    @property
    def smart_convergence(self) -> bool:
        return _LEVEL_PRESETS[self][1]

    @property
    def display_name(self) -> str:
        return {
            CorrectionLevel.OFF: "Off (raw output)",
            CorrectionLevel.STANDARD: "Standard (recommended)",
            CorrectionLevel.THOROUGH: "Thorough (best quality)",
        }[self]

    @classmethod
    def from_legacy(cls, enable_correction: bool, enable_multi_pass: bool) -> "CorrectionLevel":
        """Map the old pair of on/off switches onto a named level."""
        if not enable_correction:
            return cls.OFF
        return cls.THOROUGH if enable_multi_pass else cls.STANDARD


_LEVEL_PRESETS: Dict[CorrectionLevel, Tuple[int, bool]] = {
    CorrectionLevel.OFF: (0, False),
    CorrectionLevel.STANDARD: (3, True),
    CorrectionLevel.THOROUGH: (5, False),
}


# ---------------------------------------------------------------------------
# Tracks
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Track:
    """One subtitle stream as reported by the container prober."""

    id: int
    codec_id: str
    language: str = "und"
    bitrate_bps: Optional[int] = None
    frame_count: Optional[int] = None
    duration_seconds: Optional[float] = None
    forced: bool = False
    closed_caption: bool = False
    display_name: Optional[str] = None

    @property
    def is_commentary(self) -> bool:
        name = (self.display_name or "").lower()
        return "commentary" in name or "comment" in name


@dataclass(frozen=True)
class ClassifiedTrack:
    """A :class:`Track` enriched with its derived classification."""

    track: Track
    format_class: FormatClass
    speed_hint: SpeedHint
    role: TrackRole

    @property
    def id(self) -> int:
        return self.track.id

    @property
    def language(self) -> str:
        return self.track.language

    def describe(self) -> str:
        parts = [f"#{self.track.id}", self.track.codec_id, self.track.language, self.role.value]
        if self.track.display_name:
            parts.append(f"'{self.track.display_name}'")
        return " ".join(parts)


# ---------------------------------------------------------------------------
# Correction results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CorrectionPassResult:
    pass_number: int
    corrections_made: int
    elapsed_ms: float
    corrections_by_category: Dict[str, int] = field(default_factory=dict)


@dataclass
class ConvergenceResult:
    corrected_text: str
    passes_completed: int
    total_corrections: int
    converged: bool
    pass_stats: List[CorrectionPassResult] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    elapsed_ms: float = 0.0


# ---------------------------------------------------------------------------
# OCR
# ---------------------------------------------------------------------------

@dataclass
class ImageRegion:
    """One timed subtitle bitmap decoded from an image-based sidecar."""

    index: int
    start_ms: float
    end_ms: float
    image: object  # PIL.Image.Image; kept untyped so models stays import-light
    x: int = 0
    y: int = 0
    forced: bool = False
    # Set instead of image when the bitmap could not be decoded.
    error: Optional[str] = None


@dataclass
class SubtitleCue:
    index: int
    start_ms: float
    end_ms: float
    text: str


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------

@dataclass
class FileJob:
    """One queued source file and everything known about its processing."""

    path: Path
    status: JobStatus = JobStatus.PENDING
    selected_track: Optional[ClassifiedTrack] = None
    output_path: Optional[Path] = None
    corrections_applied: int = 0
    passes_completed: int = 0
    error_kind: Optional[ErrorKind] = None
    error_message: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
    size_bytes: int = 0
    added_at: datetime = field(default_factory=datetime.now)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    skipped: bool = False
    progress: float = 0.0
    phase: str = ""

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def elapsed_ms(self) -> float:
        if self.started_at is None or self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds() * 1000.0

    def snapshot(self) -> "FileJob":
        """Return a detached copy safe to hand to another thread."""
        return replace(self, warnings=list(self.warnings))

    def result(self) -> "FileResult":
        return FileResult(
            path=self.path,
            output_path=self.output_path,
            status=self.status,
            corrections_applied=self.corrections_applied,
            error_kind=self.error_kind,
            error_message=self.error_message,
            warnings=list(self.warnings),
            skipped=self.skipped,
            elapsed_ms=self.elapsed_ms,
        )


@dataclass(frozen=True)
class FileResult:
    """Final per-file record handed back to the caller."""

    path: Path
    output_path: Optional[Path]
    status: JobStatus
    corrections_applied: int
    error_kind: Optional[ErrorKind] = None
    error_message: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
    skipped: bool = False
    elapsed_ms: float = 0.0

    def to_dict(self) -> Dict:
        return {
            "file": str(self.path),
            "output": str(self.output_path) if self.output_path else None,
            "status": self.status.value,
            "corrections": self.corrections_applied,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "error": self.error_message,
            "skipped": self.skipped,
            "elapsed_ms": round(self.elapsed_ms, 1),
            "warnings": list(self.warnings),
        }


@dataclass(frozen=True)
class BatchStatistics:
    pending: int = 0
    probing: int = 0
    extracting: int = 0
    correcting: int = 0
    completed: int = 0
    error: int = 0
    cancelled: int = 0
    total_corrections: int = 0
    total_elapsed_ms: float = 0.0

    @property
    def total(self) -> int:
        return (
            self.pending + self.probing + self.extracting + self.correcting
            + self.completed + self.error + self.cancelled
        )

    def count(self, status: JobStatus) -> int:
        return getattr(self, status.value)

    def to_dict(self) -> Dict:
        data = {status.value: self.count(status) for status in JobStatus}
        data["total"] = self.total
        data["total_corrections"] = self.total_corrections
        data["total_elapsed_ms"] = round(self.total_elapsed_ms, 1)
        return data
