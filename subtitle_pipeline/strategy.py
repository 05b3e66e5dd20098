"""Choosing and running the extraction path for a classified track.

Every :class:`FormatClass` maps to exactly one :class:`StrategyKind`; the
table is checked for completeness when this module is imported.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .errors import ManualToolRequired, OcrFailed, OperationCancelled, ProcessTimeout, UnsupportedCodec
from .interfaces import ImageExtractor, OcrEngine, TextExtractor
from .models import ClassifiedTrack, FormatClass, SubtitleCue
from .process import CancellationToken, ocr_timeout
from .subtitles import compose_srt


class StrategyKind(str, Enum):
    TEXT_COPY = "text_copy"
    IMAGE_OCR = "image_ocr"
    MANUAL_TOOL = "manual_tool"
    UNSUPPORTED = "unsupported"


STRATEGY_BY_FORMAT: Dict[FormatClass, StrategyKind] = {
    FormatClass.TEXT_SRT: StrategyKind.TEXT_COPY,
    FormatClass.TEXT_ASS: StrategyKind.TEXT_COPY,
    FormatClass.TEXT_WEBVTT: StrategyKind.TEXT_COPY,
    FormatClass.TEXT_GENERIC: StrategyKind.TEXT_COPY,
    FormatClass.IMAGE_PGS: StrategyKind.IMAGE_OCR,
    FormatClass.IMAGE_VOBSUB: StrategyKind.MANUAL_TOOL,
    FormatClass.IMAGE_DVB: StrategyKind.UNSUPPORTED,
    FormatClass.UNKNOWN: StrategyKind.UNSUPPORTED,
}

_unmapped = set(FormatClass) - set(STRATEGY_BY_FORMAT)
if _unmapped:
    raise RuntimeError(f"no extraction strategy for: {sorted(f.value for f in _unmapped)}")


VOBSUB_GUIDANCE = (
    "VobSub subtitles need a dedicated OCR tool. Extract the track with "
    "mkvextract and convert the .idx/.sub pair with Subtitle Edit, then re-run."
)


@dataclass
class ExtractionRequest:
    path: Path
    track: ClassifiedTrack
    sidecar: Path
    ocr_language: str
    cancel_token: CancellationToken
    # Called as on_frame(done, total) after every OCR'd bitmap.
    on_frame: Callable[[int, int], None] = lambda done, total: None
    # Called once the image sidecar has been demuxed.
    on_sidecar: Callable[[], None] = lambda: None


@dataclass
class ExtractionOutcome:
    text: str
    warnings: List[str] = field(default_factory=list)
    frames_total: int = 0
    frames_failed: int = 0


class ExtractionStrategy:
    kind: StrategyKind

    def check(self, request: ExtractionRequest) -> None:
        """Raise before any work starts when this track cannot be extracted."""

    def extract(self, request: ExtractionRequest) -> ExtractionOutcome:
        raise NotImplementedError


class TextCopyStrategy(ExtractionStrategy):
    kind = StrategyKind.TEXT_COPY

    def __init__(self, extractor: TextExtractor) -> None:
        self.extractor = extractor

    def extract(self, request: ExtractionRequest) -> ExtractionOutcome:
        text = self.extractor.extract_text(request.path, request.track.track, request.cancel_token)
        return ExtractionOutcome(text=text)


class ImageOcrStrategy(ExtractionStrategy):
    """Demux the bitmap sidecar and OCR it one region at a time.

    A region that fails OCR is left out of the output and recorded as a
    warning; the rest of the track still completes.
    """

    kind = StrategyKind.IMAGE_OCR

    def __init__(self, extractor: ImageExtractor, engine: OcrEngine) -> None:
        self.extractor = extractor
        self.engine = engine

    def extract(self, request: ExtractionRequest) -> ExtractionOutcome:
        token = request.cancel_token
        regions = self.extractor.extract_images(
            request.path, request.track.track, request.sidecar, token
        )
        request.on_sidecar()
        token.raise_if_cancelled()

        deadline = time.monotonic() + ocr_timeout(request.sidecar)
        cues: List[SubtitleCue] = []
        warnings: List[str] = []
        total = len(regions)

        for done, region in enumerate(regions, 1):
            token.raise_if_cancelled()
            if time.monotonic() > deadline:
                raise ProcessTimeout(f"OCR exceeded its time limit after {done - 1}/{total} subtitles")
            try:
                if region.error:
                    raise OcrFailed(region.error)
                text = self.engine.recognize(region, request.ocr_language)
            except OperationCancelled:
                raise
            except Exception as exc:
                # A bad frame never stops the track.
                logging.debug(f"Frame {region.index} OCR failed: {exc!r}")
                warnings.append(f"subtitle {region.index} at {_clock(region.start_ms)}: {exc}")
                text = ""
            cues.append(SubtitleCue(region.index, region.start_ms, region.end_ms, text))
            request.on_frame(done, total)

        if warnings:
            logging.warning(f"{request.path.name}: OCR failed for {len(warnings)}/{total} subtitles")
        return ExtractionOutcome(
            text=compose_srt(cues),
            warnings=warnings,
            frames_total=total,
            frames_failed=len(warnings),
        )


class _RefusingStrategy(ExtractionStrategy):
    """A strategy whose :meth:`check` always raises."""

    def extract(self, request: ExtractionRequest) -> ExtractionOutcome:
        self.check(request)
        return ExtractionOutcome(text="")


class ManualToolStrategy(_RefusingStrategy):
    kind = StrategyKind.MANUAL_TOOL

    def check(self, request: ExtractionRequest) -> None:
        raise ManualToolRequired(VOBSUB_GUIDANCE)


class UnsupportedStrategy(_RefusingStrategy):
    kind = StrategyKind.UNSUPPORTED

    def check(self, request: ExtractionRequest) -> None:
        track = request.track
        raise UnsupportedCodec(
            f"track #{track.id} uses {track.track.codec_id or 'an unknown codec'} "
            f"({track.format_class.value}), which cannot be extracted"
        )


class StrategySelector:
    """Builds the strategy for a track's format class."""

    def __init__(
        self,
        text_extractor: TextExtractor,
        image_extractor: ImageExtractor,
        ocr_engine: Optional[OcrEngine],
    ) -> None:
        self._strategies: Dict[StrategyKind, ExtractionStrategy] = {
            StrategyKind.TEXT_COPY: TextCopyStrategy(text_extractor),
            StrategyKind.MANUAL_TOOL: ManualToolStrategy(),
            StrategyKind.UNSUPPORTED: UnsupportedStrategy(),
        }
        if ocr_engine is not None:
            self._strategies[StrategyKind.IMAGE_OCR] = ImageOcrStrategy(image_extractor, ocr_engine)

    def select(self, track: ClassifiedTrack) -> ExtractionStrategy:
        kind = STRATEGY_BY_FORMAT[track.format_class]
        strategy = self._strategies.get(kind)
        if strategy is None:
            # No OCR engine configured.
            raise UnsupportedCodec(
                f"track #{track.id} is {track.format_class.value} and needs OCR, "
                "but no OCR engine is available"
            )
        return strategy


def _clock(ms: float) -> str:
    seconds = int(ms // 1000)
    return f"{seconds // 3600:02d}:{seconds % 3600 // 60:02d}:{seconds % 60:02d}"
