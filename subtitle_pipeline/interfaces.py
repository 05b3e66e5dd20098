"""Narrow interfaces to the external collaborators of a job.

The pipeline only ever talks to demuxers, OCR engines and rule tables through
these protocols, so tests can substitute in-memory fakes.
"""

from pathlib import Path
from typing import Dict, List, Optional, Protocol, Tuple, Union

from .models import ImageRegion, Track
from .process import CancellationToken

# A rule set returns either (text, count) or (text, count, by_category).
CorrectionOutput = Union[Tuple[str, int], Tuple[str, int, Dict[str, int]]]


class Prober(Protocol):
    def probe(self, path: Path, cancel_token: Optional[CancellationToken] = None) -> List[Track]:
        """Return every subtitle track in *path*; raise ``ProbeFailed`` on error."""


class TextExtractor(Protocol):
    def extract_text(
        self,
        path: Path,
        track: Track,
        cancel_token: Optional[CancellationToken] = None,
    ) -> str:
        """Return the track's subtitles as SRT text."""


class ImageExtractor(Protocol):
    def extract_images(
        self,
        path: Path,
        track: Track,
        sidecar: Path,
        cancel_token: Optional[CancellationToken] = None,
    ) -> List[ImageRegion]:
        """Demux the track to *sidecar* and decode its timed bitmaps."""


class OcrEngine(Protocol):
    def recognize(self, region: ImageRegion, language: str) -> str:
        """Return the text in *region*; raise ``OcrFailed`` for this region only."""


class CorrectionRules(Protocol):
    def __call__(self, text: str) -> CorrectionOutput:
        ...


class ProgressSink(Protocol):
    def report(self, processed: int, total: int, phase: str) -> None:
        ...
