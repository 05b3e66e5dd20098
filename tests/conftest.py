"""In-memory stand-ins for the external tools."""

import re
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest
from PIL import Image

from subtitle_pipeline.config import PipelineSettings
from subtitle_pipeline.errors import OcrFailed, ProbeFailed
from subtitle_pipeline.models import ImageRegion, Track
from subtitle_pipeline.strategy import StrategySelector

SAMPLE_SRT = "1\n00:00:01,000 --> 00:00:02,500\nItss a testt.\n\n"


class FakeProber:
    def __init__(self, tracks: Optional[List[Track]] = None,
                 per_file: Optional[Dict[str, List[Track]]] = None,
                 fail_on: Optional[set] = None) -> None:
        self.tracks = tracks if tracks is not None else []
        self.per_file = per_file or {}
        self.fail_on = fail_on or set()
        self.calls: List[Path] = []

    def probe(self, path: Path, cancel_token=None) -> List[Track]:
        self.calls.append(path)
        if path.name in self.fail_on:
            raise ProbeFailed(f"cannot read {path.name}")
        return list(self.per_file.get(path.name, self.tracks))


class FakeTextExtractor:
    def __init__(self, text: str = SAMPLE_SRT, hook: Optional[Callable] = None) -> None:
        self.text = text
        self.hook = hook
        self.calls: List[int] = []

    def extract_text(self, path: Path, track: Track, cancel_token=None) -> str:
        self.calls.append(track.id)
        if self.hook is not None:
            self.hook(path, track, cancel_token)
        return self.text


def make_regions(count: int) -> List[ImageRegion]:
    return [
        ImageRegion(
            index=i,
            start_ms=i * 2000.0,
            end_ms=i * 2000.0 + 1500.0,
            image=Image.new("L", (8, 4), 255),
        )
        for i in range(1, count + 1)
    ]


class FakeImageExtractor:
    def __init__(self, regions: Optional[List[ImageRegion]] = None) -> None:
        self.regions = regions if regions is not None else make_regions(3)
        self.calls: List[Path] = []

    def extract_images(self, path: Path, track: Track, sidecar: Path, cancel_token=None) -> List[ImageRegion]:
        self.calls.append(sidecar)
        sidecar.write_bytes(b"PG")
        return list(self.regions)


class FakeOcr:
    """Returns ``line <index>`` for every region, failing on *fail_indexes*."""

    def __init__(self, fail_indexes: Optional[set] = None, hook: Optional[Callable] = None) -> None:
        self.fail_indexes = fail_indexes or set()
        self.hook = hook
        self.calls: List[int] = []

    def recognize(self, region: ImageRegion, language: str) -> str:
        self.calls.append(region.index)
        if self.hook is not None:
            self.hook(region)
        if region.index in self.fail_indexes:
            raise OcrFailed(f"unreadable bitmap {region.index}")
        return f"line {region.index}"


_TYPOS = [(re.compile(r"\bItss\b"), "It's"), (re.compile(r"\btestt\b"), "test")]


def typo_rules(text: str):
    total = 0
    for pattern, replacement in _TYPOS:
        text, n = pattern.subn(replacement, text)
        total += n
    return text, total


def srt_track(track_id: int = 0, **kwargs) -> Track:
    kwargs.setdefault("language", "eng")
    return Track(id=track_id, codec_id="S_TEXT/UTF8", **kwargs)


@pytest.fixture
def video(tmp_path: Path) -> Path:
    path = tmp_path / "movie.mkv"
    path.write_bytes(b"\x1a\x45\xdf\xa3")
    return path


@pytest.fixture
def settings() -> PipelineSettings:
    return PipelineSettings(language="en")


@pytest.fixture
def selector() -> StrategySelector:
    return StrategySelector(FakeTextExtractor(), FakeImageExtractor(), FakeOcr())
