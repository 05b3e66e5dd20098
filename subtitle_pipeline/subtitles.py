"""SRT composition and output file handling."""

import logging
import os
import tempfile
from datetime import timedelta
from pathlib import Path
from typing import Iterable, List, Optional

import srt

from .models import SubtitleCue


def compose_srt(cues: Iterable[SubtitleCue]) -> str:
    """Render cues as SRT; cues without text are dropped and the rest renumbered."""
    subtitles: List[srt.Subtitle] = [
        srt.Subtitle(
            index=cue.index,
            start=timedelta(milliseconds=cue.start_ms),
            end=timedelta(milliseconds=max(cue.end_ms, cue.start_ms + 1)),
            content=cue.text.strip(),
        )
        for cue in cues
        if cue.text.strip()
    ]
    return srt.compose(subtitles)


def cue_count(text: str) -> int:
    """Number of cues in *text*; 0 when it is not parseable SRT."""
    try:
        return sum(1 for _ in srt.parse(text))
    except srt.SRTParseError:
        return 0


def output_path_for(
    video: Path,
    language: str,
    output_dir: Optional[Path] = None,
    base_directory: Optional[Path] = None,
) -> Path:
    """Return ``<stem>.<lang>.srt`` beside *video* or under *output_dir*.

    With *base_directory* the video's folder structure below it is mirrored
    inside *output_dir*.
    """
    filename = f"{video.stem}.{language}.srt"
    if output_dir is None:
        return video.parent / filename
    if base_directory is not None:
        try:
            return output_dir / video.parent.relative_to(base_directory) / filename
        except ValueError:
            pass
    return output_dir / filename


def atomic_write(path: Path, text: str) -> None:
    """Write *text* to *path* through a temp file in the same directory."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as fh:
            fh.write(text)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    logging.debug(f"Wrote {path}")
