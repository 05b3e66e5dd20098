"""Concrete collaborators backed by mkvtoolnix, ffmpeg and Tesseract."""

import json
import logging
import re
import tempfile
from pathlib import Path
from typing import Dict, List, Optional

import pytesseract

from .classifier import classify_format
from .errors import ExtractionFailed, OcrFailed, ProbeFailed
from .language import tesseract_language
from .models import FormatClass, ImageRegion, Track
from .pgs import PgsFormatError, read_sup
from .process import CancellationToken, extraction_timeout, run_tool

MKV_FORMATS = {".mkv", ".mka", ".mks"}
FFMPEG_FORMATS = {".mp4", ".webm", ".mov", ".avi", ".m4v"}
VIDEO_EXTENSIONS = MKV_FORMATS | FFMPEG_FORMATS

PROBE_TIMEOUT_SECONDS = 60.0
CONVERT_TIMEOUT_SECONDS = 300.0
# Per-bitmap limit handed to pytesseract.
OCR_FRAME_TIMEOUT_SECONDS = 30

# Words in a track name that mark a closed-caption or SDH stream.
CC_NAME_WORDS = ("cc", "sdh")

_TEXT_SUFFIXES: Dict[FormatClass, str] = {
    FormatClass.TEXT_SRT: ".srt",
    FormatClass.TEXT_ASS: ".ass",
    FormatClass.TEXT_WEBVTT: ".vtt",
    FormatClass.TEXT_GENERIC: ".txt",
}


def _is_cc_name(name: str) -> bool:
    lowered = name.lower()
    if "caption" in lowered:
        return True
    words = re.split(r"[^a-z]+", lowered)
    return any(marker in words for marker in CC_NAME_WORDS)


def _int_or_none(value) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _duration_seconds(value) -> Optional[float]:
    """Parse ``HH:MM:SS.nnnnnnnnn`` or nanosecond counts into seconds."""
    if value is None:
        return None
    text = str(value)
    if ":" in text:
        try:
            hours, minutes, seconds = text.split(":")
            return int(hours) * 3600 + int(minutes) * 60 + float(seconds)
        except ValueError:
            return None
    number = _int_or_none(text)
    return number / 1e9 if number is not None else None


def _stat_tag(tags: Dict, name: str):
    """Matroska statistics tags may be suffixed with a language (``BPS-eng``)."""
    for key, value in tags.items():
        if key.upper() == name or key.upper().startswith(name + "-"):
            return value
    return None


def _load_json(output: str, tool: str) -> Dict:
    try:
        return json.loads(output)
    except json.JSONDecodeError as exc:
        raise ProbeFailed(f"{tool} returned invalid JSON: {exc}") from exc


def _tail(stderr: str, lines: int = 3) -> str:
    return " | ".join(stderr.strip().splitlines()[-lines:])


# ------------------------------------------------------------------
# Probers
# ------------------------------------------------------------------

class MkvmergeProber:
    """Lists subtitle tracks with ``mkvmerge -J``."""

    def probe(self, path: Path, cancel_token: Optional[CancellationToken] = None) -> List[Track]:
        try:
            code, out, err = run_tool(["mkvmerge", "-J", str(path)], PROBE_TIMEOUT_SECONDS, cancel_token)
        except FileNotFoundError as exc:
            raise ProbeFailed("mkvmerge not found; install mkvtoolnix") from exc
        # mkvmerge exits 1 for warnings but still prints valid JSON.
        if code > 1:
            raise ProbeFailed(f"mkvmerge failed on {path.name}: {_tail(err or out)}")

        data = _load_json(out, "mkvmerge")
        tracks: List[Track] = []
        for track in data.get("tracks", []):
            if track.get("type") != "subtitles":
                continue
            props = track.get("properties", {})
            name = props.get("track_name") or None
            tracks.append(Track(
                id=track["id"],
                codec_id=props.get("codec_id") or track.get("codec", ""),
                language=props.get("language") or "und",
                bitrate_bps=_int_or_none(props.get("tag_bps")),
                frame_count=_int_or_none(props.get("tag_number_of_frames")),
                duration_seconds=_duration_seconds(props.get("tag_duration")),
                forced=bool(props.get("forced_track", False)),
                closed_caption=bool(props.get("flag_hearing_impaired", False))
                or bool(name and _is_cc_name(name)),
                display_name=name,
            ))
        logging.debug(f"{path.name}: {len(tracks)} subtitle tracks (mkvmerge)")
        return tracks


class FfprobeProber:
    """Lists subtitle streams with ``ffprobe -show_streams``."""

    def probe(self, path: Path, cancel_token: Optional[CancellationToken] = None) -> List[Track]:
        cmd = ["ffprobe", "-v", "quiet", "-print_format", "json", "-show_streams", str(path)]
        try:
            code, out, err = run_tool(cmd, PROBE_TIMEOUT_SECONDS, cancel_token)
        except FileNotFoundError as exc:
            raise ProbeFailed("ffprobe not found; install ffmpeg") from exc
        if code != 0:
            raise ProbeFailed(f"ffprobe failed on {path.name}: {_tail(err) or f'exit code {code}'}")

        data = _load_json(out, "ffprobe")
        tracks: List[Track] = []
        for stream in data.get("streams", []):
            if stream.get("codec_type") != "subtitle":
                continue
            tags = stream.get("tags", {})
            disposition = stream.get("disposition", {})
            name = tags.get("title", tags.get("TITLE")) or None
            duration = stream.get("duration")
            tracks.append(Track(
                id=stream["index"],
                codec_id=stream.get("codec_name", "unknown"),
                language=tags.get("language", tags.get("LANGUAGE")) or "und",
                bitrate_bps=_int_or_none(stream.get("bit_rate") or _stat_tag(tags, "BPS")),
                frame_count=_int_or_none(stream.get("nb_frames") or _stat_tag(tags, "NUMBER_OF_FRAMES")),
                duration_seconds=float(duration) if duration else _duration_seconds(_stat_tag(tags, "DURATION")),
                forced=disposition.get("forced", 0) == 1,
                closed_caption=disposition.get("hearing_impaired", 0) == 1
                or disposition.get("captions", 0) == 1
                or bool(name and _is_cc_name(name)),
                display_name=name,
            ))
        logging.debug(f"{path.name}: {len(tracks)} subtitle streams (ffprobe)")
        return tracks


class ContainerProber:
    """Routes Matroska files to mkvmerge and everything else to ffprobe."""

    def __init__(self) -> None:
        self.mkv = MkvmergeProber()
        self.ffmpeg = FfprobeProber()

    def probe(self, path: Path, cancel_token: Optional[CancellationToken] = None) -> List[Track]:
        if path.suffix.lower() in MKV_FORMATS:
            return self.mkv.probe(path, cancel_token)
        return self.ffmpeg.probe(path, cancel_token)


# ------------------------------------------------------------------
# Text extraction
# ------------------------------------------------------------------

def convert_to_srt(
    source: Path,
    target: Path,
    cancel_token: Optional[CancellationToken] = None,
) -> None:
    """Convert an ASS/WebVTT/other text subtitle file to SRT with ffmpeg."""
    cmd = ["ffmpeg", "-y", "-v", "error", "-i", str(source), "-c:s", "srt", str(target)]
    try:
        code, _, err = run_tool(cmd, CONVERT_TIMEOUT_SECONDS, cancel_token)
    except FileNotFoundError as exc:
        raise ExtractionFailed("ffmpeg not found; install ffmpeg") from exc
    if code != 0 or not target.exists():
        raise ExtractionFailed(f"converting {source.name} to SRT failed: {_tail(err)}")


def _read_subtitle(path: Path) -> str:
    return path.read_text(encoding="utf-8-sig", errors="replace")


class MkvextractTextExtractor:
    def extract_text(
        self,
        path: Path,
        track: Track,
        cancel_token: Optional[CancellationToken] = None,
    ) -> str:
        format_class = classify_format(track.codec_id)
        suffix = _TEXT_SUFFIXES.get(format_class, ".txt")
        with tempfile.TemporaryDirectory(prefix="subtitle-pipeline-") as tmp:
            raw = Path(tmp) / f"track{track.id}{suffix}"
            cmd = ["mkvextract", str(path), "tracks", f"{track.id}:{raw}"]
            try:
                code, _, err = run_tool(cmd, extraction_timeout(path), cancel_token)
            except FileNotFoundError as exc:
                raise ExtractionFailed("mkvextract not found; install mkvtoolnix") from exc
            if code > 1 or not raw.exists():
                raise ExtractionFailed(f"mkvextract failed for track {track.id}: {_tail(err)}")

            if format_class is FormatClass.TEXT_SRT:
                return _read_subtitle(raw)
            srt_path = raw.with_suffix(".converted.srt")
            convert_to_srt(raw, srt_path, cancel_token)
            return _read_subtitle(srt_path)


class FfmpegTextExtractor:
    def extract_text(
        self,
        path: Path,
        track: Track,
        cancel_token: Optional[CancellationToken] = None,
    ) -> str:
        with tempfile.TemporaryDirectory(prefix="subtitle-pipeline-") as tmp:
            target = Path(tmp) / f"track{track.id}.srt"
            cmd = [
                "ffmpeg", "-y", "-v", "error", "-i", str(path),
                "-map", f"0:{track.id}", "-c:s", "srt", str(target),
            ]
            try:
                code, _, err = run_tool(cmd, extraction_timeout(path), cancel_token)
            except FileNotFoundError as exc:
                raise ExtractionFailed("ffmpeg not found; install ffmpeg") from exc
            if code != 0 or not target.exists():
                raise ExtractionFailed(f"ffmpeg failed for stream {track.id}: {_tail(err)}")
            return _read_subtitle(target)


class ContainerTextExtractor:
    def __init__(self) -> None:
        self.mkv = MkvextractTextExtractor()
        self.ffmpeg = FfmpegTextExtractor()

    def extract_text(
        self,
        path: Path,
        track: Track,
        cancel_token: Optional[CancellationToken] = None,
    ) -> str:
        if path.suffix.lower() in MKV_FORMATS:
            return self.mkv.extract_text(path, track, cancel_token)
        return self.ffmpeg.extract_text(path, track, cancel_token)


# ------------------------------------------------------------------
# Image extraction
# ------------------------------------------------------------------

def _decode_sidecar(sidecar: Path) -> List[ImageRegion]:
    try:
        return read_sup(sidecar)
    except (OSError, PgsFormatError) as exc:
        raise ExtractionFailed(f"cannot decode {sidecar.name}: {exc}") from exc


class MkvextractImageExtractor:
    def extract_images(
        self,
        path: Path,
        track: Track,
        sidecar: Path,
        cancel_token: Optional[CancellationToken] = None,
    ) -> List[ImageRegion]:
        cmd = ["mkvextract", str(path), "tracks", f"{track.id}:{sidecar}"]
        try:
            code, _, err = run_tool(cmd, extraction_timeout(path), cancel_token)
        except FileNotFoundError as exc:
            raise ExtractionFailed("mkvextract not found; install mkvtoolnix") from exc
        if code > 1 or not sidecar.exists():
            raise ExtractionFailed(f"mkvextract failed for track {track.id}: {_tail(err)}")
        return _decode_sidecar(sidecar)


class FfmpegImageExtractor:
    def extract_images(
        self,
        path: Path,
        track: Track,
        sidecar: Path,
        cancel_token: Optional[CancellationToken] = None,
    ) -> List[ImageRegion]:
        cmd = [
            "ffmpeg", "-y", "-v", "error", "-i", str(path),
            "-map", f"0:{track.id}", "-c:s", "copy", "-f", "sup", str(sidecar),
        ]
        try:
            code, _, err = run_tool(cmd, extraction_timeout(path), cancel_token)
        except FileNotFoundError as exc:
            raise ExtractionFailed("ffmpeg not found; install ffmpeg") from exc
        if code != 0 or not sidecar.exists():
            raise ExtractionFailed(f"ffmpeg failed for stream {track.id}: {_tail(err)}")
        return _decode_sidecar(sidecar)


class ContainerImageExtractor:
    def __init__(self) -> None:
        self.mkv = MkvextractImageExtractor()
        self.ffmpeg = FfmpegImageExtractor()

    def extract_images(
        self,
        path: Path,
        track: Track,
        sidecar: Path,
        cancel_token: Optional[CancellationToken] = None,
    ) -> List[ImageRegion]:
        if path.suffix.lower() in MKV_FORMATS:
            return self.mkv.extract_images(path, track, sidecar, cancel_token)
        return self.ffmpeg.extract_images(path, track, sidecar, cancel_token)


# ------------------------------------------------------------------
# OCR
# ------------------------------------------------------------------

class TesseractOcrEngine:
    """OCR through pytesseract; ``--psm 6`` treats each bitmap as one text block."""

    def __init__(self, psm: int = 6, timeout: int = OCR_FRAME_TIMEOUT_SECONDS) -> None:
        self.config = f"--psm {psm}"
        self.timeout = timeout

    def recognize(self, region: ImageRegion, language: str) -> str:
        try:
            text = pytesseract.image_to_string(
                region.image,
                lang=tesseract_language(language),
                config=self.config,
                timeout=self.timeout,
            )
        except (pytesseract.TesseractError, pytesseract.TesseractNotFoundError, RuntimeError) as exc:
            raise OcrFailed(f"OCR failed for subtitle {region.index}: {exc}") from exc
        return text.strip()

    @staticmethod
    def available() -> bool:
        try:
            pytesseract.get_tesseract_version()
        except (pytesseract.TesseractNotFoundError, OSError):
            return False
        return True
