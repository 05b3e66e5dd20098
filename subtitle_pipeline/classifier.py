"""Track classification and best-track selection.

Both entry points are pure functions: they read only their arguments and
never mutate the tracks they are given.
"""

import logging
from functools import lru_cache
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from .language import same_language
from .models import ClassifiedTrack, FormatClass, SpeedHint, Track, TrackRole

# Low-volume heuristic for containers that omit the forced flag; tunable.
FORCED_MAX_BITRATE_TINY = 1000
FORCED_MAX_FRAMES_TINY = 50
FORCED_MAX_BITRATE_SMALL = 10000
FORCED_MAX_FRAMES_SMALL = 200

# ffprobe reports codec names that do not share markers with mkvmerge's ids.
_CODEC_ALIASES = {
    "dvd_subtitle": "S_VOBSUB",
    "dvdsub": "S_VOBSUB",
    "dvb_subtitle": "S_DVBSUB",
    "dvb_teletext": "S_DVBSUB",
}

# (markers, format) in priority order; first match wins.
_FORMAT_RULES: Tuple[Tuple[Tuple[str, ...], FormatClass], ...] = (
    (("HDMV/PGS", "PGS"), FormatClass.IMAGE_PGS),
    (("VOBSUB",), FormatClass.IMAGE_VOBSUB),
    (("DVB",), FormatClass.IMAGE_DVB),
    (("SUBRIP", "SRT"), FormatClass.TEXT_SRT),
    (("ASS", "SSA", "SUBSTATIONALPHA"), FormatClass.TEXT_ASS),
    (("WEBVTT", "VTT"), FormatClass.TEXT_WEBVTT),
    (("S_TEXT", "MOV_TEXT", "TX3G", "TIMED_TEXT", "3GPP", "TEXT"), FormatClass.TEXT_GENERIC),
)

_TEXT_UTF8_MARKER = "S_TEXT/UTF8"

TrackLike = Union[Track, ClassifiedTrack]


@lru_cache(maxsize=256)
def classify_format(codec_id: str) -> FormatClass:
    """Return the :class:`FormatClass` for a demuxer codec id."""
    if not codec_id:
        return FormatClass.UNKNOWN
    codec = _CODEC_ALIASES.get(codec_id.strip().lower(), codec_id).upper()

    for markers, format_class in _FORMAT_RULES:
        if format_class is FormatClass.TEXT_SRT and codec == _TEXT_UTF8_MARKER:
            return format_class
        if any(marker in codec for marker in markers):
            return format_class
    return FormatClass.UNKNOWN


def speed_hint_for(format_class: FormatClass) -> SpeedHint:
    if format_class.is_text:
        return SpeedHint.FAST
    if format_class.is_image:
        return SpeedHint.OCR_REQUIRED
    return SpeedHint.UNKNOWN


def detect_role(track: Track) -> TrackRole:
    """Return the track role; explicit flags always beat the volume heuristic."""
    if track.closed_caption and track.forced:
        return TrackRole.CLOSED_CAPTION_FORCED
    if track.closed_caption:
        return TrackRole.CLOSED_CAPTION
    if track.forced:
        return TrackRole.FORCED

    bitrate, frames = track.bitrate_bps, track.frame_count
    if bitrate is not None and frames is not None:
        if bitrate < FORCED_MAX_BITRATE_TINY and frames < FORCED_MAX_FRAMES_TINY:
            return TrackRole.FORCED
        if bitrate < FORCED_MAX_BITRATE_SMALL and frames < FORCED_MAX_FRAMES_SMALL:
            return TrackRole.FORCED
    return TrackRole.FULL


def classify(track: TrackLike) -> ClassifiedTrack:
    """Classify *track*. Passing an already classified track is a no-op."""
    raw = track.track if isinstance(track, ClassifiedTrack) else track
    format_class = classify_format(raw.codec_id)
    return ClassifiedTrack(
        track=raw,
        format_class=format_class,
        speed_hint=speed_hint_for(format_class),
        role=detect_role(raw),
    )


def classify_all(tracks: Iterable[TrackLike]) -> List[ClassifiedTrack]:
    return [classify(t) for t in tracks]


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------

def _volume_key(track: ClassifiedTrack) -> Tuple[int, int]:
    # Negated so min() picks the highest bitrate, then the most frames.
    return -(track.track.bitrate_bps or 0), -(track.track.frame_count or 0)


def _format_rank(format_class: FormatClass) -> int:
    if format_class is FormatClass.TEXT_SRT:
        return 0
    if format_class.is_text:
        return 1
    if format_class.is_image:
        return 2
    return 3


def select_best(
    tracks: Sequence[TrackLike],
    preferred_language: str,
    prefer_forced: bool = False,
    prefer_closed_captions: bool = False,
) -> Optional[ClassifiedTrack]:
    """Pick the single track to extract.

    Tracks in *preferred_language* are considered first; when none exist the
    first track in container order is returned so the user still gets
    something. ``min()`` keeps the earliest track on equal keys, which makes
    container order the final tie-break.
    """
    if not tracks:
        return None

    classified = classify_all(tracks)
    candidates = [t for t in classified if same_language(t.track.language, preferred_language)]
    if not candidates:
        logging.debug(
            f"No '{preferred_language}' tracks; falling back to track #{classified[0].track.id}"
        )
        return classified[0]

    non_commentary = [t for t in candidates if not t.track.is_commentary]
    if non_commentary:
        candidates = non_commentary

    if prefer_closed_captions:
        cc_tracks = [
            t for t in candidates
            if t.role in (TrackRole.CLOSED_CAPTION_FORCED, TrackRole.CLOSED_CAPTION)
        ]
        if cc_tracks:
            return min(
                cc_tracks,
                key=lambda t: (0 if t.role is TrackRole.CLOSED_CAPTION_FORCED else 1, *_volume_key(t)),
            )
    elif prefer_forced:
        forced_tracks = [
            t for t in candidates
            if t.role in (TrackRole.FORCED, TrackRole.CLOSED_CAPTION_FORCED)
        ]
        if forced_tracks:
            return min(forced_tracks, key=_volume_key)

    return min(
        candidates,
        key=lambda t: (
            _format_rank(t.format_class),
            0 if t.role is TrackRole.FULL else 1,
            *_volume_key(t),
        ),
    )
