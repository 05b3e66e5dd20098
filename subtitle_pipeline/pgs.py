"""Blu-ray PGS (``.sup``) reader.

Turns a demuxed presentation graphics stream into timed greyscale bitmaps
ready for OCR. Only what OCR needs is decoded: palette luma and alpha, the
RLE object bitmaps and the composition timing.
"""

import logging
import struct
from dataclasses import dataclass, field
from enum import IntEnum
from pathlib import Path
from typing import BinaryIO, Dict, List, Optional

from PIL import Image

from .models import ImageRegion

SUP_MAGIC = b"PG"
HEADER_SIZE = 13
PTS_CLOCK_HZ = 90.0  # ticks per millisecond
# Used for the final display set, which has no successor to end it.
LAST_CUE_DURATION_MS = 3000.0


class SegmentType(IntEnum):
    PALETTE = 0x14
    OBJECT = 0x15
    COMPOSITION = 0x16
    WINDOW = 0x17
    END = 0x80


@dataclass
class _Segment:
    kind: int
    pts: int
    data: bytes

    @property
    def time_ms(self) -> float:
        return self.pts / PTS_CLOCK_HZ


@dataclass
class _Bitmap:
    width: int
    height: int
    rle: bytearray


@dataclass
class _Placement:
    object_id: int
    x: int
    y: int
    forced: bool


@dataclass
class _DisplaySet:
    start_ms: float
    palette_id: int
    placements: List[_Placement] = field(default_factory=list)
    end_ms: Optional[float] = None


class PgsFormatError(ValueError):
    pass


# ------------------------------------------------------------------
# Segment parsing
# ------------------------------------------------------------------

def _read_segments(stream: BinaryIO):
    while True:
        header = stream.read(HEADER_SIZE)
        if not header:
            return
        if len(header) < HEADER_SIZE:
            logging.debug("Truncated PGS segment header; stopping")
            return
        if header[:2] != SUP_MAGIC:
            raise PgsFormatError(f"bad segment magic at offset {stream.tell() - HEADER_SIZE}")
        pts, _dts, kind, size = struct.unpack(">IIBH", header[2:])
        data = stream.read(size)
        if len(data) < size:
            logging.debug("Truncated PGS segment payload; stopping")
            return
        yield _Segment(kind, pts, data)


def _parse_palette(data: bytes) -> Dict[int, tuple]:
    """Return ``{index: (luma, alpha)}``; chroma is irrelevant for OCR."""
    entries = {}
    for offset in range(2, len(data) - 4, 5):
        index, luma, _cr, _cb, alpha = data[offset:offset + 5]
        entries[index] = (luma, alpha)
    return entries


def _parse_composition(segment: _Segment) -> Optional[_DisplaySet]:
    data = segment.data
    if len(data) < 11:
        return None
    palette_id, count = data[9], data[10]
    display = _DisplaySet(start_ms=segment.time_ms, palette_id=palette_id)
    offset = 11
    for _ in range(count):
        if offset + 8 > len(data):
            break
        object_id, _window, flags, x, y = struct.unpack(">HBBHH", data[offset:offset + 8])
        display.placements.append(_Placement(object_id, x, y, bool(flags & 0x40)))
        # Cropped objects carry 8 extra bytes of crop rectangle.
        offset += 16 if flags & 0x80 else 8
    return display


# ------------------------------------------------------------------
# RLE
# ------------------------------------------------------------------

def decode_rle(rle: bytes, width: int, height: int) -> bytearray:
    """Expand PGS run-length data into one palette index per pixel."""
    pixels = bytearray(width * height)
    pos = 0
    row_start = 0
    i = 0
    end = len(rle)

    while i < end and row_start < len(pixels):
        byte = rle[i]
        i += 1
        if byte:
            if pos < len(pixels):
                pixels[pos] = byte
            pos += 1
            continue
        if i >= end:
            break
        flag = rle[i]
        i += 1
        if flag == 0:
            row_start += width
            pos = row_start
            continue

        run = flag & 0x3F
        needed = bool(flag & 0x40) + bool(flag & 0x80)
        if i + needed > end:
            raise PgsFormatError(f"RLE data truncated at byte {i} of {end}")
        if flag & 0x40:
            run = (run << 8) | rle[i]
            i += 1
        color = 0
        if flag & 0x80:
            color = rle[i]
            i += 1
        stop = min(pos + run, len(pixels))
        if color:
            pixels[pos:stop] = bytes([color]) * (stop - pos)
        pos += run
    return pixels


def render_for_ocr(indices: bytearray, width: int, height: int, palette: Dict[int, tuple]) -> Image.Image:
    """Render palette indices as dark text on a white background."""
    shade = bytes(
        255 - (palette[i][0] * palette[i][1] // 255) if i in palette else 255
        for i in range(256)
    )
    return Image.frombytes("L", (width, height), bytes(indices).translate(shade))


# ------------------------------------------------------------------
# Public API
# ------------------------------------------------------------------

def read_sup(path: Path) -> List[ImageRegion]:
    with open(path, "rb") as f:
        return parse_sup(f)


def parse_sup(stream: BinaryIO) -> List[ImageRegion]:
    """Decode every visible display set in *stream* into an :class:`ImageRegion`."""
    palettes: Dict[int, Dict[int, tuple]] = {}
    bitmaps: Dict[int, _Bitmap] = {}
    displays: List[tuple] = []
    current: Optional[_DisplaySet] = None

    for segment in _read_segments(stream):
        if segment.kind == SegmentType.COMPOSITION:
            if current is not None and current.end_ms is None:
                current.end_ms = segment.time_ms
            current = _parse_composition(segment)
        elif segment.kind == SegmentType.PALETTE and len(segment.data) >= 2:
            palettes[segment.data[0]] = _parse_palette(segment.data)
        elif segment.kind == SegmentType.OBJECT and len(segment.data) >= 4:
            object_id = struct.unpack(">H", segment.data[:2])[0]
            if segment.data[3] & 0x80 and len(segment.data) >= 11:
                width, height = struct.unpack(">HH", segment.data[7:11])
                bitmaps[object_id] = _Bitmap(width, height, bytearray(segment.data[11:]))
            elif object_id in bitmaps:
                bitmaps[object_id].rle += segment.data[4:]
        elif segment.kind == SegmentType.END and current is not None and current.placements:
            # Snapshot what this display set shows; later sets may reuse ids.
            shown = [(p, bitmaps.get(p.object_id)) for p in current.placements]
            displays.append((current, dict(palettes.get(current.palette_id, {})), shown))

    regions: List[ImageRegion] = []
    for display, palette, shown in displays:
        end_ms = display.end_ms if display.end_ms is not None else display.start_ms + LAST_CUE_DURATION_MS
        for placement, bitmap in shown:
            if bitmap is None or not bitmap.width or not bitmap.height:
                continue
            region = ImageRegion(
                index=len(regions) + 1,
                start_ms=display.start_ms,
                end_ms=end_ms,
                image=None,
                x=placement.x,
                y=placement.y,
                forced=placement.forced,
            )
            try:
                indices = decode_rle(bytes(bitmap.rle), bitmap.width, bitmap.height)
            except PgsFormatError as exc:
                logging.debug(f"Object {placement.object_id} undecodable: {exc}")
                region.error = f"corrupt bitmap: {exc}"
            else:
                region.image = render_for_ocr(indices, bitmap.width, bitmap.height, palette)
            regions.append(region)

    logging.debug(f"Decoded {len(regions)} PGS bitmaps")
    return regions
