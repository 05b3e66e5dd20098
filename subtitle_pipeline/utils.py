"""Shared utility helpers."""

import argparse
from pathlib import Path
from typing import Iterable, List


def positive_int(value: str) -> int:
    """argparse type validator: integer >= 1."""
    ivalue = int(value)
    if ivalue < 1:
        raise argparse.ArgumentTypeError(f"must be >= 1, got {value}")
    return ivalue


def format_duration(seconds: float) -> str:
    hours, rem = divmod(int(seconds), 3600)
    minutes, secs = divmod(rem, 60)
    if hours > 0:
        return f"{hours}h {minutes}m {secs}s"
    if minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def find_videos(paths: Iterable[Path], extensions: Iterable[str]) -> List[Path]:
    """Expand files and directories (recursively) into sorted video paths."""
    wanted = {ext.lower() for ext in extensions}
    found: List[Path] = []
    for path in paths:
        if path.is_dir():
            found.extend(
                sorted(p for p in path.rglob("*") if p.is_file() and p.suffix.lower() in wanted)
            )
        elif path.suffix.lower() in wanted:
            found.append(path)
    return found
