"""Command-line interface for subtitle-pipeline."""

import argparse
import logging
import sys
from contextlib import nullcontext
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from .batch import BatchOrchestrator
from .classifier import classify_all, select_best
from .config import PipelineSettings, load_config, validate_config
from .errors import InvalidArgument, PipelineError
from .models import CorrectionLevel, FileJob
from .process import tool_available
from .progress import LoggingProgressSink, RichProgressSink
from .report import display_track_list, print_summary, save_report
from .rules import load_rules
from .strategy import StrategySelector
from .tools import (
    FFMPEG_FORMATS,
    MKV_FORMATS,
    VIDEO_EXTENSIONS,
    ContainerImageExtractor,
    ContainerProber,
    ContainerTextExtractor,
    TesseractOcrEngine,
)
from .utils import find_videos, positive_int

# Seconds between checks for Ctrl-C while the batch runs.
WAIT_INTERVAL = 0.5


# ------------------------------------------------------------------
# Logging setup (single, authoritative call)
# ------------------------------------------------------------------

def setup_logging(verbosity: int = 0, log_file: Optional[Path] = None) -> None:
    """Configure the root logger.

    Args:
        verbosity: -1 = WARNING only, 0 = INFO (default), 1 = DEBUG.
        log_file:  Optional path; when given, output goes to both file and stderr.
    """
    level = {-1: logging.WARNING, 0: logging.INFO, 1: logging.DEBUG}.get(
        verbosity, logging.INFO
    )

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    fmt = "%(asctime)s - %(levelname)s - %(message)s" if log_file else "%(message)s"
    formatter = logging.Formatter(fmt)

    if log_file:
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setFormatter(formatter)
        root.addHandler(fh)

    ch = logging.StreamHandler()
    ch.setFormatter(formatter)
    root.addHandler(ch)


# ------------------------------------------------------------------
# Argument parsing
# ------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="subtitle-pipeline",
        description="Extract one subtitle track per video, OCR image subtitles and clean up the text",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s /path/to/movies
  %(prog)s movie.mkv --language de --prefer-forced
  %(prog)s /path/to/shows --correction-level thorough --output-dir /path/to/subs
  %(prog)s /path/to/shows --list-tracks
  %(prog)s /path/to/bluray --ocr-language eng --preserve-sup --report-format json

Config file: create ~/.subtitle-pipeline.yaml with default settings.
        """,
    )

    parser.add_argument("paths", type=Path, nargs="+",
                        help="Video files or directories (searched recursively)")

    # ---- track selection ----
    parser.add_argument("-l", "--language",
                        help="Preferred subtitle language (default: en)")
    parser.add_argument("--prefer-forced", action="store_true", default=None,
                        help="Prefer forced (foreign parts only) subtitles")
    parser.add_argument("--prefer-cc", dest="prefer_closed_captions", action="store_true", default=None,
                        help="Prefer closed-caption / SDH subtitles")

    # ---- correction ----
    parser.add_argument("--correction-level", choices=[lvl.value for lvl in CorrectionLevel],
                        help="off, standard (default) or thorough")
    parser.add_argument("--max-passes", type=positive_int, metavar="N",
                        help="Expert: override the level's pass limit")
    parser.add_argument("--no-smart-convergence", dest="smart_convergence",
                        action="store_false", default=None,
                        help="Expert: always run every pass instead of stopping early")
    parser.add_argument("--rules-file", type=Path,
                        help="YAML correction rule table (default: bundled rules)")

    # ---- OCR ----
    parser.add_argument("--ocr-language",
                        help="Tesseract language for image subtitles (default: --language)")
    parser.add_argument("--preserve-sup", action="store_true", default=None,
                        help="Keep the extracted .sup file after OCR")

    # ---- output / reporting ----
    parser.add_argument("--output-dir", type=Path,
                        help="Write subtitles to this directory")
    parser.add_argument("--overwrite", action="store_true", default=None,
                        help="Re-extract even when the subtitle file already exists")
    parser.add_argument("--report-format", choices=["json", "csv"],
                        help="Write a batch report in the given format")
    parser.add_argument("--log-file", type=Path,
                        help="Save log output to a file (in addition to stderr)")
    parser.add_argument("--list-tracks", action="store_true",
                        help="List subtitle tracks and the recommended pick without extracting")

    # ---- verbosity ----
    verbosity_group = parser.add_mutually_exclusive_group()
    verbosity_group.add_argument("-v", "--verbose", action="store_true",
                                 help="Enable debug-level output")
    verbosity_group.add_argument("-q", "--quiet", action="store_true",
                                 help="Suppress informational messages (warnings and errors only)")
    return parser


_OVERRIDABLE = (
    "language", "prefer_forced", "prefer_closed_captions", "max_passes", "smart_convergence",
    "output_dir", "overwrite", "ocr_language", "preserve_sup", "rules_file", "report_format",
)


def merge_settings(config: dict, args: argparse.Namespace) -> PipelineSettings:
    """Config file values first, then any flag the user actually passed."""
    settings = PipelineSettings.from_config(config)
    overrides = {
        key: getattr(args, key) for key in _OVERRIDABLE if getattr(args, key, None) is not None
    }
    if args.correction_level:
        overrides["correction_level"] = CorrectionLevel(args.correction_level)
    return replace(settings, **overrides)


# ------------------------------------------------------------------
# Modes
# ------------------------------------------------------------------

def check_tools() -> bool:
    """Print what is missing; False when nothing can be processed at all."""
    has_mkvtoolnix = tool_available("mkvmerge") and tool_available("mkvextract")
    has_ffmpeg = tool_available("ffmpeg") and tool_available("ffprobe")

    if not has_mkvtoolnix and not has_ffmpeg:
        print("Error: neither mkvtoolnix nor ffmpeg is installed.", file=sys.stderr)
        print("\nFor MKV support, install mkvtoolnix:", file=sys.stderr)
        print("  Ubuntu/Debian: sudo apt-get install mkvtoolnix", file=sys.stderr)
        print("  macOS:         brew install mkvtoolnix", file=sys.stderr)
        print("\nFor MP4 and text conversion, install ffmpeg:", file=sys.stderr)
        print("  Ubuntu/Debian: sudo apt-get install ffmpeg", file=sys.stderr)
        print("  macOS:         brew install ffmpeg", file=sys.stderr)
        return False

    if not has_mkvtoolnix:
        print("Warning: mkvtoolnix not found; MKV files will fail.", file=sys.stderr)
    if not has_ffmpeg:
        print("Warning: ffmpeg not found; MP4/WebM/MOV/AVI files and ASS conversion will fail.",
              file=sys.stderr)
    if not TesseractOcrEngine.available():
        print(
            "Warning: tesseract not found; PGS subtitles cannot be OCR'd.\n"
            "Install with: apt install tesseract-ocr",
            file=sys.stderr,
        )
    return True


def list_tracks(videos: List[Path], settings: PipelineSettings) -> int:
    logging.info("=== TRACK INSPECTION MODE ===\n")
    prober = ContainerProber()
    failures = 0
    for video in videos:
        try:
            tracks = classify_all(prober.probe(video))
        except PipelineError as exc:
            logging.error(f"{video.name}: {exc.message}")
            failures += 1
            continue
        best = select_best(
            tracks,
            settings.language,
            prefer_forced=settings.prefer_forced,
            prefer_closed_captions=settings.prefer_closed_captions,
        )
        display_track_list(video, tracks, best)
    return 1 if failures else 0


def run_batch(
    videos: List[Path],
    settings: PipelineSettings,
    use_bar: bool,
    base_directory: Optional[Path] = None,
) -> int:
    rules = load_rules(settings.rules_file)
    ocr = TesseractOcrEngine() if TesseractOcrEngine.available() else None
    selector = StrategySelector(ContainerTextExtractor(), ContainerImageExtractor(), ocr)

    bar = RichProgressSink(len(videos)) if use_bar else None

    def on_job_update(job: FileJob) -> None:
        if bar is None:
            return
        if job.status.is_terminal:
            bar.file_done()
        elif job.phase == "probing":
            bar.start_file(job.name)

    orchestrator = BatchOrchestrator(
        ContainerProber(),
        selector,
        rules,
        settings=settings,
        progress=bar or LoggingProgressSink(),
        on_job_update=on_job_update,
    )
    orchestrator.enqueue(videos)

    started = datetime.now()
    with bar or nullcontext():
        try:
            orchestrator.start_async(base_directory)
            while not orchestrator.wait(WAIT_INTERVAL):
                pass
        except KeyboardInterrupt:
            logging.warning("Interrupted; cancelling remaining files...")
            orchestrator.cancel_all()
            orchestrator.wait()
    finished = datetime.now()

    results = orchestrator.results()
    stats = orchestrator.statistics()
    print_summary(stats, results, started, finished)
    save_report(results, stats, settings.report_format)
    return 1 if stats.error or stats.cancelled else 0


# ------------------------------------------------------------------
# Entry point
# ------------------------------------------------------------------

def main(argv: Optional[List[str]] = None) -> None:
    """Parse arguments, validate inputs, and run the batch."""
    parser = build_parser()
    args = parser.parse_args(argv)

    verbosity = 1 if args.verbose else (-1 if args.quiet else 0)
    setup_logging(verbosity=verbosity, log_file=args.log_file)

    for path in args.paths:
        if not path.exists():
            print(f"Error: path does not exist: {path}", file=sys.stderr)
            sys.exit(1)

    config = load_config()
    settings = merge_settings(config, args)
    # Flags go through the same checks as the config file.
    validate_config({
        k: (str(v) if isinstance(v, Path) else v)
        for k, v in (
            ("output_dir", settings.output_dir),
            ("rules_file", settings.rules_file),
            ("max_passes", settings.max_passes),
        )
        if v is not None
    })

    videos = find_videos(args.paths, VIDEO_EXTENSIONS)
    if not videos:
        logging.info("No video files found")
        sys.exit(0)
    mkv_count = sum(1 for v in videos if v.suffix.lower() in MKV_FORMATS)
    other_count = sum(1 for v in videos if v.suffix.lower() in FFMPEG_FORMATS)
    logging.info(f"Found {len(videos)} file(s) (MKV: {mkv_count}, Other: {other_count})\n")

    if not check_tools():
        sys.exit(1)

    if args.list_tracks:
        sys.exit(list_tracks(videos, settings))

    logging.info(
        f"Language: {settings.language} | Correction: {settings.correction_level.display_name}\n"
    )
    try:
        base = args.paths[0] if len(args.paths) == 1 and args.paths[0].is_dir() else None
        code = run_batch(videos, settings, verbosity == 0 and sys.stderr.isatty(), base)
    except InvalidArgument as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)
    sys.exit(code)
