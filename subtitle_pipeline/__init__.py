"""Subtitle Pipeline: batch subtitle extraction, OCR and text correction."""

from .batch import BatchOrchestrator
from .classifier import classify, select_best
from .correction import ConvergenceLoop, TextCorrector
from .job import FileJobRunner
from .models import (
    BatchStatistics,
    ClassifiedTrack,
    CorrectionLevel,
    FileJob,
    FileResult,
    FormatClass,
    JobStatus,
    Track,
)

__version__ = "1.0.0"
__all__ = [
    "BatchOrchestrator",
    "BatchStatistics",
    "ClassifiedTrack",
    "ConvergenceLoop",
    "CorrectionLevel",
    "FileJob",
    "FileJobRunner",
    "FileResult",
    "FormatClass",
    "JobStatus",
    "TextCorrector",
    "Track",
    "classify",
    "select_best",
]
