"""Multi-pass OCR text correction."""

import logging
import time
from typing import Dict, List, Optional, Tuple

from .errors import CorrectionFailed, InvalidArgument, OperationCancelled
from .interfaces import CorrectionRules, ProgressSink
from .models import ConvergenceResult, CorrectionLevel, CorrectionPassResult
from .process import CancellationToken
from .progress import safe_report

TIMESTAMP_SEPARATOR = " --> "


def _is_structural(line: str, next_line: str) -> bool:
    """True for SRT lines that must never reach the rule set.

    A digits-only line counts as a cue index only when a timing line follows it.
    """
    stripped = line.strip()
    if not stripped or TIMESTAMP_SEPARATOR in stripped:
        return True
    return stripped.isdigit() and TIMESTAMP_SEPARATOR in next_line


class TextCorrector:
    """Adapter around a rule callable that leaves SRT structure untouched.

    Rules may return ``(text, count)`` or ``(text, count, by_category)``.
    """

    def __init__(self, rules: CorrectionRules) -> None:
        self._rules = rules

    def correct(self, text: str) -> Tuple[str, int, Dict[str, int]]:
        total = 0
        by_category: Dict[str, int] = {}
        out: List[str] = []

        lines = text.splitlines(keepends=True)
        for i, line in enumerate(lines):
            next_line = lines[i + 1] if i + 1 < len(lines) else ""
            if _is_structural(line, next_line):
                out.append(line)
                continue
            body = line.rstrip("\r\n")
            ending = line[len(body):]
            fixed, count, categories = self._apply(body)
            out.append(fixed + ending)
            total += count
            for name, n in categories.items():
                by_category[name] = by_category.get(name, 0) + n

        return "".join(out), total, by_category

    __call__ = correct

    def _apply(self, line: str) -> Tuple[str, int, Dict[str, int]]:
        result = self._rules(line)
        if len(result) == 3:
            fixed, count, categories = result
            return fixed, int(count), dict(categories)
        fixed, count = result
        return fixed, int(count), {}


class ConvergenceLoop:
    """Apply a corrector repeatedly until a pass changes nothing."""

    def __init__(self, corrector: TextCorrector, progress: Optional[ProgressSink] = None) -> None:
        self.corrector = corrector
        self.progress = progress

    def run(
        self,
        text: str,
        max_passes: int,
        use_smart_convergence: bool = True,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ConvergenceResult:
        if max_passes < 1:
            raise InvalidArgument(f"max_passes must be >= 1, got {max_passes}")

        started = time.perf_counter()
        if not text:
            return ConvergenceResult(
                corrected_text=text, passes_completed=0, total_corrections=0, converged=True,
            )

        current = text
        total = 0
        converged = False
        stats: List[CorrectionPassResult] = []
        warnings: List[str] = []

        for pass_number in range(1, max_passes + 1):
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()

            pass_started = time.perf_counter()
            try:
                current, count, categories = self.corrector.correct(current)
            except OperationCancelled:
                raise
            except Exception as exc:
                raise CorrectionFailed(f"correction pass {pass_number} failed: {exc}") from exc

            stats.append(CorrectionPassResult(
                pass_number=pass_number,
                corrections_made=count,
                elapsed_ms=(time.perf_counter() - pass_started) * 1000.0,
                corrections_by_category=categories,
            ))
            total += count
            logging.debug(f"Correction pass {pass_number}/{max_passes}: {count} changes")
            safe_report(self.progress, pass_number, max_passes, "correcting")

            if use_smart_convergence and count == 0:
                converged = True
                break

        # Pass limit reached while the last pass was still finding things.
        if not converged and stats[-1].corrections_made > 0:
            message = f"correction did not converge within {max_passes} passes"
            logging.warning(message)
            warnings.append(message)

        return ConvergenceResult(
            corrected_text=current,
            passes_completed=len(stats),
            total_corrections=total,
            converged=converged,
            pass_stats=stats,
            warnings=warnings,
            elapsed_ms=(time.perf_counter() - started) * 1000.0,
        )


def resolve_passes(
    level: CorrectionLevel,
    max_passes: Optional[int] = None,
    smart_convergence: Optional[bool] = None,
) -> Tuple[int, bool]:
    """Return ``(max_passes, smart_convergence)`` for *level* with overrides applied."""
    passes = level.max_passes if max_passes is None else max_passes
    smart = level.smart_convergence if smart_convergence is None else smart_convergence
    return passes, smart


def apply_level(
    loop: ConvergenceLoop,
    text: str,
    level: CorrectionLevel,
    max_passes: Optional[int] = None,
    smart_convergence: Optional[bool] = None,
    cancel_token: Optional[CancellationToken] = None,
) -> ConvergenceResult:
    """Run *loop* as configured by *level*; ``OFF`` returns *text* untouched."""
    if level is CorrectionLevel.OFF:
        return ConvergenceResult(
            corrected_text=text, passes_completed=0, total_corrections=0, converged=True,
        )
    passes, smart = resolve_passes(level, max_passes, smart_convergence)
    return loop.run(text, passes, smart, cancel_token)
