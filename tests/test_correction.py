"""Tests for the SRT-aware corrector and the convergence loop."""

from typing import List
from unittest.mock import MagicMock

import pytest

from conftest import SAMPLE_SRT, typo_rules
from subtitle_pipeline.correction import ConvergenceLoop, TextCorrector, apply_level, resolve_passes
from subtitle_pipeline.errors import CorrectionFailed, InvalidArgument, OperationCancelled
from subtitle_pipeline.models import CorrectionLevel
from subtitle_pipeline.process import CancellationToken


class CountingCorrector:
    """Reports a fixed number of changes per pass."""

    def __init__(self, changes: List[int]) -> None:
        self.changes = changes
        self.calls = 0

    def correct(self, text: str):
        count = self.changes[min(self.calls, len(self.changes) - 1)]
        self.calls += 1
        return text, count, {"fake": count} if count else {}


class TestTextCorrector:
    def test_skips_srt_structure(self) -> None:
        seen: List[str] = []

        def rules(line: str):
            seen.append(line)
            return line, 0

        TextCorrector(rules).correct(SAMPLE_SRT)
        assert seen == ["Itss a testt."]

    def test_digit_only_dialogue_is_corrected(self) -> None:
        seen: List[str] = []

        def rules(line: str):
            seen.append(line)
            return line.replace("1O", "10"), line.count("1O")

        srt = "1\n00:00:01,000 --> 00:00:02,000\nCount down!\n1O\n\n2\n00:00:03,000 --> 00:00:04,000\n42\n"
        text, count, _ = TextCorrector(rules).correct(srt)
        assert seen == ["Count down!", "1O", "42"]
        assert count == 1
        assert "Count down!\n10\n" in text
        assert text.startswith("1\n00:00:01,000")

    def test_corrects_dialogue_and_keeps_layout(self) -> None:
        text, count, _ = TextCorrector(typo_rules).correct(SAMPLE_SRT)
        assert text == "1\n00:00:01,000 --> 00:00:02,500\nIt's a test.\n\n"
        assert count == 2

    def test_preserves_crlf(self) -> None:
        text, _, _ = TextCorrector(typo_rules).correct("1\r\n00:00:01,000 --> 00:00:02,000\r\ntestt\r\n")
        assert text == "1\r\n00:00:01,000 --> 00:00:02,000\r\ntest\r\n"

    def test_accepts_category_counts(self) -> None:
        def rules(line: str):
            return line.replace("|", "I"), line.count("|"), {"pipes": line.count("|")}

        text, count, categories = TextCorrector(rules).correct("| think |\n")
        assert text == "I think I\n"
        assert count == 2
        assert categories == {"pipes": 2}


class TestConvergenceLoop:
    def test_invalid_max_passes(self) -> None:
        loop = ConvergenceLoop(CountingCorrector([1]))
        with pytest.raises(InvalidArgument):
            loop.run("text", 0, True)

    def test_empty_text(self) -> None:
        corrector = CountingCorrector([5])
        result = ConvergenceLoop(corrector).run("", 3, True)
        assert result.passes_completed == 0
        assert result.total_corrections == 0
        assert result.converged is True
        assert corrector.calls == 0

    def test_zero_changes_converges_after_one_pass(self) -> None:
        corrector = CountingCorrector([0])
        result = ConvergenceLoop(corrector).run("text", 5, True)
        assert corrector.calls == 1
        assert result.passes_completed == 1
        assert result.converged is True
        assert result.warnings == []

    def test_stops_on_first_clean_pass(self) -> None:
        corrector = CountingCorrector([4, 1, 0, 7])
        result = ConvergenceLoop(corrector).run("text", 5, True)
        assert corrector.calls == 3
        assert result.total_corrections == 5
        assert [p.pass_number for p in result.pass_stats] == [1, 2, 3]

    def test_pass_limit_reached(self) -> None:
        corrector = CountingCorrector([2])
        result = ConvergenceLoop(corrector).run("text", 4, True)
        assert corrector.calls == 4
        assert result.converged is False
        assert result.total_corrections == 8
        assert len(result.warnings) == 1

    def test_without_smart_convergence_runs_every_pass(self) -> None:
        corrector = CountingCorrector([0])
        result = ConvergenceLoop(corrector).run("text", 5, False)
        assert corrector.calls == 5
        assert result.converged is False
        assert result.warnings == []

    def test_pass_stats_record_categories(self) -> None:
        result = ConvergenceLoop(CountingCorrector([3, 0])).run("text", 3, True)
        assert result.pass_stats[0].corrections_made == 3
        assert result.pass_stats[0].corrections_by_category == {"fake": 3}

    def test_cancel_between_passes(self) -> None:
        token = CancellationToken()

        class CancelAfterFirst(CountingCorrector):
            def correct(self, text: str):
                token.cancel()
                return super().correct(text)

        corrector = CancelAfterFirst([1])
        with pytest.raises(OperationCancelled):
            ConvergenceLoop(corrector).run("text", 5, True, token)
        assert corrector.calls == 1

    def test_corrector_failure(self) -> None:
        corrector = MagicMock()
        corrector.correct.side_effect = ValueError("bad pattern")
        with pytest.raises(CorrectionFailed, match="bad pattern"):
            ConvergenceLoop(corrector).run("text", 3, True)

    def test_progress_listener_errors_ignored(self) -> None:
        sink = MagicMock()
        sink.report.side_effect = RuntimeError("listener broke")
        result = ConvergenceLoop(CountingCorrector([1, 0]), progress=sink).run("text", 3, True)
        assert result.passes_completed == 2
        assert sink.report.call_count == 2

    def test_typo_scenario(self) -> None:
        loop = ConvergenceLoop(TextCorrector(typo_rules))
        result = apply_level(loop, SAMPLE_SRT, CorrectionLevel.STANDARD)
        assert result.converged is True
        assert result.passes_completed <= 3
        assert result.total_corrections >= 1
        assert "It's a test." in result.corrected_text


class TestLevels:
    def test_presets(self) -> None:
        assert resolve_passes(CorrectionLevel.STANDARD) == (3, True)
        assert resolve_passes(CorrectionLevel.THOROUGH) == (5, False)

    def test_expert_override(self) -> None:
        assert resolve_passes(CorrectionLevel.THOROUGH, smart_convergence=True) == (5, True)
        assert resolve_passes(CorrectionLevel.STANDARD, max_passes=8) == (8, True)

    def test_off_returns_input_unchanged(self) -> None:
        corrector = CountingCorrector([3])
        result = apply_level(ConvergenceLoop(corrector), SAMPLE_SRT, CorrectionLevel.OFF)
        assert result.corrected_text == SAMPLE_SRT
        assert result.passes_completed == 0
        assert corrector.calls == 0

    def test_thorough_always_runs_five(self) -> None:
        corrector = CountingCorrector([0])
        result = apply_level(ConvergenceLoop(corrector), "text", CorrectionLevel.THOROUGH)
        assert corrector.calls == 5
        assert result.passes_completed == 5

    def test_from_legacy(self) -> None:
        assert CorrectionLevel.from_legacy(False, True) is CorrectionLevel.OFF
        assert CorrectionLevel.from_legacy(True, False) is CorrectionLevel.STANDARD
        assert CorrectionLevel.from_legacy(True, True) is CorrectionLevel.THOROUGH
