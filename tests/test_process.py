"""Tests for deadlines, cancellation tokens and the tool runner."""

import sys
import threading
import time
from pathlib import Path

import pytest

from subtitle_pipeline import process
from subtitle_pipeline.errors import OperationCancelled, ProcessTimeout
from subtitle_pipeline.process import CancellationToken, extraction_timeout, ocr_timeout, run_tool

GB = 1024 ** 3
MB = 1024 ** 2


def _sized(monkeypatch: pytest.MonkeyPatch, size) -> None:
    monkeypatch.setattr(process, "_file_size", lambda path: size)


class TestDeadlines:
    @pytest.mark.parametrize("size, minutes", [
        (0, 5),
        (4 * GB, 9),
        (20 * GB, 45),
        (60 * GB, 185),
        (200 * GB, 240),
    ])
    def test_extraction_timeout(self, monkeypatch: pytest.MonkeyPatch, size: int, minutes: float) -> None:
        _sized(monkeypatch, size)
        assert extraction_timeout(Path("movie.mkv")) == pytest.approx(minutes * 60)

    def test_extraction_timeout_unknown_size(self, tmp_path: Path) -> None:
        assert extraction_timeout(tmp_path / "missing.mkv") == 2 * 3600

    @pytest.mark.parametrize("size, minutes", [
        (0, 5),
        (50 * MB, 8),
        (500 * MB, 35),
        (5000 * MB, 120),
    ])
    def test_ocr_timeout(self, monkeypatch: pytest.MonkeyPatch, size: int, minutes: float) -> None:
        _sized(monkeypatch, size)
        assert ocr_timeout(Path("movie.en.sup")) == pytest.approx(minutes * 60)

    def test_ocr_timeout_unknown_size(self, tmp_path: Path) -> None:
        assert ocr_timeout(tmp_path / "missing.sup") == 30 * 60


class TestCancellationToken:
    def test_flag(self) -> None:
        token = CancellationToken()
        assert not token.cancelled
        token.raise_if_cancelled()
        token.cancel()
        assert token.cancelled
        with pytest.raises(OperationCancelled):
            token.raise_if_cancelled()

    def test_wait(self) -> None:
        token = CancellationToken()
        assert token.wait(0.01) is False
        threading.Timer(0.05, token.cancel).start()
        assert token.wait(5) is True


class TestRunTool:
    def test_captures_output(self) -> None:
        code, out, err = run_tool([sys.executable, "-c", "import sys; print('hi'); sys.stderr.write('warn')"])
        assert code == 0
        assert out.strip() == "hi"
        assert err == "warn"

    def test_exit_code(self) -> None:
        code, _, _ = run_tool([sys.executable, "-c", "raise SystemExit(3)"])
        assert code == 3

    def test_timeout_kills_child(self) -> None:
        started = time.monotonic()
        with pytest.raises(ProcessTimeout):
            run_tool([sys.executable, "-c", "import time; time.sleep(30)"], timeout=0.5)
        assert time.monotonic() - started < 10

    def test_cancel_kills_child(self) -> None:
        token = CancellationToken()
        threading.Timer(0.3, token.cancel).start()
        started = time.monotonic()
        with pytest.raises(OperationCancelled):
            run_tool([sys.executable, "-c", "import time; time.sleep(30)"], cancel_token=token)
        assert time.monotonic() - started < 10

    def test_already_cancelled_never_starts(self, monkeypatch: pytest.MonkeyPatch) -> None:
        def no_popen(*args, **kwargs):
            raise AssertionError("process should not start")

        monkeypatch.setattr(process.subprocess, "Popen", no_popen)
        token = CancellationToken()
        token.cancel()
        with pytest.raises(OperationCancelled):
            run_tool(["anything"], cancel_token=token)

    def test_missing_executable(self) -> None:
        with pytest.raises(FileNotFoundError):
            run_tool(["definitely-not-a-real-tool-xyz"])
