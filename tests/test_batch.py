"""Tests for the batch queue and its controls."""

import time
from pathlib import Path
from typing import Callable, List

import pytest

from conftest import FakeImageExtractor, FakeOcr, FakeProber, FakeTextExtractor, srt_track, typo_rules
from subtitle_pipeline.batch import BatchOrchestrator
from subtitle_pipeline.config import PipelineSettings
from subtitle_pipeline.errors import InvalidArgument, InvalidTransition
from subtitle_pipeline.models import ErrorKind, FileJob, JobStatus
from subtitle_pipeline.strategy import StrategySelector


def wait_until(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def _videos(tmp_path: Path, *names: str) -> List[Path]:
    paths = []
    for name in names:
        path = tmp_path / name
        path.write_bytes(b"\x1a\x45\xdf\xa3")
        paths.append(path)
    return paths


def _orchestrator(prober: FakeProber, text: FakeTextExtractor = None, **kwargs) -> BatchOrchestrator:
    selector = StrategySelector(text or FakeTextExtractor(), FakeImageExtractor(), FakeOcr())
    kwargs.setdefault("settings", PipelineSettings())
    return BatchOrchestrator(prober, selector, typo_rules, **kwargs)


class TestQueue:
    def test_enqueue_returns_pending_snapshots(self, tmp_path: Path) -> None:
        batch = _orchestrator(FakeProber([srt_track(0)]))
        added = batch.enqueue(_videos(tmp_path, "a.mkv", "b.mkv"))
        assert [job.name for job in added] == ["a.mkv", "b.mkv"]
        assert all(job.status is JobStatus.PENDING for job in added)

    def test_duplicates_ignored(self, tmp_path: Path) -> None:
        batch = _orchestrator(FakeProber([srt_track(0)]))
        (video,) = _videos(tmp_path, "a.mkv")
        batch.enqueue([video])
        assert batch.enqueue([video, tmp_path / "." / "a.mkv"]) == []
        assert len(batch.snapshot()) == 1

    def test_snapshot_is_detached(self, tmp_path: Path) -> None:
        batch = _orchestrator(FakeProber([srt_track(0)]))
        batch.enqueue(_videos(tmp_path, "a.mkv"))
        batch.snapshot()[0].status = JobStatus.ERROR
        assert batch.snapshot()[0].status is JobStatus.PENDING

    def test_reorder(self, tmp_path: Path) -> None:
        batch = _orchestrator(FakeProber([srt_track(0)]))
        batch.enqueue(_videos(tmp_path, "a.mkv", "b.mkv", "c.mkv"))
        batch.reorder(2, 0)
        assert [job.name for job in batch.snapshot()] == ["c.mkv", "a.mkv", "b.mkv"]

    def test_reorder_out_of_range(self, tmp_path: Path) -> None:
        batch = _orchestrator(FakeProber([srt_track(0)]))
        batch.enqueue(_videos(tmp_path, "a.mkv"))
        with pytest.raises(InvalidArgument):
            batch.reorder(0, 3)

    def test_reorder_finished_job_rejected(self, tmp_path: Path) -> None:
        prober = FakeProber([srt_track(0)])
        batch = _orchestrator(prober)
        batch.enqueue(_videos(tmp_path, "a.mkv"))
        batch.start()
        batch.enqueue(_videos(tmp_path, "b.mkv"))
        with pytest.raises(InvalidArgument):
            batch.reorder(0, 1)
        with pytest.raises(InvalidArgument):
            batch.reorder(1, 0)

    def test_move_to_top_and_bottom(self, tmp_path: Path) -> None:
        batch = _orchestrator(FakeProber([srt_track(0)]))
        batch.enqueue(_videos(tmp_path, "a.mkv", "b.mkv", "c.mkv"))
        batch.move_to_top(1)
        assert [job.name for job in batch.snapshot()] == ["b.mkv", "a.mkv", "c.mkv"]
        batch.move_to_bottom(0)
        assert [job.name for job in batch.snapshot()] == ["a.mkv", "c.mkv", "b.mkv"]

    def test_clear_all(self, tmp_path: Path) -> None:
        batch = _orchestrator(FakeProber([srt_track(0)]))
        batch.enqueue(_videos(tmp_path, "a.mkv", "b.mkv"))
        assert batch.clear_all() == 2
        assert batch.snapshot() == []


class TestRun:
    def test_fifo_order(self, tmp_path: Path) -> None:
        prober = FakeProber([srt_track(0)])
        batch = _orchestrator(prober)
        videos = _videos(tmp_path, "c.mkv", "a.mkv", "b.mkv")
        batch.enqueue(videos)
        batch.start()
        assert prober.calls == videos

    def test_one_failure_does_not_stop_batch(self, tmp_path: Path) -> None:
        prober = FakeProber([srt_track(0)], fail_on={"c.mkv"})
        batch = _orchestrator(prober)
        batch.enqueue(_videos(tmp_path, "a.mkv", "b.mkv", "c.mkv", "d.mkv", "e.mkv"))
        results = batch.start()

        assert len(results) == 5
        assert [r.status for r in results].count(JobStatus.COMPLETED) == 4
        failed = [r for r in results if r.status is JobStatus.ERROR]
        assert [r.path.name for r in failed] == ["c.mkv"]
        assert failed[0].error_kind is ErrorKind.PROBE_FAILED
        for name in ("a", "b", "d", "e"):
            assert (tmp_path / f"{name}.en.srt").exists()

    def test_statistics(self, tmp_path: Path) -> None:
        prober = FakeProber([srt_track(0)], per_file={"b.mkv": []})
        batch = _orchestrator(prober)
        batch.enqueue(_videos(tmp_path, "a.mkv", "b.mkv", "c.mkv"))
        assert batch.statistics().pending == 3
        batch.start()

        stats = batch.statistics()
        assert stats.completed == 2
        assert stats.error == 1
        assert stats.pending == 0
        assert stats.total == 3
        assert stats.total_corrections == 4
        assert stats.to_dict()["completed"] == 2

    def test_start_while_running(self, tmp_path: Path) -> None:
        batch = _orchestrator(FakeProber([srt_track(0)]))
        batch.enqueue(_videos(tmp_path, "a.mkv"))
        batch.pause()
        batch.start_async()
        assert wait_until(lambda: batch.is_running)
        with pytest.raises(RuntimeError):
            batch.start()
        batch.resume()
        assert batch.wait(5)

    def test_job_updates_are_snapshots(self, tmp_path: Path) -> None:
        seen: List[FileJob] = []
        batch = _orchestrator(FakeProber([srt_track(0)]), on_job_update=seen.append)
        batch.enqueue(_videos(tmp_path, "a.mkv"))
        batch.start()
        assert seen[-1].status is JobStatus.COMPLETED
        seen[-1].status = JobStatus.ERROR
        assert batch.snapshot()[0].status is JobStatus.COMPLETED


class TestControls:
    def test_pause_holds_queue_until_resume(self, tmp_path: Path) -> None:
        prober = FakeProber([srt_track(0)])
        batch = _orchestrator(prober)
        batch.enqueue(_videos(tmp_path, "a.mkv", "b.mkv"))
        batch.pause()
        batch.start_async()
        assert wait_until(lambda: batch.is_running)
        time.sleep(0.1)
        assert prober.calls == []
        assert batch.is_paused

        batch.resume()
        assert batch.wait(5)
        assert batch.statistics().completed == 2

    def test_pause_lets_current_file_finish(self, tmp_path: Path) -> None:
        holder = {}
        text = FakeTextExtractor(hook=lambda path, track, cancel: holder["batch"].pause())
        prober = FakeProber([srt_track(0)])
        batch = _orchestrator(prober, text)
        holder["batch"] = batch
        batch.enqueue(_videos(tmp_path, "a.mkv", "b.mkv", "c.mkv"))
        batch.start_async()

        assert wait_until(lambda: batch.statistics().completed == 1)
        time.sleep(0.1)
        stats = batch.statistics()
        assert stats.completed == 1
        assert stats.pending == 2

        # Resume without pausing again.
        text.hook = None
        batch.resume()
        assert batch.wait(5)
        assert batch.statistics().completed == 3

    def test_pause_during_last_file_still_drains(self, tmp_path: Path) -> None:
        holder = {}
        text = FakeTextExtractor(hook=lambda path, track, cancel: holder["batch"].pause())
        batch = _orchestrator(FakeProber([srt_track(0)]), text)
        holder["batch"] = batch
        batch.enqueue(_videos(tmp_path, "a.mkv"))
        batch.start_async()

        assert batch.wait(5)
        assert not batch.is_running
        assert batch.is_paused
        assert batch.statistics().completed == 1

    def test_clear_all_while_paused_ends_batch(self, tmp_path: Path) -> None:
        batch = _orchestrator(FakeProber([srt_track(0)]))
        batch.enqueue(_videos(tmp_path, "a.mkv", "b.mkv"))
        batch.pause()
        batch.start_async()
        assert wait_until(lambda: batch.is_running)
        assert batch.clear_all() == 2
        assert batch.wait(5)
        assert batch.snapshot() == []

    def test_cancel_all_mid_file(self, tmp_path: Path) -> None:
        holder = {}
        text = FakeTextExtractor(hook=lambda path, track, cancel: holder["batch"].cancel_all())
        batch = _orchestrator(FakeProber([srt_track(0)]), text)
        holder["batch"] = batch
        batch.enqueue(_videos(tmp_path, "a.mkv", "b.mkv", "c.mkv"))
        results = batch.start()

        assert [r.status for r in results] == [JobStatus.CANCELLED] * 3
        assert text.calls == [0]
        assert not list(tmp_path.glob("*.srt"))

    def test_cancel_all_while_paused(self, tmp_path: Path) -> None:
        batch = _orchestrator(FakeProber([srt_track(0)]))
        batch.enqueue(_videos(tmp_path, "a.mkv", "b.mkv"))
        batch.pause()
        batch.start_async()
        assert wait_until(lambda: batch.is_running)
        batch.cancel_all()
        assert batch.wait(5)
        assert batch.statistics().cancelled == 2

    def test_retry_failed_job(self, tmp_path: Path) -> None:
        prober = FakeProber([srt_track(0)], fail_on={"a.mkv"})
        batch = _orchestrator(prober)
        batch.enqueue(_videos(tmp_path, "a.mkv"))
        batch.start()
        assert batch.snapshot()[0].status is JobStatus.ERROR

        prober.fail_on.clear()
        retried = batch.retry(0)
        assert retried.status is JobStatus.PENDING
        assert retried.error_message is None
        batch.start()
        assert batch.snapshot()[0].status is JobStatus.COMPLETED

    def test_retry_pending_job_rejected(self, tmp_path: Path) -> None:
        batch = _orchestrator(FakeProber([srt_track(0)]))
        batch.enqueue(_videos(tmp_path, "a.mkv"))
        with pytest.raises(InvalidTransition):
            batch.retry(0)
        with pytest.raises(InvalidArgument):
            batch.retry(5)

    def test_clear_completed(self, tmp_path: Path) -> None:
        prober = FakeProber([srt_track(0)], fail_on={"b.mkv"})
        batch = _orchestrator(prober)
        batch.enqueue(_videos(tmp_path, "a.mkv", "b.mkv", "c.mkv"))
        batch.start()
        assert batch.clear_completed() == 2
        remaining = batch.snapshot()
        assert [job.name for job in remaining] == ["b.mkv"]
        assert remaining[0].status is JobStatus.ERROR
