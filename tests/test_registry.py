from __future__ import annotations

import threading
import time
from pathlib import Path

import pytest

from ezbackup.core.backup import FullBackupStrategy
from ezbackup.errors import DuplicateJobNameError, JobAlreadyRunningError, JobNotFoundError
from ezbackup.models import JobRegistry, JobStatus
from ezbackup.utils.log_sink import MemoryLogSink
from ezbackup.utils.state import StateWriter

from conftest import GatedStrategy, RaisingStrategy, make_tree


def _actions(sink: MemoryLogSink) -> list[str]:
    return [e.details.get("action") for e in sink.read_entries()]


def test_register_starts_pending_with_zero_progress() -> None:
    registry = JobRegistry()
    job = registry.register("docs", "/src", "/dst", GatedStrategy())

    assert job.status is JobStatus.PENDING
    assert job.progress == 0
    assert job.last_backup_timestamp is None
    assert registry.get_job("docs") == job
    assert "docs" in registry
    assert len(registry) == 1


def test_register_duplicate_name_is_rejected() -> None:
    registry = JobRegistry()
    registry.register("docs", "/src", "/dst", GatedStrategy())

    with pytest.raises(DuplicateJobNameError) as exc:
        registry.register("docs", "/other", "/elsewhere", GatedStrategy())

    assert exc.value.name == "docs"
    assert registry.get_job("docs").source_path == "/src"


def test_unknown_job_raises_not_found() -> None:
    registry = JobRegistry()

    with pytest.raises(JobNotFoundError):
        registry.get_job("nope")
    with pytest.raises(JobNotFoundError):
        registry.start("nope")
    assert registry.find_job("nope") is None
    assert registry.cancel("nope") is False


def test_returned_jobs_are_copies() -> None:
    registry = JobRegistry()
    registry.register("docs", "/src", "/dst", GatedStrategy())

    job = registry.get_job("docs")
    job.status = JobStatus.FAILED
    job.progress = 77
    registry.list_jobs()[0].progress = 12

    fresh = registry.get_job("docs")
    assert fresh.status is JobStatus.PENDING
    assert fresh.progress == 0


def test_deregister_removes_job_and_ignores_unknown_names() -> None:
    sink = MemoryLogSink()
    registry = JobRegistry(log_sink=sink)
    registry.register("docs", "/src", "/dst", GatedStrategy())

    registry.deregister("docs")
    registry.deregister("docs")

    assert "docs" not in registry
    assert _actions(sink) == ["BACKUP_CREATED", "BACKUP_DELETE"]


def test_successful_run_completes_with_timestamp() -> None:
    sink = MemoryLogSink()
    registry = JobRegistry(log_sink=sink)
    registry.register("docs", "/src", "/dst", GatedStrategy(release=True))
    progress = []

    assert registry.start("docs", progress_sink=progress.append) is True

    job = registry.get_job("docs")
    assert job.status is JobStatus.COMPLETED
    assert job.progress == 100
    assert job.last_backup_timestamp is not None
    assert progress == [50]
    assert _actions(sink) == ["BACKUP_CREATED", "BACKUP_STARTED", "BACKUP_COMPLETED"]


def test_failed_run_keeps_previous_timestamp() -> None:
    sink = MemoryLogSink()
    registry = JobRegistry(log_sink=sink)
    strategy = GatedStrategy(release=True)
    registry.register("docs", "/src", "/dst", strategy)
    registry.start("docs")
    completed_at = registry.get_job("docs").last_backup_timestamp

    strategy.result = False
    assert registry.start("docs") is False

    job = registry.get_job("docs")
    assert job.status is JobStatus.FAILED
    assert job.last_backup_timestamp == completed_at
    failed = sink.read_entries(level="ERROR")
    assert [e.details["action"] for e in failed] == ["BACKUP_FAILED"]


def test_strategy_exception_marks_job_failed() -> None:
    registry = JobRegistry()
    registry.register("docs", "/src", "/dst", RaisingStrategy())

    assert registry.start("docs") is False
    assert registry.get_job("docs").status is JobStatus.FAILED


def test_start_while_running_raises_and_leaves_state_unchanged() -> None:
    registry = JobRegistry()
    strategy = GatedStrategy()
    registry.register("docs", "/src", "/dst", strategy)

    thread = registry.start_background("docs")
    assert strategy.started.wait(5)
    registry.update_progress("docs", 40)

    with pytest.raises(JobAlreadyRunningError):
        registry.start("docs")

    job = registry.get_job("docs")
    assert job.status is JobStatus.RUNNING
    assert job.progress == 40
    assert strategy.calls == 1

    strategy.release.set()
    thread.join(5)
    assert registry.get_job("docs").status is JobStatus.COMPLETED


def test_cancel_running_job() -> None:
    sink = MemoryLogSink()
    registry = JobRegistry(log_sink=sink)
    strategy = GatedStrategy()
    registry.register("docs", "/src", "/dst", strategy)

    thread = registry.start_background("docs")
    assert strategy.started.wait(5)

    assert registry.cancel("docs") is True
    assert registry.get_job("docs").status is JobStatus.CANCELLED
    thread.join(5)
    assert not thread.is_alive()

    job = registry.get_job("docs")
    assert job.status is JobStatus.CANCELLED
    assert job.last_backup_timestamp is None
    assert registry.cancel("docs") is False
    assert "BACKUP_CANCELLED" in _actions(sink)
    assert "BACKUP_FAILED" not in _actions(sink)


def test_cancel_affects_only_the_named_job_on_a_shared_strategy() -> None:
    registry = JobRegistry()
    strategy = GatedStrategy()
    registry.register("one", "/src1", "/dst1", strategy)
    registry.register("two", "/src2", "/dst2", strategy)

    first = registry.start_background("one")
    second = registry.start_background("two")
    assert strategy.started.wait(5)

    registry.cancel("one")
    first.join(5)
    assert registry.get_job("two").status is JobStatus.RUNNING

    strategy.release.set()
    second.join(5)
    assert registry.get_job("one").status is JobStatus.CANCELLED
    assert registry.get_job("two").status is JobStatus.COMPLETED


@pytest.mark.integration
def test_cancel_from_progress_sink_stops_real_copy(tmp_path: Path) -> None:
    src = make_tree(tmp_path / "src", {"a.txt": "a", "b.txt": "b", "c.txt": "c"})
    dst = tmp_path / "dst"
    registry = JobRegistry()
    registry.register("docs", str(src), str(dst), FullBackupStrategy())

    def on_progress(percent: int) -> None:
        registry.cancel("docs")

    assert registry.start("docs", progress_sink=on_progress) is False

    assert registry.get_job("docs").status is JobStatus.CANCELLED
    assert sorted(p.name for p in dst.iterdir()) == ["a.txt"]


@pytest.mark.integration
def test_transfers_are_logged_per_file(tmp_path: Path) -> None:
    src = make_tree(tmp_path / "src", {"a.txt": "aa", "sub/b.txt": "bbb"})
    sink = MemoryLogSink()
    registry = JobRegistry(log_sink=sink)
    registry.register("docs", str(src), str(tmp_path / "dst"), FullBackupStrategy())

    assert registry.start("docs") is True

    transfers = [e for e in sink.read_entries() if e.details.get("action") == "FILE_TRANSFER"]
    assert [e.details["file_size"] for e in transfers] == [2, 3]
    assert all(e.source == "docs" and e.message == "File transferred" for e in transfers)


def test_update_progress_is_clamped_and_monotonic_while_running() -> None:
    registry = JobRegistry()
    strategy = GatedStrategy()
    registry.register("docs", "/src", "/dst", strategy)

    registry.update_progress("docs", 150)
    assert registry.get_job("docs").progress == 100
    registry.update_progress("docs", -5)
    assert registry.get_job("docs").progress == 0

    thread = registry.start_background("docs")
    assert strategy.started.wait(5)
    registry.update_progress("docs", 60)
    registry.update_progress("docs", 30)
    assert registry.get_job("docs").progress == 60

    registry.update_progress("ghost", 10)
    strategy.release.set()
    thread.join(5)


def test_restart_after_terminal_state_resets_progress() -> None:
    registry = JobRegistry()
    strategy = GatedStrategy(release=True)
    registry.register("docs", "/src", "/dst", strategy)
    registry.start("docs")

    strategy.release.clear()
    thread = registry.start_background("docs")
    assert strategy.started.wait(5)
    job = registry.get_job("docs")
    assert job.status is JobStatus.RUNNING
    assert job.progress == 0

    strategy.release.set()
    thread.join(5)
    assert strategy.calls == 2


def test_deregister_while_running_discards_the_outcome() -> None:
    registry = JobRegistry()
    strategy = GatedStrategy()
    registry.register("docs", "/src", "/dst", strategy)

    thread = registry.start_background("docs")
    assert strategy.started.wait(5)
    registry.deregister("docs")
    thread.join(5)

    assert not thread.is_alive()
    assert "docs" not in registry


def test_concurrent_registrations_keep_every_job() -> None:
    registry = JobRegistry()
    errors = []

    def worker(offset: int) -> None:
        try:
            for i in range(50):
                registry.register(f"job-{offset}-{i}", "/src", "/dst", GatedStrategy())
        except Exception as e:  # pragma: no cover - surfaced by the assertion below
            errors.append(e)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert len(registry) == 200


def test_state_file_follows_every_change(tmp_path: Path) -> None:
    writer = StateWriter(str(tmp_path / "state" / "jobs.json"))
    registry = JobRegistry(state_writer=writer)
    registry.register("docs", "/src", "/dst", GatedStrategy(release=True))

    assert writer.read()[0]["status"] == "pending"
    registry.start("docs")

    state = writer.read()[0]
    assert state["name"] == "docs"
    assert state["status"] == "completed"
    assert state["progress"] == 100
    assert state["strategy"] == "gated"
    assert state["last_backup_timestamp"]
    assert "last_action_time" in state


class SlowMixedStateWriter(StateWriter):
    """Stalls while writing a snapshot in which one job is done and another still running."""

    def write(self, jobs):
        statuses = {job.status for job in jobs}
        if JobStatus.RUNNING in statuses and JobStatus.COMPLETED in statuses:
            time.sleep(0.2)
        super().write(jobs)


def test_state_file_ends_on_the_latest_snapshot_when_jobs_finish_together(tmp_path: Path) -> None:
    writer = SlowMixedStateWriter(str(tmp_path / "jobs.json"))
    registry = JobRegistry(state_writer=writer)
    strategy = GatedStrategy()
    registry.register("one", "/src1", "/dst1", strategy)
    registry.register("two", "/src2", "/dst2", strategy)
    threads = [registry.start_background("one"), registry.start_background("two")]
    assert strategy.started.wait(5)

    strategy.release.set()
    for t in threads:
        t.join(5)

    assert {s["name"]: s["status"] for s in writer.read()} == {"one": "completed", "two": "completed"}


def test_state_file_carries_file_counters(tmp_path: Path) -> None:
    src = make_tree(tmp_path / "src", {"a.txt": "aa", "sub/b.txt": "bbb"})
    dst = tmp_path / "dst"
    writer = StateWriter(str(tmp_path / "jobs.json"))
    registry = JobRegistry(state_writer=writer)
    registry.register("docs", str(src), str(dst), FullBackupStrategy())
    seen = []

    def sink(percent):
        job = registry.get_job("docs")
        seen.append((job.total_files, job.total_size, job.current_source_file))

    assert registry.start("docs", progress_sink=sink) is True

    assert seen[0] == (2, 5, str(src / "a.txt"))
    state = writer.read()[0]
    assert state["total_files"] == 2
    assert state["total_size"] == 5
    assert state["files_remaining"] == 0
    assert state["bytes_remaining"] == 0
    assert state["current_source_file"] == ""
    assert state["current_target_file"] == ""
