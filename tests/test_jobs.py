"""Tests for the background job table."""

import io
from typing import Optional

import pytest  # type: ignore

from command import ProcessHandle
from errors import JobError
from jobs import JobTable


class FakeHandle(ProcessHandle):
    """Process handle whose exit is controlled by the test."""

    _next_pid = 4000

    def __init__(self, exit_code: Optional[int] = None) -> None:
        FakeHandle._next_pid += 1
        self.pid = FakeHandle._next_pid
        self._exit_code = exit_code
        self.closed = False
        self.terminated = False

    def finish(self, code: int = 0) -> None:
        self._exit_code = code

    def wait(self) -> int:
        if self._exit_code is None:
            self._exit_code = 0
        return self._exit_code

    def poll(self) -> Optional[int]:
        return self._exit_code

    def terminate(self) -> None:
        self.terminated = True
        self._exit_code = -15

    @property
    def returncode(self) -> Optional[int]:
        return self._exit_code

    def close(self) -> None:
        self.closed = True


@pytest.fixture()
def table():
    return JobTable()


@pytest.fixture()
def out():
    return io.StringIO()


class TestRegister:
    def test_ids_are_sequential(self, table, out):
        ids = [table.register(FakeHandle(), f"job{i}", out).job_id for i in range(3)]
        assert ids == [1, 2, 3]
        assert "[1] " in out.getvalue()

    def test_ids_never_reused(self, table, out):
        for i in range(3):
            table.register(FakeHandle(), f"job{i}", out)
        table.remove(2)
        assert table.register(FakeHandle(), "job4", out).job_id == 4

    def test_ids_survive_reaping(self, table, out):
        handle = FakeHandle()
        table.register(handle, "short", out)
        handle.finish()
        table.reap(out)
        assert len(table) == 0
        assert table.register(FakeHandle(), "next", out).job_id == 2

    def test_announcement(self, table, out):
        handle = FakeHandle()
        table.register(handle, "sleep 5", out)
        assert out.getvalue() == f"[1] {handle.pid} sleep 5\n"


class TestListAndReap:
    def test_completed_jobs_reaped_first(self, table, out):
        done, running = FakeHandle(), FakeHandle()
        table.register(done, "done-cmd", out)
        table.register(running, "running-cmd", out)
        done.finish(0)
        jobs = table.list(out)
        assert [j.command_line for j in jobs] == ["running-cmd"]
        assert done.closed
        assert not running.closed
        assert "[1]+ Done" in out.getvalue()
        assert "done-cmd" in out.getvalue()

    def test_empty(self, table, out):
        assert table.list(out) == []
        assert not table


class TestForeground:
    def test_most_recent_by_default(self, table, out):
        table.register(FakeHandle(), "first", out)
        table.register(FakeHandle(), "second", out)
        assert table.bring_to_foreground(out=out) == 0
        assert [j.command_line for j in table.list(out)] == ["first"]
        assert out.getvalue().endswith("second\n")

    def test_by_id_returns_exit_code(self, table, out):
        handle = FakeHandle(exit_code=7)
        table.register(FakeHandle(), "other", out)
        table.register(handle, "target", out)
        table.register(FakeHandle(), "third", out)
        assert table.bring_to_foreground("%2", out) == 7
        assert handle.closed
        with pytest.raises(JobError):
            table.find(2)

    def test_no_jobs(self, table, out):
        with pytest.raises(JobError, match="no current job"):
            table.bring_to_foreground(out=out)

    def test_unknown_id(self, table, out):
        table.register(FakeHandle(), "only", out)
        with pytest.raises(JobError, match="job 9 not found"):
            table.bring_to_foreground("9", out)

    def test_bad_reference(self, table, out):
        table.register(FakeHandle(), "only", out)
        with pytest.raises(JobError):
            table.find("%abc")


class TestBackground:
    def test_running_job_rejected(self, table, out):
        table.register(FakeHandle(), "busy", out)
        with pytest.raises(JobError, match="already running"):
            table.send_to_background(out=out)

    def test_stopped_job_resumed(self, table, out):
        job = table.register(FakeHandle(), "paused", out)
        job.stopped = True
        assert job.status == "Stopped"
        assert table.send_to_background(1, out) is job
        assert job.stopped is False
        assert out.getvalue().endswith("[1]+ paused &\n")


def test_find_by_pid(table, out):
    handle = FakeHandle()
    job = table.register(handle, "x", out)
    assert table.find_by_pid(handle.pid) is job
    assert table.find_by_pid(-1) is None
