"""Background job tracking.

Job ids start at 1 and are never handed out twice in a session, even after
the job they named has been reaped or brought to the foreground.
"""
from __future__ import annotations

import logging
import sys
import threading
from dataclasses import dataclass
from typing import IO, List, Optional, Union

from command import EXIT_INTERRUPTED, ProcessHandle
from errors import JobError

logger = logging.getLogger("jshell.jobs")

JobRef = Union[int, str, None]


@dataclass
class Job:
    job_id: int
    pid: int
    handle: ProcessHandle
    command_line: str
    stopped: bool = False

    @property
    def status(self) -> str:
        return "Stopped" if self.stopped else "Running"


def _out(stream: Optional[IO[str]]) -> IO[str]:
    return stream if stream is not None else sys.stdout


class JobTable:
    def __init__(self) -> None:
        self._jobs: List[Job] = []
        self._next_id = 1
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._jobs)

    def __bool__(self) -> bool:
        return bool(self._jobs)

    def register(self, handle: ProcessHandle, command_line: str, out: Optional[IO[str]] = None) -> Job:
        with self._lock:
            job = Job(self._next_id, handle.pid, handle, command_line)
            self._next_id += 1
            self._jobs.append(job)
        logger.info("job %d started: pid %d %s", job.job_id, job.pid, command_line)
        _out(out).write(f"[{job.job_id}] {job.pid} {command_line}\n")
        return job

    def find(self, ref: JobRef = None) -> Job:
        """Look up a job by id (``2`` or ``%2``); None means the most recent."""
        with self._lock:
            if not self._jobs:
                raise JobError("no current job")
            if ref is None:
                return self._jobs[-1]
            job_id = self._parse_ref(ref)
            for job in self._jobs:
                if job.job_id == job_id:
                    return job
        raise JobError(f"job {job_id} not found")

    def find_by_pid(self, pid: int) -> Optional[Job]:
        with self._lock:
            return next((j for j in self._jobs if j.pid == pid), None)

    def remove(self, job_id: int) -> Job:
        with self._lock:
            for idx, job in enumerate(self._jobs):
                if job.job_id == job_id:
                    return self._jobs.pop(idx)
        raise JobError(f"job {job_id} not found")

    def reap(self, out: Optional[IO[str]] = None) -> List[Job]:
        """Drop every job whose process has exited, announcing each one."""
        with self._lock:
            finished = [j for j in self._jobs if j.handle.poll() is not None]
            self._jobs = [j for j in self._jobs if j not in finished]
        for job in finished:
            job.handle.close()
            logger.info("job %d done (exit %s)", job.job_id, job.handle.returncode)
            _out(out).write(f"[{job.job_id}]+ Done                    {job.command_line}\n")
        return finished

    def list(self, out: Optional[IO[str]] = None) -> List[Job]:
        self.reap(out)
        with self._lock:
            return list(self._jobs)

    def bring_to_foreground(self, ref: JobRef = None, out: Optional[IO[str]] = None) -> int:
        """Remove a job from the table and wait for it to finish."""
        job = self.remove(self.find(ref).job_id)
        _out(out).write(job.command_line + "\n")
        _out(out).flush()
        try:
            return job.handle.wait()
        except KeyboardInterrupt:
            job.handle.terminate()
            job.handle.wait()
            return EXIT_INTERRUPTED
        finally:
            job.handle.close()

    def send_to_background(self, ref: JobRef = None, out: Optional[IO[str]] = None) -> Job:
        # Nothing in the shell can stop a job yet, so this only ever accepts
        # jobs whose stopped flag was set from outside.
        job = self.find(ref)
        if not job.stopped:
            raise JobError(f"job {job.job_id} is already running")
        job.stopped = False
        _out(out).write(f"[{job.job_id}]+ {job.command_line} &\n")
        return job

    @staticmethod
    def _parse_ref(ref: Union[int, str]) -> int:
        if isinstance(ref, int):
            return ref
        text = ref[1:] if ref.startswith('%') else ref
        try:
            return int(text)
        except ValueError:
            raise JobError(f"{ref}: no such job") from None
