# module for command execution

from __future__ import annotations

import logging
import os
import subprocess
import sys
from abc import ABC, abstractmethod
from contextlib import ExitStack
from pathlib import Path
from typing import IO, TYPE_CHECKING, Any, List, Mapping, Optional, Sequence, Tuple, Union

from errors import LaunchError, ResolutionError
from groups import Command

if TYPE_CHECKING:  # pragma: no cover
    from jobs import JobTable

logger = logging.getLogger("jshell.launcher")

IS_WINDOWS = os.name == 'nt'
EXECUTABLE_SUFFIXES: Tuple[str, ...] = ("", ".exe", ".bat", ".cmd", ".com") if IS_WINDOWS else ("",)
EXIT_INTERRUPTED = 130

# A stream endpoint is anything subprocess accepts: a raw fd, a file object,
# or one of the subprocess constants.
Endpoint = Union[int, IO[Any], None]


class ProcessHandle(ABC):
    """What the coordinator and the job table need from a running process."""

    pid: int

    @abstractmethod
    def wait(self) -> int:
        """Block until the process exits and return its exit code."""

    @abstractmethod
    def poll(self) -> Optional[int]:
        """Exit code if the process has finished, else None. Never blocks."""

    @abstractmethod
    def terminate(self) -> None:
        ...

    @property
    @abstractmethod
    def returncode(self) -> Optional[int]:
        ...

    def close(self) -> None:
        pass


class PopenHandle(ProcessHandle):
    """ProcessHandle backed by ``subprocess.Popen``."""

    def __init__(self, proc: subprocess.Popen) -> None:
        self._proc = proc
        self.pid = proc.pid

    @classmethod
    def start(
        cls,
        argv: Sequence[str],
        *,
        executable: str,
        stdin: Endpoint = None,
        stdout: Endpoint = None,
        stderr: Endpoint = None,
        env: Optional[Mapping[str, str]] = None,
        detached: bool = False,
    ) -> "PopenHandle":
        kwargs: dict = {}
        if detached:
            # Keep Ctrl-C at the prompt away from background jobs
            if IS_WINDOWS:
                kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
            else:
                kwargs["start_new_session"] = True
        proc = subprocess.Popen(
            list(argv),
            executable=executable,
            stdin=stdin,
            stdout=stdout,
            stderr=stderr,
            env=dict(env) if env is not None else None,
            **kwargs,
        )
        return cls(proc)

    def wait(self) -> int:
        return self._proc.wait()

    def poll(self) -> Optional[int]:
        return self._proc.poll()

    def terminate(self) -> None:
        if self._proc.poll() is None:
            self._proc.terminate()

    @property
    def returncode(self) -> Optional[int]:
        return self._proc.returncode

    def close(self) -> None:
        for stream in (self._proc.stdin, self._proc.stdout, self._proc.stderr):
            if stream is not None:
                stream.close()


# --- Executable resolution ---

def _search_path(env: Optional[Mapping[str, str]]) -> List[str]:
    source = env if env is not None else os.environ
    raw = source.get('PATH', os.defpath)
    return [d for d in raw.split(os.pathsep) if d]


def _is_executable(path: Path) -> bool:
    if not path.is_file():
        return False
    return IS_WINDOWS or os.access(path, os.X_OK)


def _has_separator(name: str) -> bool:
    return '/' in name or os.sep in name or bool(os.altsep and os.altsep in name)


def resolve_executable(name: str, env: Optional[Mapping[str, str]] = None) -> str:
    """Locate ``name``: as a literal path, else the cwd, else each PATH entry.

    Each directory is tried with the bare name and every platform suffix.
    """
    if not name:
        raise ResolutionError("Command not found: ''")
    if _has_separator(name):
        if _is_executable(Path(name)):
            return name
        raise ResolutionError(f"Command not found: '{name}'")

    directories = [os.curdir] + _search_path(env)
    for directory in directories:
        for suffix in EXECUTABLE_SUFFIXES:
            candidate = Path(directory) / (name + suffix)
            if _is_executable(candidate):
                resolved = str(candidate.absolute()) if directory == os.curdir else str(candidate)
                logger.debug("resolved %s -> %s", name, resolved)
                return resolved
    raise ResolutionError(f"Command not found: '{name}'")


# --- Redirection ---

def _open_target(path: str, mode: str, kind: str) -> IO[bytes]:
    try:
        return open(path, mode)
    except OSError as e:
        raise LaunchError(f"Cannot open {kind} file '{path}': {e.strerror or e}") from e


def open_redirections(cmd: Command, stack: ExitStack) -> Tuple[Optional[IO[bytes]], Optional[IO[bytes]], Optional[IO[bytes]]]:
    """Open the command's redirection files, registering each on ``stack``.

    Raises LaunchError naming the path that could not be opened; anything
    opened before the failure is closed by the stack.
    """
    stdin = stdout = stderr = None
    if cmd.input_file is not None:
        stdin = stack.enter_context(_open_target(cmd.input_file, 'rb', 'input'))
    if cmd.output_file is not None:
        mode = 'ab' if cmd.append_output else 'wb'
        stdout = stack.enter_context(_open_target(cmd.output_file, mode, 'output'))
    if cmd.error_file is not None:
        mode = 'ab' if cmd.append_error else 'wb'
        stderr = stack.enter_context(_open_target(cmd.error_file, mode, 'error'))
    return stdin, stdout, stderr


def _pick(redirected: Endpoint, given: Endpoint) -> Endpoint:
    return redirected if redirected is not None else given


# --- Launch ---

def launch(
    cmd: Command,
    stdin: Endpoint = None,
    stdout: Endpoint = None,
    stderr: Endpoint = None,
    jobs: Optional["JobTable"] = None,
    env: Optional[Mapping[str, str]] = None,
) -> Optional[int]:
    """Start one external command and wait for it.

    Streams not redirected by the command itself fall back to the given
    endpoints, then to the interpreter's own streams. When the command is
    marked background and a job table is given, the process is registered as
    a job and None is returned instead of an exit code.
    """
    if not cmd.words:
        raise LaunchError("empty command")
    executable = resolve_executable(cmd.name, env)
    detached = cmd.background and jobs is not None

    with ExitStack() as stack:
        r_in, r_out, r_err = open_redirections(cmd, stack)
        stage_in = _pick(r_in, stdin)
        if stage_in is None and detached:
            stage_in = subprocess.DEVNULL
        try:
            handle = PopenHandle.start(
                cmd.words,
                executable=executable,
                stdin=stage_in,
                stdout=_pick(r_out, stdout),
                stderr=_pick(r_err, stderr),
                env=env,
                detached=detached,
            )
        except OSError as e:
            raise LaunchError(f"Failed to execute '{cmd.name}': {e.strerror or e}") from e
    logger.debug("started %s as pid %d", cmd.name, handle.pid)

    if detached:
        assert jobs is not None
        jobs.register(handle, cmd.display())
        return None

    try:
        return handle.wait()
    except KeyboardInterrupt:
        handle.terminate()
        handle.wait()
        sys.stderr.write("\n")
        return EXIT_INTERRUPTED
    finally:
        handle.close()
