from __future__ import annotations

import io
import logging
import os
import sys
from concurrent.futures import ThreadPoolExecutor
from contextlib import ExitStack
from dataclasses import replace
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

from command import launch, open_redirections
from config import ShellConfig
from errors import LaunchError, ShellError, ShellIOError
from groups import Command, Pipeline, build_pipeline, expand_alias
from jobs import JobTable
from shell_builtins import BUILTINS, Builtin, Streams

logger = logging.getLogger("jshell.ops")

ENCODING = 'utf-8'


class ShellSession:
    """Holds session-wide shell state passed by reference to every component."""

    def __init__(
        self,
        config: Optional[ShellConfig] = None,
        inherit_env: bool = True,
        aliases: Optional[Mapping[str, str]] = None,
        variables: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.config: ShellConfig = config or ShellConfig()
        # String-only environment: expansion fallback and child process env
        self.env: Dict[str, str] = dict(os.environ) if inherit_env else {}
        self.aliases: Dict[str, str] = dict(aliases or {})
        self.variables: Dict[str, str] = dict(variables or {})
        self.jobs = JobTable()
        self.history: List[str] = []
        self.running: bool = True
        self.last_exit_code: int = 0

    # --- variable helpers ---
    def get_var(self, name: str) -> Optional[str]:
        if name in self.variables:
            return self.variables[name]
        return self.env.get(name)

    def set_var(self, name: str, value: str) -> None:
        self.variables[name] = value
        self.env[name] = value

    def unset_var(self, name: str) -> None:
        self.variables.pop(name, None)
        self.env.pop(name, None)

    def record_history(self, line: str) -> None:
        if not self.config.save_history:
            return
        self.history.append(line)
        overflow = len(self.history) - max(self.config.max_history, 0)
        if overflow > 0:
            del self.history[:overflow]


def _report(error: ShellError) -> int:
    sys.stderr.write(f"jshell: {error}\n")
    sys.stderr.flush()
    logger.debug("%s: %s", type(error).__name__, error)
    return error.exit_code


# --------- Stage execution ---------

def _builtin_streams(cmd: Command, stack: ExitStack, stdin_fd: Optional[int], stdout_fd: Optional[int], owned: List[int]) -> Streams:
    """Text streams for a builtin stage: redirection file, else pipe, else console.

    Pipe fds that end up wrapped move from ``owned`` to ``stack``.
    """
    r_in, r_out, r_err = open_redirections(cmd, stack)

    def wrap_file(raw, mode: str):
        return stack.enter_context(io.TextIOWrapper(raw, encoding=ENCODING, errors='replace', write_through=(mode == 'w')))

    def wrap_fd(fd: int, mode: str):
        owned.remove(fd)
        return stack.enter_context(open(fd, mode, encoding=ENCODING, errors='replace', closefd=True))

    console = Streams.console()
    if r_in is not None:
        stdin = wrap_file(r_in, 'r')
    elif stdin_fd is not None:
        stdin = wrap_fd(stdin_fd, 'r')
    else:
        stdin = console.stdin
    if r_out is not None:
        stdout = wrap_file(r_out, 'w')
    elif stdout_fd is not None:
        stdout = wrap_fd(stdout_fd, 'w')
    else:
        stdout = console.stdout
    stderr = wrap_file(r_err, 'w') if r_err is not None else console.stderr
    return Streams(stdin, stdout, stderr)


def _run_builtin(entry: Builtin, cmd: Command, session: ShellSession, stdin_fd: Optional[int], stdout_fd: Optional[int], owned: List[int]) -> int:
    logger.debug("builtin %s %r", entry.name, cmd.words[1:])
    with ExitStack() as stack:
        streams = _builtin_streams(cmd, stack, stdin_fd, stdout_fd, owned)
        try:
            return entry.handler(session, list(cmd.words), streams)
        finally:
            streams.stdout.flush()


def run_stage(cmd: Command, session: ShellSession, stdin_fd: Optional[int] = None, stdout_fd: Optional[int] = None, jobs: Optional[JobTable] = None) -> int:
    """Run one stage, builtin or external, and return its exit code.

    The stage owns ``stdin_fd``/``stdout_fd`` and closes them on every path.
    """
    owned = [fd for fd in (stdin_fd, stdout_fd) if fd is not None]
    try:
        entry = BUILTINS.lookup(cmd.name)
        if entry is not None:
            return _run_builtin(entry, cmd, session, stdin_fd, stdout_fd, owned)
        sys.stdout.flush()
        sys.stderr.flush()
        rc = launch(cmd, stdin_fd, stdout_fd, None, jobs=jobs, env=session.env)
        # Launched as a job: nothing to report yet
        return 0 if rc is None else rc
    except ShellError as e:
        return _report(e)
    except BrokenPipeError:
        logger.debug("%s: downstream closed the pipe", cmd.name)
        return 1
    finally:
        for fd in owned:
            os.close(fd)


def _open_pipes(count: int) -> List[Tuple[int, int]]:
    pipes: List[Tuple[int, int]] = []
    try:
        for _ in range(count):
            pipes.append(os.pipe())
    except OSError as e:
        for read_fd, write_fd in pipes:
            os.close(read_fd)
            os.close(write_fd)
        raise LaunchError(f"CreatePipe failed: {e.strerror}") from e
    return pipes


def _run_concurrent(pipeline: Pipeline, session: ShellSession) -> int:
    pipes = _open_pipes(len(pipeline) - 1)
    last = len(pipeline) - 1
    # One worker per stage: a stage blocked on a full pipe must never wait
    # for its reader to be scheduled.
    with ThreadPoolExecutor(max_workers=len(pipeline), thread_name_prefix="jshell-stage") as pool:
        futures = []
        for idx, cmd in enumerate(pipeline):
            stdin_fd = pipes[idx - 1][0] if idx > 0 else None
            stdout_fd = pipes[idx][1] if idx < last else None
            futures.append(pool.submit(run_stage, cmd, session, stdin_fd, stdout_fd))
        codes = [f.result() for f in futures]
    logger.debug("pipeline exit codes: %r", codes)
    return codes[-1]


def execute_pipeline(pipeline: Pipeline, session: ShellSession) -> int:
    """Run a parsed pipeline; the reported code is the last stage's."""
    if not pipeline or not pipeline[0].words:
        return 0
    try:
        if len(pipeline) == 1:
            rc = run_stage(pipeline[0], session, jobs=session.jobs)
        else:
            rc = _run_concurrent(pipeline, session)
    except ShellError as e:
        rc = _report(e)
    session.last_exit_code = rc
    return rc


def execute_line(line: str, session: ShellSession) -> int:
    try:
        pipeline = build_pipeline(line, session.variables, session.env)
    except ShellError as e:
        session.last_exit_code = _report(e)
        return session.last_exit_code
    return execute_pipeline(expand_alias(pipeline, session.aliases), session)


def execute(target: Union[str, Sequence[Command]], session: ShellSession) -> int:
    """Single entry point: a raw line or an already parsed pipeline."""
    if isinstance(target, str):
        return execute_line(target, session)
    pipeline = list(target)
    if pipeline:
        # Alias expansion rewrites the head command; keep the caller's intact
        pipeline[0] = replace(pipeline[0], words=list(pipeline[0].words))
    return execute_pipeline(expand_alias(pipeline, session.aliases), session)


def source_file(session: ShellSession, path: Union[str, Path], streams: Optional[Streams] = None) -> int:
    """Execute a script line by line; a failing line is reported and skipped."""
    err = streams.stderr if streams is not None else sys.stderr
    try:
        text = Path(path).read_text(encoding=ENCODING)
    except (OSError, UnicodeDecodeError) as e:
        raise ShellIOError(f"Failed to open script '{path}': {getattr(e, 'strerror', None) or e}") from e
    rc = 0
    for number, line in enumerate(text.splitlines(), start=1):
        stripped = line.strip()
        if not stripped or stripped.startswith('#'):
            continue
        try:
            rc = execute_line(line, session)
        except Exception as e:
            logger.error("error at %s:%d", path, number, exc_info=True)
            err.write(f"jshell: Error at line {number}: {e}\n")
            rc = 1
        if not session.running:
            break
    return rc
