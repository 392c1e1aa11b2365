"""Error taxonomy for jshell.

Every error raised by the execution core is recoverable: the coordinator or
the REPL reports it and carries on with the next stage or line. Each class
carries the exit code that is reported for the failing command.

    ShellError
    ├── ParseError        malformed line or redirection
    ├── ResolutionError   executable not found (127)
    ├── LaunchError       process could not be started / redirection not opened
    ├── JobError          unknown job id, bg on a running job
    └── ShellIOError      script or redirection target unreadable/unwritable
"""
from __future__ import annotations


class ShellError(Exception):
    exit_code: int = 1

    def __init__(self, message: str, exit_code: int | None = None) -> None:
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class ParseError(ShellError):
    pass


class ResolutionError(ShellError):
    exit_code = 127


class LaunchError(ShellError):
    pass


class JobError(ShellError):
    pass


class ShellIOError(ShellError):
    pass
