"""In-process commands.

Every builtin is a plain function ``handler(session, args, streams) -> int``
where ``args[0]`` is the name it was invoked under and ``streams`` holds the
text streams it must use instead of the console, so builtins honor
redirections and pipes just like external programs. Several names may share
one handler (``dir`` and ``ls``, ``del`` and ``rm``...).
"""
from __future__ import annotations

import logging
import os
import re
import shutil
import signal
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import IO, TYPE_CHECKING, Callable, Dict, Iterator, List, Optional, Set, Tuple

from command import resolve_executable
from config import __version__
from errors import JobError, ResolutionError, ShellIOError

if TYPE_CHECKING:  # pragma: no cover
    from ops import ShellSession

logger = logging.getLogger("jshell.builtins")

CLEAR_SCREEN = "\033[2J\033[H"


@dataclass
class Streams:
    stdin: IO[str]
    stdout: IO[str]
    stderr: IO[str]

    @classmethod
    def console(cls) -> "Streams":
        return cls(sys.stdin, sys.stdout, sys.stderr)


BuiltinHandler = Callable[["ShellSession", List[str], Streams], int]


@dataclass(frozen=True)
class Builtin:
    name: str
    handler: BuiltinHandler
    description: str
    usage: str


class BuiltinRegistry:
    """Fixed name -> Builtin table; several names may map to one handler."""

    def __init__(self) -> None:
        self._table: Dict[str, Builtin] = {}

    def register(self, name: str, handler: BuiltinHandler, description: str, usage: str) -> None:
        self._table[name] = Builtin(name, handler, description, usage)

    def lookup(self, name: str) -> Optional[Builtin]:
        return self._table.get(name)

    def dispatch(self, name: str) -> Optional[BuiltinHandler]:
        entry = self._table.get(name)
        return entry.handler if entry is not None else None

    def __contains__(self, name: object) -> bool:
        return name in self._table

    def __iter__(self) -> Iterator[Builtin]:
        return iter(self._table.values())


# --- helpers ---

def _err(streams: Streams, message: str) -> int:
    streams.stderr.write(f"jshell: {message}\n")
    streams.stderr.flush()
    return 1


def parse_flags(args: List[str]) -> Tuple[Set[str], List[str]]:
    """Split ``args[1:]`` into single-letter flags and operands (``-rf`` -> r, f)."""
    flags: Set[str] = set()
    operands: List[str] = []
    for arg in args[1:]:
        if arg.startswith('-') and len(arg) > 1 and not arg.startswith('--'):
            flags.update(arg[1:])
        else:
            operands.append(arg)
    return flags, operands


def _compile(pattern: str) -> Optional[re.Pattern]:
    try:
        return re.compile(pattern, re.IGNORECASE)
    except re.error:
        return None


def _matcher(pattern: str) -> Callable[[str], bool]:
    # Fall back to a plain substring test when the pattern is not a valid regex
    regex = _compile(pattern)
    if regex is None:
        return lambda text: pattern in text
    return lambda text: regex.search(text) is not None


# --- session / navigation ---

def cd(session: "ShellSession", args: List[str], streams: Streams) -> int:
    home = session.env.get('HOME') or os.path.expanduser('~')
    if len(args) < 2 or args[1] == '~':
        target = home
    elif args[1] == '-':
        target = session.env.get('OLDPWD', '')
        if not target:
            return _err(streams, "cd: OLDPWD not set")
        streams.stdout.write(target + "\n")
    else:
        target = args[1]
    if not target:
        return _err(streams, "HOME directory not found")
    previous = os.getcwd()
    try:
        os.chdir(target)
    except OSError as e:
        return _err(streams, f"cd: {target}: {e.strerror}")
    session.env['OLDPWD'] = previous
    session.env['PWD'] = os.getcwd()
    return 0


def pwd(session: "ShellSession", args: List[str], streams: Streams) -> int:
    try:
        streams.stdout.write(os.getcwd() + "\n")
    except OSError as e:
        return _err(streams, f"pwd: {e.strerror}")
    return 0


def help_(session: "ShellSession", args: List[str], streams: Streams) -> int:
    if len(args) > 1:
        entry = BUILTINS.lookup(args[1])
        if entry is None:
            return _err(streams, f"No help available for '{args[1]}'")
        streams.stdout.write(f"{entry.name} - {entry.description}\nUsage: {entry.usage}\n")
        return 0
    out = streams.stdout
    out.write(f"jshell v{__version__}\n\nBuilt-in commands:\n")
    for entry in BUILTINS:
        out.write(f"  {entry.name:12} - {entry.description}\n")
    out.write("\nUse 'help <command>' for detailed usage information.\n")
    return 0


def exit_shell(session: "ShellSession", args: List[str], streams: Streams) -> int:
    code = 0
    if len(args) > 1:
        try:
            code = int(args[1])
        except ValueError:
            code = 1
    session.running = False
    session.last_exit_code = code
    return code


def version(session: "ShellSession", args: List[str], streams: Streams) -> int:
    streams.stdout.write(f"jshell v{__version__} - interactive command interpreter\n")
    return 0


def clear_screen(session: "ShellSession", args: List[str], streams: Streams) -> int:
    streams.stdout.write(CLEAR_SCREEN)
    streams.stdout.flush()
    return 0


# --- variables, aliases, history ---

def env(session: "ShellSession", args: List[str], streams: Streams) -> int:
    out = streams.stdout
    if len(args) > 1:
        name = args[1]
        value = session.get_var(name)
        if value is None:
            return _err(streams, f"Variable '{name}' not found")
        out.write(f"{name}={value}\n")
        return 0
    for name, value in sorted(session.env.items()):
        out.write(f"{name}={value}\n")
    if session.variables:
        out.write("\nShell variables:\n")
        for name, value in sorted(session.variables.items()):
            out.write(f"{name}={value}\n")
    return 0


def set_var(session: "ShellSession", args: List[str], streams: Streams) -> int:
    if len(args) < 3:
        return _err(streams, "Usage: set <NAME> <VALUE>")
    session.set_var(args[1], ' '.join(args[2:]))
    return 0


def unset_var(session: "ShellSession", args: List[str], streams: Streams) -> int:
    if len(args) < 2:
        return _err(streams, "Usage: unset <NAME>")
    session.unset_var(args[1])
    return 0


def history(session: "ShellSession", args: List[str], streams: Streams) -> int:
    total = len(session.history)
    count = total
    if len(args) > 1:
        try:
            count = min(total, int(args[1]))
        except ValueError:
            return _err(streams, "Invalid number")
    for idx in range(max(total - count, 0), total):
        streams.stdout.write(f"{idx + 1:5}: {session.history[idx]}\n")
    return 0


def alias(session: "ShellSession", args: List[str], streams: Streams) -> int:
    out = streams.stdout
    if len(args) == 1:
        if not session.aliases:
            out.write("No aliases defined.\n")
        for name, command in sorted(session.aliases.items()):
            out.write(f"{name}='{command}'\n")
        return 0
    definition = ' '.join(args[1:])
    name, sep, command = definition.partition('=')
    if not sep:
        if name not in session.aliases:
            return _err(streams, f"alias '{name}' not found")
        out.write(f"{name}='{session.aliases[name]}'\n")
        return 0
    if len(command) >= 2 and command[0] == command[-1] and command[0] in ('"', "'"):
        command = command[1:-1]
    session.aliases[name] = command
    logger.debug("alias %s=%r", name, command)
    return 0


def unalias(session: "ShellSession", args: List[str], streams: Streams) -> int:
    if len(args) < 2:
        return _err(streams, "Usage: unalias <name>")
    if session.aliases.pop(args[1], None) is None:
        return _err(streams, f"alias '{args[1]}' not found")
    return 0


def source(session: "ShellSession", args: List[str], streams: Streams) -> int:
    if len(args) < 2:
        return _err(streams, "Usage: source <script_file>")
    from ops import source_file  # ops imports this module
    try:
        return source_file(session, args[1], streams)
    except ShellIOError as e:
        return _err(streams, str(e))


def which(session: "ShellSession", args: List[str], streams: Streams) -> int:
    if len(args) < 2:
        return _err(streams, "Usage: which <command>")
    name = args[1]
    if name in session.aliases:
        streams.stdout.write(f"{name}: aliased to '{session.aliases[name]}'\n")
        return 0
    if name in BUILTINS:
        streams.stdout.write(f"{name}: shell builtin\n")
        return 0
    try:
        streams.stdout.write(resolve_executable(name, session.env) + "\n")
    except ResolutionError:
        return _err(streams, f"which: '{name}' not found")
    return 0


# --- files ---

def _long_entry(path: Path, name: str) -> str:
    st = path.stat()
    kind = 'd' if path.is_dir() else '-'
    size = 0 if path.is_dir() else st.st_size
    stamp = time.strftime("%b %d %H:%M", time.localtime(st.st_mtime))
    return f"{kind}rwx------ {size:>10} {stamp} {name}"


def ls(session: "ShellSession", args: List[str], streams: Streams) -> int:
    flags, operands = parse_flags(args)
    long_format = 'l' in flags
    show_all = 'a' in flags
    path = Path(operands[0] if operands else '.')
    out = streams.stdout
    try:
        if not path.exists():
            return _err(streams, f"ls: {path}: No such file or directory")
        if path.is_file():
            out.write((_long_entry(path, path.name) if long_format else path.name) + "\n")
            return 0
        for entry in sorted(path.iterdir(), key=lambda p: p.name):
            if not show_all and entry.name.startswith('.'):
                continue
            shown = entry.name + ('/' if entry.is_dir() else '')
            out.write((_long_entry(entry, shown) if long_format else shown) + "\n")
    except OSError as e:
        return _err(streams, f"ls: {e.strerror}: {path}")
    return 0


def _write_bytes(stream: IO[str], data: bytes) -> None:
    # Bytes go to the binary layer untouched; in-memory text streams have none
    stream.flush()
    raw = getattr(stream, 'buffer', None)
    if raw is None:
        stream.write(data.decode('utf-8', errors='replace'))
        return
    raw.write(data)
    raw.flush()


def cat(session: "ShellSession", args: List[str], streams: Streams) -> int:
    out = streams.stdout
    if len(args) < 2:
        raw_in = getattr(streams.stdin, 'buffer', None)
        raw_out = getattr(out, 'buffer', None)
        if raw_in is None or raw_out is None:
            shutil.copyfileobj(streams.stdin, out)
            return 0
        out.flush()
        shutil.copyfileobj(raw_in, raw_out)
        raw_out.flush()
        return 0
    rc = 0
    for name in args[1:]:
        try:
            data = Path(name).read_bytes()
        except OSError:
            rc = _err(streams, f"cat: Cannot open file '{name}'")
            continue
        _write_bytes(out, data)
    return rc


def echo(session: "ShellSession", args: List[str], streams: Streams) -> int:
    words = args[1:]
    newline = True
    if words and words[0] == '-n':
        newline = False
        words = words[1:]
    streams.stdout.write(' '.join(words) + ("\n" if newline else ""))
    return 0


def mkdir(session: "ShellSession", args: List[str], streams: Streams) -> int:
    flags, operands = parse_flags(args)
    if not operands:
        return _err(streams, "Usage: mkdir [-p] <directory>")
    parents = 'p' in flags
    rc = 0
    for name in operands:
        try:
            Path(name).mkdir(parents=parents, exist_ok=parents)
        except OSError as e:
            rc = _err(streams, f"mkdir: {name}: {e.strerror}")
    return rc


def rm(session: "ShellSession", args: List[str], streams: Streams) -> int:
    flags, operands = parse_flags(args)
    if not operands:
        return _err(streams, "Usage: rm [-rf] <path>")
    recursive = 'r' in flags
    force = 'f' in flags
    rc = 0
    for name in operands:
        path = Path(name)
        if not path.exists() and not path.is_symlink():
            if not force:
                rc = _err(streams, f"rm: '{name}' does not exist")
            continue
        if path.is_dir() and not path.is_symlink() and not recursive:
            rc = _err(streams, f"rm: '{name}' is a directory (use -r for recursive removal)")
            continue
        try:
            if path.is_dir() and not path.is_symlink():
                shutil.rmtree(path)
            else:
                path.unlink()
        except OSError as e:
            if not force:
                rc = _err(streams, f"rm: {name}: {e.strerror}")
    return rc


def touch(session: "ShellSession", args: List[str], streams: Streams) -> int:
    if len(args) < 2:
        return _err(streams, "Usage: touch <filename>")
    rc = 0
    for name in args[1:]:
        try:
            Path(name).touch()
        except OSError as e:
            rc = _err(streams, f"touch: Cannot create file '{name}': {e.strerror}")
    return rc


def cp(session: "ShellSession", args: List[str], streams: Streams) -> int:
    flags, operands = parse_flags(args)
    if len(operands) < 2:
        return _err(streams, "Usage: cp [-r] <source> <destination>")
    src, dst = Path(operands[0]), Path(operands[1])
    if not src.exists():
        return _err(streams, f"cp: Source '{src}' does not exist")
    try:
        if src.is_dir():
            if 'r' not in flags:
                return _err(streams, "cp: Source is a directory (use -r for recursive copy)")
            shutil.copytree(src, dst, dirs_exist_ok=True)
        else:
            shutil.copy2(src, dst)
    except OSError as e:
        return _err(streams, f"cp: {e}")
    return 0


def mv(session: "ShellSession", args: List[str], streams: Streams) -> int:
    if len(args) < 3:
        return _err(streams, "Usage: mv <source> <destination>")
    try:
        shutil.move(args[1], args[2])
    except OSError as e:
        return _err(streams, f"mv: {e}")
    return 0


def grep(session: "ShellSession", args: List[str], streams: Streams) -> int:
    if len(args) < 2:
        return _err(streams, "Usage: grep <pattern> [file]")
    matches = _matcher(args[1])
    found = False
    if len(args) > 2:
        name = args[2]
        try:
            lines = Path(name).read_text(encoding='utf-8', errors='replace').splitlines()
        except OSError:
            return _err(streams, f"grep: Cannot open file '{name}'")
        for number, line in enumerate(lines, start=1):
            if matches(line):
                streams.stdout.write(f"{name}:{number}: {line}\n")
                found = True
    else:
        for line in streams.stdin:
            if matches(line.rstrip('\n')):
                streams.stdout.write(line if line.endswith('\n') else line + '\n')
                found = True
    return 0 if found else 1


def find(session: "ShellSession", args: List[str], streams: Streams) -> int:
    if len(args) < 3:
        return _err(streams, "Usage: find <path> <pattern>")
    root, matches = args[1], _matcher(args[2])
    if not os.path.isdir(root):
        return _err(streams, f"find: '{root}': No such directory")
    found = False
    for dirpath, _dirnames, filenames in os.walk(root):
        for filename in sorted(filenames):
            if matches(filename):
                streams.stdout.write(os.path.join(dirpath, filename) + "\n")
                found = True
    return 0 if found else 1


# --- processes and jobs ---

def kill(session: "ShellSession", args: List[str], streams: Streams) -> int:
    if len(args) < 2:
        return _err(streams, "Usage: kill <pid|%job>")
    target = args[1]
    try:
        if target.startswith('%'):
            job = session.jobs.find(target)
        else:
            job = session.jobs.find_by_pid(int(target))
    except JobError as e:
        return _err(streams, f"kill: {e}")
    except ValueError:
        return _err(streams, "kill: Invalid process ID")
    try:
        if job is not None:
            job.handle.terminate()
            pid = job.pid
        else:
            pid = int(target)
            os.kill(pid, signal.SIGTERM)
    except OSError as e:
        return _err(streams, f"kill: Cannot terminate process {target}: {e.strerror}")
    streams.stdout.write(f"Process {pid} terminated\n")
    return 0


def jobs(session: "ShellSession", args: List[str], streams: Streams) -> int:
    remaining = session.jobs.list(streams.stdout)
    if not remaining:
        streams.stdout.write("No active jobs.\n")
    for job in remaining:
        streams.stdout.write(f"[{job.job_id}]  {job.status} {job.pid:>8}     {job.command_line}\n")
    return 0


def fg(session: "ShellSession", args: List[str], streams: Streams) -> int:
    try:
        return session.jobs.bring_to_foreground(args[1] if len(args) > 1 else None, streams.stdout)
    except JobError as e:
        return _err(streams, f"fg: {e}")


def bg(session: "ShellSession", args: List[str], streams: Streams) -> int:
    try:
        session.jobs.send_to_background(args[1] if len(args) > 1 else None, streams.stdout)
    except JobError as e:
        return _err(streams, f"bg: {e}")
    return 0


BUILTINS = BuiltinRegistry()

for _name, _handler, _description, _usage in (
    ("cd",      cd,           "Change directory",               "cd [directory|~|-]"),
    ("help",    help_,        "Display help message",           "help [command]"),
    ("exit",    exit_shell,   "Exit the shell",                 "exit [code]"),
    ("pwd",     pwd,          "Print working directory",        "pwd"),
    ("env",     env,          "List environment variables",     "env [variable]"),
    ("set",     set_var,      "Set variable",                   "set <name> <value>"),
    ("unset",   unset_var,    "Unset variable",                 "unset <name>"),
    ("history", history,      "Show command history",           "history [count]"),
    ("source",  source,       "Execute script file",            "source <file>"),
    ("ls",      ls,           "List directory contents",        "ls [-la] [path]"),
    ("dir",     ls,           "Alias for ls",                   "dir [-la] [path]"),
    ("cat",     cat,          "Display file contents",          "cat [file...]"),
    ("echo",    echo,         "Display text",                   "echo [-n] [text...]"),
    ("mkdir",   mkdir,        "Create directory",               "mkdir [-p] <directory...>"),
    ("rm",      rm,           "Remove files/directories",       "rm [-rf] <path...>"),
    ("del",     rm,           "Alias for rm",                   "del [-rf] <path...>"),
    ("cls",     clear_screen, "Clear screen",                   "cls"),
    ("clear",   clear_screen, "Alias for cls",                  "clear"),
    ("alias",   alias,        "Create command alias",           "alias [name='command']"),
    ("unalias", unalias,      "Remove alias",                   "unalias <name>"),
    ("touch",   touch,        "Create empty file",              "touch <file...>"),
    ("cp",      cp,           "Copy files",                     "cp [-r] <source> <destination>"),
    ("copy",    cp,           "Alias for cp",                   "copy [-r] <source> <destination>"),
    ("mv",      mv,           "Move/rename files",              "mv <source> <destination>"),
    ("move",    mv,           "Alias for mv",                   "move <source> <destination>"),
    ("grep",    grep,         "Search text patterns",           "grep <pattern> [file]"),
    ("find",    find,         "Find files",                     "find <path> <pattern>"),
    ("which",   which,        "Locate command",                 "which <command>"),
    ("kill",    kill,         "Kill process",                   "kill <pid|%job>"),
    ("jobs",    jobs,         "List active jobs",               "jobs"),
    ("fg",      fg,           "Bring job to foreground",        "fg [job_id]"),
    ("bg",      bg,           "Send job to background",         "bg [job_id]"),
    ("version", version,      "Show shell version",             "version"),
):
    BUILTINS.register(_name, _handler, _description, _usage)
