#!/usr/bin/env python3

# Entry of jshell

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

try:
    import readline  # type: ignore
except Exception:  # pragma: no cover - fallback when readline unavailable
    readline = None

READLINE_ACTIVE = bool(readline)

from config import ShellConfig, __version__, load_config
from errors import ShellIOError
from ops import ShellSession, execute_line, source_file  # local modules in the same folder

logger = logging.getLogger("jshell.main")

RC_FILE = ".jshellrc"
CONFIG_FILE = "config.ini"
LOG_LEVEL_ENV = "JSHELL_LOG_LEVEL"
LOG_FORMAT = "%(asctime)s %(name)s %(levelname)s: %(message)s"

PROMPT_COLOR = "\033[1;32m"
RESET_COLOR = "\033[0m"

BANNER = r"""
   __        _            _  _
   \ \  ___ | |__    ___ | || |
    \ \/ __|| '_ \  / _ \| || |
 /\_/ /\__ \| | | ||  __/| || |
 \___/ |___/|_| |_| \___||_||_|
"""


def configure_logging(level_name: Optional[str] = None) -> int:
    name = (level_name or os.environ.get(LOG_LEVEL_ENV) or "WARNING").upper()
    level = logging.getLevelName(name)
    if not isinstance(level, int):
        level = logging.WARNING
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr)
    return level


def shell_directory() -> Path:
    """Per-user directory holding config.ini and an optional rc file."""
    return Path.home() / ".jshell"


def display_cwd(home: Optional[str] = None) -> str:
    try:
        current = os.getcwd()
    except OSError:
        return "unknown"
    home = (home if home is not None else os.path.expanduser("~")).rstrip(os.sep)
    if home and (current == home or current.startswith(home + os.sep)):
        return "~" + current[len(home):]
    return current


def render_prompt(config: ShellConfig, home: Optional[str] = None, color: bool = False) -> str:
    prompt = config.prompt_format.replace("{cwd}", display_cwd(home))
    if not color:
        return prompt
    if READLINE_ACTIVE:
        # \001/\002 keep readline's cursor math right around escape codes
        return f"\001{PROMPT_COLOR}\002{prompt}\001{RESET_COLOR}\002"
    return f"{PROMPT_COLOR}{prompt}{RESET_COLOR}"


def setup_readline(config: ShellConfig) -> None:
    if not READLINE_ACTIVE:
        return
    try:
        readline.parse_and_bind("set editing-mode emacs")
        readline.parse_and_bind("Control-l: clear-screen")
        readline.parse_and_bind("tab: complete" if config.auto_complete else "tab: tab-insert")
        readline.set_history_length(config.max_history if config.save_history else 0)
    except Exception:
        pass


def rc_files(home: Optional[str] = None) -> List[Path]:
    candidates = [shell_directory() / RC_FILE]
    home_rc = Path(home or os.path.expanduser("~")) / RC_FILE
    if home_rc not in candidates:
        candidates.append(home_rc)
    return [p for p in candidates if p.is_file()]


def initialize_shell(session: ShellSession, load_rc: bool = True) -> None:
    if not load_rc:
        return
    for path in rc_files(session.env.get("HOME")):
        logger.info("sourcing %s", path)
        try:
            source_file(session, path)
        except ShellIOError as e:
            print(f"jshell: {e}", file=sys.stderr)


def repl(session: ShellSession) -> int:
    setup_readline(session.config)
    interactive = sys.stdin.isatty()
    color = session.config.enable_colors and interactive and sys.stdout.isatty()

    if interactive:
        print(BANNER)
        print(f"        jshell v{__version__}")
        print("Type 'help' for available commands.\n")

    while session.running:
        try:
            line = input(render_prompt(session.config, session.env.get("HOME"), color))
        except EOFError:
            # Ctrl-D on empty line -> exit
            print()
            break
        except KeyboardInterrupt:
            # Ctrl-C at prompt -> new line and continue
            print()
            continue

        if not line.strip():
            continue
        session.record_history(line)

        try:
            execute_line(line, session)
        except KeyboardInterrupt:
            print()
            session.last_exit_code = 130
        except Exception as e:
            logger.debug("unhandled error for %r", line, exc_info=True)
            print(f"jshell: error: {e}", file=sys.stderr)
            session.last_exit_code = 1

    return session.last_exit_code


def run_script(session: ShellSession, path: str) -> int:
    try:
        rc = source_file(session, path)
    except ShellIOError as e:
        print(f"jshell: {e}", file=sys.stderr)
        return 1
    return session.last_exit_code if not session.running else rc


def parse_args(args=None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="jshell",
        description="jshell - an interactive command interpreter with pipes, redirection and job control",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  jshell                        # interactive session
  jshell build.jsh              # run a script and exit
  jshell --log-level DEBUG      # trace parsing and process launches
"""
    )
    parser.add_argument("script", nargs="?", help="script file to execute instead of starting a session")
    parser.add_argument("--version", action="version", version=f"jshell v{__version__}")
    parser.add_argument("--config", "-c", metavar="PATH", type=Path,
                        help=f"config file (default: ~/.jshell/{CONFIG_FILE})")
    parser.add_argument("--log-level", metavar="LEVEL",
                        help=f"logging level (default: ${LOG_LEVEL_ENV} or WARNING)")
    parser.add_argument("--no-rc", action="store_true", help=f"do not source {RC_FILE} files")
    return parser.parse_args(args)


def main(argv=None) -> None:
    args = parse_args(argv)
    configure_logging(args.log_level)
    config = load_config(args.config or shell_directory() / CONFIG_FILE)
    session = ShellSession(config=config, inherit_env=True)
    initialize_shell(session, load_rc=not args.no_rc)
    if args.script:
        sys.exit(run_script(session, args.script))
    sys.exit(repl(session))


if __name__ == "__main__":
    main()
