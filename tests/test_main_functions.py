"""Tests for the entry point: argument parsing, prompt, logging, rc files and the REPL."""

import io
import logging
import os
import sys
from pathlib import Path
from unittest import mock

import pytest  # type: ignore

import main
from config import ShellConfig
from main import (
    configure_logging,
    display_cwd,
    initialize_shell,
    parse_args,
    rc_files,
    render_prompt,
    repl,
    run_script,
)


def scripted_input(*lines):
    """Replacement for input() that replays lines, then signals EOF."""
    pending = list(lines)

    def fake_input(prompt=""):
        if not pending:
            raise EOFError
        item = pending.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item
    return fake_input


@pytest.fixture()
def non_tty(monkeypatch):
    monkeypatch.setattr(sys, "stdin", io.StringIO())


class TestParseArgs:
    """Test parse_args function."""

    def test_defaults(self):
        args = parse_args([])
        assert args.script is None
        assert args.config is None
        assert args.log_level is None
        assert args.no_rc is False

    def test_all_options(self):
        args = parse_args(["--config", "my.ini", "--log-level", "debug", "--no-rc", "build.jsh"])
        assert args.config == Path("my.ini")
        assert args.log_level == "debug"
        assert args.no_rc is True
        assert args.script == "build.jsh"

    def test_version_exits(self, capsys):
        with pytest.raises(SystemExit) as info:
            parse_args(["--version"])
        assert info.value.code == 0
        assert "jshell v" in capsys.readouterr().out


class TestPrompt:
    """Test display_cwd and render_prompt."""

    def test_home_is_tilde(self, sandbox):
        tmp_path, _ = sandbox
        home = os.getcwd()
        assert display_cwd(home) == "~"
        (tmp_path / "sub").mkdir()
        os.chdir(tmp_path / "sub")
        assert display_cwd(home) == "~" + os.sep + "sub"

    def test_outside_home_is_absolute(self, sandbox):
        assert display_cwd("/definitely/not/here") == os.getcwd()

    def test_render_default_format(self, sandbox):
        assert render_prompt(ShellConfig(), os.getcwd()) == "[~] > "

    def test_render_custom_format(self, sandbox):
        config = ShellConfig(prompt_format="{cwd}$ ")
        assert render_prompt(config, os.getcwd()) == "~$ "

    def test_colored_prompt(self, sandbox, monkeypatch):
        monkeypatch.setattr(main, "READLINE_ACTIVE", False)
        assert render_prompt(ShellConfig(), os.getcwd(), color=True) == "\033[1;32m[~] > \033[0m"
        monkeypatch.setattr(main, "READLINE_ACTIVE", True)
        prompt = render_prompt(ShellConfig(), os.getcwd(), color=True)
        assert prompt.startswith("\001") and prompt.endswith("\002")


class TestConfigureLogging:
    """Test configure_logging function."""

    def test_explicit_level(self):
        assert configure_logging("debug") == logging.DEBUG

    def test_environment_level(self, monkeypatch):
        monkeypatch.setenv("JSHELL_LOG_LEVEL", "INFO")
        assert configure_logging() == logging.INFO

    def test_unknown_level_falls_back(self, monkeypatch):
        monkeypatch.delenv("JSHELL_LOG_LEVEL", raising=False)
        assert configure_logging("chatty") == logging.WARNING
        assert configure_logging() == logging.WARNING


class TestRcFiles:
    """Test rc file discovery and sourcing at startup."""

    def test_home_rc_sourced(self, session, sandbox):
        tmp_path, _ = sandbox
        (tmp_path / ".jshellrc").write_text("alias ll='ls -l'\nset EDITOR vi\n")
        assert rc_files(str(tmp_path)) == [tmp_path / ".jshellrc"]
        initialize_shell(session)
        assert session.aliases["ll"] == "ls -l"
        assert session.variables["EDITOR"] == "vi"

    def test_shell_directory_rc_first(self, session, sandbox):
        tmp_path, _ = sandbox
        (tmp_path / ".jshell").mkdir()
        (tmp_path / ".jshell" / ".jshellrc").write_text("set ORDER first\n")
        (tmp_path / ".jshellrc").write_text("set ORDER second\n")
        initialize_shell(session)
        assert session.variables["ORDER"] == "second"

    def test_no_rc(self, session, sandbox):
        tmp_path, _ = sandbox
        (tmp_path / ".jshellrc").write_text("set SHOULD_NOT run\n")
        initialize_shell(session, load_rc=False)
        assert "SHOULD_NOT" not in session.variables

    def test_no_files(self, sandbox):
        tmp_path, _ = sandbox
        assert rc_files(str(tmp_path)) == []


class TestRepl:
    """Test the interactive loop with a scripted input()."""

    def test_runs_lines_until_exit(self, session, non_tty, capsys, monkeypatch):
        monkeypatch.setattr("builtins.input", scripted_input("", "set X 1", "echo value=$X", "exit 2", "echo never"))
        assert repl(session) == 2
        out = capsys.readouterr().out
        assert "value=1\n" in out
        assert "never" not in out
        assert session.history == ["set X 1", "echo value=$X", "exit 2"]

    def test_eof_exits_with_last_code(self, session, non_tty, monkeypatch):
        monkeypatch.setattr("builtins.input", scripted_input("cd nowhere-at-all"))
        assert repl(session) == 1

    def test_ctrl_c_at_prompt_continues(self, session, non_tty, capsys, monkeypatch):
        monkeypatch.setattr("builtins.input", scripted_input(KeyboardInterrupt(), "echo after"))
        assert repl(session) == 0
        assert "after\n" in capsys.readouterr().out

    def test_unexpected_error_reported(self, session, non_tty, capsys, monkeypatch):
        monkeypatch.setattr("builtins.input", scripted_input("anything"))
        with mock.patch("main.execute_line", side_effect=RuntimeError("boom")):
            assert repl(session) == 1
        assert "jshell: error: boom" in capsys.readouterr().err

    def test_no_banner_when_not_interactive(self, session, non_tty, capsys, monkeypatch):
        monkeypatch.setattr("builtins.input", scripted_input())
        repl(session)
        assert "Type 'help'" not in capsys.readouterr().out

    def test_history_disabled(self, session, non_tty, monkeypatch):
        session.config.save_history = False
        monkeypatch.setattr("builtins.input", scripted_input("echo x"))
        repl(session)
        assert session.history == []


class TestRunScript:
    """Test run_script and main()."""

    def test_exit_code_from_exit(self, session, sandbox):
        tmp_path, _ = sandbox
        (tmp_path / "s.jsh").write_text("echo hi > out.txt\nexit 4\n")
        assert run_script(session, "s.jsh") == 4
        assert (tmp_path / "out.txt").read_text() == "hi\n"

    def test_exit_code_from_last_line(self, session, sandbox):
        tmp_path, _ = sandbox
        (tmp_path / "s.jsh").write_text("echo hi\ncd missing-dir\n")
        assert run_script(session, "s.jsh") == 1

    def test_missing_script(self, session, capsys):
        assert run_script(session, "nope.jsh") == 1
        assert "Failed to open script" in capsys.readouterr().err

    def test_main_runs_script(self, sandbox):
        tmp_path, _ = sandbox
        (tmp_path / "s.jsh").write_text("echo from-main > main.txt\nexit 3\n")
        with pytest.raises(SystemExit) as info:
            main.main(["--no-rc", "s.jsh"])
        assert info.value.code == 3
        assert (tmp_path / "main.txt").read_text() == "from-main\n"

    def test_main_reads_config(self, sandbox, monkeypatch):
        tmp_path, _ = sandbox
        (tmp_path / "custom.ini").write_text("prompt_format=jsh> \n")
        seen = {}

        def fake_repl(session):
            seen["prompt"] = session.config.prompt_format
            return 0
        monkeypatch.setattr(main, "repl", fake_repl)
        with pytest.raises(SystemExit) as info:
            main.main(["--no-rc", "--config", str(tmp_path / "custom.ini")])
        assert info.value.code == 0
        assert seen["prompt"] == "jsh> "
