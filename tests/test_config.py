"""Tests for ShellConfig and the key=value config file."""

import logging

from config import DEFAULT_MAX_HISTORY, ShellConfig, load_config, parse_config_text


class TestParseConfigText:
    def test_pairs_comments_and_junk(self):
        text = "# comment\n\nprompt_format=$ \nmax_history=50\nno equals here\nkey=a=b\n"
        assert parse_config_text(text) == {
            "prompt_format": "$ ",
            "max_history": "50",
            "key": "a=b",
        }


class TestFromMapping:
    def test_typed_values(self):
        config = ShellConfig.from_mapping({
            "enable_colors": "false",
            "auto_complete": "1",
            "save_history": "TRUE",
            "max_history": " 25 ",
        })
        assert config.enable_colors is False
        assert config.auto_complete is True
        assert config.save_history is True
        assert config.max_history == 25

    def test_bad_integer_keeps_default(self, caplog):
        with caplog.at_level(logging.WARNING, logger="jshell.config"):
            config = ShellConfig.from_mapping({"max_history": "lots"})
        assert config.max_history == DEFAULT_MAX_HISTORY
        assert "max_history" in caplog.text

    def test_unknown_keys_ignored(self):
        assert ShellConfig.from_mapping({"theme": "dark"}) == ShellConfig()


class TestLoadConfig:
    def test_missing_file_gives_defaults(self, tmp_path):
        assert load_config(tmp_path / "absent.ini") == ShellConfig()
        assert load_config(None) == ShellConfig()

    def test_reads_file(self, tmp_path):
        path = tmp_path / "config.ini"
        path.write_text("prompt_format={cwd} % \nenable_colors=false\n")
        config = load_config(path)
        assert config.prompt_format == "{cwd} % "
        assert config.enable_colors is False
        assert config.max_history == DEFAULT_MAX_HISTORY
