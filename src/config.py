"""Recognized shell options and the ``key=value`` file they are read from."""
from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Dict, Mapping, Optional

__version__ = "2.0.0"

logger = logging.getLogger("jshell.config")

DEFAULT_PROMPT_FORMAT = "[{cwd}] > "
DEFAULT_MAX_HISTORY = 1000


@dataclass
class ShellConfig:
    prompt_format: str = DEFAULT_PROMPT_FORMAT
    enable_colors: bool = True
    auto_complete: bool = True
    save_history: bool = True
    max_history: int = DEFAULT_MAX_HISTORY

    @classmethod
    def from_mapping(cls, options: Mapping[str, str]) -> "ShellConfig":
        """Build a config from raw string options, ignoring what it does not know."""
        config = cls()
        known = {f.name for f in fields(cls)}
        for key, raw in options.items():
            if key not in known:
                logger.debug("ignoring unknown config key %r", key)
                continue
            current = getattr(config, key)
            if isinstance(current, bool):
                setattr(config, key, raw.strip().lower() in ("true", "1"))
            elif isinstance(current, int):
                try:
                    setattr(config, key, int(raw.strip()))
                except ValueError:
                    logger.warning("invalid integer for %s: %r", key, raw)
            else:
                setattr(config, key, raw)
        return config


def parse_config_text(text: str) -> Dict[str, str]:
    options: Dict[str, str] = {}
    for line in text.splitlines():
        if not line or line.startswith('#'):
            continue
        key, sep, value = line.partition('=')
        if not sep:
            continue
        options[key] = value
    return options


def load_config(path: Optional[Path]) -> ShellConfig:
    """Read a config file; a missing or unreadable file yields the defaults."""
    if path is None or not path.is_file():
        return ShellConfig()
    try:
        text = path.read_text(encoding='utf-8')
    except OSError as e:
        logger.warning("cannot read config %s: %s", path, e)
        return ShellConfig()
    logger.debug("loaded config from %s", path)
    return ShellConfig.from_mapping(parse_config_text(text))
