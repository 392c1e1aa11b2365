"""Line parsing for jshell.

This module turns a raw input line into a pipeline: an ordered list of
``Command`` objects, one per ``|``-separated segment. Each segment goes
through variable expansion, background/redirection extraction and finally
tokenization into argument words. Alias rewriting of the first command's
head word is applied afterwards by ``expand_alias``.
"""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from typing import Iterable, List, Mapping, Optional, Tuple

from errors import ParseError

logger = logging.getLogger("jshell.parser")

QUOTES = ('"', "'")
PIPE = '|'
BACKGROUND = '&'

_VAR_PATTERN = re.compile(r'\$\{([A-Za-z_][A-Za-z0-9_]*)\}|\$([A-Za-z_][A-Za-z0-9_]*)')


@dataclass
class Command:
    """One pipeline stage: argv words plus its redirections."""
    words: List[str] = field(default_factory=list)
    input_file: Optional[str] = None
    output_file: Optional[str] = None
    append_output: bool = False
    error_file: Optional[str] = None
    append_error: bool = False
    background: bool = False

    @property
    def name(self) -> str:
        return self.words[0] if self.words else ''

    @property
    def has_redirection(self) -> bool:
        return any(p is not None for p in (self.input_file, self.output_file, self.error_file))

    def display(self) -> str:
        return ' '.join(self.words)


Pipeline = List[Command]

# --- Tokenization ---

def tokenize(text: str) -> List[str]:
    """Split text on whitespace outside quotes.

    Only the quote character that opened a region can close it, quote
    characters never appear in the output, and an unterminated quote runs to
    the end of the text.
    """
    words: List[str] = []
    buf: List[str] = []
    quote: Optional[str] = None
    for ch in text:
        if quote is None and ch in QUOTES:
            quote = ch
        elif ch == quote:
            quote = None
        elif quote is None and ch.isspace():
            if buf:
                words.append(''.join(buf))
                buf.clear()
        else:
            buf.append(ch)
    if buf:
        words.append(''.join(buf))
    return words

# --- Variable expansion ---

def expand_variables(text: str, variables: Mapping[str, str], environ: Optional[Mapping[str, str]] = None) -> str:
    """Substitute ``$NAME`` and ``${NAME}``.

    The session table wins over the environment; unknown names become ''.
    Runs over the whole segment before any quote or redirection parsing, so a
    value containing ``>`` or quotes changes how the rest is parsed.
    """
    if environ is None:
        environ = os.environ

    def lookup(match: re.Match) -> str:
        name = match.group(1) or match.group(2)
        if name in variables:
            return variables[name]
        return environ.get(name, '')

    return _VAR_PATTERN.sub(lookup, text)


def _expand_home(word: str, environ: Mapping[str, str]) -> str:
    if word == '~' or word.startswith('~/') or word.startswith('~' + os.sep):
        home = environ.get('HOME') or os.path.expanduser('~')
        return home + word[1:]
    return word

# --- Segment parsing ---

def _take_redirection(text: str, markers: Tuple[str, ...]) -> Tuple[str, Optional[str], Optional[str]]:
    """Cut the first of ``markers`` found (in priority order) out of ``text``.

    Returns (remaining text, matched marker, target word). Everything from the
    marker onwards is dropped from the remaining text.
    """
    for marker in markers:
        pos = text.find(marker)
        if pos < 0:
            continue
        following = tokenize(text[pos + len(marker):])
        target = following[0] if following else None
        if target is not None and target.startswith(BACKGROUND):
            raise ParseError(f"unsupported redirection target: {marker}{target}")
        return text[:pos], marker, target
    return text, None, None


def parse_command(segment: str, variables: Mapping[str, str], environ: Optional[Mapping[str, str]] = None) -> Command:
    if environ is None:
        environ = os.environ
    cmd = Command()
    text = expand_variables(segment, variables, environ).strip()

    if text.endswith(BACKGROUND):
        cmd.background = True
        text = text[:-1].rstrip()

    # 2>> must be looked for before 2>, and stderr before stdout
    text, marker, target = _take_redirection(text, ('2>>', '2>'))
    if marker:
        cmd.error_file = target
        cmd.append_error = marker == '2>>'

    text, marker, target = _take_redirection(text, ('>>', '>'))
    if marker:
        cmd.output_file = target
        cmd.append_output = marker == '>>'

    text, marker, target = _take_redirection(text, ('<',))
    if marker:
        cmd.input_file = target

    cmd.words = [_expand_home(w, environ) for w in tokenize(text)]
    return cmd


def build_pipeline(line: str, variables: Mapping[str, str], environ: Optional[Mapping[str, str]] = None) -> Pipeline:
    """Split a line on ``|`` and parse each segment.

    ``|`` inside quotes still splits the line.
    """
    if not line.strip():
        return []
    segments = line.split(PIPE)
    pipeline = [parse_command(seg, variables, environ) for seg in segments]
    if len(pipeline) == 1:
        return pipeline if pipeline[0].words else []
    for idx, cmd in enumerate(pipeline):
        if not cmd.words:
            raise ParseError(f"missing command near '|' (stage {idx + 1})")
    logger.debug("built %d-stage pipeline from %r", len(pipeline), line)
    return pipeline

# --- Alias expansion ---

def expand_alias(pipeline: Pipeline, aliases: Mapping[str, str]) -> Pipeline:
    """Rewrite the first command's head word from the alias table.

    Single pass: the replacement is never looked up again, so aliases that
    refer to each other cannot loop.
    """
    if not pipeline or not pipeline[0].words:
        return pipeline
    first = pipeline[0]
    replacement = aliases.get(first.words[0])
    if replacement is None:
        return pipeline
    first.words = tokenize(replacement) + first.words[1:]
    logger.debug("alias expanded to %r", first.words)
    return pipeline

# --- Formatting (debug / test aid) ---

def format_pipeline(pipeline: Iterable[Command]) -> str:
    return ' | '.join(cmd.display() for cmd in pipeline)
