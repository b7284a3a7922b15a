"""Parsers for free-text model output.

Model replies are not guaranteed to follow the requested line format, so both
parsers return a result object that lists what was accepted and what was
rejected instead of silently dropping lines.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable

from pydantic import BaseModel, Field

from story_weaver.llm import is_provenance_line
from story_weaver.prompts import NO_CHANGE, OPTION_COUNT

logger = logging.getLogger(__name__)

# "1.", "2)", "(3)", "-", "*", "•" at the start of a line, followed by whitespace
_LIST_PREFIX_RE = re.compile(r"^\s*(?:\(?\d+(?:[.)]\s+|、\s*)|[-*•]\s+)")
_PREF_LINE_RE = re.compile(r"^\s*[-*]?\s*([A-Za-z_][\w]*)\s*[:：]\s*(.+?)\s*$")


class OptionsResult(BaseModel):
    options: list[str] = Field(default_factory=list)
    rejected: list[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return bool(self.options)


class PreferenceDelta(BaseModel):
    updates: dict[str, str] = Field(default_factory=dict)
    rejected: list[str] = Field(default_factory=list)
    no_change: bool = False

    @property
    def ok(self) -> bool:
        return self.no_change or bool(self.updates)


def _clean_option(line: str) -> str:
    text = _LIST_PREFIX_RE.sub("", line.strip())
    text = text.strip()
    while text.startswith("[") or text.endswith("]"):
        text = text.removeprefix("[").removesuffix("]").strip()
    return text


def parse_options(text: str, limit: int = OPTION_COUNT) -> OptionsResult:
    """Split a reply into at most `limit` option strings, one per line."""
    result = OptionsResult()
    for raw in text.splitlines():
        if not raw.strip() or is_provenance_line(raw):
            continue
        option = _clean_option(raw)
        if not option:
            result.rejected.append(raw)
            continue
        if len(result.options) < limit:
            result.options.append(option)
    if result.rejected:
        logger.warning("options parser rejected %d line(s)", len(result.rejected))
    return result


def parse_preference_delta(text: str, known_names: Iterable[str]) -> PreferenceDelta:
    """Read `name: value` lines. Unknown names and colon-less lines are rejected."""
    known = set(known_names)
    result = PreferenceDelta()
    for raw in text.splitlines():
        line = raw.strip()
        if not line or is_provenance_line(line):
            continue
        if line == NO_CHANGE:
            result.no_change = True
            continue
        match = _PREF_LINE_RE.match(line)
        if not match or match.group(1) not in known:
            result.rejected.append(raw)
            continue
        result.updates[match.group(1)] = match.group(2)
    if result.rejected:
        logger.warning("preference parser rejected %d line(s): %r", len(result.rejected), result.rejected)
    return result
