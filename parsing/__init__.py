# parsing/__init__.py
"""Parsing utilities for backend JSON output.

The string heuristics (fence stripping, bracket counting, balanced-substring
extraction) stay in this module. Callers branch on :class:`ParseResult`.
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

import structlog
from pydantic import ValidationError

from core.errors import SchemaViolation

logger = structlog.get_logger(__name__)

T = TypeVar("T")

_FENCE_RE = re.compile(r"^\s*```[a-zA-Z0-9_-]*\s*\n?(.*?)\n?\s*```\s*$", re.DOTALL)
_OPENERS = {"{": "}", "[": "]"}
_CLOSERS = {"}", "]"}


class ParseError(Exception):
    """Custom exception for parsing errors."""

    def __init__(self, message: str, *, truncated: bool = False) -> None:
        super().__init__(message)
        self.truncated = truncated


@dataclass
class ParseResult(Generic[T]):
    """Either ``value`` or ``error`` is set, never both."""

    value: T | None = None
    error: ParseError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def __iter__(self):
        yield self.value
        yield self.error


def strip_code_fences(text: str) -> str:
    """Remove a surrounding Markdown code fence, if present."""
    if not text:
        return ""
    stripped = text.strip()
    match = _FENCE_RE.match(stripped)
    if match:
        return match.group(1).strip()
    # Opening fence without a closing one (cut-off output).
    if stripped.startswith("```"):
        first_newline = stripped.find("\n")
        return stripped[first_newline + 1 :].strip() if first_newline != -1 else ""
    return stripped


def _scan(text: str) -> tuple[int, bool]:
    """Return (open bracket depth, inside-string flag) after scanning ``text``."""
    depth = 0
    in_string = False
    escaped = False
    for ch in text:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in _OPENERS:
            depth += 1
        elif ch in _CLOSERS:
            depth -= 1
    return depth, in_string


def looks_truncated(text: str) -> bool:
    """Heuristic check for JSON that was cut off mid-structure."""
    trimmed = strip_code_fences(text)
    if not trimmed:
        return False
    trailing_backslashes = len(trimmed) - len(trimmed.rstrip("\\"))
    if trailing_backslashes % 2 == 1:
        return True
    depth, in_string = _scan(trimmed)
    return in_string or depth > 0


def _balanced_end(text: str, start: int) -> int | None:
    """Index one past the bracket closing ``text[start]``, or None."""
    stack: list[str] = []
    in_string = False
    escaped = False
    for idx in range(start, len(text)):
        ch = text[idx]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in _OPENERS:
            stack.append(_OPENERS[ch])
        elif ch in _CLOSERS:
            if not stack or stack.pop() != ch:
                return None
            if not stack:
                return idx + 1
    return None


def balanced_candidates(text: str) -> list[str]:
    """Balanced ``{...}``/``[...]`` substrings, longest first."""
    spans: list[tuple[int, int]] = []
    idx = 0
    while idx < len(text):
        if text[idx] in _OPENERS:
            end = _balanced_end(text, idx)
            if end is not None:
                spans.append((idx, end))
                idx = end
                continue
        idx += 1
    spans.sort(key=lambda span: span[1] - span[0], reverse=True)
    return [text[s:e] for s, e in spans]


def extract_largest_balanced(text: str) -> str | None:
    candidates = balanced_candidates(text)
    return candidates[0] if candidates else None


def parse_json_loose(raw: str) -> Any:
    """``json.loads`` after fence stripping, then the largest balanced substring.

    Raises :class:`ParseError` when nothing parses.
    """
    cleaned = strip_code_fences(raw)
    if not cleaned:
        raise ParseError("empty response")
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as first_error:
        for candidate in balanced_candidates(cleaned):
            try:
                data = json.loads(candidate)
            except json.JSONDecodeError:
                continue
            logger.debug(
                "Recovered JSON from a balanced substring.",
                kept_chars=len(candidate),
                total_chars=len(cleaned),
            )
            return data
        raise ParseError(f"no parsable JSON found: {first_error}") from first_error


def parse_structured(
    raw: str, validator: Callable[[Any], T] | None = None
) -> ParseResult[T]:
    """Parse ``raw`` into a validated value without raising.

    Truncated text is rejected before any parse attempt so a fragment that
    happens to contain a complete inner object is never accepted.
    """
    if looks_truncated(raw):
        return ParseResult(error=ParseError("response looks truncated", truncated=True))
    try:
        data = parse_json_loose(raw)
    except ParseError as exc:
        return ParseResult(error=exc)
    if validator is None:
        return ParseResult(value=data)
    try:
        return ParseResult(value=validator(data))
    except (SchemaViolation, ValidationError, ValueError, TypeError, KeyError) as exc:
        return ParseResult(error=ParseError(f"schema validation failed: {exc}"))
