"""Stitching of separately generated screenplay chunks into one script."""

from __future__ import annotations

import logging
import re

from rapidfuzz import fuzz

from config import settings

logger = logging.getLogger(__name__)

_CHUNK_MARKER_PATTERNS = [
    r"^\s*\[\[\s*CHUNK\s*\d*\s*\]\]\s*$",
    r"^\s*-{2,}\s*PART\s*\d+\s*(?:OF\s*\d+\s*)?-{2,}\s*$",
    r"^\s*\(\s*CONTINUED\s*\)\s*$",
    r"^\s*CONTINUED:?\s*$",
    r"^\s*<<\s*END OF (?:CHUNK|PART)\s*\d*\s*>>\s*$",
    r"^\s*<<\s*(?:CHUNK|PART)\s*\d+\s*>>\s*$",
    r"^\s*\(\s*MORE\s*\)\s*$",
]
_CHUNK_MARKER_RE = re.compile("|".join(_CHUNK_MARKER_PATTERNS), re.IGNORECASE | re.MULTILINE)
_FADE_IN_RE = re.compile(r"^\s*FADE IN:?\s*$", re.IGNORECASE | re.MULTILINE)
_THE_END_RE = re.compile(r"^\s*THE END\.?\s*$", re.IGNORECASE | re.MULTILINE)
_BLANK_RUN_RE = re.compile(r"\n[ \t]*(?:\n[ \t]*){2,}")
_WS_RE = re.compile(r"\s+")


def _normalize_line(line: str) -> str:
    return _WS_RE.sub(" ", line).strip().lower()


def _first_nonempty_line(text: str) -> tuple[int, int, str] | None:
    """(start, end, line) of the first non-blank line in ``text``."""
    offset = 0
    for line in text.splitlines(keepends=True):
        if line.strip():
            return offset, offset + len(line), line
        offset += len(line)
    return None


def _last_nonempty_line(text: str) -> str | None:
    for line in reversed(text.splitlines()):
        if line.strip():
            return line
    return None


def _longest_overlap(tail: str, chunk: str, min_overlap: int) -> int:
    """Length of the longest suffix of ``tail`` that prefixes ``chunk``."""
    max_len = min(len(tail), len(chunk))
    for size in range(max_len, min_overlap - 1, -1):
        if tail.endswith(chunk[:size]):
            return size
    return 0


def append_chunk(
    previous_text: str,
    new_chunk_text: str,
    window: int = settings.ASSEMBLER_OVERLAP_WINDOW,
    min_overlap: int = settings.ASSEMBLER_MIN_OVERLAP,
    line_similarity: float = settings.ASSEMBLER_LINE_SIMILARITY,
) -> str:
    """Append ``new_chunk_text`` to ``previous_text`` without boundary repeats.

    The last ``window`` characters of the previous text are searched for the
    longest suffix that the new chunk starts with. When there is none, only
    the boundary lines are compared and a repeated opening line is dropped.
    """
    if not previous_text.strip():
        return new_chunk_text.strip("\n")
    chunk = new_chunk_text.strip("\n")
    if not chunk.strip():
        return previous_text

    previous = previous_text.rstrip()
    tail = previous[-window:] if window > 0 else previous
    overlap = _longest_overlap(tail, chunk, max(1, min_overlap))
    if overlap:
        logger.debug("Dropped %d overlapping characters at chunk boundary.", overlap)
        remainder = chunk[overlap:]
        if not remainder.strip():
            return previous
        return previous + remainder

    last_line = _last_nonempty_line(previous)
    first = _first_nonempty_line(chunk)
    if last_line is not None and first is not None:
        _, end, first_line = first
        a, b = _normalize_line(last_line), _normalize_line(first_line)
        if a and b and fuzz.ratio(a, b) >= line_similarity:
            logger.debug("Dropped repeated boundary line: %r", first_line.strip())
            chunk = chunk[end:].lstrip("\n")
            if not chunk.strip():
                return previous

    return previous + "\n\n" + chunk.strip("\n")


def normalize_script(text: str) -> str:
    """Remove chunk sentinels and repeated openers/closers from a stitched script.

    Only the first ``FADE IN:`` and the last ``THE END`` survive; runs of three
    or more blank lines collapse to a single blank line.
    """
    if not text:
        return ""
    cleaned = _CHUNK_MARKER_RE.sub("", text.replace("\r\n", "\n"))

    fade_ins = list(_FADE_IN_RE.finditer(cleaned))
    if len(fade_ins) > 1:
        first = fade_ins[0]
        cleaned = cleaned[: first.end()] + _FADE_IN_RE.sub("", cleaned[first.end() :])

    endings = list(_THE_END_RE.finditer(cleaned))
    if len(endings) > 1:
        last = endings[-1]
        cleaned = _THE_END_RE.sub("", cleaned[: last.start()]) + cleaned[last.start() :]

    cleaned = _BLANK_RUN_RE.sub("\n\n", cleaned)
    return cleaned.strip()


def estimate_pages(text: str, words_per_page: int = settings.WORDS_PER_PAGE) -> float:
    """Screenplay page estimate from the word count."""
    if words_per_page <= 0:
        raise ValueError("words_per_page must be positive")
    words = len(text.split()) if text else 0
    return round(words / words_per_page, 2)


def needs_top_off(
    text: str,
    target_pages: float,
    threshold: float = settings.TOP_OFF_THRESHOLD,
    words_per_page: int = settings.WORDS_PER_PAGE,
) -> bool:
    """True when ``text`` is shorter than ``threshold`` of ``target_pages``."""
    if target_pages <= 0:
        return False
    return estimate_pages(text, words_per_page) < target_pages * threshold


def strip_ending(text: str) -> tuple[str, bool]:
    """Remove a trailing ``THE END`` line; report whether one was there."""
    endings = list(_THE_END_RE.finditer(text))
    if not endings or text[endings[-1].end() :].strip():
        return text, False
    return text[: endings[-1].start()].rstrip(), True


def has_ending(text: str) -> bool:
    return bool(_THE_END_RE.search(text))
