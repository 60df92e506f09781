"""Tolerant parsers for the labeled fields AI responses are asked to emit.

Models wrap answers in commentary, markdown emphasis, or code fences, so
each parser looks for its label and ignores everything around it. None of
these functions raise on malformed input.

Rules:

* ``<url>...</url>``: the first delimited pair wins; text outside the
  delimiters is ignored. The content must be a single http(s) token and must
  not be the ``NOT_FOUND`` sentinel.
* ``SCORE:``: the first label followed by an integer. Markdown emphasis
  around the label (``**SCORE:** 87``) is accepted.
* ``HIGHLIGHTS:``: a block opened by a line that starts with the label.
  Lines whose stripped form starts with ``- `` are bullets; blank lines are
  skipped; the first other line closes the block.
"""

from __future__ import annotations

import re

NOT_FOUND_SENTINEL = "NOT_FOUND"

_URL_BLOCK_RE = re.compile(r"<url>(.*?)</url>", re.IGNORECASE | re.DOTALL)
_SCORE_RE = re.compile(r"\bSCORE[*_]*\s*:[*_]*\s*(\d+)", re.IGNORECASE)
_HIGHLIGHTS_LABEL_RE = re.compile(r"^[#*_\s]*HIGHLIGHTS[*_]*\s*:[*_]*\s*$", re.IGNORECASE)

BULLET_PREFIX = "- "


def parse_delimited_url(text: str | None) -> str | None:
    """Return the URL between ``<url>`` tags, or None."""
    if not text:
        return None
    match = _URL_BLOCK_RE.search(text)
    if match is None:
        return None

    candidate = match.group(1).strip()
    if not candidate or candidate.upper() == NOT_FOUND_SENTINEL:
        return None
    if not candidate.lower().startswith(("http://", "https://")):
        return None
    if any(ch.isspace() for ch in candidate):
        return None
    return candidate


def parse_score(text: str | None) -> int | None:
    """Return the first labeled score, or None if there is no ``SCORE:`` token."""
    if not text:
        return None
    match = _SCORE_RE.search(text)
    if match is None:
        return None
    return int(match.group(1))


def clamp_score(value: int | None, low: int = 0, high: int = 100) -> int:
    if value is None:
        return low
    return max(low, min(high, value))


def parse_highlights(text: str | None, limit: int | None = None) -> list[str]:
    """Return the bullet lines of the ``HIGHLIGHTS:`` block, prefix removed."""
    if not text:
        return []

    lines = text.splitlines()
    start = None
    for i, line in enumerate(lines):
        if _HIGHLIGHTS_LABEL_RE.match(line):
            start = i + 1
            break
    if start is None:
        return []

    highlights: list[str] = []
    for line in lines[start:]:
        stripped = line.strip()
        if not stripped:
            continue
        if not stripped.startswith(BULLET_PREFIX):
            break
        item = stripped[len(BULLET_PREFIX) :].strip()
        if item:
            highlights.append(item)

    if limit is not None:
        return highlights[:limit]
    return highlights
