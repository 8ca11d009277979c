from __future__ import annotations

import re
from typing import Any, Iterable


_LINE_END_CHARS = {"", "\n", "\r"}
_HORIZONTAL_WS = " \t"
_CLOSING_PUNCTUATION = frozenset(".,;:!?)]}»")


def normalize_label(value: Any) -> str | None:
    """Normalize a document title or filename for display.

    Collapses runs of whitespace (including newlines leaked from PDF metadata)
    into single spaces and strips the ends. Returns None for empty values so
    callers can fall back to a default label.
    """

    if value is None:
        return None

    text = re.sub(r"\s+", " ", str(value)).strip()
    return text or None


def _trailing_char(parts: list[str]) -> str:
    for part in reversed(parts):
        if part:
            return part[-1]
    return ""


def _strip_trailing_horizontal(parts: list[str]) -> None:
    while parts:
        stripped = parts[-1].rstrip(_HORIZONTAL_WS)
        if stripped:
            parts[-1] = stripped
            return
        parts.pop()


def _repair_removal_gap(parts: list[str], text: str, pos: int, limit: int) -> int:
    """Normalize whitespace around a span that was just deleted.

    ``parts`` holds the output emitted so far and ``pos`` is the first
    unconsumed offset in ``text``. Returns the (possibly advanced) offset.
    Only whitespace directly touching the removed span is affected.
    """

    prev = _trailing_char(parts)
    nxt = text[pos] if pos < len(text) else ""
    prev_is_space = prev != "" and prev in _HORIZONTAL_WS

    # "Fonte [cit:9]." -> "Fonte."
    if nxt in _LINE_END_CHARS or nxt in _CLOSING_PUNCTUATION:
        if prev_is_space:
            _strip_trailing_horizontal(parts)
        return pos

    # "a [cit:9] b" -> "a b", and a removal at line start eats the gap after it.
    if nxt in _HORIZONTAL_WS and (prev_is_space or prev in _LINE_END_CHARS):
        while pos < limit and text[pos] in _HORIZONTAL_WS:
            pos += 1
    return pos


def splice_edits(text: str, edits: Iterable[tuple[int, int, str]]) -> str:
    """Apply non-overlapping ``(start, end, replacement)`` edits to ``text``.

    Edits must be sorted by start offset. An empty replacement deletes the
    span and repairs the surrounding whitespace so no doubled spaces or
    space-before-punctuation artifacts remain.
    """

    ordered = list(edits)
    parts: list[str] = []
    pos = 0
    for i, (start, end, replacement) in enumerate(ordered):
        if start < pos:
            # The previous removal consumed whitespace up to this edit only,
            # so this can only happen for genuinely overlapping edits.
            raise ValueError(f"Overlapping edit at offset {start} (cursor {pos})")
        parts.append(text[pos:start])
        pos = end
        if replacement:
            parts.append(replacement)
            continue
        limit = ordered[i + 1][0] if i + 1 < len(ordered) else len(text)
        pos = _repair_removal_gap(parts, text, pos, limit)
    parts.append(text[pos:])
    return "".join(parts)
