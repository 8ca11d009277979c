"""Content Rewriter: replace raw markers with their renumbered display form.

The rewrite happens in two passes so that a formatting step (markdown
rendering, sanitizing, wrapping) can run in between without ever seeing raw
marker syntax:

- Pass A swaps each surviving marker for an opaque placeholder token and
  records what it stands for. Fully invalid markers and leaked tool
  artifacts are deleted on the spot.
- Pass B scans the formatted text once, left to right, and substitutes
  every placeholder. The same scan also picks up raw markers that escaped
  pass A (for instance text the formatter duplicated) and resolves them
  through the shared recognizer and validator against the existing mapping.

Because both branches live in one regex scan, text produced by a
substitution is never parsed again.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Iterable

from ..common.text_normalization import splice_edits
from .constants import (
    DEFAULT_PLACEHOLDER_TAG,
    KB_KEYWORD,
    MARKER_CANDIDATE_RE,
    PLACEHOLDER_CLOSE,
    PLACEHOLDER_OPEN,
    WEB_KEYWORD,
)
from .mapping import CitationMapping
from .markers import recognize_marker
from .sources import EvidencePools
from .types import AnomalyKind, CitationAnomaly, CitationReference, EvidencePool, ValidatedMarker
from .validation import validate_marker

logger = logging.getLogger(__name__)

_POOL_KEYWORDS = {
    EvidencePool.KB: KB_KEYWORD,
    EvidencePool.WEB: WEB_KEYWORD,
}


@dataclass(frozen=True)
class DisplayGroup:
    pool: EvidencePool
    indices: tuple[int, ...]


@dataclass(frozen=True)
class PlaceholderEntry:
    token: str
    groups: tuple[DisplayGroup, ...]
    references: tuple[CitationReference, ...]


@dataclass
class PlaceholderText:
    """Output of pass A: text with placeholder tokens plus their side table."""

    text: str
    tag: str
    salt: int
    table: dict[str, PlaceholderEntry] = field(default_factory=dict)

    @property
    def token_pattern(self) -> str:
        return (
            re.escape(PLACEHOLDER_OPEN)
            + re.escape(f"{self.tag}-{self.salt}-")
            + r"\d+"
            + re.escape(PLACEHOLDER_CLOSE)
        )


@dataclass(frozen=True)
class RewriteOutcome:
    text: str
    cited: frozenset[CitationReference]


# ─────────────────────────────────────────────────────────────────────────────
# Display form
# ─────────────────────────────────────────────────────────────────────────────


def display_groups(references: Iterable[CitationReference], mapping: CitationMapping) -> tuple[DisplayGroup, ...]:
    """Group mapped references by pool, in order of first appearance.

    Duplicates inside one marker collapse to their first occurrence and
    unmapped references are skipped.
    """
    order: list[EvidencePool] = []
    indices: dict[EvidencePool, list[int]] = {}
    for ref in references:
        display = mapping.display_index(ref)
        if display is None:
            continue
        if ref.pool not in order:
            order.append(ref.pool)
        bucket = indices.setdefault(ref.pool, [])
        if display not in bucket:
            bucket.append(display)
    return tuple(DisplayGroup(pool=pool, indices=tuple(indices[pool])) for pool in order)


def format_display_marker(groups: Iterable[DisplayGroup]) -> str:
    """``[cit:2,1]``, ``[web:1]`` or ``[cit:1, web:1]``; empty string for no groups."""
    rendered = [
        f"{_POOL_KEYWORDS[group.pool]}:{','.join(str(i) for i in group.indices)}"
        for group in groups
        if group.indices
    ]
    if not rendered:
        return ""
    return "[" + ", ".join(rendered) + "]"


def _mapped_references(references: Iterable[CitationReference], mapping: CitationMapping) -> tuple[CitationReference, ...]:
    return tuple(ref for ref in references if mapping.display_index(ref) is not None)


# ─────────────────────────────────────────────────────────────────────────────
# Pass A
# ─────────────────────────────────────────────────────────────────────────────


def choose_placeholder_salt(text: str, tag: str = DEFAULT_PLACEHOLDER_TAG) -> int:
    """Smallest salt whose token prefix never occurs in ``text``."""
    salt = 0
    while f"{PLACEHOLDER_OPEN}{tag}-{salt}-" in text:
        salt += 1
    return salt


def insert_placeholders(
    text: str,
    markers: Iterable[ValidatedMarker],
    mapping: CitationMapping,
    *,
    tag: str = DEFAULT_PLACEHOLDER_TAG,
    removals: Iterable[tuple[int, int]] = (),
) -> PlaceholderText:
    """Pass A: replace marker spans with placeholder tokens.

    ``removals`` are extra spans (tool artifacts) deleted along the way. They
    must not overlap marker spans.
    """
    source = str(text or "")
    salt = choose_placeholder_salt(source, tag)
    result = PlaceholderText(text=source, tag=tag, salt=salt)

    edits: list[tuple[int, int, str]] = [(start, end, "") for start, end in removals]
    for marker in markers:
        start, end = marker.span
        refs = _mapped_references(marker.valid_references, mapping)
        if not refs:
            edits.append((start, end, ""))
            continue
        token = f"{PLACEHOLDER_OPEN}{tag}-{salt}-{len(result.table)}{PLACEHOLDER_CLOSE}"
        result.table[token] = PlaceholderEntry(
            token=token,
            groups=display_groups(refs, mapping),
            references=refs,
        )
        edits.append((start, end, token))

    edits.sort(key=lambda e: e[0])
    result.text = splice_edits(source, edits)
    return result


# ─────────────────────────────────────────────────────────────────────────────
# Pass B
# ─────────────────────────────────────────────────────────────────────────────


def resolve_placeholders(
    formatted_text: str,
    placeholders: PlaceholderText,
    mapping: CitationMapping,
    pools: EvidencePools,
    anomalies: list[CitationAnomaly] | None = None,
) -> RewriteOutcome:
    """Pass B: substitute placeholders and rescue raw markers in one scan."""
    scanner = re.compile(
        f"(?P<placeholder>{placeholders.token_pattern})|{MARKER_CANDIDATE_RE.pattern}",
        flags=re.IGNORECASE,
    )

    edits: list[tuple[int, int, str]] = []
    cited: set[CitationReference] = set()
    seen_tokens: set[str] = set()

    for match in scanner.finditer(formatted_text):
        start, end = match.span()
        token = match.group("placeholder")
        if token is not None:
            entry = placeholders.table.get(token)
            if entry is None:
                logger.debug("Unknown placeholder token %r removed", token)
                edits.append((start, end, ""))
                continue
            seen_tokens.add(token)
            cited.update(entry.references)
            edits.append((start, end, format_display_marker(entry.groups)))
            continue

        marker = recognize_marker(match)
        if marker is None:
            # Already reported during extraction; stays as prose.
            continue
        validated = validate_marker(marker, pools)
        refs = _mapped_references(validated.valid_references, mapping)
        logger.debug("Resolving raw marker %r that survived formatting", marker.raw)
        if anomalies is not None:
            anomalies.append(
                CitationAnomaly(kind=AnomalyKind.RESCUED_RAW_MARKER, span=(start, end), detail=marker.raw)
            )
        cited.update(refs)
        edits.append((start, end, format_display_marker(display_groups(refs, mapping))))

    for token in placeholders.table:
        if token not in seen_tokens:
            logger.warning("Placeholder %s was dropped by the formatting step", token)
            if anomalies is not None:
                anomalies.append(CitationAnomaly(kind=AnomalyKind.DROPPED_PLACEHOLDER, detail=token))

    return RewriteOutcome(text=splice_edits(formatted_text, edits), cited=frozenset(cited))


def rewrite_content(
    text: str,
    markers: list[ValidatedMarker],
    mapping: CitationMapping,
    pools: EvidencePools,
    *,
    formatter: Callable[[str], str] | None = None,
    tag: str = DEFAULT_PLACEHOLDER_TAG,
    removals: Iterable[tuple[int, int]] = (),
    anomalies: list[CitationAnomaly] | None = None,
) -> RewriteOutcome:
    """Run pass A, the optional formatter, then pass B."""
    placeholders = insert_placeholders(text, markers, mapping, tag=tag, removals=removals)
    formatted = placeholders.text if formatter is None else formatter(placeholders.text)
    return resolve_placeholders(formatted, placeholders, mapping, pools, anomalies)
