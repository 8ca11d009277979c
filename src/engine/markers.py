"""Marker Extractor: find citation markers in raw model output.

Recognized forms (case-insensitive keyword, optional colon, free whitespace):

    [cit:1,2,3]   [cit 1, 2]                    kb-only
    [web:1,2]     [web:1, web:2, web:4]         web-only
    [cit:1, web:2]  [cit:1, cit:2, web:1]       hybrid

Full-width brackets (``【cit:1】``) are accepted as well. Numbers inside a
group are taken from every digit run rather than by strict comma splitting,
because the model repeats keywords inconsistently.
"""

from __future__ import annotations

import logging
import re
from typing import Iterator

from .constants import (
    DIGIT_RUN_RE,
    KB_KEYWORD,
    KEYWORD_RE,
    MARKER_CANDIDATE_RE,
    MARKER_INNER_RE,
    TOOL_ARTIFACT_RE,
)
from .types import AnomalyKind, CitationAnomaly, CitationMarker, CitationReference, EvidencePool, MarkerKind

logger = logging.getLogger(__name__)


def parse_marker_inner(inner: str) -> tuple[CitationReference, ...] | None:
    """Parse the text between the brackets into ordered references.

    Returns None when the content does not follow the marker grammar or
    carries no number at all. A keyword with no digits after it (a stray
    repeated keyword) contributes nothing.
    """
    body = str(inner or "")
    if not MARKER_INNER_RE.match(body):
        return None

    keywords = list(KEYWORD_RE.finditer(body))
    refs: list[CitationReference] = []
    for i, kw in enumerate(keywords):
        group_end = keywords[i + 1].start() if i + 1 < len(keywords) else len(body)
        pool = EvidencePool.KB if kw.group(0).lower() == KB_KEYWORD else EvidencePool.WEB
        for digits in DIGIT_RUN_RE.findall(body[kw.end():group_end]):
            refs.append(CitationReference(pool=pool, original_index=int(digits)))

    if not refs:
        return None
    return tuple(refs)


def classify_references(references: tuple[CitationReference, ...]) -> MarkerKind:
    pools = {r.pool for r in references}
    if len(pools) > 1:
        return MarkerKind.HYBRID
    if EvidencePool.WEB in pools:
        return MarkerKind.WEB
    return MarkerKind.KB


def iter_marker_candidates(text: str) -> Iterator[re.Match[str]]:
    return MARKER_CANDIDATE_RE.finditer(str(text or ""))


def recognize_marker(match: re.Match[str]) -> CitationMarker | None:
    """Turn a candidate match into a marker, or None if it is malformed."""
    refs = parse_marker_inner(match.group("inner"))
    if refs is None:
        return None
    return CitationMarker(
        span=(match.start(), match.end()),
        kind=classify_references(refs),
        references=refs,
        raw=match.group(0),
    )


def extract_markers(text: str, anomalies: list[CitationAnomaly] | None = None) -> list[CitationMarker]:
    """Scan ``text`` and return markers in text order.

    Malformed candidates are left alone (they stay in the text as prose) and
    reported through ``anomalies`` when a collector is given.
    """
    markers: list[CitationMarker] = []
    for match in iter_marker_candidates(text):
        marker = recognize_marker(match)
        if marker is None:
            logger.debug("Malformed citation marker left untouched: %r", match.group(0))
            if anomalies is not None:
                anomalies.append(
                    CitationAnomaly(
                        kind=AnomalyKind.MALFORMED_MARKER,
                        span=(match.start(), match.end()),
                        detail=match.group(0),
                    )
                )
            continue
        markers.append(marker)
    return markers


def find_tool_artifacts(text: str) -> list[tuple[int, int]]:
    """Spans of leaked web-tool tokens such as ``[web_search_1712_query]``."""
    return [(m.start(), m.end()) for m in TOOL_ARTIFACT_RE.finditer(str(text or ""))]
