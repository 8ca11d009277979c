from __future__ import annotations

import functools
import logging
from collections import Counter
from types import MappingProxyType
from typing import Any, Callable

from ..common.config_loader import CitationSettings, load_settings
from .mapping import CitationMapping, build_mapping
from .markers import extract_markers, find_tool_artifacts
from .merger import merge_sources
from .rewriter import rewrite_content
from .sources import EvidencePools
from .types import AnomalyKind, CitationAnomaly, CitationMarker, EvidencePool, ProcessingResult
from .validation import validate_markers

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Citation Utilities
# ---------------------------------------------------------------------------


def extract_cited_indices(text: str, pool: EvidencePool = EvidencePool.KB) -> list[int]:
    """Original indices cited for ``pool`` anywhere in ``text``, sorted and unique.

    Args:
        text: Raw model output.
        pool: Which namespace to collect (kb or web).

    Returns:
        Sorted list of positive indices.
    """
    found = {
        ref.original_index
        for marker in extract_markers(str(text or ""))
        for ref in marker.references
        if ref.pool == pool and ref.original_index > 0
    }
    return sorted(found)


def _outside_removals(markers: list[CitationMarker], removals: list[tuple[int, int]]) -> list[CitationMarker]:
    """Markers that do not overlap a tool artifact; the rest go with the artifact."""
    if not removals:
        return markers
    kept = []
    for marker in markers:
        start, end = marker.span
        if any(start < r_end and r_start < end for r_start, r_end in removals):
            logger.debug("Citation marker %r sits inside a tool artifact; removed with it", marker.raw)
            continue
        kept.append(marker)
    return kept


def _summarize_anomalies(anomalies: list[CitationAnomaly]) -> dict[str, int]:
    counts = Counter(a.kind.value for a in anomalies)
    return dict(sorted(counts.items()))


# -----------------------------------------------------------------------------
# Consolidated citation processing
# -----------------------------------------------------------------------------


def process_citations(
    text: str,
    pools: EvidencePools,
    *,
    list_mode: bool = False,
    formatter: Callable[[str], str] | None = None,
    settings: CitationSettings | None = None,
) -> ProcessingResult:
    """Resolve and renumber every citation marker of one assistant answer.

    Stages, each a pure function of its inputs:
    - Marker extraction (kb, web and hybrid syntax)
    - Validation against the supplied pools
    - First-appearance renumbering per pool namespace
    - Two-pass rewrite (placeholders, optional formatter, substitution)
    - Projection of the mapping onto the pools

    Never raises for malformed text or pools; every recoverable problem is
    recorded in ``result.debug["anomalies"]``.

    Args:
        text: Raw model output.
        pools: Snapshot of the evidence pools available for this answer.
        list_mode: The answer enumerates all documents; emit the whole meta
            listing when nothing in it is cited.
        formatter: Optional text transform run between the two rewrite passes.
        settings: Citation settings; loaded from config when omitted.

    Returns:
        ProcessingResult with the rewritten text and the per-pool sources.
    """
    cfg = settings or load_settings().citations
    source = str(text or "")
    anomalies: list[CitationAnomaly] = []

    markers = extract_markers(source, anomalies)

    removals: list[tuple[int, int]] = []
    if cfg.strip_tool_artifacts:
        removals = find_tool_artifacts(source)
        anomalies.extend(CitationAnomaly(kind=AnomalyKind.TOOL_ARTIFACT, span=span, detail=source[span[0]:span[1]]) for span in removals)

    validated = validate_markers(_outside_removals(markers, removals), pools, anomalies)
    mapping: CitationMapping = build_mapping(validated)

    outcome = rewrite_content(
        source,
        validated,
        mapping,
        pools,
        formatter=formatter,
        tag=cfg.placeholder_tag,
        removals=removals,
        anomalies=anomalies,
    )
    merged = merge_sources(mapping, pools, outcome.cited, list_mode=list_mode)

    debug: dict[str, Any] = {
        "markers_found": len(markers),
        "markers_removed": sum(1 for m in validated if m.fully_invalid),
        "tool_artifacts_removed": len(removals),
        "kb_cited": len(mapping[EvidencePool.KB]),
        "web_cited": len(mapping[EvidencePool.WEB]),
        "list_mode": bool(list_mode),
        "anomaly_counts": MappingProxyType(_summarize_anomalies(anomalies)),
        "anomalies": tuple(anomalies),
    }
    if anomalies:
        logger.info("Citation processing recovered from anomalies: %s", debug["anomaly_counts"])

    return ProcessingResult(
        text=outcome.text,
        kb_sources=merged.kb,
        web_sources=merged.web,
        debug=MappingProxyType(debug),
    )


# -----------------------------------------------------------------------------
# Memoization
# -----------------------------------------------------------------------------

_cached_processor: Callable[[str, EvidencePools, bool], ProcessingResult] | None = None


def _process_for_cache(text: str, pools: EvidencePools, list_mode: bool) -> ProcessingResult:
    return process_citations(text, pools, list_mode=list_mode)


def process_citations_cached(text: str, pools: EvidencePools, *, list_mode: bool = False) -> ProcessingResult:
    """Memoized ``process_citations`` keyed on ``(text, pools, list_mode)``.

    Safe because the pipeline is deterministic. Formatter runs are never
    cached; the cache size comes from ``citations.cache_size`` (0 disables).
    """
    global _cached_processor
    if _cached_processor is None:
        size = load_settings().citations.cache_size
        if size <= 0:
            return process_citations(text, pools, list_mode=list_mode)
        _cached_processor = functools.lru_cache(maxsize=size)(_process_for_cache)
    return _cached_processor(str(text or ""), pools, bool(list_mode))


def clear_citation_cache() -> None:
    """Drop memoized results and re-read the cache size on next use."""
    global _cached_processor
    if _cached_processor is not None:
        _cached_processor.cache_clear()  # type: ignore[attr-defined]
    _cached_processor = None
