"""Citation Validator: split marker references into valid and invalid sets."""

from __future__ import annotations

import logging
from typing import Iterable

from .sources import EvidencePools
from .types import AnomalyKind, CitationAnomaly, CitationMarker, ValidatedMarker

logger = logging.getLogger(__name__)


def validate_marker(
    marker: CitationMarker,
    pools: EvidencePools,
    anomalies: list[CitationAnomaly] | None = None,
) -> ValidatedMarker:
    """Check every reference of ``marker`` against the supplied pools.

    Valid references keep their written relative order. A reference into an
    empty pool is reported as ``EMPTY_POOL`` rather than ``UNRESOLVABLE_INDEX``
    so the logs say why it was dropped.
    """
    valid = []
    invalid = []
    for ref in marker.references:
        if pools.lookup(ref) is not None:
            valid.append(ref)
            continue
        invalid.append(ref)
        kind = AnomalyKind.EMPTY_POOL if pools.is_empty(ref.pool) else AnomalyKind.UNRESOLVABLE_INDEX
        logger.debug("Dropping %s reference %s:%d", kind.value, ref.pool.value, ref.original_index)
        if anomalies is not None:
            anomalies.append(CitationAnomaly(kind=kind, span=marker.span, reference=ref))

    validated = ValidatedMarker(
        marker=marker,
        valid_references=tuple(valid),
        invalid_references=tuple(invalid),
    )
    if anomalies is not None:
        if validated.fully_invalid:
            anomalies.append(
                CitationAnomaly(kind=AnomalyKind.FULLY_INVALID_MARKER, span=marker.span, detail=marker.raw)
            )
        elif validated.partially_invalid:
            anomalies.append(
                CitationAnomaly(kind=AnomalyKind.PARTIALLY_INVALID_MARKER, span=marker.span, detail=marker.raw)
            )
    return validated


def validate_markers(
    markers: Iterable[CitationMarker],
    pools: EvidencePools,
    anomalies: list[CitationAnomaly] | None = None,
) -> list[ValidatedMarker]:
    return [validate_marker(m, pools, anomalies) for m in markers]
