"""Source Merger: project the renumber mapping onto the evidence pools."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from .mapping import CitationMapping
from .sources import EvidencePools
from .types import CitationReference, EvidenceItem, EvidencePool

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MergedSources:
    kb: tuple[EvidenceItem, ...] = ()
    web: tuple[EvidenceItem, ...] = ()


def _project(
    pool: EvidencePool,
    mapping: CitationMapping,
    pools: EvidencePools,
    cited: frozenset[CitationReference] | None,
) -> tuple[EvidenceItem, ...]:
    items: list[EvidenceItem] = []
    for original, display in mapping[pool].items():
        ref = CitationReference(pool=pool, original_index=original)
        if cited is not None and ref not in cited:
            logger.debug("Skipping %s:%d, no marker for it survived in the text", pool.value, original)
            continue
        item = pools.lookup(ref)
        if item is None:
            continue
        items.append(item.with_display_index(display))
    return tuple(items)


def list_all_meta(pools: EvidencePools) -> tuple[EvidenceItem, ...]:
    """Every meta item in listing order, numbered 1..n."""
    return tuple(item.with_display_index(pos) for pos, item in enumerate(pools.meta, start=1))


def merge_sources(
    mapping: CitationMapping,
    pools: EvidencePools,
    cited: Iterable[CitationReference] | None = None,
    *,
    list_mode: bool = False,
) -> MergedSources:
    """Build per-pool source lists sorted by display index.

    Args:
        mapping: The renumber mapping built from the validated markers.
        pools: The pool snapshot the markers were validated against.
        cited: References that actually appear in the final text. When given,
            anything else is left out so no source dangles.
        list_mode: Emit every meta item when the text cites none of them.

    Returns:
        MergedSources with kb and web lists.
    """
    cited_set = frozenset(cited) if cited is not None else None
    kb = _project(EvidencePool.KB, mapping, pools, cited_set)
    web = _project(EvidencePool.WEB, mapping, pools, cited_set)

    if list_mode and not kb:
        if not pools.meta:
            logger.debug("List mode requested without a meta pool; nothing to list")
        kb = list_all_meta(pools)

    return MergedSources(kb=kb, web=web)
