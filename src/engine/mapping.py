"""Mapping Builder: first-appearance renumbering, one namespace per pool."""

from __future__ import annotations

from typing import Iterable, Iterator

from .types import CitationReference, EvidencePool, ValidatedMarker


class RenumberMapping:
    """``original_index -> display_index`` for a single pool.

    Display indices are handed out 1, 2, 3, ... in the order originals are
    first assigned, and an original keeps its number on repeat.
    """

    def __init__(self, pool: EvidencePool):
        self.pool = pool
        self._display_by_original: dict[int, int] = {}

    def assign(self, original_index: int) -> int:
        display = self._display_by_original.get(original_index)
        if display is None:
            display = len(self._display_by_original) + 1
            self._display_by_original[original_index] = display
        return display

    def get(self, original_index: int) -> int | None:
        return self._display_by_original.get(original_index)

    def items(self) -> list[tuple[int, int]]:
        """``(original, display)`` pairs ordered by display index."""
        return sorted(self._display_by_original.items(), key=lambda kv: kv[1])

    def __contains__(self, original_index: object) -> bool:
        return original_index in self._display_by_original

    def __len__(self) -> int:
        return len(self._display_by_original)

    def __iter__(self) -> Iterator[int]:
        return iter(original for original, _ in self.items())

    def __repr__(self) -> str:
        return f"RenumberMapping({self.pool.value}, {dict(self.items())})"


class CitationMapping:
    """The kb and web namespaces side by side; they never share counters."""

    NAMESPACES = (EvidencePool.KB, EvidencePool.WEB)

    def __init__(self) -> None:
        self._mappings = {pool: RenumberMapping(pool) for pool in self.NAMESPACES}

    def __getitem__(self, pool: EvidencePool) -> RenumberMapping:
        return self._mappings[pool]

    def assign(self, reference: CitationReference) -> int:
        return self._mappings[reference.pool].assign(reference.original_index)

    def display_index(self, reference: CitationReference) -> int | None:
        mapping = self._mappings.get(reference.pool)
        if mapping is None:
            return None
        return mapping.get(reference.original_index)

    def is_empty(self) -> bool:
        return not any(len(m) for m in self._mappings.values())


def build_mapping(markers: Iterable[ValidatedMarker]) -> CitationMapping:
    """Walk markers in text order and number each valid reference.

    ``markers`` must already be sorted by span start, which is what the
    extractor produces.
    """
    mapping = CitationMapping()
    for marker in markers:
        for ref in marker.valid_references:
            mapping.assign(ref)
    return mapping
