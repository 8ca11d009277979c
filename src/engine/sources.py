"""Evidence pool construction.

Retrieval collaborators hand over loosely-typed rows (chunk search results,
web search results, document listings). This module validates them with
pydantic, converts them into immutable ``EvidenceItem`` tuples and bundles
them into an ``EvidencePools`` snapshot that the citation pipeline reads.

Invalid rows are dropped with a warning; nothing here raises for bad input.
"""

from __future__ import annotations

import functools
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Sequence, TypeVar

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from ..common.config_loader import CitationSettings, load_settings
from ..common.text_normalization import normalize_label
from .types import CitationReference, EvidenceItem, EvidencePool

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# Input row schemas
# ─────────────────────────────────────────────────────────────────────────────


class KbPoolEntry(BaseModel):
    """A knowledge-base chunk as numbered in the prompt context."""

    model_config = ConfigDict(extra="ignore")

    index: int = Field(..., ge=1)
    filename: str | None = None
    document_id: str = Field(default="", validation_alias=AliasChoices("documentId", "document_id"))
    similarity: float | None = None
    content: str = ""
    chunk_index: int | None = Field(default=None, validation_alias=AliasChoices("chunkIndex", "chunk_index"))


class KbSearchRow(BaseModel):
    """A raw hybrid-search row; its pool index is its rank position."""

    model_config = ConfigDict(extra="ignore")

    document_id: str = ""
    document_filename: str | None = None
    similarity: float | None = None
    content: str = ""
    chunk_index: int | None = None


class WebPoolEntry(BaseModel):
    model_config = ConfigDict(extra="ignore")

    index: int = Field(..., ge=1)
    title: str | None = None
    url: str = ""
    content: str = ""


class MetaPoolEntry(BaseModel):
    """A whole document from a "list all documents" answer."""

    model_config = ConfigDict(extra="ignore")

    index: int = Field(..., ge=1)
    filename: str | None = None
    document_id: str = Field(default="", validation_alias=AliasChoices("documentId", "document_id", "id"))


_EntryT = TypeVar("_EntryT", bound=BaseModel)


def _parse_entries(model: type[_EntryT], rows: Iterable[Any] | None, pool: EvidencePool) -> list[_EntryT]:
    parsed: list[_EntryT] = []
    for position, row in enumerate(list(rows or [])):
        if isinstance(row, model):
            parsed.append(row)
            continue
        if not isinstance(row, Mapping):
            logger.warning("Dropping %s pool row %d: expected a mapping, got %s", pool.value, position, type(row).__name__)
            continue
        try:
            parsed.append(model.model_validate(dict(row)))
        except ValidationError as e:
            logger.warning("Dropping %s pool row %d: %s", pool.value, position, e.errors())
    return parsed


# ─────────────────────────────────────────────────────────────────────────────
# Builders
# ─────────────────────────────────────────────────────────────────────────────


def _excerpt(content: str, settings: CitationSettings) -> str:
    text = str(content or "")
    limit = settings.excerpt_max_chars
    if len(text) <= limit:
        return text
    return text[:limit] + settings.excerpt_ellipsis


def _dedupe_by_index(items: list[EvidenceItem]) -> tuple[EvidenceItem, ...]:
    """Keep one item per original index, preferring the highest score.

    Order of first appearance is preserved.
    """
    best: dict[int, EvidenceItem] = {}
    order: list[int] = []
    for item in items:
        existing = best.get(item.original_index)
        if existing is None:
            best[item.original_index] = item
            order.append(item.original_index)
            continue
        logger.debug(
            "Duplicate %s index %d in pool; keeping the higher-scored entry",
            item.pool.value,
            item.original_index,
        )
        if (item.score or 0.0) > (existing.score or 0.0):
            best[item.original_index] = item
    return tuple(best[idx] for idx in order)


def build_kb_items(rows: Iterable[Any] | None, *, settings: CitationSettings | None = None) -> tuple[EvidenceItem, ...]:
    """Convert ``kbPool`` rows into kb evidence items."""
    cfg = settings or load_settings().citations
    items = [
        EvidenceItem(
            pool=EvidencePool.KB,
            original_index=entry.index,
            locator=entry.document_id,
            title=normalize_label(entry.filename) or cfg.unknown_document_label,
            excerpt=_excerpt(entry.content, cfg),
            score=entry.similarity,
            chunk_index=entry.chunk_index,
        )
        for entry in _parse_entries(KbPoolEntry, rows, EvidencePool.KB)
    ]
    return _dedupe_by_index(items)


def kb_items_from_search_results(rows: Iterable[Any] | None, *, settings: CitationSettings | None = None) -> tuple[EvidenceItem, ...]:
    """Number raw search rows 1..n in rank order, as they were shown to the model."""
    cfg = settings or load_settings().citations
    entries = [
        {
            "index": position,
            "filename": row.document_filename,
            "document_id": row.document_id,
            "similarity": row.similarity,
            "content": row.content,
            "chunk_index": row.chunk_index,
        }
        for position, row in enumerate(_parse_entries(KbSearchRow, rows, EvidencePool.KB), start=1)
    ]
    return build_kb_items(entries, settings=cfg)


def build_web_items(rows: Iterable[Any] | None, *, settings: CitationSettings | None = None) -> tuple[EvidenceItem, ...]:
    """Convert ``webPool`` rows into web evidence items."""
    cfg = settings or load_settings().citations
    items = []
    for entry in _parse_entries(WebPoolEntry, rows, EvidencePool.WEB):
        title = normalize_label(entry.title) or cfg.untitled_web_label
        items.append(
            EvidenceItem(
                pool=EvidencePool.WEB,
                original_index=entry.index,
                locator=entry.url,
                title=title,
                excerpt=str(entry.content or ""),
                url=entry.url,
            )
        )
    return _dedupe_by_index(items)


def build_meta_items(rows: Iterable[Any] | None, *, settings: CitationSettings | None = None) -> tuple[EvidenceItem, ...]:
    """Convert ``metaPool`` rows into whole-document items sorted by listing index."""
    cfg = settings or load_settings().citations
    entries = sorted(_parse_entries(MetaPoolEntry, rows, EvidencePool.META), key=lambda e: e.index)
    items = [
        EvidenceItem(
            pool=EvidencePool.META,
            original_index=entry.index,
            locator=entry.document_id,
            title=normalize_label(entry.filename) or cfg.unknown_document_label,
        )
        for entry in entries
    ]
    return _dedupe_by_index(items)


# ─────────────────────────────────────────────────────────────────────────────
# Pool snapshot
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class EvidencePools:
    """Immutable snapshot of every pool available when the answer was produced.

    Hashable, so it can key a memoization cache together with the raw text.
    When a meta listing is present, ``cit`` references resolve against it
    instead of the chunk pool.
    """

    kb: tuple[EvidenceItem, ...] = ()
    web: tuple[EvidenceItem, ...] = ()
    meta: tuple[EvidenceItem, ...] = ()

    @classmethod
    def from_payload(
        cls,
        *,
        kb_pool: Sequence[Any] | None = None,
        web_pool: Sequence[Any] | None = None,
        meta_pool: Sequence[Any] | None = None,
        settings: CitationSettings | None = None,
    ) -> "EvidencePools":
        cfg = settings or load_settings().citations
        return cls(
            kb=build_kb_items(kb_pool, settings=cfg),
            web=build_web_items(web_pool, settings=cfg),
            meta=build_meta_items(meta_pool, settings=cfg),
        )

    def citable(self, pool: EvidencePool) -> tuple[EvidenceItem, ...]:
        """Items a marker reference to ``pool`` may resolve against."""
        if pool == EvidencePool.WEB:
            return self.web
        if pool == EvidencePool.META:
            return self.meta
        return self.meta if self.meta else self.kb

    @functools.cached_property
    def _by_index(self) -> dict[EvidencePool, dict[int, EvidenceItem]]:
        return {
            pool: {item.original_index: item for item in self.citable(pool)}
            for pool in EvidencePool
        }

    def lookup(self, reference: CitationReference) -> EvidenceItem | None:
        return self._by_index[reference.pool].get(reference.original_index)

    def is_empty(self, pool: EvidencePool) -> bool:
        return not self.citable(pool)
