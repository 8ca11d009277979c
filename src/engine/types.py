from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Mapping


class EvidencePool(str, Enum):
    KB = "kb"
    WEB = "web"
    META = "meta"


class MarkerKind(str, Enum):
    KB = "kb"
    WEB = "web"
    HYBRID = "hybrid"


class AnomalyKind(str, Enum):
    MALFORMED_MARKER = "malformed_marker"
    UNRESOLVABLE_INDEX = "unresolvable_index"
    FULLY_INVALID_MARKER = "fully_invalid_marker"
    PARTIALLY_INVALID_MARKER = "partially_invalid_marker"
    EMPTY_POOL = "empty_pool"
    TOOL_ARTIFACT = "tool_artifact"
    RESCUED_RAW_MARKER = "rescued_raw_marker"
    DROPPED_PLACEHOLDER = "dropped_placeholder"


@dataclass(frozen=True)
class EvidenceItem:
    """One citable unit from an evidence pool.

    ``display_index`` stays ``None`` until the Source Merger assigns the
    per-answer number; consumers must never derive numbering themselves.
    """

    pool: EvidencePool
    original_index: int
    locator: str
    title: str
    excerpt: str = ""
    score: float | None = None
    display_index: int | None = None
    # kb extras
    chunk_index: int | None = None
    # web extras
    url: str | None = None

    def with_display_index(self, display_index: int) -> "EvidenceItem":
        return replace(self, display_index=display_index)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "type": self.pool.value,
            "display_index": self.display_index,
            "original_index": self.original_index,
            "locator": self.locator,
            "title": self.title,
            "excerpt": self.excerpt,
        }
        if self.score is not None:
            payload["score"] = self.score
        if self.chunk_index is not None:
            payload["chunk_index"] = self.chunk_index
        if self.url is not None:
            payload["url"] = self.url
        return payload


@dataclass(frozen=True)
class CitationReference:
    """A single ``(pool, original_index)`` pair as written by the model."""

    pool: EvidencePool
    original_index: int


@dataclass(frozen=True)
class CitationMarker:
    span: tuple[int, int]
    kind: MarkerKind
    references: tuple[CitationReference, ...]
    raw: str = ""


@dataclass(frozen=True)
class ValidatedMarker:
    marker: CitationMarker
    valid_references: tuple[CitationReference, ...]
    invalid_references: tuple[CitationReference, ...]

    @property
    def span(self) -> tuple[int, int]:
        return self.marker.span

    @property
    def fully_invalid(self) -> bool:
        return not self.valid_references

    @property
    def partially_invalid(self) -> bool:
        return bool(self.valid_references) and bool(self.invalid_references)


@dataclass(frozen=True)
class CitationAnomaly:
    kind: AnomalyKind
    span: tuple[int, int] | None = None
    reference: CitationReference | None = None
    detail: str = ""


@dataclass(frozen=True)
class ProcessingResult:
    """The persisted artifact of one assistant turn.

    ``debug`` carries recoverable anomalies and counters. It is read-only
    (memoized results are shared between callers) and excluded from equality
    so two runs compare on text and sources only.
    """

    text: str
    kb_sources: tuple[EvidenceItem, ...] = ()
    web_sources: tuple[EvidenceItem, ...] = ()
    debug: Mapping[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "kb_sources": [item.to_dict() for item in self.kb_sources],
            "web_sources": [item.to_dict() for item in self.web_sources],
        }


def combine_sources(kb_sources: tuple[EvidenceItem, ...] | list[EvidenceItem], web_sources: tuple[EvidenceItem, ...] | list[EvidenceItem]) -> list[EvidenceItem]:
    """Single list for consumers that want kb then web."""
    return [*kb_sources, *web_sources]


class CitationEngineError(RuntimeError):
    """Raised for programmer errors only; malformed answers never raise."""
