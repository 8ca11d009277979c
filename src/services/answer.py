from __future__ import annotations

import logging
from typing import Any, Callable, Optional, Sequence

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from ..common.config_loader import Settings, load_settings
from ..engine.citations import process_citations, process_citations_cached
from ..engine.sources import (
    EvidencePools,
    build_kb_items,
    build_meta_items,
    build_web_items,
    kb_items_from_search_results,
)
from ..engine.types import ProcessingResult

logger = logging.getLogger(__name__)


class ResponseAnalysis(BaseModel):
    """Query analysis attached to an assistant turn.

    Only ``is_meta`` and ``meta_type`` influence citation processing; the
    comparative fields travel along for the persisted debug payload.
    """

    model_config = ConfigDict(extra="ignore")

    intent: str = "general"
    is_comparative: bool = Field(default=False, validation_alias=AliasChoices("isComparative", "is_comparative"))
    comparative_terms: Optional[list[str]] = Field(
        default=None, validation_alias=AliasChoices("comparativeTerms", "comparative_terms")
    )
    comparison_type: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("comparisonType", "comparison_type")
    )
    is_meta: bool = Field(default=False, validation_alias=AliasChoices("isMeta", "is_meta"))
    meta_type: Optional[str] = Field(default=None, validation_alias=AliasChoices("metaType", "meta_type"))

    @property
    def is_list_query(self) -> bool:
        return self.is_meta and self.meta_type == "list"


def build_pools(
    *,
    kb_sources: Sequence[Any] | None = None,
    search_results: Sequence[Any] | None = None,
    web_search_results: Sequence[Any] | None = None,
    meta_documents: Sequence[Any] | None = None,
    settings: Settings | None = None,
) -> EvidencePools:
    """Assemble the pool snapshot for one turn.

    ``kb_sources`` are rows that already carry their prompt index;
    ``search_results`` are raw search rows numbered by rank. When both are
    given the indexed rows win.
    """
    cfg = (settings or load_settings()).citations
    if kb_sources is not None:
        kb = build_kb_items(kb_sources, settings=cfg)
    else:
        kb = kb_items_from_search_results(search_results, settings=cfg)
    return EvidencePools(
        kb=kb,
        web=build_web_items(web_search_results, settings=cfg),
        meta=build_meta_items(meta_documents, settings=cfg),
    )


def process_assistant_response(
    content: str,
    *,
    kb_sources: Sequence[Any] | None = None,
    search_results: Sequence[Any] | None = None,
    analysis: ResponseAnalysis | dict[str, Any] | None = None,
    web_search_results: Sequence[Any] | None = None,
    meta_documents: Sequence[Any] | None = None,
    formatter: Callable[[str], str] | None = None,
    use_cache: bool = False,
    settings: Settings | None = None,
) -> ProcessingResult:
    """Turn a raw assistant message into the persisted text + sources payload."""
    resolved_settings = settings or load_settings()
    if analysis is None:
        analysis = ResponseAnalysis()
    elif not isinstance(analysis, ResponseAnalysis):
        try:
            analysis = ResponseAnalysis.model_validate(analysis)
        except ValidationError as e:
            logger.warning("Ignoring invalid response analysis: %s", e.errors(include_url=False))
            analysis = ResponseAnalysis()

    pools = build_pools(
        kb_sources=kb_sources,
        search_results=search_results,
        web_search_results=web_search_results,
        meta_documents=meta_documents,
        settings=resolved_settings,
    )
    list_mode = analysis.is_list_query
    if list_mode and not pools.meta:
        logger.info("List query without meta documents; citations resolve against kb chunks")

    if use_cache and formatter is None:
        result = process_citations_cached(content, pools, list_mode=list_mode)
    else:
        result = process_citations(
            content,
            pools,
            list_mode=list_mode,
            formatter=formatter,
            settings=resolved_settings.citations,
        )

    logger.debug(
        "Processed assistant response: intent=%s list_mode=%s kb=%d web=%d",
        analysis.intent,
        list_mode,
        len(result.kb_sources),
        len(result.web_sources),
    )
    return result
