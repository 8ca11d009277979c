"""Tests for src/services/answer.py - Assistant response processing."""

import logging

from src.engine.types import EvidencePool
from src.services.answer import ResponseAnalysis, build_pools, process_assistant_response


def _summary(sources):
    return [(s.display_index, s.title) for s in sources]


class TestResponseAnalysis:
    """Tests for ResponseAnalysis."""

    def test_accepts_camel_case(self):
        analysis = ResponseAnalysis.model_validate(
            {"intent": "meta", "isMeta": True, "metaType": "list", "isComparative": False, "extra": 1}
        )
        assert analysis.is_meta is True
        assert analysis.meta_type == "list"
        assert analysis.is_list_query

    def test_accepts_field_names(self):
        analysis = ResponseAnalysis(is_meta=True, meta_type="count")
        assert not analysis.is_list_query

    def test_defaults(self):
        analysis = ResponseAnalysis()
        assert analysis.intent == "general"
        assert not analysis.is_list_query


class TestBuildPools:
    """Tests for build_pools function."""

    def test_search_results_numbered_by_rank(self):
        pools = build_pools(
            search_results=[
                {"document_id": "a", "document_filename": "A.pdf", "similarity": 0.9, "content": "x", "chunk_index": 0},
                {"document_id": "b", "document_filename": "B.pdf", "similarity": 0.8, "content": "y", "chunk_index": 1},
            ]
        )
        assert [(i.original_index, i.title) for i in pools.kb] == [(1, "A.pdf"), (2, "B.pdf")]

    def test_indexed_rows_win(self, kb_rows):
        pools = build_pools(kb_sources=kb_rows, search_results=[{"document_filename": "ignored.pdf"}])
        assert [i.title for i in pools.kb] == ["Reg.pdf", "Guide.pdf", "FAQ.pdf"]


class TestProcessAssistantResponse:
    """Tests for process_assistant_response function."""

    def test_kb_and_web(self, kb_rows, web_rows):
        result = process_assistant_response(
            "Secondo [cit:2] e [web:2] [web_search_1_x].",
            kb_sources=kb_rows,
            web_search_results=web_rows,
            analysis={"intent": "question", "isMeta": False},
        )
        assert result.text == "Secondo [cit:1] e [web:1]."
        assert _summary(result.kb_sources) == [(1, "Guide.pdf")]
        assert _summary(result.web_sources) == [(1, "Garante Privacy")]

    def test_list_query_returns_every_document(self, kb_rows, meta_rows):
        result = process_assistant_response(
            "Ecco l'elenco dei documenti caricati.",
            kb_sources=kb_rows,
            meta_documents=meta_rows,
            analysis=ResponseAnalysis(intent="meta", is_meta=True, meta_type="list"),
        )
        assert _summary(result.kb_sources) == [(1, "Reg.pdf"), (2, "Guide.pdf"), (3, "FAQ.pdf")]
        assert all(s.pool == EvidencePool.META for s in result.kb_sources)

    def test_non_list_meta_query_cites_normally(self, meta_rows):
        result = process_assistant_response(
            "Il documento piu recente e [cit:3].",
            meta_documents=meta_rows,
            analysis={"isMeta": True, "metaType": "recent"},
        )
        assert result.text == "Il documento piu recente e [cit:1]."
        assert _summary(result.kb_sources) == [(1, "FAQ.pdf")]

    def test_without_analysis(self, kb_rows):
        result = process_assistant_response("Nessuna fonte.", kb_sources=kb_rows)
        assert result.text == "Nessuna fonte."
        assert result.kb_sources == ()

    def test_formatter_passed_through(self, kb_rows):
        result = process_assistant_response(
            "Vedi [cit:1]",
            kb_sources=kb_rows,
            formatter=lambda s: s.upper(),
        )
        assert result.text == "VEDI [cit:1]"

    def test_use_cache(self, kb_rows):
        first = process_assistant_response("Vedi [cit:3].", kb_sources=kb_rows, use_cache=True)
        second = process_assistant_response("Vedi [cit:3].", kb_sources=kb_rows, use_cache=True)
        assert first is second

    def test_invalid_analysis_falls_back_to_defaults(self, kb_rows, caplog):
        with caplog.at_level(logging.WARNING, logger="src.services.answer"):
            result = process_assistant_response(
                "Vedi [cit:3].",
                kb_sources=kb_rows,
                analysis={"isMeta": "forse", "metaType": "list"},
            )
        assert result.text == "Vedi [cit:1]."
        assert _summary(result.kb_sources) == [(1, "FAQ.pdf")]
        assert "Ignoring invalid response analysis" in caplog.text
