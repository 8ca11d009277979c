"""Unit tests for src/engine/rewriter.py - Two-pass content rewriting."""

import pytest

from src.engine.mapping import CitationMapping, build_mapping
from src.engine.markers import extract_markers
from src.engine.rewriter import (
    DisplayGroup,
    choose_placeholder_salt,
    display_groups,
    format_display_marker,
    insert_placeholders,
    resolve_placeholders,
    rewrite_content,
)
from src.engine.types import AnomalyKind, CitationReference, EvidencePool
from src.engine.validation import validate_markers


def _prepare(text, pools):
    validated = validate_markers(extract_markers(text), pools)
    return validated, build_mapping(validated)


class TestFormatDisplayMarker:
    """Tests for format_display_marker function."""

    def test_kb_only(self):
        assert format_display_marker([DisplayGroup(EvidencePool.KB, (2, 1))]) == "[cit:2,1]"

    def test_web_only(self):
        assert format_display_marker([DisplayGroup(EvidencePool.WEB, (1,))]) == "[web:1]"

    def test_hybrid_keeps_group_order(self):
        groups = [DisplayGroup(EvidencePool.WEB, (1,)), DisplayGroup(EvidencePool.KB, (3,))]
        assert format_display_marker(groups) == "[web:1, cit:3]"

    def test_no_groups_renders_nothing(self):
        assert format_display_marker([]) == ""


class TestDisplayGroups:
    """Tests for display_groups function."""

    def test_collapses_duplicates_and_skips_unmapped(self):
        mapping = CitationMapping()
        mapping.assign(CitationReference(EvidencePool.KB, 4))
        refs = [
            CitationReference(EvidencePool.KB, 4),
            CitationReference(EvidencePool.KB, 4),
            CitationReference(EvidencePool.KB, 8),
        ]
        assert display_groups(refs, mapping) == (DisplayGroup(EvidencePool.KB, (1,)),)


class TestPlaceholders:
    """Tests for pass A and pass B."""

    def test_salt_avoids_collisions(self):
        assert choose_placeholder_salt("plain text") == 0
        assert choose_placeholder_salt("has ⟦CITE-0-3⟧ already") == 1
        assert choose_placeholder_salt("⟦CITE-0-1⟧ ⟦CITE-1-1⟧") == 2

    def test_pass_a_hides_marker_syntax(self, kb_pools):
        text = "A [cit:3] B [cit:9]."
        validated, mapping = _prepare(text, kb_pools)
        placeholders = insert_placeholders(text, validated, mapping)
        assert placeholders.text == "A ⟦CITE-0-0⟧ B."
        assert "[cit" not in placeholders.text
        entry = placeholders.table["⟦CITE-0-0⟧"]
        assert entry.groups == (DisplayGroup(EvidencePool.KB, (1,)),)

    def test_pass_b_substitutes_and_reports_cited(self, kb_pools):
        text = "A [cit:3] B [cit:1,3]."
        validated, mapping = _prepare(text, kb_pools)
        placeholders = insert_placeholders(text, validated, mapping)
        outcome = resolve_placeholders(placeholders.text, placeholders, mapping, kb_pools)
        assert outcome.text == "A [cit:1] B [cit:2,1]."
        assert outcome.cited == frozenset(
            {CitationReference(EvidencePool.KB, 3), CitationReference(EvidencePool.KB, 1)}
        )

    def test_unknown_token_removed(self, kb_pools):
        text = "A [cit:1]."
        validated, mapping = _prepare(text, kb_pools)
        placeholders = insert_placeholders(text, validated, mapping)
        formatted = placeholders.text + " ⟦CITE-0-99⟧"
        outcome = resolve_placeholders(formatted, placeholders, mapping, kb_pools)
        assert outcome.text == "A [cit:1]."


class TestRewriteContent:
    """Tests for rewrite_content with an intervening formatter."""

    def test_formatter_never_sees_raw_markers(self, kb_pools):
        seen = []

        def formatter(text):
            seen.append(text)
            return f"<p>{text}</p>"

        text = "Vedi [cit:2] e [cit:3]."
        validated, mapping = _prepare(text, kb_pools)
        outcome = rewrite_content(text, validated, mapping, kb_pools, formatter=formatter)
        assert "[cit" not in seen[0]
        assert outcome.text == "<p>Vedi [cit:1] e [cit:2].</p>"

    def test_raw_marker_introduced_by_formatter_is_resolved(self, kb_pools):
        text = "Vedi [cit:3]."
        validated, mapping = _prepare(text, kb_pools)
        anomalies = []
        outcome = rewrite_content(
            text,
            validated,
            mapping,
            kb_pools,
            formatter=lambda s: s + " Ripeto [cit:3].",
            anomalies=anomalies,
        )
        assert outcome.text == "Vedi [cit:1]. Ripeto [cit:1]."
        assert AnomalyKind.RESCUED_RAW_MARKER in [a.kind for a in anomalies]

    def test_rescan_cannot_mint_new_numbers(self, kb_pools):
        """A raw marker for an index the mapping never saw is removed."""
        text = "Vedi [cit:3]."
        validated, mapping = _prepare(text, kb_pools)
        outcome = rewrite_content(
            text,
            validated,
            mapping,
            kb_pools,
            formatter=lambda s: s + " Anche [cit:2].",
        )
        assert outcome.text == "Vedi [cit:1]. Anche."
        assert outcome.cited == frozenset({CitationReference(EvidencePool.KB, 3)})

    def test_dropped_placeholder_is_reported(self, kb_pools):
        text = "A [cit:1]. B [cit:2]."
        validated, mapping = _prepare(text, kb_pools)
        anomalies = []
        outcome = rewrite_content(
            text,
            validated,
            mapping,
            kb_pools,
            formatter=lambda s: s.replace("⟦CITE-0-1⟧", ""),
            anomalies=anomalies,
        )
        assert outcome.cited == frozenset({CitationReference(EvidencePool.KB, 1)})
        assert [a.kind for a in anomalies] == [AnomalyKind.DROPPED_PLACEHOLDER]

    def test_malformed_marker_stays_as_prose(self, kb_pools):
        text = "Nota [cit: vedi] e [cit:1]."
        validated, mapping = _prepare(text, kb_pools)
        outcome = rewrite_content(text, validated, mapping, kb_pools)
        assert outcome.text == "Nota [cit: vedi] e [cit:1]."

    def test_tool_artifact_removals(self, kb_pools):
        text = "Vedi [web_search_1_q] la norma [cit:1]."
        validated, mapping = _prepare(text, kb_pools)
        start = text.index("[web_")
        end = text.index("]", start) + 1
        outcome = rewrite_content(text, validated, mapping, kb_pools, removals=[(start, end)])
        assert outcome.text == "Vedi la norma [cit:1]."

    def test_custom_tag(self, kb_pools):
        text = "A [cit:2]."
        validated, mapping = _prepare(text, kb_pools)
        placeholders = insert_placeholders(text, validated, mapping, tag="REF")
        assert placeholders.text == "A ⟦REF-0-0⟧."

    def test_overlapping_removal_rejected(self, kb_pools):
        text = "A [cit:2]."
        validated, mapping = _prepare(text, kb_pools)
        with pytest.raises(ValueError):
            insert_placeholders(text, validated, mapping, removals=[(2, 6)])
