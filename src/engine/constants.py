"""Marker grammar and rendering constants for citation processing.

The marker syntax is produced by the language model and is not perfectly
uniform, so the grammar here is deliberately tolerant: keywords are matched
case-insensitively, the colon is optional, and whitespace may appear around
every separator. Both ASCII and full-width brackets are accepted.

Every regex in this module is shared by the primary extraction pass and by
the defensive re-scan in the Content Rewriter, so the two can never disagree.
"""

import re

# ---------------------------------------------------------------------------
# Keywords
# ---------------------------------------------------------------------------
KB_KEYWORD = "cit"
WEB_KEYWORD = "web"

# ---------------------------------------------------------------------------
# Marker recognition
# ---------------------------------------------------------------------------

# A candidate marker: an opening bracket, a keyword directly followed by a
# colon or a digit (after optional whitespace), then anything up to the
# closing bracket on the same line. "[citation needed]" and "[website]" are
# not candidates; "[cit: foo]" is a candidate that later fails to parse.
MARKER_CANDIDATE_RE = re.compile(
    r"[\[【](?P<inner>\s*(?:cit|web)\s*(?::|\d)[^\[\]【】\n]*)[\]】]",
    flags=re.IGNORECASE,
)

# Inner content of a well-formed marker: only keywords, digits and separators.
MARKER_INNER_RE = re.compile(r"^\s*(?:(?:cit|web)[\s:,;\d]*)+$", flags=re.IGNORECASE)

# Splits the inner content at each keyword occurrence.
KEYWORD_RE = re.compile(r"cit|web", flags=re.IGNORECASE)

DIGIT_RUN_RE = re.compile(r"\d+")

# Bracketed web-tool artifacts the model sometimes leaks into the answer,
# e.g. "[web_search_1712345678_eu_ai_act]". Never citation markers.
TOOL_ARTIFACT_RE = re.compile(r"\[web_[^\[\]\n]+\]", flags=re.IGNORECASE)

# ---------------------------------------------------------------------------
# Placeholder tokens (Content Rewriter pass A/B)
# ---------------------------------------------------------------------------
PLACEHOLDER_OPEN = "⟦"
PLACEHOLDER_CLOSE = "⟧"
DEFAULT_PLACEHOLDER_TAG = "CITE"

# ---------------------------------------------------------------------------
# Plain display form (Rendering Adapter)
# ---------------------------------------------------------------------------
PLAIN_WEB_PREFIX = "W"
