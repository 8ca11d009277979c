"""Pytest configuration and shared fixtures for tests."""

from collections import defaultdict

import pytest

from src.common.config_loader import CitationSettings, TooltipSettings, clear_config_cache
from src.engine.citations import clear_citation_cache
from src.engine.sources import EvidencePools

_CITATION_ENV_VARS = (
    "CITATIONS_CONFIG_PATH",
    "CITATIONS_EXCERPT_MAX_CHARS",
    "CITATIONS_STRIP_TOOL_ARTIFACTS",
    "CITATIONS_CACHE_SIZE",
    "CITATIONS_TOOLTIP_SHOW_DELAY_MS",
    "CITATIONS_TOOLTIP_HIDE_DELAY_MS",
)


@pytest.fixture(autouse=True)
def reset_citation_state(monkeypatch):
    """Every test starts from the checked-in settings and an empty result cache."""
    for key in _CITATION_ENV_VARS:
        monkeypatch.delenv(key, raising=False)
    clear_config_cache()
    clear_citation_cache()
    yield
    clear_config_cache()
    clear_citation_cache()


# ─────────────────────────────────────────────────────────────────────────────
# Sample pools
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def citation_settings():
    return CitationSettings()


@pytest.fixture
def kb_rows():
    return [
        {"index": 1, "filename": "Reg.pdf", "documentId": "doc-reg", "similarity": 0.91, "content": "Articolo 5 ...", "chunkIndex": 4},
        {"index": 2, "filename": "Guide.pdf", "documentId": "doc-guide", "similarity": 0.84, "content": "Linee guida", "chunkIndex": 0},
        {"index": 3, "filename": "FAQ.pdf", "documentId": "doc-faq", "similarity": 0.77, "content": "Domande frequenti", "chunkIndex": 2},
    ]


@pytest.fixture
def web_rows():
    return [
        {"index": 1, "title": "Gazzetta Ufficiale", "url": "https://example.org/gu", "content": "Testo GU"},
        {"index": 2, "title": "Garante Privacy", "url": "https://example.org/garante", "content": "Parere"},
    ]


@pytest.fixture
def meta_rows():
    return [
        {"index": 2, "filename": "Guide.pdf", "id": "doc-guide"},
        {"index": 1, "filename": "Reg.pdf", "id": "doc-reg"},
        {"index": 3, "filename": "FAQ.pdf", "id": "doc-faq"},
    ]


@pytest.fixture
def kb_pools(kb_rows, citation_settings):
    return EvidencePools.from_payload(kb_pool=kb_rows, settings=citation_settings)


@pytest.fixture
def mixed_pools(kb_rows, web_rows, citation_settings):
    return EvidencePools.from_payload(kb_pool=kb_rows, web_pool=web_rows, settings=citation_settings)


@pytest.fixture
def meta_pools(kb_rows, meta_rows, citation_settings):
    return EvidencePools.from_payload(kb_pool=kb_rows, meta_pool=meta_rows, settings=citation_settings)


# ─────────────────────────────────────────────────────────────────────────────
# Rendering doubles
# ─────────────────────────────────────────────────────────────────────────────


class _ManualTimer:
    def __init__(self, when, callback):
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class ManualScheduler:
    """Deterministic stand-in for the UI loop; time moves only on ``advance``."""

    def __init__(self):
        self.now = 0.0
        self._timers = []

    def call_later(self, delay, callback):
        timer = _ManualTimer(self.now + delay, callback)
        self._timers.append(timer)
        return timer

    def advance(self, seconds):
        self.now += seconds
        due = sorted(
            (t for t in self._timers if not t.cancelled and t.when <= self.now),
            key=lambda t: t.when,
        )
        for timer in due:
            self._timers.remove(timer)
            if not timer.cancelled:
                timer.callback()

    @property
    def pending(self):
        return sum(1 for t in self._timers if not t.cancelled)


class FakeEventTarget:
    """Records subscriptions the way a DOM window/document would."""

    def __init__(self):
        self.listeners = defaultdict(list)

    def add_listener(self, event, callback):
        self.listeners[event].append(callback)

        def remove():
            self.listeners[event].remove(callback)

        return remove

    def dispatch(self, event, payload=None):
        for callback in list(self.listeners[event]):
            callback(payload)

    def count(self):
        return sum(len(v) for v in self.listeners.values())


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def window():
    return FakeEventTarget()


@pytest.fixture
def document():
    return FakeEventTarget()


@pytest.fixture
def tooltip_settings():
    return TooltipSettings(show_delay_ms=150, hide_delay_ms=200, anchor_offset_px=10)
