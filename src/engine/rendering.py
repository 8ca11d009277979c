"""Rendering Adapter: the consumer-side contract for processed answers.

Two parts:

- Segment parsing turns the canonical processed text back into plain text
  segments and interactive citation elements (single, multi or hybrid),
  using the same recognizer as the extraction stage.
- ``CitationTooltip`` is the per-element hover/click state machine. It owns
  one cancellable timer and holds its scroll/resize/outside-click listeners
  only while visible.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import ExitStack
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterable, Protocol, Sequence, Union

from ..common.config_loader import TooltipSettings, load_settings
from .constants import PLAIN_WEB_PREFIX
from .markers import iter_marker_candidates, recognize_marker
from .types import CitationEngineError, EvidenceItem, EvidencePool, ProcessingResult

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# Segments
# ─────────────────────────────────────────────────────────────────────────────


class CitationElementKind(str, Enum):
    SINGLE = "single"
    MULTI = "multi"
    HYBRID = "hybrid"


@dataclass(frozen=True)
class TextSegment:
    text: str


@dataclass(frozen=True)
class CitationElement:
    kind: CitationElementKind
    kb_indices: tuple[int, ...]
    web_indices: tuple[int, ...]
    sources: tuple[EvidenceItem, ...]
    raw: str = ""

    @property
    def label(self) -> str:
        """Bare display form: ``[2,1]``, ``[W1]`` or ``[1, W1]``."""
        parts = []
        if self.kb_indices:
            parts.append(",".join(str(i) for i in self.kb_indices))
        if self.web_indices:
            parts.append(",".join(f"{PLAIN_WEB_PREFIX}{i}" for i in self.web_indices))
        return "[" + ", ".join(parts) + "]"


Segment = Union[TextSegment, CitationElement]


def _by_display_index(items: Iterable[EvidenceItem]) -> dict[int, EvidenceItem]:
    return {item.display_index: item for item in items if item.display_index is not None}


def parse_rendered_segments(
    text: str,
    kb_sources: Sequence[EvidenceItem],
    web_sources: Sequence[EvidenceItem],
) -> list[Segment]:
    """Split processed text into text segments and citation elements.

    Markers whose indices match no source produce no element, the same way
    a citation without evidence renders as nothing.
    """
    source = str(text or "")
    kb_lookup = _by_display_index(kb_sources)
    web_lookup = _by_display_index(web_sources)

    segments: list[Segment] = []
    pos = 0
    for match in iter_marker_candidates(source):
        marker = recognize_marker(match)
        if marker is None:
            continue
        kb_indices: list[int] = []
        web_indices: list[int] = []
        for ref in marker.references:
            lookup, bucket = (web_lookup, web_indices) if ref.pool == EvidencePool.WEB else (kb_lookup, kb_indices)
            if ref.original_index in lookup and ref.original_index not in bucket:
                bucket.append(ref.original_index)
        # kb first, then web, each in written order
        ordered = [kb_lookup[i] for i in kb_indices] + [web_lookup[i] for i in web_indices]

        start, end = match.span()
        if start > pos:
            segments.append(TextSegment(source[pos:start]))
        pos = end
        if not ordered:
            logger.debug("Citation %r matches no source; not rendered", marker.raw)
            continue

        if kb_indices and web_indices:
            kind = CitationElementKind.HYBRID
        elif len(ordered) > 1:
            kind = CitationElementKind.MULTI
        else:
            kind = CitationElementKind.SINGLE
        segments.append(
            CitationElement(
                kind=kind,
                kb_indices=tuple(kb_indices),
                web_indices=tuple(web_indices),
                sources=tuple(ordered),
                raw=marker.raw,
            )
        )

    if pos < len(source):
        segments.append(TextSegment(source[pos:]))
    return segments


def render_plain_text(result: ProcessingResult) -> str:
    """Processed text with bare display numbers, e.g. ``"Vedi anche [2,1]."``."""
    segments = parse_rendered_segments(result.text, result.kb_sources, result.web_sources)
    return "".join(s.text if isinstance(s, TextSegment) else s.label for s in segments)


# ─────────────────────────────────────────────────────────────────────────────
# Tooltip state machine
# ─────────────────────────────────────────────────────────────────────────────


class TooltipState(str, Enum):
    HIDDEN = "hidden"
    PENDING = "pending"
    VISIBLE = "visible"


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class EventTarget(Protocol):
    def add_listener(self, event: str, callback: Callable[[Any], None]) -> Callable[[], None]:
        """Subscribe and return the matching unsubscribe callable."""
        ...


class AsyncioScheduler:
    """Scheduler backed by the UI thread's asyncio loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None):
        self._loop = loop or asyncio.get_running_loop()

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        return self._loop.call_later(delay, callback)


@dataclass(frozen=True)
class Rect:
    top: float
    left: float
    width: float
    height: float


@dataclass(frozen=True)
class PopoverPosition:
    top: float
    left: float


class CitationTooltip:
    """Hover-intent popover for one citation element.

    Hidden -> Pending on pointer-enter, Pending -> Visible after the show
    delay (or at once on click), Visible -> Hidden after the hide delay on
    pointer-leave, on an outside click, on Escape or on a second click.
    """

    def __init__(
        self,
        element: CitationElement,
        *,
        scheduler: Scheduler,
        window: EventTarget,
        document: EventTarget,
        anchor_rect: Callable[[], Rect],
        is_inside: Callable[[Any], bool] = lambda target: False,
        on_open_sources: Callable[[tuple[EvidenceItem, ...]], None] | None = None,
        on_state_change: Callable[[TooltipState], None] | None = None,
        settings: TooltipSettings | None = None,
    ):
        self.element = element
        self.settings = settings or load_settings().tooltip
        if self.settings.show_delay_ms < 0 or self.settings.hide_delay_ms < 0:
            raise CitationEngineError("Tooltip delays must be >= 0")

        self._scheduler = scheduler
        self._window = window
        self._document = document
        self._anchor_rect = anchor_rect
        self._is_inside = is_inside
        self._on_open_sources = on_open_sources
        self._on_state_change = on_state_change

        self.state = TooltipState.HIDDEN
        self.position: PopoverPosition | None = None
        self._timer: TimerHandle | None = None
        self._subscriptions: ExitStack | None = None
        self._disposed = False

    # -- pointer / keyboard events ----------------------------------------

    def pointer_enter(self) -> None:
        if self._disposed:
            return
        if self.state == TooltipState.HIDDEN:
            self._set_state(TooltipState.PENDING)
            self._schedule(self.settings.show_delay_ms, self._show)
        elif self.state == TooltipState.VISIBLE:
            # Re-entering (anchor or popover) cancels a pending hide.
            self._cancel_timer()

    def pointer_leave(self) -> None:
        if self._disposed:
            return
        if self.state == TooltipState.PENDING:
            self._cancel_timer()
            self._set_state(TooltipState.HIDDEN)
        elif self.state == TooltipState.VISIBLE:
            self._schedule(self.settings.hide_delay_ms, self._hide)

    def click(self) -> None:
        if self._disposed:
            return
        if self.state == TooltipState.VISIBLE:
            self._hide()
        else:
            self._show()

    def outside_click(self, target: Any = None) -> None:
        if self.state == TooltipState.VISIBLE and not self._is_inside(target):
            self._hide()

    def escape(self) -> None:
        if self.state != TooltipState.HIDDEN:
            self._hide()

    def show_all(self) -> None:
        """The "show all sources" affordance inside the visible popover."""
        if self.state != TooltipState.VISIBLE or self._on_open_sources is None:
            return
        self._on_open_sources(self.element.sources)

    def dispose(self) -> None:
        """Abrupt teardown: release the timer and every listener."""
        self._hide()
        self._disposed = True

    # -- internals ---------------------------------------------------------

    @property
    def listening(self) -> bool:
        return self._subscriptions is not None

    def _set_state(self, state: TooltipState) -> None:
        if state == self.state:
            return
        self.state = state
        if self._on_state_change is not None:
            self._on_state_change(state)

    def _schedule(self, delay_ms: int, callback: Callable[[], None]) -> None:
        self._cancel_timer()
        self._timer = self._scheduler.call_later(delay_ms / 1000.0, callback)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _show(self) -> None:
        self._cancel_timer()
        if self.state == TooltipState.VISIBLE:
            return
        with ExitStack() as stack:
            stack.callback(self._window.add_listener("scroll", self._reposition))
            stack.callback(self._window.add_listener("resize", self._reposition))
            stack.callback(self._document.add_listener("mousedown", self._on_document_pointer_down))
            stack.callback(self._document.add_listener("keydown", self._on_document_key))
            self._subscriptions = stack.pop_all()
        self._reposition()
        self._set_state(TooltipState.VISIBLE)

    def _hide(self) -> None:
        self._cancel_timer()
        if self._subscriptions is not None:
            subscriptions, self._subscriptions = self._subscriptions, None
            subscriptions.close()
        self.position = None
        self._set_state(TooltipState.HIDDEN)

    def _reposition(self, event: Any = None) -> None:
        rect = self._anchor_rect()
        self.position = PopoverPosition(
            top=rect.top - self.settings.anchor_offset_px,
            left=rect.left + rect.width / 2,
        )

    def _on_document_pointer_down(self, event: Any) -> None:
        self.outside_click(getattr(event, "target", event))

    def _on_document_key(self, event: Any) -> None:
        if getattr(event, "key", event) == "Escape":
            self.escape()
