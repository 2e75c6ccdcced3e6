"""Sequence-gated dispatch of canonical events to the host application."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, Protocol

from .events import (
    KIND_A2UI,
    KIND_DIFF,
    KIND_DONE,
    KIND_TEXT_DELTA,
    KIND_TOOL_RESULT,
    KIND_TOOL_START,
    CanonicalEvent,
)
from .ui_graph import UIGraphConverter

_LOGGER = logging.getLogger(__name__)


class ConversationSink(Protocol):
    """Receives conversational events (text, tools, diffs, completion)."""

    def post_event(self, event: dict[str, Any]) -> None: ...


class RenderingSink(Protocol):
    """Receives structured surface operations."""

    def post_structured_operations(self, operations: list[dict[str, Any]]) -> None: ...


class EditorSink(Protocol):
    """Shows a side-by-side diff of a proposed file change."""

    def show_diff(self, original: str, modified: str, title: str) -> None: ...


class EventRouter:
    """Deliver each canonical event to the sinks interested in its kind.

    Events carrying a sequence number at or below the highest one already
    delivered are dropped as duplicates or replays. Events without a
    sequence number always pass.
    """

    def __init__(
        self,
        conversation: ConversationSink,
        rendering: RenderingSink,
        editor: EditorSink,
        *,
        converter: UIGraphConverter | None = None,
    ) -> None:
        self._conversation = conversation
        self._rendering = rendering
        self._editor = editor
        self._converter = converter or UIGraphConverter()
        self._last_seq: int | None = None

        self._handlers: dict[str, Callable[[dict[str, Any]], None]] = {
            KIND_TEXT_DELTA: self._conversation.post_event,
            KIND_TOOL_START: self._conversation.post_event,
            KIND_TOOL_RESULT: self._conversation.post_event,
            KIND_DONE: self._conversation.post_event,
            KIND_DIFF: self._handle_diff,
            KIND_A2UI: self._handle_a2ui,
        }

    @property
    def last_seq(self) -> int | None:
        return self._last_seq

    def reset_sequence(self) -> None:
        """Forget the watermark, e.g. when the gateway restarts numbering."""
        self._last_seq = None

    def route(self, event: CanonicalEvent) -> bool:
        """Dispatch one event.

        Returns:
            False when the event was dropped by sequence gating
        """
        if event.seq is not None:
            if self._last_seq is not None and event.seq <= self._last_seq:
                _LOGGER.debug(
                    "Dropped out-of-order event seq=%s (last=%s)",
                    event.seq,
                    self._last_seq,
                )
                return False
            self._last_seq = event.seq

        kind = event.kind
        handler = self._handlers.get(kind) if kind is not None else None
        if handler is None:
            _LOGGER.debug("No route for event kind=%s", kind)
            return True

        handler(event.payload)
        return True

    def _handle_diff(self, payload: dict[str, Any]) -> None:
        self._conversation.post_event(payload)
        self._editor.show_diff(
            payload.get("original") or "",
            payload.get("modified") or "",
            str(payload.get("path") or ""),
        )

    def _handle_a2ui(self, payload: dict[str, Any]) -> None:
        body = payload.get("payload")
        if body is None:
            _LOGGER.debug("a2ui event without payload")
            return
        items = body if isinstance(body, list) else [body]
        operations = self._converter.convert(items)
        if operations:
            self._rendering.post_structured_operations(operations)
