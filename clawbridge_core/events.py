"""Canonical agent events and translation from gateway push frames.

The gateway describes the same turn in two shapes: a raw ``agent`` stream
carrying per-token deltas, and a batched ``chat`` stream carrying turn state.
The translator folds both into one canonical shape, ``{"kind": ..., ...}``,
keeping the frame's sequence number.

Partial text comes only from the raw ``agent`` stream; ``chat`` deltas are
discarded. A gateway that emits only the batched stream therefore delivers
completions but no text.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

_LOGGER = logging.getLogger(__name__)

KIND_TEXT_DELTA = "text_delta"
KIND_TOOL_START = "tool_start"
KIND_TOOL_RESULT = "tool_result"
KIND_DIFF = "diff"
KIND_DONE = "done"
KIND_A2UI = "a2ui"

CANONICAL_KINDS = frozenset(
    {KIND_TEXT_DELTA, KIND_TOOL_START, KIND_TOOL_RESULT, KIND_DIFF, KIND_DONE, KIND_A2UI}
)

AGENT_EVENT = "agent"
CHAT_EVENT = "chat"
FILTERED_EVENTS = frozenset({"health", "tick"})

STOP_REASON_END_TURN = "end_turn"
STOP_REASON_ABORTED = "aborted"


@dataclass(frozen=True)
class CanonicalEvent:
    """One normalized push event.

    Attributes:
        payload: Kind-tagged payload, e.g. {"kind": "text_delta", "content": "Hi"}
        seq: Gateway sequence number, when the frame carried one
        event: Gateway event name the payload arrived under
    """

    payload: dict[str, Any]
    seq: int | None = None
    event: str = AGENT_EVENT

    @property
    def kind(self) -> str | None:
        kind = self.payload.get("kind")
        return kind if isinstance(kind, str) else None


def _frame_seq(frame: dict[str, Any]) -> int | None:
    seq = frame.get("seq")
    if isinstance(seq, bool) or not isinstance(seq, int):
        return None
    return seq


class EventTranslator:
    """Translate gateway event frames into CanonicalEvents.

    ``translate`` never raises; anything it cannot use is dropped and logged.
    """

    def translate(self, frame: dict[str, Any]) -> CanonicalEvent | None:
        name = frame.get("event")
        payload = frame.get("payload")
        seq = _frame_seq(frame)

        if name in FILTERED_EVENTS:
            return None

        if not isinstance(payload, dict):
            _LOGGER.debug("Dropped %s event without object payload seq=%s", name, seq)
            return None

        if name == AGENT_EVENT:
            return self._translate_agent(payload, seq)
        if name == CHAT_EVENT:
            return self._translate_chat(payload, seq)

        if payload.get("kind") is not None:
            return CanonicalEvent(payload=payload, seq=seq, event=str(name))

        _LOGGER.debug(
            "Dropped %s event: keys=[%s] seq=%s", name, ",".join(payload), seq
        )
        return None

    def _translate_agent(
        self, payload: dict[str, Any], seq: int | None
    ) -> CanonicalEvent | None:
        if payload.get("stream") == "assistant":
            # Raw agent stream events carry per-token deltas.
            data = payload.get("data")
            delta = data.get("delta") if isinstance(data, dict) else None
            if isinstance(delta, str) and delta:
                return CanonicalEvent(
                    payload={"kind": KIND_TEXT_DELTA, "content": delta}, seq=seq
                )
            return None

        if payload.get("kind") is not None:
            _LOGGER.debug("Agent event: kind=%s seq=%s", payload.get("kind"), seq)
            return CanonicalEvent(payload=payload, seq=seq)

        _LOGGER.debug("Dropped agent event: keys=[%s] seq=%s", ",".join(payload), seq)
        return None

    def _translate_chat(
        self, payload: dict[str, Any], seq: int | None
    ) -> CanonicalEvent | None:
        state = payload.get("state")

        if state == "final":
            stop_reason = STOP_REASON_END_TURN
        elif state == "error":
            message = payload.get("errorMessage")
            stop_reason = message if isinstance(message, str) else "error"
        elif state == "aborted":
            stop_reason = STOP_REASON_ABORTED
        else:
            # "delta" and unknown states: the agent stream carries partial text
            return None

        return CanonicalEvent(
            payload={"kind": KIND_DONE, "stopReason": stop_reason},
            seq=seq,
            event=CHAT_EVENT,
        )
