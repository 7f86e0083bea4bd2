"""JSON wire codec for the music generation websocket."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Iterable, Union

from .errors import ProtocolError
from .prompts import WeightedPrompt

__all__ = [
    "ErrorMessage",
    "RejectedPrompt",
    "RejectedPromptsMessage",
    "StateMessage",
    "AudioChunkMessage",
    "ClosedMessage",
    "ServerMessage",
    "SERVER_STATES",
    "parse_server_message",
    "encode_setup",
    "encode_playback_control",
    "encode_prompts",
]

SERVER_STATES = frozenset({"buffering", "playing", "paused", "stopped"})
PLAYBACK_CONTROLS = frozenset({"PLAY", "PAUSE", "STOP"})


@dataclass(frozen=True)
class ErrorMessage:
    message: str


@dataclass(frozen=True)
class RejectedPrompt:
    """One rejection entry; the backend may identify the prompt by id, text or both."""

    prompt_id: str | None = None
    text: str | None = None
    reason: str | None = None


@dataclass(frozen=True)
class RejectedPromptsMessage:
    prompts: tuple[RejectedPrompt, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class StateMessage:
    state: str


@dataclass(frozen=True)
class AudioChunkMessage:
    payload: str | bytes
    sample_rate: int
    channels: int


@dataclass(frozen=True)
class ClosedMessage:
    clean: bool
    reason: str = ""


ServerMessage = Union[ErrorMessage, RejectedPromptsMessage, StateMessage, AudioChunkMessage, ClosedMessage]


def _rejected_entry(raw: Any) -> RejectedPrompt:
    if isinstance(raw, str):
        # A bare string is resolved later against prompt ids, then texts.
        return RejectedPrompt(prompt_id=raw)
    if isinstance(raw, dict):
        prompt_id = raw.get("id", raw.get("promptId"))
        text = raw.get("text")
        reason = raw.get("reason", raw.get("filteredReason"))
        if prompt_id is None and text is None:
            raise ProtocolError("rejected prompt entry carries neither id nor text")
        return RejectedPrompt(
            prompt_id=None if prompt_id is None else str(prompt_id),
            text=None if text is None else str(text),
            reason=None if reason is None else str(reason),
        )
    raise ProtocolError(f"unsupported rejected prompt entry: {raw!r}")


def _positive_int(payload: dict[str, Any], key: str) -> int:
    value = payload.get(key)
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ProtocolError(f"audioChunk.{key} must be a positive integer, got {value!r}")
    return value


def parse_server_message(frame: str | bytes) -> ServerMessage:
    """Decode one inbound text frame into a typed message."""

    try:
        payload = json.loads(frame)
    except (TypeError, ValueError) as exc:
        raise ProtocolError(f"frame is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise ProtocolError("frame must be a JSON object")

    kind = payload.get("type")
    if kind == "error":
        return ErrorMessage(message=str(payload.get("message") or "Unknown error"))
    if kind == "rejectedPrompts":
        entries = payload.get("prompts") or []
        if not isinstance(entries, list):
            raise ProtocolError("rejectedPrompts.prompts must be a list")
        return RejectedPromptsMessage(prompts=tuple(_rejected_entry(entry) for entry in entries))
    if kind == "state":
        state = payload.get("state")
        if state not in SERVER_STATES:
            raise ProtocolError(f"unknown playback state {state!r}")
        return StateMessage(state=state)
    if kind == "audioChunk":
        data = payload.get("data")
        if not isinstance(data, str):
            raise ProtocolError("audioChunk.data must be a base64 string")
        return AudioChunkMessage(
            payload=data,
            sample_rate=_positive_int(payload, "sampleRate"),
            channels=_positive_int(payload, "channels"),
        )
    raise ProtocolError(f"unknown message type {kind!r}")


def encode_setup(model: str) -> str:
    return json.dumps({"type": "setup", "model": model})


def encode_playback_control(control: str) -> str:
    if control not in PLAYBACK_CONTROLS:
        raise ValueError(f"unknown playback control {control!r}")
    return json.dumps({"type": "playbackControl", "control": control})


def encode_prompts(prompts: Iterable[WeightedPrompt]) -> str:
    return json.dumps({"type": "updatePrompts", "prompts": [prompt.to_wire() for prompt in prompts]})
