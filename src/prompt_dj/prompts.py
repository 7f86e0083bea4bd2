"""Prompt model, the editable prompt bank and the backend filter set."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Iterable, Iterator, Mapping, Sequence

from .midi_input import ControlChange

__all__ = [
    "MAX_WEIGHT",
    "DEFAULT_PROMPTS",
    "FIRST_DEFAULT_CC",
    "Prompt",
    "WeightedPrompt",
    "PromptBoard",
    "FilteredPrompts",
    "default_prompts",
    "weight_from_cc",
]

MAX_WEIGHT = 2.0
FIRST_DEFAULT_CC = 20

DEFAULT_PROMPTS: tuple[tuple[str, str], ...] = (
    ("#9900ff", "Bossa Nova"),
    ("#5200ff", "Chillwave"),
    ("#ff25f6", "Drum and Bass"),
    ("#2af6de", "Post Punk"),
    ("#ffdd28", "Shoegaze"),
    ("#2af6de", "Funk"),
    ("#9900ff", "Chiptune"),
    ("#3dffab", "Lush Strings"),
)


def _clamp_weight(weight: float) -> float:
    return max(0.0, min(MAX_WEIGHT, float(weight)))


def weight_from_cc(value: int) -> float:
    """Map a 7-bit controller value onto the prompt weight range."""

    return _clamp_weight(max(0, min(127, int(value))) / 127 * MAX_WEIGHT)


@dataclass
class Prompt:
    """A single weighted text prompt bound to a MIDI controller."""

    prompt_id: str
    text: str
    weight: float = 0.0
    cc: int = 0
    color: str = "#ffffff"
    channel: int | None = None

    def __setattr__(self, name: str, value: object) -> None:
        if name == "weight":
            value = _clamp_weight(value)  # type: ignore[arg-type]
        super().__setattr__(name, value)

    @property
    def is_active(self) -> bool:
        return self.weight > 0 and bool(self.text.strip())

    def to_dict(self) -> dict[str, object]:
        return dataclasses.asdict(self)

    @classmethod
    def from_dict(cls, payload: Mapping[str, object]) -> "Prompt":
        channel = payload.get("channel")
        return cls(
            prompt_id=str(payload["prompt_id"]),
            text=str(payload.get("text", "")),
            weight=float(payload.get("weight", 0.0)),  # type: ignore[arg-type]
            cc=int(payload.get("cc", 0)),  # type: ignore[arg-type]
            color=str(payload.get("color", "#ffffff")),
            channel=None if channel is None else int(channel),  # type: ignore[arg-type]
        )


@dataclass(frozen=True)
class WeightedPrompt:
    """Outgoing representation of an active prompt."""

    prompt_id: str
    text: str
    weight: float

    def to_wire(self) -> dict[str, object]:
        return {"id": self.prompt_id, "text": self.text, "weight": self.weight}


def default_prompts() -> dict[str, Prompt]:
    prompts: dict[str, Prompt] = {}
    for index, (color, text) in enumerate(DEFAULT_PROMPTS):
        prompt_id = f"prompt-{index}"
        prompts[prompt_id] = Prompt(
            prompt_id=prompt_id,
            text=text,
            weight=0.0,
            cc=FIRST_DEFAULT_CC + index,
            color=color,
        )
    return prompts


class PromptBoard:
    """Ordered, mutable collection of :class:`Prompt` items."""

    def __init__(self, prompts: Iterable[Prompt] | None = None) -> None:
        source = list(prompts) if prompts is not None else list(default_prompts().values())
        self._prompts: dict[str, Prompt] = {prompt.prompt_id: prompt for prompt in source}
        self._learning: str | None = None

    def __iter__(self) -> Iterator[Prompt]:
        return iter(self._prompts.values())

    def __len__(self) -> int:
        return len(self._prompts)

    def __contains__(self, prompt_id: object) -> bool:
        return prompt_id in self._prompts

    def get(self, prompt_id: str) -> Prompt:
        return self._prompts[prompt_id]

    @property
    def learning(self) -> str | None:
        return self._learning

    def snapshot(self) -> tuple[Prompt, ...]:
        return tuple(dataclasses.replace(prompt) for prompt in self._prompts.values())

    def update(
        self,
        prompt_id: str,
        *,
        text: str | None = None,
        weight: float | None = None,
        cc: int | None = None,
        channel: int | None = None,
        color: str | None = None,
    ) -> Prompt:
        prompt = self._prompts[prompt_id]
        if text is not None:
            prompt.text = text
        if weight is not None:
            prompt.weight = weight
        if cc is not None:
            prompt.cc = int(cc)
        if channel is not None:
            prompt.channel = int(channel)
        if color is not None:
            prompt.color = color
        return prompt

    def replace_all(self, prompts: Sequence[Prompt]) -> list[str]:
        """Overwrite prompts that share an id with ``prompts``; unknown ids are ignored."""

        touched: list[str] = []
        for incoming in prompts:
            if incoming.prompt_id not in self._prompts:
                continue
            self._prompts[incoming.prompt_id] = dataclasses.replace(incoming)
            touched.append(incoming.prompt_id)
        return touched

    def start_learning(self, prompt_id: str) -> None:
        if prompt_id not in self._prompts:
            raise KeyError(prompt_id)
        self._learning = prompt_id

    def cancel_learning(self) -> None:
        self._learning = None

    def apply_control_change(self, change: ControlChange) -> list[str]:
        """Fold a MIDI control change into the bank and return the changed prompt ids.

        In learn mode the controller number is bound to the learning prompt and
        its weight is left alone.
        """

        if self._learning is not None:
            prompt = self._prompts[self._learning]
            prompt.cc = change.control
            prompt.channel = change.channel
            self._learning = None
            return [prompt.prompt_id]

        changed: list[str] = []
        for prompt in self._prompts.values():
            if prompt.cc != change.control:
                continue
            if prompt.channel is not None and prompt.channel != change.channel:
                continue
            prompt.weight = weight_from_cc(change.value)
            changed.append(prompt.prompt_id)
        return changed


class FilteredPrompts:
    """Prompt ids rejected by the backend, each with the text that was rejected.

    Every report from the backend replaces the whole set. A prompt stays
    blocked only while its text is unchanged, so editing a rejected prompt makes
    it eligible for the next update again.
    """

    def __init__(self) -> None:
        self._entries: dict[str, str] = {}

    def __contains__(self, prompt_id: object) -> bool:
        return prompt_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __bool__(self) -> bool:
        return bool(self._entries)

    def ids(self) -> frozenset[str]:
        return frozenset(self._entries)

    def rejected_text(self, prompt_id: str) -> str | None:
        return self._entries.get(prompt_id)

    def replace(self, entries: Mapping[str, str]) -> None:
        self._entries = dict(entries)

    def clear(self) -> None:
        self._entries = {}

    def blocks(self, prompt: Prompt) -> bool:
        rejected = self._entries.get(prompt.prompt_id)
        return rejected is not None and rejected == prompt.text
