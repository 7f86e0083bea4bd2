"""Named snapshots of the prompt bank stored in a JSON file."""

from __future__ import annotations

import dataclasses
import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Iterator, List, Sequence

from .errors import StorageError
from .prompts import Prompt

logger = logging.getLogger(__name__)

__all__ = ["DEFAULT_CATEGORY", "StoredPrompt", "Preset", "PresetStore"]

DEFAULT_CATEGORY = "User Saved"


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class StoredPrompt:
    """The persisted part of a :class:`~prompt_dj.prompts.Prompt`."""

    prompt_id: str
    text: str
    weight: float
    cc: int
    color: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "promptId": self.prompt_id,
            "text": self.text,
            "weight": self.weight,
            "cc": self.cc,
            "color": self.color,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "StoredPrompt":
        return cls(
            prompt_id=str(payload["promptId"]),
            text=str(payload.get("text", "")),
            weight=float(payload.get("weight", 0.0)),
            cc=int(payload.get("cc", 0)),
            color=str(payload.get("color", "#ffffff")),
        )

    @classmethod
    def from_prompt(cls, prompt: Prompt) -> "StoredPrompt":
        return cls(prompt.prompt_id, prompt.text, prompt.weight, prompt.cc, prompt.color)

    def apply_to(self, prompt: Prompt) -> Prompt:
        """Return a copy of ``prompt`` carrying the stored fields."""

        return dataclasses.replace(prompt, text=self.text, weight=self.weight, cc=self.cc, color=self.color)


@dataclass
class Preset:
    id: str
    name: str
    prompts: List[StoredPrompt]
    description: str = ""
    category: str = DEFAULT_CATEGORY
    created_at: int = field(default_factory=_now_ms)
    updated_at: int = field(default_factory=_now_ms)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "prompts": [prompt.to_dict() for prompt in self.prompts],
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, payload: Any) -> "Preset":
        """Parse a preset; raises ``ValueError`` when required fields are missing."""

        if not isinstance(payload, dict):
            raise ValueError("preset must be a JSON object")
        if not payload.get("id") or not payload.get("name") or not isinstance(payload.get("prompts"), list):
            raise ValueError("preset needs an id, a name and a list of prompts")
        try:
            prompts = [StoredPrompt.from_dict(item) for item in payload["prompts"]]
        except (KeyError, TypeError, ValueError) as exc:
            raise ValueError(f"invalid prompt in preset: {exc}") from exc
        now = _now_ms()
        try:
            created_at = int(payload.get("createdAt") or now)
            updated_at = int(payload.get("updatedAt") or now)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"invalid preset timestamp: {exc}") from exc
        return cls(
            id=str(payload["id"]),
            name=str(payload["name"]),
            prompts=prompts,
            description=str(payload.get("description") or ""),
            category=str(payload.get("category") or DEFAULT_CATEGORY),
            created_at=created_at,
            updated_at=updated_at,
        )


class PresetStore:
    """Presets persisted as a JSON list at ``path``.

    A missing or unreadable file yields an empty store; write failures are
    raised as :class:`~prompt_dj.errors.StorageError`.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._presets: list[Preset] = self._load()

    def __iter__(self) -> Iterator[Preset]:
        return iter(self._presets)

    def __len__(self) -> int:
        return len(self._presets)

    def _load(self) -> list[Preset]:
        if not self.path.exists():
            return []
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.error("Failed to read presets from %s: %s", self.path, exc)
            return []
        if not isinstance(payload, list):
            logger.error("Preset file %s does not contain a list", self.path)
            return []
        presets: list[Preset] = []
        for item in payload:
            try:
                presets.append(Preset.from_dict(item))
            except ValueError as exc:
                logger.warning("Skipping stored preset: %s", exc)
        return presets

    def save(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(self.export_json(), encoding="utf-8")
        except OSError as exc:
            raise StorageError(f"Failed to save presets to {self.path}: {exc}") from exc

    def get(self, preset_id: str) -> Preset:
        for preset in self._presets:
            if preset.id == preset_id:
                return preset
        raise KeyError(preset_id)

    def categories(self) -> list[str]:
        return sorted({preset.category or DEFAULT_CATEGORY for preset in self._presets})

    def search(self, term: str = "", category: str | None = None) -> list[Preset]:
        """Presets matching ``term`` in name or description, most recently updated first."""

        needle = term.strip().lower()
        matches = [
            preset
            for preset in self._presets
            if (category is None or preset.category == category)
            and (not needle or needle in preset.name.lower() or needle in preset.description.lower())
        ]
        return sorted(matches, key=lambda preset: preset.updated_at, reverse=True)

    def create(
        self, name: str, prompts: Iterable[Prompt], *, description: str = "", category: str = ""
    ) -> Preset:
        now = _now_ms()
        preset = Preset(
            id=str(uuid.uuid4()),
            name=name,
            prompts=[StoredPrompt.from_prompt(prompt) for prompt in prompts],
            description=description,
            category=category or DEFAULT_CATEGORY,
            created_at=now,
            updated_at=now,
        )
        self._presets.append(preset)
        self.save()
        return preset

    def update(
        self,
        preset_id: str,
        *,
        name: str | None = None,
        prompts: Iterable[Prompt] | None = None,
        description: str | None = None,
        category: str | None = None,
    ) -> Preset:
        preset = self.get(preset_id)
        if name is not None:
            preset.name = name
        if prompts is not None:
            preset.prompts = [StoredPrompt.from_prompt(prompt) for prompt in prompts]
        if description is not None:
            preset.description = description
        if category is not None:
            preset.category = category or DEFAULT_CATEGORY
        preset.updated_at = max(_now_ms(), preset.updated_at)
        self.save()
        return preset

    def delete(self, preset_id: str) -> Preset:
        preset = self.get(preset_id)
        self._presets.remove(preset)
        self.save()
        return preset

    def duplicate(self, preset_id: str) -> Preset:
        original = self.get(preset_id)
        now = _now_ms()
        copy = dataclasses.replace(
            original,
            id=str(uuid.uuid4()),
            name=f"{original.name} (Copy)",
            prompts=[dataclasses.replace(prompt) for prompt in original.prompts],
            created_at=now,
            updated_at=now,
        )
        self._presets.append(copy)
        self.save()
        return copy

    def apply(self, preset_id: str, prompts: Sequence[Prompt]) -> list[Prompt]:
        """Return copies of ``prompts`` with the preset's stored values applied by id."""

        stored = {item.prompt_id: item for item in self.get(preset_id).prompts}
        return [stored[prompt.prompt_id].apply_to(prompt) for prompt in prompts if prompt.prompt_id in stored]

    def import_presets(self, payload: Any) -> tuple[int, int]:
        """Merge presets from parsed JSON; returns ``(added, updated)``."""

        if isinstance(payload, (str, bytes)):
            try:
                payload = json.loads(payload)
            except ValueError as exc:
                raise ValueError(f"preset import is not valid JSON: {exc}") from exc
        if not isinstance(payload, list):
            raise ValueError("preset import must be a JSON list")

        added = updated = 0
        for item in payload:
            try:
                incoming = Preset.from_dict(item)
            except ValueError as exc:
                logger.warning("Skipping invalid preset during import: %s", exc)
                continue
            try:
                existing = self.get(incoming.id)
            except KeyError:
                self._presets.append(incoming)
                added += 1
                continue
            incoming.created_at = existing.created_at
            incoming.updated_at = max(existing.updated_at, incoming.updated_at)
            self._presets[self._presets.index(existing)] = incoming
            updated += 1

        self.save()
        logger.info("Presets imported: %d new, %d updated", added, updated)
        return added, updated

    def export_json(self) -> str:
        return json.dumps([preset.to_dict() for preset in self._presets], indent=2)
