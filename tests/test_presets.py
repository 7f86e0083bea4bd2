"""Tests for the JSON preset store."""

from __future__ import annotations

import json
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

import pytest

from prompt_dj import presets as presets_module
from prompt_dj.errors import StorageError
from prompt_dj.presets import DEFAULT_CATEGORY, PresetStore
from prompt_dj.prompts import PromptBoard


@pytest.fixture
def store(tmp_path):
    return PresetStore(tmp_path / "presets" / "presets.json")


def test_create_persists_presets(store):
    board = PromptBoard()
    board.update("prompt-0", weight=1.2)

    preset = store.create("Late night", board.snapshot(), description="slow")

    reloaded = PresetStore(store.path)
    assert len(reloaded) == 1
    stored = reloaded.get(preset.id)
    assert stored.name == "Late night"
    assert stored.category == DEFAULT_CATEGORY
    assert stored.prompts[0].prompt_id == "prompt-0"
    assert stored.prompts[0].weight == pytest.approx(1.2)
    assert json.loads(store.path.read_text())[0]["prompts"][0]["promptId"] == "prompt-0"


def test_corrupt_file_is_treated_as_empty(tmp_path):
    path = tmp_path / "presets.json"
    path.write_text("{not json")

    assert len(PresetStore(path)) == 0


def test_invalid_entries_are_skipped_on_load(tmp_path):
    path = tmp_path / "presets.json"
    path.write_text(json.dumps([{"id": "a"}, {"id": "b", "name": "Ok", "prompts": []}]))

    store = PresetStore(path)

    assert [preset.id for preset in store] == ["b"]


def test_duplicate_appends_copy_suffix(store):
    original = store.create("Groove", PromptBoard().snapshot())

    copy = store.duplicate(original.id)

    assert copy.id != original.id
    assert copy.name == "Groove (Copy)"
    assert len(copy.prompts) == len(original.prompts)
    assert copy.prompts[0] is not original.prompts[0]


def test_update_and_delete(store):
    preset = store.create("Groove", PromptBoard().snapshot())

    store.update(preset.id, name="Groove v2", category="")
    assert store.get(preset.id).name == "Groove v2"
    assert store.get(preset.id).category == DEFAULT_CATEGORY

    store.delete(preset.id)
    with pytest.raises(KeyError):
        store.get(preset.id)


def test_apply_copies_stored_values_onto_matching_prompts(store):
    board = PromptBoard()
    board.update("prompt-1", text="Vaporwave", weight=0.8)
    preset = store.create("Vapor", board.snapshot())

    applied = store.apply(preset.id, PromptBoard().snapshot())

    by_id = {prompt.prompt_id: prompt for prompt in applied}
    assert by_id["prompt-1"].text == "Vaporwave"
    assert by_id["prompt-1"].weight == pytest.approx(0.8)


def test_import_adds_and_updates_keeping_created_at(store, monkeypatch):
    monkeypatch.setattr(presets_module, "_now_ms", lambda: 1_000)
    existing = store.create("Old", PromptBoard().snapshot())

    payload = [
        {"id": existing.id, "name": "Old renamed", "prompts": [], "createdAt": 5, "updatedAt": 500},
        {"id": "new-one", "name": "Fresh", "prompts": [], "updatedAt": 2_000},
        {"name": "missing id", "prompts": []},
        "garbage",
    ]

    added, updated = store.import_presets(json.dumps(payload))

    assert (added, updated) == (1, 1)
    merged = store.get(existing.id)
    assert merged.name == "Old renamed"
    assert merged.created_at == 1_000
    assert merged.updated_at == 1_000
    assert store.get("new-one").updated_at == 2_000


def test_import_rejects_non_list(store):
    with pytest.raises(ValueError):
        store.import_presets('{"id": "x"}')


def test_export_json_round_trips_through_import(tmp_path, store):
    store.create("One", PromptBoard().snapshot())
    other = PresetStore(tmp_path / "other.json")

    assert other.import_presets(store.export_json()) == (1, 0)


def test_search_filters_and_sorts_by_recent_update(store, monkeypatch):
    clock = iter([100, 200, 300])
    monkeypatch.setattr(presets_module, "_now_ms", lambda: next(clock))
    store.create("Morning jazz", [], category="Jazz")
    store.create("Evening jazz", [], category="Jazz")
    store.create("Techno", [], category="Club")

    assert [preset.name for preset in store.search("jazz")] == ["Evening jazz", "Morning jazz"]
    assert [preset.name for preset in store.search(category="Club")] == ["Techno"]
    assert store.categories() == ["Club", "Jazz"]


def test_save_failure_raises_storage_error(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("")
    store = PresetStore(blocker / "presets.json")

    with pytest.raises(StorageError):
        store.create("Nope", [])
