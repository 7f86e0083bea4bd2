"""Tests for MIDI control-change capture."""

from __future__ import annotations

import sys
import time
from pathlib import Path
from types import SimpleNamespace

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

import pytest

from prompt_dj import midi_input
from prompt_dj.midi_input import ControlChange, MidiInputManager, control_change_from_message


class FakePort:
    def __init__(self, messages) -> None:
        self._messages = list(messages)
        self.closed = False

    def iter_pending(self):
        pending, self._messages = self._messages, []
        return iter(pending)

    def close(self) -> None:
        self.closed = True


def _fake_mido(ports, messages=()):
    opened: dict[str, FakePort] = {}

    def open_input(name):
        opened[name] = FakePort(messages)
        return opened[name]

    return SimpleNamespace(get_input_names=lambda: list(ports), open_input=open_input, opened=opened)


def _wait_for(predicate, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


def test_control_change_extraction_ignores_other_messages():
    cc = SimpleNamespace(type="control_change", channel=2, control=21, value=99)
    note = SimpleNamespace(type="note_on", channel=0, note=60, velocity=100)

    assert control_change_from_message(cc) == ControlChange(channel=2, control=21, value=99)
    assert control_change_from_message(note) is None


def test_listener_queues_control_changes(monkeypatch):
    messages = [
        SimpleNamespace(type="note_on", channel=0, note=60, velocity=90),
        SimpleNamespace(type="control_change", channel=0, control=20, value=64),
    ]
    fake = _fake_mido(["Knobs"], messages)
    monkeypatch.setattr(midi_input, "_load_mido", lambda: fake)
    manager = MidiInputManager(poll_interval=0.001)
    received: list[ControlChange] = []

    manager.start_listening("Knobs")
    try:
        assert _wait_for(lambda: manager.drain(received.append) > 0 or bool(received))
    finally:
        manager.stop_listening()

    assert received == [ControlChange(channel=0, control=20, value=64)]
    assert fake.opened["Knobs"].closed is True
    assert manager.active_port is None


def test_refresh_falls_back_to_first_port_when_active_vanishes(monkeypatch):
    ports = ["Knobs", "Pads"]
    fake = _fake_mido(ports)
    monkeypatch.setattr(midi_input, "_load_mido", lambda: fake)
    manager = MidiInputManager(poll_interval=0.001)

    manager.start_listening("Pads")
    ports.remove("Pads")
    try:
        assert manager.refresh() == ["Knobs"]
        assert manager.active_port == "Knobs"
    finally:
        manager.stop_listening()


def test_port_listing_errors_are_not_fatal(monkeypatch):
    def broken():
        raise OSError("no backend")

    monkeypatch.setattr(midi_input, "_load_mido", lambda: SimpleNamespace(get_input_names=broken))
    manager = MidiInputManager()

    assert manager.list_input_ports() == []


def test_missing_mido_raises_backend_unavailable(monkeypatch):
    real_import = midi_input.importlib.import_module

    def missing(name, *args, **kwargs):
        if name == "mido":
            raise ModuleNotFoundError(name)
        return real_import(name, *args, **kwargs)

    monkeypatch.setattr(midi_input.importlib, "import_module", missing)

    with pytest.raises(midi_input.MidiBackendUnavailable):
        MidiInputManager()
