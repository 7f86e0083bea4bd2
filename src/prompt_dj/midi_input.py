"""Realtime MIDI control-change capture utilities."""

from __future__ import annotations

import importlib
import logging
import queue
import threading
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class MidiBackendUnavailable(RuntimeError):
    """Raised when no MIDI backend can be initialised."""


def _load_mido():
    try:
        return importlib.import_module("mido")
    except ModuleNotFoundError as exc:  # pragma: no cover - optional dependency
        raise MidiBackendUnavailable("Install `mido` and `python-rtmidi` to enable MIDI input.") from exc


@dataclass(frozen=True, slots=True)
class ControlChange:
    channel: int
    control: int
    value: int


class MidiInputManager:
    """Manage MIDI input ports and stream control changes from the active one."""

    def __init__(self, *, poll_interval: float = 0.01) -> None:
        self._mido = _load_mido()
        self._poll_interval = poll_interval
        self._listener: Optional[threading.Thread] = None
        self._queue: "queue.Queue[ControlChange]" = queue.Queue()
        self._stop_event = threading.Event()
        self._port: Optional[object] = None
        self._active_port: str | None = None

    @property
    def active_port(self) -> str | None:
        return self._active_port

    def list_input_ports(self) -> list[str]:
        try:
            return list(self._mido.get_input_names())
        except Exception as exc:
            logger.warning("Unable to enumerate MIDI inputs: %s", exc)
            return []

    def start_listening(self, port_name: str) -> None:
        if self._listener and self._listener.is_alive():
            self.stop_listening()

        self._stop_event.clear()
        self._port = self._mido.open_input(port_name)
        self._active_port = port_name
        logger.info("Listening for MIDI control changes on %s", port_name)

        def _poll() -> None:
            assert self._port is not None
            while not self._stop_event.is_set():
                for message in self._port.iter_pending():
                    change = control_change_from_message(message)
                    if change is not None:
                        self._queue.put(change)
                self._stop_event.wait(self._poll_interval)

        self._listener = threading.Thread(target=_poll, name="midi-cc-listener", daemon=True)
        self._listener.start()

    def stop_listening(self) -> None:
        if self._listener and self._listener.is_alive():
            self._stop_event.set()
            self._listener.join(timeout=2)
        if self._port is not None:
            self._port.close()
        self._listener = None
        self._port = None
        self._active_port = None

    def refresh(self) -> list[str]:
        """Re-scan ports, falling back to the first port when the active one vanished."""

        ports = self.list_input_ports()
        if self._active_port is not None and self._active_port not in ports:
            logger.info("MIDI input %s disappeared", self._active_port)
            self.stop_listening()
            if ports:
                self.start_listening(ports[0])
        return ports

    def drain(self, callback: Callable[[ControlChange], None]) -> int:
        handled = 0
        while True:
            try:
                change = self._queue.get_nowait()
            except queue.Empty:
                return handled
            callback(change)
            handled += 1

    def __del__(self):  # pragma: no cover - cleanup
        self.stop_listening()


def control_change_from_message(message: object) -> ControlChange | None:
    """Return the control change carried by a mido message, if any."""

    if getattr(message, "type", None) != "control_change":
        return None
    return ControlChange(
        channel=int(getattr(message, "channel")),
        control=int(getattr(message, "control")),
        value=int(getattr(message, "value")),
    )
