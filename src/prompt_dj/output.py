"""Mixing output graph with a sample-accurate clock, level analyser and taps."""

from __future__ import annotations

import asyncio
import importlib
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np

from .decoder import Segment

logger = logging.getLogger(__name__)

__all__ = ["AudioBackendUnavailable", "AudioOutputGraph", "Tap", "ANALYSER_SIZE", "drive_virtual_clock"]

ANALYSER_SIZE = 256
MIN_DECIBELS = -100.0
MAX_DECIBELS = -30.0

Tap = Callable[[np.ndarray], None]


class AudioBackendUnavailable(RuntimeError):
    """Raised when no audio device backend can be initialised."""


def _load_sounddevice():
    try:
        return importlib.import_module("sounddevice")
    except (ModuleNotFoundError, OSError) as exc:  # pragma: no cover - optional dependency
        raise AudioBackendUnavailable(
            "Install `sounddevice` (and the PortAudio library) to enable audio playback."
        ) from exc


@dataclass(slots=True)
class _ScheduledSegment:
    start_frame: int
    samples: np.ndarray

    @property
    def end_frame(self) -> int:
        return self.start_frame + int(self.samples.shape[0])


class AudioOutputGraph:
    """Sink that plays scheduled segments at exact positions on its own clock.

    The clock is the number of frames rendered so far, so :attr:`current_time`
    only advances while something pulls audio through :meth:`render`: the
    PortAudio callback once :meth:`open` has been called, or
    :func:`drive_virtual_clock` when running without a device.
    """

    def __init__(self, *, sample_rate: int = 48000, channels: int = 2, gain: float = 1.0) -> None:
        self.sample_rate = int(sample_rate)
        self.channels = int(channels)
        self.gain = float(gain)
        self._lock = threading.Lock()
        self._frame = 0
        self._scheduled: list[_ScheduledSegment] = []
        self._taps: list[Tap] = []
        self._analyser = np.zeros(ANALYSER_SIZE, dtype=np.float32)
        self._window = np.blackman(ANALYSER_SIZE).astype(np.float32)
        self._stream: Optional[object] = None

    @property
    def current_time(self) -> float:
        with self._lock:
            return self._frame / float(self.sample_rate)

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._scheduled)

    @property
    def queued_until(self) -> float:
        """End time of the last scheduled segment, or the clock when nothing is queued."""

        with self._lock:
            end = max((item.end_frame for item in self._scheduled), default=self._frame)
            return max(end, self._frame) / float(self.sample_rate)

    @property
    def is_open(self) -> bool:
        return self._stream is not None

    def schedule_segment(self, segment: Segment, start_time: float) -> float:
        """Queue ``segment`` at ``start_time`` seconds and return the actual start.

        Start times already in the past play immediately.
        """

        if segment.sample_rate != self.sample_rate:
            raise ValueError(
                f"segment sample rate {segment.sample_rate} does not match the output rate {self.sample_rate}"
            )
        if segment.channels != self.channels:
            raise ValueError(f"segment has {segment.channels} channels, output expects {self.channels}")

        with self._lock:
            start_frame = max(int(round(start_time * self.sample_rate)), self._frame)
            self._scheduled.append(_ScheduledSegment(start_frame=start_frame, samples=segment.samples))
            return start_frame / float(self.sample_rate)

    def flush(self) -> None:
        with self._lock:
            self._scheduled.clear()

    def add_tap(self, tap: Tap) -> Callable[[], None]:
        """Register a callback that receives a copy of every rendered block."""

        with self._lock:
            self._taps.append(tap)

        def _remove() -> None:
            with self._lock:
                if tap in self._taps:
                    self._taps.remove(tap)

        return _remove

    def render(self, frames: int) -> np.ndarray:
        block = np.zeros((frames, self.channels), dtype=np.float32)
        with self._lock:
            block_start = self._frame
            block_end = block_start + frames
            remaining: list[_ScheduledSegment] = []
            for item in self._scheduled:
                if item.end_frame <= block_start:
                    continue
                if item.start_frame < block_end:
                    lo = max(item.start_frame, block_start)
                    hi = min(item.end_frame, block_end)
                    block[lo - block_start : hi - block_start] += item.samples[
                        lo - item.start_frame : hi - item.start_frame
                    ]
                if item.end_frame > block_end:
                    remaining.append(item)
            self._scheduled = remaining
            self._frame = block_end
            if self.gain != 1.0:
                block *= self.gain
            np.clip(block, -1.0, 1.0, out=block)

            mono = block.mean(axis=1)
            if mono.shape[0] >= ANALYSER_SIZE:
                self._analyser = mono[-ANALYSER_SIZE:].copy()
            else:
                self._analyser = np.concatenate([self._analyser[mono.shape[0] :], mono])
            taps = list(self._taps)

        for tap in taps:
            try:
                tap(block.copy())
            except Exception:
                logger.exception("Output tap failed")
        return block

    def level(self) -> float:
        """Average analyser magnitude of the most recent output, in ``[0, 1]``."""

        with self._lock:
            window = self._analyser * self._window
        spectrum = np.abs(np.fft.rfft(window))[: ANALYSER_SIZE // 2] / ANALYSER_SIZE
        decibels = 20.0 * np.log10(np.maximum(spectrum, 1e-12))
        scaled = np.clip((decibels - MIN_DECIBELS) / (MAX_DECIBELS - MIN_DECIBELS), 0.0, 1.0)
        return float(scaled.mean())

    def open(self, *, device: int | str | None = None, blocksize: int = 0) -> None:
        if self._stream is not None:
            return
        sd = _load_sounddevice()

        def _callback(outdata, frames, time_info, status) -> None:
            if status:
                logger.debug("Output stream status: %s", status)
            outdata[:] = self.render(frames)

        try:
            stream = sd.OutputStream(
                samplerate=self.sample_rate,
                channels=self.channels,
                dtype="float32",
                device=device,
                blocksize=blocksize,
                callback=_callback,
            )
            stream.start()
        except Exception as exc:
            raise AudioBackendUnavailable(f"Unable to open audio output: {exc}") from exc
        self._stream = stream
        logger.info("Audio output opened at %d Hz, %d channel(s)", self.sample_rate, self.channels)

    def close(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.stop()
            stream.close()
        except Exception as exc:
            logger.debug("Ignoring error while closing audio output: %s", exc)


async def drive_virtual_clock(graph: AudioOutputGraph, *, block_frames: int = 1024) -> None:
    """Render ``graph`` in real time without an audio device until cancelled."""

    loop = asyncio.get_running_loop()
    block_seconds = block_frames / float(graph.sample_rate)
    started = loop.time()
    rendered = 0
    while True:
        graph.render(block_frames)
        rendered += 1
        delay = started + rendered * block_seconds - loop.time()
        await asyncio.sleep(max(0.0, delay))
