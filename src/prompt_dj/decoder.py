"""Turn streamed PCM payloads into playable segments."""

from __future__ import annotations

import asyncio
import base64
import binascii
from dataclasses import dataclass

import numpy as np
from pydub import AudioSegment

from .errors import DecodeError
from .protocol import AudioChunkMessage

__all__ = ["Segment", "SegmentDecoder", "conform_channels", "resample"]

SAMPLE_WIDTH = 2  # signed 16-bit little-endian PCM


@dataclass(frozen=True)
class Segment:
    """Decoded audio as float32 frames shaped ``(frames, channels)``."""

    samples: np.ndarray
    sample_rate: int

    @property
    def frames(self) -> int:
        return int(self.samples.shape[0])

    @property
    def channels(self) -> int:
        return int(self.samples.shape[1])

    @property
    def duration(self) -> float:
        return self.frames / float(self.sample_rate)


def conform_channels(samples: np.ndarray, channels: int) -> np.ndarray:
    current = samples.shape[1]
    if current == channels:
        return samples
    if channels == 1:
        return samples.mean(axis=1, keepdims=True).astype(np.float32)
    if current == 1:
        return np.repeat(samples, channels, axis=1)
    return samples[:, :channels]


def resample(samples: np.ndarray, src_rate: int, dst_rate: int) -> np.ndarray:
    """Linear-interpolation resampler, adequate for rate mismatches in a preview path."""

    if src_rate == dst_rate or samples.shape[0] == 0:
        return samples
    dst_length = max(1, int(round(samples.shape[0] * float(dst_rate) / float(src_rate))))
    src_positions = np.arange(samples.shape[0], dtype=np.float64)
    dst_positions = np.linspace(0, samples.shape[0] - 1, dst_length, dtype=np.float64)
    columns = [np.interp(dst_positions, src_positions, samples[:, ch]) for ch in range(samples.shape[1])]
    return np.stack(columns, axis=1).astype(np.float32)


class SegmentDecoder:
    """Decode ``audioChunk`` payloads into segments matching the output graph format."""

    def __init__(self, *, sample_rate: int, channels: int) -> None:
        self.sample_rate = int(sample_rate)
        self.channels = int(channels)

    async def decode(self, chunk: AudioChunkMessage) -> Segment:
        return await asyncio.to_thread(self.decode_chunk, chunk)

    def decode_chunk(self, chunk: AudioChunkMessage) -> Segment:
        payload = chunk.payload
        if isinstance(payload, str):
            try:
                payload = base64.b64decode(payload, validate=True)
            except (binascii.Error, ValueError) as exc:
                raise DecodeError(f"audio payload is not valid base64: {exc}") from exc
        return self.decode_pcm(payload, sample_rate=chunk.sample_rate, channels=chunk.channels)

    def decode_pcm(self, pcm: bytes, *, sample_rate: int, channels: int) -> Segment:
        frame_width = SAMPLE_WIDTH * channels
        if not pcm:
            raise DecodeError("audio payload is empty")
        if len(pcm) % frame_width:
            raise DecodeError(
                f"audio payload of {len(pcm)} bytes is not a whole number of {channels}-channel frames"
            )

        audio = AudioSegment(data=pcm, sample_width=SAMPLE_WIDTH, frame_rate=sample_rate, channels=channels)
        raw = np.array(audio.get_array_of_samples(), dtype=np.float32)
        samples = (raw / 32768.0).reshape(-1, channels)
        samples = conform_channels(samples, self.channels)
        samples = resample(samples, sample_rate, self.sample_rate)
        return Segment(samples=np.ascontiguousarray(samples, dtype=np.float32), sample_rate=self.sample_rate)
