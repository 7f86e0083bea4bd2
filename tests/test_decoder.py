"""Tests for PCM payload decoding."""

from __future__ import annotations

import asyncio
import base64
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

import numpy as np
import pytest

from prompt_dj.decoder import SegmentDecoder, conform_channels, resample
from prompt_dj.errors import DecodeError
from prompt_dj.protocol import AudioChunkMessage


def _payload(samples: list[int]) -> str:
    return base64.b64encode(np.array(samples, dtype="<i2").tobytes()).decode("ascii")


def test_decode_interleaved_stereo():
    decoder = SegmentDecoder(sample_rate=48000, channels=2)
    chunk = AudioChunkMessage(payload=_payload([16384, -16384, 0, 32767]), sample_rate=48000, channels=2)

    segment = asyncio.run(decoder.decode(chunk))

    assert segment.frames == 2
    assert segment.channels == 2
    assert segment.samples.dtype == np.float32
    assert segment.samples[0].tolist() == pytest.approx([0.5, -0.5])
    assert segment.duration == pytest.approx(2 / 48000)


def test_decode_upmixes_mono():
    decoder = SegmentDecoder(sample_rate=48000, channels=2)
    chunk = AudioChunkMessage(payload=_payload([8192, 8192, 8192]), sample_rate=48000, channels=1)

    segment = decoder.decode_chunk(chunk)

    assert segment.samples.shape == (3, 2)
    assert np.allclose(segment.samples, 0.25)


def test_decode_resamples_to_output_rate():
    decoder = SegmentDecoder(sample_rate=48000, channels=1)
    chunk = AudioChunkMessage(payload=_payload([0] * 2400), sample_rate=24000, channels=1)

    segment = decoder.decode_chunk(chunk)

    assert segment.sample_rate == 48000
    assert segment.frames == 4800
    assert segment.duration == pytest.approx(0.1)


@pytest.mark.parametrize(
    "payload",
    ["***", "", base64.b64encode(b"\x00\x01\x02").decode("ascii")],
)
def test_decode_rejects_bad_payloads(payload):
    decoder = SegmentDecoder(sample_rate=48000, channels=2)

    with pytest.raises(DecodeError):
        decoder.decode_chunk(AudioChunkMessage(payload=payload, sample_rate=48000, channels=2))


def test_conform_channels_downmixes_to_mono():
    stereo = np.array([[1.0, 0.0], [0.5, 0.5]], dtype=np.float32)

    mono = conform_channels(stereo, 1)

    assert mono.shape == (2, 1)
    assert mono[:, 0].tolist() == pytest.approx([0.5, 0.5])


def test_resample_is_identity_for_equal_rates():
    samples = np.ones((10, 2), dtype=np.float32)

    assert resample(samples, 44100, 44100) is samples
