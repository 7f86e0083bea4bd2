"""Tests for the recording pipeline."""

from __future__ import annotations

import asyncio
import sys
import threading
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

import numpy as np
import pytest

from prompt_dj.decoder import Segment
from prompt_dj.errors import RecordingUnavailable, StorageError
from prompt_dj.notifications import QueueNotifier
from prompt_dj.output import AudioOutputGraph
from prompt_dj.recording import RecordingPipeline, artifact_filename, negotiate_format
from prompt_dj.state import PlaybackState, RecordingState


def _pipeline(supported=("wav",)):
    graph = AudioOutputGraph(sample_rate=8000, channels=1)
    notifier = QueueNotifier()
    pipeline = RecordingPipeline(graph, notifier, supports=lambda fmt: fmt.name in supported)
    return graph, notifier, pipeline


def _messages(notifier):
    return [item.message for item in notifier.drain()]


def test_negotiation_follows_preference_order():
    fmt = negotiate_format(["webm-opus", "ogg-opus", "wav"], supports=lambda f: f.name != "webm-opus")

    assert fmt.name == "ogg-opus"
    assert fmt.mime_type == "audio/ogg;codecs=opus"


def test_negotiation_without_supported_format_raises():
    with pytest.raises(RecordingUnavailable):
        negotiate_format(["webm-opus", "bogus"], supports=lambda f: False)


def test_start_requires_audio_flow():
    _, notifier, pipeline = _pipeline()

    assert pipeline.start(PlaybackState.PAUSED) is False
    assert pipeline.state is RecordingState.IDLE
    assert _messages(notifier) == ["Start playback before recording."]


def test_record_stop_produces_wav_artifact():
    graph, notifier, pipeline = _pipeline()
    graph.schedule_segment(Segment(np.full((800, 1), 0.5, dtype=np.float32), 8000), start_time=0.0)

    assert pipeline.start(PlaybackState.PLAYING) is True
    graph.render(800)
    artifact = asyncio.run(pipeline.stop())

    assert artifact is not None
    assert pipeline.state is RecordingState.RECORDED_AVAILABLE
    assert artifact.data[:4] == b"RIFF"
    assert artifact.extension == "wav"
    assert artifact.duration == pytest.approx(0.1)
    assert _messages(notifier) == ["Recording started...", "Recording ready for download!"]


def test_stop_without_audio_returns_to_idle():
    _, _, pipeline = _pipeline()
    pipeline.start(PlaybackState.LOADING)

    assert asyncio.run(pipeline.stop()) is None
    assert pipeline.state is RecordingState.IDLE
    assert pipeline.artifact is None


def test_unsupported_everywhere_disables_recording_once():
    _, notifier, pipeline = _pipeline(supported=())

    assert pipeline.start(PlaybackState.PLAYING) is False
    assert pipeline.disabled is True
    assert pipeline.start(PlaybackState.PLAYING) is False
    messages = _messages(notifier)
    assert len(messages) == 1
    assert messages[0].startswith("Recording not supported")


def test_save_writes_file_and_returns_to_idle(tmp_path):
    graph, notifier, pipeline = _pipeline()
    pipeline.start(PlaybackState.PLAYING)
    graph.render(400)
    artifact = asyncio.run(pipeline.stop())

    path = pipeline.save(tmp_path / "out")

    assert path.name == artifact_filename(artifact)
    assert path.name.startswith("prompt_dj_recording_")
    assert path.read_bytes() == artifact.data
    assert pipeline.state is RecordingState.IDLE
    assert pipeline.artifact is artifact
    assert "Download started." in _messages(notifier)


def test_save_failure_raises_storage_error(tmp_path):
    graph, _, pipeline = _pipeline()
    pipeline.start(PlaybackState.PLAYING)
    graph.render(400)
    asyncio.run(pipeline.stop())
    blocker = tmp_path / "blocker"
    blocker.write_text("")

    with pytest.raises(StorageError):
        pipeline.save(blocker)


def test_teardown_detaches_and_releases():
    graph, _, pipeline = _pipeline()
    pipeline.start(PlaybackState.PLAYING)

    pipeline.teardown()
    graph.render(100)

    assert pipeline.state is RecordingState.IDLE
    assert pipeline.artifact is None


def test_encoding_runs_off_the_event_loop_thread(monkeypatch):
    graph, _, pipeline = _pipeline()
    pipeline.start(PlaybackState.PLAYING)
    graph.render(400)
    threads: list[str] = []
    encode = pipeline._encode

    def tracking_encode(chunks, fmt):
        threads.append(threading.current_thread().name)
        return encode(chunks, fmt)

    monkeypatch.setattr(pipeline, "_encode", tracking_encode)

    artifact = asyncio.run(pipeline.stop())

    assert artifact is not None
    assert threads and threads[0] != threading.current_thread().name


def test_teardown_during_encoding_discards_the_result():
    graph, notifier, pipeline = _pipeline()
    pipeline.start(PlaybackState.PLAYING)
    graph.render(400)

    async def scenario():
        task = asyncio.create_task(pipeline.stop())
        await asyncio.sleep(0)
        pipeline.teardown()
        return await task

    assert asyncio.run(scenario()) is None
    assert pipeline.state is RecordingState.IDLE
    assert pipeline.artifact is None
    assert "Recording ready for download!" not in _messages(notifier)
