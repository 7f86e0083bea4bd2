"""Capture the output mix and encode it into a downloadable artifact."""

from __future__ import annotations

import asyncio
import io
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterable, Sequence

import numpy as np
from pydub import AudioSegment
from pydub.exceptions import CouldntEncodeError
from pydub.utils import get_supported_encoders

from .errors import RecordingUnavailable, StorageError
from .notifications import Notifier
from .output import AudioOutputGraph
from .state import AUDIO_FLOW_STATES, PlaybackState, RecordingState

logger = logging.getLogger(__name__)

__all__ = [
    "RecordingFormat",
    "RecordingArtifact",
    "RecordingPipeline",
    "RECORDING_FORMATS",
    "negotiate_format",
    "artifact_filename",
]


@dataclass(frozen=True)
class RecordingFormat:
    name: str
    mime_type: str
    extension: str
    export_format: str
    codec: str | None = None
    required_encoders: tuple[str, ...] = ()


RECORDING_FORMATS: dict[str, RecordingFormat] = {
    fmt.name: fmt
    for fmt in (
        RecordingFormat("webm-opus", "audio/webm;codecs=opus", "webm", "webm", "libopus", ("libopus", "opus")),
        RecordingFormat("ogg-opus", "audio/ogg;codecs=opus", "ogg", "ogg", "libopus", ("libopus", "opus")),
        RecordingFormat("webm", "audio/webm", "webm", "webm", None, ("libopus", "opus", "libvorbis", "vorbis")),
        RecordingFormat("wav", "audio/wav", "wav", "wav"),
    )
}


@dataclass(frozen=True)
class RecordingArtifact:
    data: bytes
    mime_type: str
    extension: str
    duration: float
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def _local_encoders() -> frozenset[str]:
    try:
        return frozenset(get_supported_encoders())
    except OSError as exc:
        logger.info("ffmpeg is not available, only WAV recordings are possible: %s", exc)
        return frozenset()


def _format_supported(fmt: RecordingFormat, encoders: frozenset[str]) -> bool:
    if not fmt.required_encoders:
        return True
    return any(name in encoders for name in fmt.required_encoders)


def negotiate_format(
    preferences: Sequence[str],
    supports: Callable[[RecordingFormat], bool] | None = None,
) -> RecordingFormat:
    """Return the first preferred format the local encoder can produce."""

    if supports is None:
        encoders = _local_encoders()

        def supports(fmt: RecordingFormat) -> bool:
            return _format_supported(fmt, encoders)

    for name in preferences:
        fmt = RECORDING_FORMATS.get(name)
        if fmt is None:
            logger.warning("Ignoring unknown recording format %r", name)
            continue
        if supports(fmt):
            return fmt
    raise RecordingUnavailable(f"None of the recording formats {', '.join(preferences)} can be encoded here.")


def artifact_filename(artifact: RecordingArtifact) -> str:
    stamp = artifact.created_at.strftime("%Y-%m-%dT%H-%M-%S")
    return f"prompt_dj_recording_{stamp}.{artifact.extension}"


class RecordingPipeline:
    """``idle -> recording -> recorded_available -> idle`` around an output tap."""

    def __init__(
        self,
        graph: AudioOutputGraph,
        notifier: Notifier,
        *,
        formats: Iterable[str] = ("webm-opus", "ogg-opus", "webm", "wav"),
        supports: Callable[[RecordingFormat], bool] | None = None,
    ) -> None:
        self._graph = graph
        self._notifier = notifier
        self._preferences = tuple(formats)
        self._supports = supports
        self.state = RecordingState.IDLE
        self.artifact: RecordingArtifact | None = None
        self.disabled = False
        self._format: RecordingFormat | None = None
        self._chunks: list[np.ndarray] = []
        self._detach: Callable[[], None] | None = None
        self._encoding = False

    @property
    def is_recording(self) -> bool:
        return self.state is RecordingState.RECORDING

    def _capture(self, block: np.ndarray) -> None:
        self._chunks.append(block)

    def start(self, playback_state: PlaybackState) -> bool:
        if self.disabled:
            return False
        if self.state is RecordingState.RECORDING:
            return True
        if playback_state not in AUDIO_FLOW_STATES:
            self._notifier.show("Start playback before recording.", 3000)
            return False

        self.release()
        try:
            self._format = negotiate_format(self._preferences, self._supports)
        except RecordingUnavailable as exc:
            logger.error("Recording disabled: %s", exc)
            self.disabled = True
            self._notifier.show(f"Recording not supported: {exc}", 5000)
            return False

        self._chunks = []
        self._detach = self._graph.add_tap(self._capture)
        self.state = RecordingState.RECORDING
        logger.info("Recording started (%s)", self._format.mime_type)
        self._notifier.show("Recording started...", 2000)
        return True

    def _encode(self, chunks: list[np.ndarray], fmt: RecordingFormat) -> RecordingArtifact:
        samples = np.concatenate(chunks, axis=0)
        pcm = (np.clip(samples, -1.0, 1.0) * 32767.0).astype("<i2")
        segment = AudioSegment(
            data=pcm.tobytes(),
            sample_width=2,
            frame_rate=self._graph.sample_rate,
            channels=self._graph.channels,
        )
        buffer = io.BytesIO()
        segment.export(buffer, format=fmt.export_format, codec=fmt.codec)
        return RecordingArtifact(
            data=buffer.getvalue(),
            mime_type=fmt.mime_type,
            extension=fmt.extension,
            duration=samples.shape[0] / float(self._graph.sample_rate),
        )

    async def stop(self) -> RecordingArtifact | None:
        """Detach the tap and encode the capture in a worker thread."""

        if self.state is not RecordingState.RECORDING or self._encoding:
            return None
        detach, self._detach = self._detach, None
        if detach is not None:
            detach()
        chunks, self._chunks = self._chunks, []
        fmt = self._format

        if not chunks or fmt is None:
            logger.warning("Recording stopped before any audio was captured")
            self.state = RecordingState.IDLE
            return None

        self._encoding = True
        try:
            artifact = await asyncio.to_thread(self._encode, chunks, fmt)
        except (CouldntEncodeError, OSError) as exc:
            logger.error("Failed to encode recording as %s: %s", fmt.name, exc)
            self.state = RecordingState.IDLE
            self._notifier.show(f"Could not encode recording: {exc}", 5000)
            return None
        finally:
            self._encoding = False

        if self.state is not RecordingState.RECORDING:
            logger.info("Recording discarded after teardown")
            return None
        self.artifact = artifact
        self.state = RecordingState.RECORDED_AVAILABLE
        logger.info("Recording ready: %.1fs, %d bytes", artifact.duration, len(artifact.data))
        self._notifier.show("Recording ready for download!", 3000)
        return artifact

    def save(self, directory: str | Path) -> Path:
        """Write the available artifact into ``directory`` and return its path."""

        artifact = self.artifact
        if artifact is None:
            raise RecordingUnavailable("No recording is available to save.")
        target_dir = Path(directory).expanduser()
        path = target_dir / artifact_filename(artifact)
        try:
            target_dir.mkdir(parents=True, exist_ok=True)
            path.write_bytes(artifact.data)
        except OSError as exc:
            raise StorageError(f"Unable to save recording to {path}: {exc}") from exc
        self.mark_downloaded()
        logger.info("Recording saved to %s", path)
        return path

    def mark_downloaded(self) -> None:
        if self.state is RecordingState.RECORDED_AVAILABLE:
            self.state = RecordingState.IDLE
            self._notifier.show("Download started.", 2000)

    def release(self) -> None:
        self.artifact = None
        if self.state is RecordingState.RECORDED_AVAILABLE:
            self.state = RecordingState.IDLE

    def teardown(self) -> None:
        if self.is_recording:
            detach, self._detach = self._detach, None
            if detach is not None:
                detach()
            self._chunks = []
            self.state = RecordingState.IDLE
        self.release()
