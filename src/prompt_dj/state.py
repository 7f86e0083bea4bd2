"""Coarse playback and recording states."""

from __future__ import annotations

from enum import Enum


class PlaybackState(str, Enum):
    STOPPED = "stopped"
    LOADING = "loading"
    PLAYING = "playing"
    PAUSED = "paused"


class RecordingState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    RECORDED_AVAILABLE = "recorded_available"


# Playback states during which audio is expected to reach the output graph.
AUDIO_FLOW_STATES = frozenset({PlaybackState.LOADING, PlaybackState.PLAYING})
