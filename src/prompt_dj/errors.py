"""Exception types shared across the Prompt DJ controller."""

from __future__ import annotations


class PromptDjError(Exception):
    """Base class for controller failures."""


class BackendConnectionError(PromptDjError, ConnectionError):
    """Raised when connecting to, or commanding, the generation backend fails."""


class ProtocolError(PromptDjError, ValueError):
    """Raised when an inbound frame does not match the wire protocol."""


class DecodeError(PromptDjError, ValueError):
    """Raised when an audio payload cannot be turned into a playable segment."""


class RecordingUnavailable(PromptDjError, RuntimeError):
    """Raised when no recording format is usable or the recorder cannot start."""


class StorageError(PromptDjError, OSError):
    """Raised when an artifact or preset file cannot be written."""


class UnderrunWarning(RuntimeWarning):
    """Emitted when the playback schedule has fallen behind the output clock."""
