"""Environment-driven settings for the controller."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

BACKEND_URL_ENV_VAR = "PROMPT_DJ_BACKEND_URL"
API_KEY_ENV_VAR = "PROMPT_DJ_API_KEY"
MODEL_ENV_VAR = "PROMPT_DJ_MODEL"
LOOKAHEAD_ENV_VAR = "PROMPT_DJ_LOOKAHEAD"
SYNC_INTERVAL_ENV_VAR = "PROMPT_DJ_SYNC_INTERVAL"
SAMPLE_RATE_ENV_VAR = "PROMPT_DJ_SAMPLE_RATE"
CHANNELS_ENV_VAR = "PROMPT_DJ_CHANNELS"
CONNECT_TIMEOUT_ENV_VAR = "PROMPT_DJ_CONNECT_TIMEOUT"
RECORDING_FORMATS_ENV_VAR = "PROMPT_DJ_RECORDING_FORMATS"
PRESETS_PATH_ENV_VAR = "PROMPT_DJ_PRESETS_PATH"
LOG_LEVEL_ENV_VAR = "PROMPT_DJ_LOG_LEVEL"

__all__ = [
    "BACKEND_URL_ENV_VAR",
    "API_KEY_ENV_VAR",
    "MODEL_ENV_VAR",
    "LOOKAHEAD_ENV_VAR",
    "SYNC_INTERVAL_ENV_VAR",
    "SAMPLE_RATE_ENV_VAR",
    "CHANNELS_ENV_VAR",
    "CONNECT_TIMEOUT_ENV_VAR",
    "RECORDING_FORMATS_ENV_VAR",
    "PRESETS_PATH_ENV_VAR",
    "LOG_LEVEL_ENV_VAR",
    "ControllerSettings",
    "load_settings",
    "configure_logging",
]

DEFAULT_BACKEND_URL = "ws://localhost:8765/music"
DEFAULT_MODEL = "lyria-realtime-exp"
DEFAULT_RECORDING_FORMATS = ("webm-opus", "ogg-opus", "webm", "wav")
_DEFAULT_PRESETS_PATH = Path.home() / ".prompt_dj" / "presets.json"

MIN_SYNC_INTERVAL = 0.2
MAX_SYNC_INTERVAL = 0.5

_LOG_FORMAT = "[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s"


@dataclass(frozen=True)
class ControllerSettings:
    """Runtime configuration for a :class:`~prompt_dj.controller.PromptDjController`."""

    backend_url: str = DEFAULT_BACKEND_URL
    api_key: str | None = None
    model: str = DEFAULT_MODEL
    lookahead: float = 1.0
    sync_interval: float = 0.5
    sample_rate: int = 48000
    channels: int = 2
    connect_timeout: float = 10.0
    recording_formats: tuple[str, ...] = field(default=DEFAULT_RECORDING_FORMATS)
    presets_path: Path = _DEFAULT_PRESETS_PATH
    log_level: str = "INFO"


def _read(environ: Mapping[str, str], name: str) -> str:
    return environ.get(name, "").strip()


def _parse_float(environ: Mapping[str, str], name: str, default: float, *, low: float, high: float) -> float:
    raw = _read(environ, name)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return max(low, min(high, value))


def _parse_int(environ: Mapping[str, str], name: str, default: int, *, low: int, high: int) -> int:
    raw = _read(environ, name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return max(low, min(high, value))


def load_settings(environ: Mapping[str, str] | None = None) -> ControllerSettings:
    """Build settings from ``environ`` (defaults to :data:`os.environ`).

    Unparseable values fall back to their defaults and numeric values are
    clamped into a usable range rather than rejected.
    """

    env = os.environ if environ is None else environ

    formats = tuple(part.strip().lower() for part in _read(env, RECORDING_FORMATS_ENV_VAR).split(",") if part.strip())
    presets_raw = _read(env, PRESETS_PATH_ENV_VAR)
    log_level = (_read(env, LOG_LEVEL_ENV_VAR) or "INFO").upper()
    if not isinstance(logging.getLevelName(log_level), int):
        log_level = "INFO"

    return ControllerSettings(
        backend_url=_read(env, BACKEND_URL_ENV_VAR) or DEFAULT_BACKEND_URL,
        api_key=_read(env, API_KEY_ENV_VAR) or None,
        model=_read(env, MODEL_ENV_VAR) or DEFAULT_MODEL,
        lookahead=_parse_float(env, LOOKAHEAD_ENV_VAR, 1.0, low=0.0, high=10.0),
        sync_interval=_parse_float(
            env, SYNC_INTERVAL_ENV_VAR, 0.5, low=MIN_SYNC_INTERVAL, high=MAX_SYNC_INTERVAL
        ),
        sample_rate=_parse_int(env, SAMPLE_RATE_ENV_VAR, 48000, low=8000, high=192000),
        channels=_parse_int(env, CHANNELS_ENV_VAR, 2, low=1, high=2),
        connect_timeout=_parse_float(env, CONNECT_TIMEOUT_ENV_VAR, 10.0, low=0.5, high=120.0),
        recording_formats=formats or DEFAULT_RECORDING_FORMATS,
        presets_path=Path(presets_raw).expanduser() if presets_raw else _DEFAULT_PRESETS_PATH,
        log_level=log_level,
    )


def configure_logging(level: str | int = "INFO") -> None:
    """Attach a single console handler to the ``prompt_dj`` logger."""

    logger = logging.getLogger("prompt_dj")
    logger.setLevel(level)
    if logger.handlers:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(_LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    logger.addHandler(handler)
