"""Session lifecycle and playback orchestration."""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable, Sequence

from .config import ControllerSettings
from .decoder import SegmentDecoder
from .errors import BackendConnectionError, DecodeError
from .midi_input import ControlChange
from .notifications import LogNotifier, Notifier
from .output import AudioOutputGraph
from .prompts import FilteredPrompts, Prompt, PromptBoard
from .protocol import (
    AudioChunkMessage,
    ClosedMessage,
    ErrorMessage,
    RejectedPrompt,
    RejectedPromptsMessage,
    ServerMessage,
    StateMessage,
)
from .recording import RecordingArtifact, RecordingPipeline
from .scheduler import UNDERRUN, BufferScheduler, ScheduleDecision
from .session import Session, SessionFactory, websocket_session_factory
from .state import AUDIO_FLOW_STATES, PlaybackState
from .synchronizer import PromptWeightSynchronizer, SyncResult

logger = logging.getLogger(__name__)

__all__ = ["PromptDjController", "METER_INTERVAL"]

METER_INTERVAL = 1 / 60

FILTERED_MESSAGE = "Some prompts were filtered due to safety policies."
RECONNECT_FAILED_MESSAGE = "Connection failed. Please try again later."
UNDERRUN_MESSAGE = "Playback is catching up; the connection may be too slow."

_SERVER_STATES = {
    "buffering": PlaybackState.LOADING,
    "playing": PlaybackState.PLAYING,
    "paused": PlaybackState.PAUSED,
}


class PromptDjController:
    """Owns the prompt bank, the backend session and the playback state.

    All methods must run on one event loop. Inbound messages arrive through
    :meth:`handle_message`, one at a time, and are ignored once the session
    that produced them has been replaced.
    """

    def __init__(
        self,
        settings: ControllerSettings | None = None,
        *,
        board: PromptBoard | None = None,
        session_factory: SessionFactory | None = None,
        output: AudioOutputGraph | None = None,
        notifier: Notifier | None = None,
        decoder: SegmentDecoder | None = None,
        recorder: RecordingPipeline | None = None,
    ) -> None:
        self.settings = settings or ControllerSettings()
        self.board = board if board is not None else PromptBoard()
        self.filtered = FilteredPrompts()
        self.playback_state = PlaybackState.STOPPED
        self.connection_error = False
        self.session: Session | None = None
        self.audio_level = 0.0

        self.notifier: Notifier = notifier or LogNotifier()
        self.output = output or AudioOutputGraph(
            sample_rate=self.settings.sample_rate, channels=self.settings.channels
        )
        self.decoder = decoder or SegmentDecoder(sample_rate=self.output.sample_rate, channels=self.output.channels)
        self.scheduler = BufferScheduler(lookahead=self.settings.lookahead)
        self.synchronizer = PromptWeightSynchronizer(self, interval=self.settings.sync_interval)
        self.recorder = recorder or RecordingPipeline(
            self.output, self.notifier, formats=self.settings.recording_formats
        )
        self._session_factory = session_factory or websocket_session_factory(
            url=self.settings.backend_url,
            model=self.settings.model,
            api_key=self.settings.api_key,
            timeout=self.settings.connect_timeout,
        )
        self._meter_task: asyncio.Task[None] | None = None

    # ------------------------------------------------------------------
    # Helpers shared by the command and message paths
    # ------------------------------------------------------------------
    def notify(self, message: str, duration_ms: int = 3000) -> None:
        self.notifier.show(message, duration_ms)

    def prompt_snapshot(self) -> tuple[Prompt, ...]:
        return self.board.snapshot()

    def prompt_levels(self) -> dict[str, float]:
        """Per-prompt display level: the output level scaled by each weight."""

        return {prompt.prompt_id: self.audio_level * prompt.weight for prompt in self.board}

    async def _halt(self) -> None:
        self.playback_state = PlaybackState.STOPPED
        self.scheduler.reset()
        await self.recorder.stop()

    async def _fail(self, message: str, duration_ms: int = 5000) -> None:
        self.connection_error = True
        await self._halt()
        self.notify(message, duration_ms)

    async def _command_failed(self, action: str, exc: BaseException) -> None:
        logger.error("%s failed: %s", action, exc)
        await self._fail(f"Connection lost: {exc}")

    async def _discard_session(self) -> None:
        session, self.session = self.session, None
        if session is None:
            return
        try:
            await session.close()
        except Exception as exc:
            logger.warning("Error closing previous session: %s", exc)

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------
    async def connect(self) -> bool:
        await self._discard_session()
        self.playback_state = PlaybackState.LOADING
        self.connection_error = False
        try:
            session = await self._session_factory(self.handle_message)
        except (BackendConnectionError, OSError) as exc:
            logger.error("Failed to connect to the music session: %s", exc)
            await self._fail(f"Connection failed: {exc}")
            return False
        self.session = session
        self.playback_state = PlaybackState.STOPPED
        return True

    async def reconnect(self) -> bool:
        """Open a fresh session and push the current prompts to it."""

        if not await self.connect():
            return False
        await self.synchronizer.sync_now()
        return self.session is not None and not self.connection_error

    async def play(self) -> bool:
        if self.session is None or self.connection_error:
            if not await self.reconnect():
                self.notify(RECONNECT_FAILED_MESSAGE, 5000)
                return False

        session = self.session
        if session is None:
            self.notify(RECONNECT_FAILED_MESSAGE, 5000)
            return False
        # Resume after audio still queued from before a pause.
        self.scheduler.restart(self.output.current_time, not_before=self.output.queued_until)
        self.playback_state = PlaybackState.LOADING
        try:
            await session.play()
        except BackendConnectionError as exc:
            await self._command_failed("Play", exc)
            return False
        return True

    async def pause(self) -> None:
        if self.playback_state is PlaybackState.STOPPED:
            return
        self.playback_state = PlaybackState.PAUSED
        session = self.session
        if session is None:
            return
        try:
            await session.pause()
        except BackendConnectionError as exc:
            await self._command_failed("Pause", exc)

    async def stop(self) -> None:
        session = self.session
        self.output.flush()
        await self._halt()
        if session is None:
            return
        try:
            await session.stop()
        except BackendConnectionError as exc:
            await self._command_failed("Stop", exc)

    async def toggle_playback(self) -> None:
        if self.playback_state is PlaybackState.PLAYING:
            await self.pause()
        else:
            await self.play()

    # ------------------------------------------------------------------
    # Inbound messages
    # ------------------------------------------------------------------
    async def handle_message(self, session: Session, message: ServerMessage) -> None:
        if session is not self.session:
            logger.debug("Ignoring %s from a superseded session", type(message).__name__)
            return

        if self.filtered and isinstance(message, (AudioChunkMessage, StateMessage)):
            # A message without rejections means none are in force.
            logger.info("Prompts no longer reported as filtered: %s", ", ".join(sorted(self.filtered)))
            self.filtered.clear()

        if isinstance(message, AudioChunkMessage):
            await self._on_audio(session, message)
        elif isinstance(message, StateMessage):
            await self._on_state(message)
        elif isinstance(message, RejectedPromptsMessage):
            self._on_rejected(message)
        elif isinstance(message, ErrorMessage):
            logger.error("Session error: %s", message.message)
            await self._fail(f"Session Error: {message.message}")
        elif isinstance(message, ClosedMessage):
            await self._on_closed(message)
        else:
            logger.warning("Unhandled message %r", message)

    async def _on_state(self, message: StateMessage) -> None:
        if message.state == "stopped":
            await self._halt()
            return
        self.playback_state = _SERVER_STATES[message.state]

    def _resolve_rejections(self, entries: Sequence[RejectedPrompt]) -> dict[str, str]:
        resolved: dict[str, str] = {}
        for entry in entries:
            if entry.prompt_id is not None and entry.prompt_id in self.board:
                prompt = self.board.get(entry.prompt_id)
                resolved[prompt.prompt_id] = entry.text if entry.text is not None else prompt.text
                continue
            needle = entry.text if entry.text is not None else entry.prompt_id
            matches = [prompt for prompt in self.board if prompt.text == needle]
            if not matches:
                logger.info("Backend rejected an unknown prompt: %r", needle)
            for prompt in matches:
                resolved[prompt.prompt_id] = prompt.text
        return resolved

    def _on_rejected(self, message: RejectedPromptsMessage) -> None:
        self.filtered.replace(self._resolve_rejections(message.prompts))
        if message.prompts:
            for entry in message.prompts:
                logger.info("Prompt filtered: %s (%s)", entry.prompt_id or entry.text, entry.reason or "no reason")
            self.notify(FILTERED_MESSAGE, 5000)

    async def _on_audio(self, session: Session, message: AudioChunkMessage) -> None:
        if self.playback_state not in AUDIO_FLOW_STATES:
            return
        try:
            segment = await self.decoder.decode(message)
        except DecodeError as exc:
            logger.warning("Dropping undecodable audio chunk: %s", exc)
            return
        # The session or state may have changed while decoding.
        if session is not self.session or self.playback_state not in AUDIO_FLOW_STATES:
            return
        self._schedule(segment)

    def _schedule(self, segment) -> ScheduleDecision:
        decision = self.scheduler.schedule(segment.duration, self.output.current_time)
        self.output.schedule_segment(segment, decision.start_time)
        if decision.reason == UNDERRUN:
            logger.warning("Audio underrun, %.3fs behind", decision.lag)
            if self.scheduler.should_report_underrun():
                self.notify(UNDERRUN_MESSAGE, 4000)
        return decision

    async def _on_closed(self, message: ClosedMessage) -> None:
        self.session = None
        await self._halt()
        if message.clean:
            logger.info("Session closed")
            return
        logger.error("Session closed unexpectedly: %s", message.reason or "no reason given")
        self.connection_error = True
        self.notify("Connection lost. Press play or reconnect to resume.", 5000)

    # ------------------------------------------------------------------
    # Prompt editing surface
    # ------------------------------------------------------------------
    async def update_prompt(
        self,
        prompt_id: str,
        *,
        text: str | None = None,
        weight: float | None = None,
        cc: int | None = None,
        channel: int | None = None,
        color: str | None = None,
    ) -> SyncResult:
        self.board.update(prompt_id, text=text, weight=weight, cc=cc, channel=channel, color=color)
        return await self.synchronizer.request_sync()

    async def apply_control_change(self, change: ControlChange) -> SyncResult | None:
        learning = self.board.learning
        changed = self.board.apply_control_change(change)
        if learning is not None:
            logger.info("Bound CC %d (channel %d) to %s", change.control, change.channel, learning)
            return None
        if not changed:
            return None
        return await self.synchronizer.request_sync()

    async def load_prompts(self, prompts: Iterable[Prompt]) -> SyncResult:
        """Overwrite prompts in the bank and synchronize immediately."""

        touched = self.board.replace_all(list(prompts))
        logger.info("Loaded %d prompt(s)", len(touched))
        return await self.synchronizer.sync_now()

    # ------------------------------------------------------------------
    # Metering and recording
    # ------------------------------------------------------------------
    def start_metering(self, interval: float = METER_INTERVAL) -> None:
        if self._meter_task is not None and not self._meter_task.done():
            return

        async def _meter() -> None:
            while True:
                self.audio_level = self.output.level()
                await asyncio.sleep(interval)

        self._meter_task = asyncio.get_running_loop().create_task(_meter(), name="prompt-dj-meter")

    async def stop_metering(self) -> None:
        task, self._meter_task = self._meter_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        self.audio_level = 0.0

    async def toggle_recording(self) -> RecordingArtifact | None:
        if self.recorder.is_recording:
            return await self.recorder.stop()
        self.recorder.start(self.playback_state)
        return None

    async def teardown(self) -> None:
        self.synchronizer.cancel()
        await self.stop_metering()
        await self._discard_session()
        self.playback_state = PlaybackState.STOPPED
        self.scheduler.reset()
        self.recorder.teardown()
        self.output.close()
