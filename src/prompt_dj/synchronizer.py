"""Reconcile the prompt bank with the backend under a throttle."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterable

from .prompts import FilteredPrompts, Prompt, WeightedPrompt
from .state import AUDIO_FLOW_STATES
from .throttle import TrailingThrottle

if TYPE_CHECKING:
    from .controller import PromptDjController

logger = logging.getLogger(__name__)

__all__ = ["SyncResult", "PromptWeightSynchronizer", "EMPTY_PROMPTS_MESSAGE"]

EMPTY_PROMPTS_MESSAGE = "There needs to be one active prompt to play."


@dataclass(frozen=True)
class SyncResult:
    """Outcome of one synchronization cycle."""

    sent: tuple[WeightedPrompt, ...] = ()
    blocked: frozenset[str] = field(default_factory=frozenset)
    paused: bool = False
    skipped: bool = False
    error: str | None = None

    @property
    def delivered(self) -> bool:
        return bool(self.sent) and not self.skipped and self.error is None


class PromptWeightSynchronizer:
    def __init__(self, controller: "PromptDjController", *, interval: float = 0.5) -> None:
        self._controller = controller
        self._throttle: TrailingThrottle[SyncResult] = TrailingThrottle(self._sync, interval)

    @property
    def throttle(self) -> TrailingThrottle[SyncResult]:
        return self._throttle

    @property
    def last_result(self) -> SyncResult | None:
        return self._throttle.last_result

    @staticmethod
    def outgoing(
        snapshot: Iterable[Prompt], filtered: FilteredPrompts
    ) -> tuple[tuple[WeightedPrompt, ...], frozenset[str]]:
        """Split ``snapshot`` into the prompts to send and the ids held back by the filter."""

        sent: list[WeightedPrompt] = []
        blocked: set[str] = set()
        for prompt in snapshot:
            if not prompt.is_active:
                continue
            if filtered.blocks(prompt):
                blocked.add(prompt.prompt_id)
                continue
            sent.append(WeightedPrompt(prompt_id=prompt.prompt_id, text=prompt.text, weight=prompt.weight))
        return tuple(sent), frozenset(blocked)

    async def request_sync(self) -> SyncResult:
        """Throttled sync; the snapshot is taken when the sync actually runs."""

        return await self._throttle()

    async def sync_now(self) -> SyncResult:
        return await self._sync()

    def cancel(self) -> None:
        self._throttle.cancel()

    async def _sync(self) -> SyncResult:
        controller = self._controller
        prompts, blocked = self.outgoing(controller.prompt_snapshot(), controller.filtered)

        if not prompts:
            if controller.playback_state in AUDIO_FLOW_STATES:
                controller.notify(EMPTY_PROMPTS_MESSAGE, 3000)
                await controller.pause()
                return SyncResult(blocked=blocked, paused=True)
            return SyncResult(blocked=blocked, skipped=True)

        session = controller.session
        if session is None or controller.connection_error:
            logger.debug("No usable session; prompt update deferred")
            return SyncResult(sent=prompts, blocked=blocked, skipped=True)

        try:
            await session.update_prompts(prompts)
        except Exception as exc:
            logger.warning("Failed to set prompts: %s", exc)
            controller.notify(f"Error setting prompts: {exc}", 4000)
            await controller.pause()
            return SyncResult(sent=prompts, blocked=blocked, paused=True, error=str(exc))

        logger.debug("Sent %d prompt(s), %d blocked", len(prompts), len(blocked))
        return SyncResult(sent=prompts, blocked=blocked)
