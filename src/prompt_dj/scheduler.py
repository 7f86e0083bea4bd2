"""Gapless placement of decoded segments on the output timeline."""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass

from .errors import UnderrunWarning

logger = logging.getLogger(__name__)

__all__ = ["ScheduleDecision", "BufferScheduler"]

LOOKAHEAD = "lookahead"
CONTIGUOUS = "contiguous"
UNDERRUN = "underrun"


@dataclass(frozen=True)
class ScheduleDecision:
    start_time: float
    end_time: float
    reason: str
    lag: float = 0.0


class BufferScheduler:
    """Keep a timeline cursor so consecutive segments abut exactly.

    The first segment after :meth:`restart` or :meth:`reset` is placed
    ``lookahead`` seconds ahead of the clock to build a cushion. After that,
    each segment starts where the previous one ended; if the cursor has fallen
    behind the clock the segment starts immediately and the gap is counted as
    an underrun.
    """

    def __init__(self, *, lookahead: float = 1.0, underrun_notify_threshold: int = 3) -> None:
        self.lookahead = max(0.0, float(lookahead))
        self.underrun_notify_threshold = max(1, int(underrun_notify_threshold))
        self.next_start_time: float | None = None
        self.consecutive_underruns = 0
        self.total_underruns = 0
        self._armed = True
        self._streak_reported = False

    def restart(self, now: float, *, not_before: float | None = None) -> None:
        """Arm the lookahead and place the cursor ``lookahead`` seconds after ``now``.

        The cursor never moves before ``not_before`` or before audio already
        scheduled from an earlier run, so resuming after a pause queues new
        segments behind the old ones.
        """

        start = now + self.lookahead
        for floor in (not_before, self.next_start_time):
            if floor is not None and floor > start:
                start = floor
        self.next_start_time = start
        self._armed = True
        self._clear_streak()

    def reset(self) -> None:
        self.next_start_time = None
        self._armed = True
        self._clear_streak()

    def _clear_streak(self) -> None:
        self.consecutive_underruns = 0
        self._streak_reported = False

    def schedule(self, duration: float, now: float) -> ScheduleDecision:
        cursor = self.next_start_time
        lag = 0.0
        if self._armed:
            self._armed = False
            if cursor is None or cursor < now:
                cursor = now + self.lookahead
            reason = LOOKAHEAD
            self._clear_streak()
        elif cursor is None or cursor < now:
            lag = 0.0 if cursor is None else now - cursor
            cursor = now
            reason = UNDERRUN
            self.consecutive_underruns += 1
            self.total_underruns += 1
            warnings.warn(
                f"Playback fell {lag:.3f}s behind the output clock; resuming immediately.",
                UnderrunWarning,
                stacklevel=2,
            )
        else:
            reason = CONTIGUOUS
            self._clear_streak()

        start = cursor
        self.next_start_time = start + max(0.0, float(duration))
        return ScheduleDecision(start_time=start, end_time=self.next_start_time, reason=reason, lag=lag)

    def should_report_underrun(self) -> bool:
        """Return ``True`` once per streak when the streak reaches the threshold."""

        if self._streak_reported or self.consecutive_underruns < self.underrun_notify_threshold:
            return False
        self._streak_reported = True
        return True
