# src/storepulse/modules/timing.py
"""Time-on-page milestones."""

from __future__ import annotations

import math
from typing import ClassVar

from storepulse.adapter.core import AdapterCore
from storepulse.adapter.page import PageContext, PageEventKind
from storepulse.clock import TimerHandle

TICK_MS = 10_000
TIME_MILESTONES_SECONDS: tuple[int, ...] = (30, 60, 120, 300, 600)


class TimeOnPageModule:
    """Emits time_milestone at 30s, 1m, 2m, 5m and 10m on a page.

    Counts in 10 second ticks from init or the last navigation.
    """

    name: ClassVar[str] = "time"

    def __init__(self) -> None:
        self._core: AdapterCore | None = None
        self._seconds = 0
        self._tick: TimerHandle | None = None

    def init(self, core: AdapterCore) -> None:
        self._core = core
        core.subscribe(PageEventKind.NAVIGATE, self._on_navigate)
        self._arm()

    @property
    def seconds_on_page(self) -> int:
        return self._seconds

    def _arm(self) -> None:
        assert self._core is not None
        self._tick = self._core.scheduler.call_later(TICK_MS, self._on_tick)

    def _on_navigate(self, page: PageContext) -> None:
        if self._tick is not None:
            self._tick.cancel()
        self._seconds = 0
        self._arm()

    def _on_tick(self) -> None:
        assert self._core is not None
        self._seconds += TICK_MS // 1000
        if self._seconds in TIME_MILESTONES_SECONDS:
            self._core.track(
                "time_milestone",
                {
                    "seconds_on_page": self._seconds,
                    "minutes_on_page": math.floor(self._seconds / 60 + 0.5),
                    "is_active": self._core.page.visible,
                },
            )
        # Nothing left to report after the last milestone
        if self._seconds < TIME_MILESTONES_SECONDS[-1]:
            self._arm()
        else:
            self._tick = None

    def close(self) -> None:
        if self._tick is not None:
            self._tick.cancel()
            self._tick = None
