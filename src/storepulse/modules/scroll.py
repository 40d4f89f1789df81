# src/storepulse/modules/scroll.py
"""Scroll-depth milestones."""

from __future__ import annotations

import math
from typing import ClassVar

from storepulse.adapter.core import AdapterCore
from storepulse.adapter.page import PageContext, PageEventKind, ScrollEvent
from storepulse.storage import Scope

SCROLL_MILESTONES: tuple[int, ...] = (25, 50, 75, 90)
SCROLL_HISTORY_KEY = "scroll_milestones"
SCROLL_HISTORY_CAP = 100


def scroll_percent(scroll: ScrollEvent) -> int:
    """Scrolled share of the scrollable height, 0-100."""
    scrollable = scroll.page_height - scroll.viewport_height
    if scrollable <= 0:
        return 100
    ratio = max(0.0, min(1.0, scroll.scroll_y / scrollable))
    return math.floor(ratio * 100 + 0.5)


class ScrollDepthModule:
    """Emits scroll_milestone once per milestone per page.

    A fast scroll can jump past several milestones in one event; each
    crossed milestone is emitted, lowest first. Navigation resets the depth.
    """

    name: ClassVar[str] = "scroll"

    def __init__(self) -> None:
        self._core: AdapterCore | None = None
        self._max_percent = 0
        self._reached: set[int] = set()

    def init(self, core: AdapterCore) -> None:
        self._core = core
        core.subscribe(PageEventKind.SCROLL, self._on_scroll)
        core.subscribe(PageEventKind.NAVIGATE, self._on_navigate)

    @property
    def max_percent(self) -> int:
        return self._max_percent

    def _on_navigate(self, page: PageContext) -> None:
        self._max_percent = 0
        self._reached.clear()

    def _on_scroll(self, scroll: ScrollEvent) -> None:
        assert self._core is not None
        percent = scroll_percent(scroll)
        if percent <= self._max_percent:
            return
        self._max_percent = percent

        for milestone in SCROLL_MILESTONES:
            if milestone > percent or milestone in self._reached:
                continue
            self._reached.add(milestone)
            data = {
                "scroll_percent": milestone,
                "scroll_depth": scroll.scroll_y,
                "page_height": scroll.page_height,
                "viewport_height": scroll.viewport_height,
            }
            self._core.track("scroll_milestone", data)
            self._remember(data)

    def _remember(self, data: dict[str, object]) -> None:
        assert self._core is not None
        storage = self._core.storage
        history = storage.get(SCROLL_HISTORY_KEY, Scope.SESSION, [])
        if not isinstance(history, list):
            history = []
        history.append({"timestamp": self._core.clock.now_ms(), "page": self._core.page.url, **data})
        storage.set(SCROLL_HISTORY_KEY, history[-SCROLL_HISTORY_CAP:], Scope.SESSION)
