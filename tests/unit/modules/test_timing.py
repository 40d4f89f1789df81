# tests/unit/modules/test_timing.py
"""Tests for time-on-page milestones."""

from typing import Any

import pytest

from storepulse.adapter.core import AdapterCore
from storepulse.adapter.page import PageContext, PageEventKind, VisibilityChangeEvent
from storepulse.clock import ManualScheduler
from storepulse.config import TrackerSettings
from storepulse.modules.timing import TimeOnPageModule
from storepulse.storage import Storage


@pytest.fixture
def module() -> TimeOnPageModule:
    return TimeOnPageModule()


@pytest.fixture
def core(
    scheduler: ManualScheduler, storage: Storage, tracker_settings: TrackerSettings, sink: Any, module: TimeOnPageModule
) -> AdapterCore:
    core = AdapterCore(
        scheduler=scheduler,
        storage=storage,
        settings=tracker_settings,
        page=PageContext(url="https://shop.example.com/"),
        sink=sink,
    )
    core.init([module])
    return core


class TestTimeMilestones:
    """time_milestone at 30s, 1m, 2m, 5m and 10m."""

    def test_first_milestone_at_30s(self, core: AdapterCore, sink: Any, scheduler: ManualScheduler) -> None:
        scheduler.advance(29_999)
        assert sink.of_type("time_milestone") == []

        scheduler.advance(1)

        [props] = sink.of_type("time_milestone")
        assert props == {"seconds_on_page": 30, "minutes_on_page": 1, "is_active": True}

    def test_all_milestones_then_stop(self, core: AdapterCore, sink: Any, scheduler: ManualScheduler) -> None:
        scheduler.advance(15 * 60 * 1000)

        milestones = sink.of_type("time_milestone")
        assert [p["seconds_on_page"] for p in milestones] == [30, 60, 120, 300, 600]
        assert [p["minutes_on_page"] for p in milestones] == [1, 1, 2, 5, 10]
        assert scheduler.pending_timers == 0

    def test_hidden_page_reported_inactive(self, core: AdapterCore, sink: Any, scheduler: ManualScheduler) -> None:
        core.dispatch(PageEventKind.VISIBILITY_CHANGE, VisibilityChangeEvent(hidden=True))
        scheduler.advance(30_000)

        assert sink.of_type("time_milestone")[0]["is_active"] is False

    def test_navigation_restarts_count(
        self, core: AdapterCore, sink: Any, scheduler: ManualScheduler, module: TimeOnPageModule
    ) -> None:
        scheduler.advance(25_000)
        core.navigate(PageContext(url="https://shop.example.com/cart"))
        assert module.seconds_on_page == 0

        scheduler.advance(29_999)
        assert sink.of_type("time_milestone") == []
        scheduler.advance(1)
        assert len(sink.of_type("time_milestone")) == 1

    def test_close_stops_ticking(self, core: AdapterCore, sink: Any, scheduler: ManualScheduler) -> None:
        core.close()
        scheduler.advance(60_000)

        assert sink.of_type("time_milestone") == []
