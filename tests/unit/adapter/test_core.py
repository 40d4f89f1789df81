# tests/unit/adapter/test_core.py
"""Tests for AdapterCore module hosting and the page-event bus.

Tests cover:
- init() runs each module once and isolates failing modules
- close() stops modules and drops subscriptions
- track() funnels to the sink and survives sink failures
- dispatch() ordering, isolation and visibility bookkeeping
"""

from typing import Any, ClassVar

import pytest

from storepulse.adapter.core import AdapterCore
from storepulse.adapter.page import PageContext, PageEventKind, VisibilityChangeEvent
from storepulse.clock import ManualScheduler
from storepulse.config import TrackerSettings
from storepulse.errors import ModuleRegistrationError
from storepulse.storage import Storage


class CountingModule:
    name: ClassVar[str] = "counting"

    def __init__(self) -> None:
        self.init_calls = 0
        self.closed = False

    def init(self, core: AdapterCore) -> None:
        self.init_calls += 1
        core.track("module_ready", {"module": self.name})

    def close(self) -> None:
        self.closed = True


class BrokenModule:
    name: ClassVar[str] = "broken"

    def init(self, core: AdapterCore) -> None:
        raise RuntimeError("cannot start")


class PlainModule:
    name: ClassVar[str] = "plain"

    def init(self, core: AdapterCore) -> None:
        pass


class CountingSource:
    def __init__(self) -> None:
        self.fetches = 0

    async def fetch_cart(self) -> dict[str, Any] | None:
        self.fetches += 1
        return {"item_count": 1, "total_price": 100}


@pytest.fixture
def core(scheduler: ManualScheduler, storage: Storage, tracker_settings: TrackerSettings, sink: Any) -> AdapterCore:
    return AdapterCore(
        scheduler=scheduler,
        storage=storage,
        settings=tracker_settings,
        page=PageContext(url="https://shop.example.com/"),
        sink=sink,
    )


# =============================================================================
# Module lifecycle
# =============================================================================


class TestModuleLifecycle:
    """Registration, init and close."""

    def test_init_runs_each_module_once(self, core: AdapterCore) -> None:
        module = CountingModule()

        assert core.init([module]) == ["counting"]
        assert core.init([]) == []

        assert module.init_calls == 1
        assert core.initialized

    def test_failing_module_is_isolated(self, core: AdapterCore, sink: Any) -> None:
        counting = CountingModule()

        ready = core.init([BrokenModule(), counting, PlainModule()])

        assert ready == ["counting", "plain"]
        assert core.failed_modules == ["broken"]
        assert sink.types == ["module_ready"]

    def test_duplicate_registration_rejected(self, core: AdapterCore) -> None:
        core.register(CountingModule())
        with pytest.raises(ModuleRegistrationError, match="already registered"):
            core.register(CountingModule())

    def test_preregistered_modules_initialized(self, core: AdapterCore) -> None:
        module = CountingModule()
        core.register(module)

        core.init()

        assert module.init_calls == 1
        assert core.registry.names == ["counting"]

    def test_close_stops_modules_and_clears_handlers(self, core: AdapterCore) -> None:
        module = CountingModule()
        core.init([module, PlainModule()])
        core.subscribe(PageEventKind.CLICK, lambda _: None)

        core.close()

        assert module.closed
        assert core.dispatch(PageEventKind.CLICK) == 0

    @pytest.mark.asyncio
    async def test_close_cancels_pending_cart_refreshes(
        self, scheduler: ManualScheduler, storage: Storage, tracker_settings: TrackerSettings, sink: Any
    ) -> None:
        source = CountingSource()
        core = AdapterCore(scheduler=scheduler, storage=storage, settings=tracker_settings, sink=sink, cart_source=source)
        core.router.route("/cart/add.js", {"product_id": 7})
        assert core.router.pending_refreshes == 1

        core.close()
        core.router.schedule_refresh("platform_event")
        scheduler.advance(60_000)
        await scheduler.drain()

        assert source.fetches == 0
        assert core.router.pending_refreshes == 0
        assert scheduler.pending_timers == 0

    def test_services_exposed(self, core: AdapterCore, scheduler: ManualScheduler, storage: Storage) -> None:
        assert core.scheduler is scheduler
        assert core.storage is storage
        assert core.clock is scheduler.clock
        assert core.start_time == scheduler.clock.now_ms()
        assert core.cart.source is None


# =============================================================================
# Event funnel
# =============================================================================


class TestTrack:
    """Module events reach the sink."""

    def test_track_copies_properties(self, core: AdapterCore, sink: Any) -> None:
        props = {"a": 1}
        core.track("x", props)
        props["a"] = 2

        assert sink.events == [("x", {"a": 1})]

    def test_no_sink_is_noop(self, scheduler: ManualScheduler, storage: Storage, tracker_settings: TrackerSettings) -> None:
        core = AdapterCore(scheduler=scheduler, storage=storage, settings=tracker_settings)
        core.track("x", {})

    def test_sink_failure_contained(self, core: AdapterCore) -> None:
        def broken(event_type: str, properties: dict[str, Any]) -> None:
            raise RuntimeError("sink down")

        core.attach_sink(broken)
        core.track("x", {})


# =============================================================================
# Page-event bus
# =============================================================================


class TestDispatch:
    """Subscription order, isolation and unsubscribe."""

    def test_handlers_run_in_subscription_order(self, core: AdapterCore) -> None:
        seen: list[str] = []
        core.subscribe(PageEventKind.CLICK, lambda p: seen.append(f"first:{p}"))
        core.subscribe(PageEventKind.CLICK, lambda p: seen.append(f"second:{p}"))

        assert core.dispatch(PageEventKind.CLICK, "payload") == 2
        assert seen == ["first:payload", "second:payload"]

    def test_failing_handler_does_not_block_others(self, core: AdapterCore) -> None:
        seen: list[str] = []

        def broken(_: Any) -> None:
            raise ValueError("bad handler")

        core.subscribe(PageEventKind.SCROLL, broken)
        core.subscribe(PageEventKind.SCROLL, lambda _: seen.append("ok"))

        assert core.dispatch(PageEventKind.SCROLL) == 1
        assert seen == ["ok"]

    def test_unsubscribe(self, core: AdapterCore) -> None:
        seen: list[str] = []
        unsubscribe = core.subscribe(PageEventKind.SUBMIT, lambda _: seen.append("x"))

        unsubscribe()
        unsubscribe()
        core.dispatch(PageEventKind.SUBMIT)

        assert seen == []

    def test_string_kind_accepted(self, core: AdapterCore) -> None:
        seen: list[Any] = []
        core.subscribe(PageEventKind.BEFORE_UNLOAD, seen.append)

        core.dispatch("before_unload", None)

        assert seen == [None]

    def test_unknown_kind_ignored(self, core: AdapterCore) -> None:
        seen: list[Any] = []
        core.subscribe(PageEventKind.CLICK, seen.append)

        assert core.dispatch("teleport", {"x": 1}) == 0
        assert seen == []

    def test_visibility_updates_page(self, core: AdapterCore) -> None:
        core.dispatch(PageEventKind.VISIBILITY_CHANGE, VisibilityChangeEvent(hidden=True))
        assert not core.page.visible

        core.dispatch(PageEventKind.VISIBILITY_CHANGE, VisibilityChangeEvent(hidden=False))
        assert core.page.visible

    def test_navigate_and_update_page(self, core: AdapterCore) -> None:
        seen: list[tuple[str, str]] = []
        core.subscribe(PageEventKind.NAVIGATE, lambda p: seen.append(("navigate", p.url)))
        core.subscribe(PageEventKind.FORM_CHANGE, lambda p: seen.append(("form", p.url)))
        cart = PageContext(url="https://shop.example.com/cart")

        core.navigate(cart)
        core.update_page(cart)

        assert core.page is cart
        assert seen == [("navigate", cart.url), ("form", cart.url)]
