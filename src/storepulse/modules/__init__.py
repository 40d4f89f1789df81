# src/storepulse/modules/__init__.py
"""Built-in instrumentation modules.

Available modules:
- interactions: click classification, form submits, visibility changes
- scroll: 25/50/75/90 percent scroll milestones
- time: 30s to 10m time-on-page milestones
- cart_poller: cart snapshot polling and storefront cart events
- checkout: checkout funnel observation and recovery detection
- abandonment: unload, exit-intent and inactivity abandonment triggers

Plugin registration:
    Modules are registered via the storepulse_get_modules hook.
    BuiltinModulesPlugin registers all built-in modules.
"""

from storepulse.adapter.hookspecs import hookimpl
from storepulse.modules.abandonment import AbandonmentMonitor
from storepulse.modules.cart_poller import CartPollerModule
from storepulse.modules.checkout import CheckoutObserver
from storepulse.modules.interactions import InteractionsModule
from storepulse.modules.scroll import ScrollDepthModule
from storepulse.modules.timing import TimeOnPageModule


class BuiltinModulesPlugin:
    """Plugin that registers built-in instrumentation modules."""

    @hookimpl
    def storepulse_get_modules(self) -> list[type]:
        """Return built-in module classes."""
        return [
            InteractionsModule,
            ScrollDepthModule,
            TimeOnPageModule,
            CartPollerModule,
            CheckoutObserver,
            AbandonmentMonitor,
        ]


__all__ = [
    "AbandonmentMonitor",
    "BuiltinModulesPlugin",
    "CartPollerModule",
    "CheckoutObserver",
    "InteractionsModule",
    "ScrollDepthModule",
    "TimeOnPageModule",
]
