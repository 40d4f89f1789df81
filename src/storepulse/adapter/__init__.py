# src/storepulse/adapter/__init__.py
"""Platform adapter: module host, page-event bus and module discovery.

Usage:
    from storepulse.adapter import AdapterCore, PageEventKind, build_modules

    core = AdapterCore(scheduler=scheduler, storage=storage, settings=settings)
    core.init(build_modules(settings.modules))
"""

from storepulse.adapter.core import AdapterCore
from storepulse.adapter.hookspecs import hookimpl
from storepulse.adapter.page import (
    CartPlatformEvent,
    ClickEvent,
    PageContext,
    PageEventKind,
    PointerLeaveEvent,
    ScrollEvent,
    SubmitEvent,
    VisibilityChangeEvent,
)
from storepulse.adapter.protocols import AdapterModule
from storepulse.adapter.registry import ModuleRegistry, build_modules, discover_modules

__all__ = [
    "AdapterCore",
    "AdapterModule",
    "CartPlatformEvent",
    "ClickEvent",
    "ModuleRegistry",
    "PageContext",
    "PageEventKind",
    "PointerLeaveEvent",
    "ScrollEvent",
    "SubmitEvent",
    "VisibilityChangeEvent",
    "build_modules",
    "discover_modules",
    "hookimpl",
]
