# src/storepulse/adapter/hookspecs.py
"""pluggy hook specifications for instrumentation modules.

Modules register themselves with the adapter through these hooks. The
registry calls them while building the module set for a tracker.

Usage (implementing a module plugin):
    from storepulse.adapter.hookspecs import hookimpl

    class MyModulesPlugin:
        @hookimpl
        def storepulse_get_modules(self):
            return [WishlistModule]
"""

from typing import TYPE_CHECKING

import pluggy

if TYPE_CHECKING:
    from storepulse.adapter.protocols import AdapterModule

PROJECT_NAME = "storepulse"

hookspec = pluggy.HookspecMarker(PROJECT_NAME)

hookimpl = pluggy.HookimplMarker(PROJECT_NAME)


class StorePulseModuleSpec:
    """Hook specifications for instrumentation module plugins."""

    @hookspec
    def storepulse_get_modules(self) -> list[type["AdapterModule"]]:  # type: ignore[empty-body]
        """Return instrumentation module classes.

        Classes must be constructible without arguments and carry a
        class-level ``name``.

        Returns:
            List of module classes (not instances) implementing AdapterModule
        """
