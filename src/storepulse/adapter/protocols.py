# src/storepulse/adapter/protocols.py
"""Protocol definitions for instrumentation modules."""

from typing import TYPE_CHECKING, ClassVar, Protocol, runtime_checkable

if TYPE_CHECKING:
    from storepulse.adapter.core import AdapterCore


@runtime_checkable
class AdapterModule(Protocol):
    """An instrumentation module plugged into AdapterCore.

    Lifecycle:
        1. Instantiated with no arguments by the registry
        2. init(core) called exactly once by AdapterCore.init()
        3. Subscribes to page events and/or arms timers on the core

    Error handling:
        init() may raise; the core logs the failure and carries on with
        the remaining modules.
    """

    name: ClassVar[str]

    def init(self, core: "AdapterCore") -> None: ...
