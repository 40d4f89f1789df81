# src/storepulse/adapter/page.py
"""Page-event kinds and payloads delivered by the host into AdapterCore.

The host (a browser bridge, a headless session driver, a replay tool)
translates raw UI observations into these payloads and calls
AdapterCore.dispatch(kind, payload). The core never originates them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum

from storepulse.commerce.checkout import FormField


class PageEventKind(StrEnum):
    """UI and page lifecycle events the core subscribes to."""

    CLICK = "click"
    SUBMIT = "submit"
    SCROLL = "scroll"
    VISIBILITY_CHANGE = "visibility_change"
    POINTER_LEAVE = "pointer_leave"
    ONLINE = "online"
    OFFLINE = "offline"
    BEFORE_UNLOAD = "before_unload"
    ACTIVITY = "activity"
    # Adapter-level kinds
    NAVIGATE = "navigate"
    FORM_CHANGE = "form_change"
    CART_EVENT = "cart_event"


# Kinds that count as user activity for inactivity detection
ACTIVITY_KINDS: frozenset[PageEventKind] = frozenset(
    {
        PageEventKind.ACTIVITY,
        PageEventKind.CLICK,
        PageEventKind.SCROLL,
        PageEventKind.SUBMIT,
        PageEventKind.FORM_CHANGE,
    }
)


@dataclass(frozen=True, slots=True)
class PageContext:
    """What the host knows about the current page.

    Attributes:
        url: Absolute page URL
        referrer: Referrer URL, if any
        title: Document title
        step_markers: Checkout step markers found on the page (data-step etc.)
        form_fields: Form fields currently rendered
        visible: Whether the page is visible and focused
    """

    url: str
    referrer: str | None = None
    title: str | None = None
    step_markers: tuple[str, ...] = ()
    form_fields: tuple[FormField, ...] = ()
    visible: bool = True

    @property
    def field_names(self) -> tuple[str, ...]:
        return tuple(f.name for f in self.form_fields)


@dataclass(frozen=True, slots=True)
class ClickEvent:
    tag: str = ""
    text: str = ""
    classes: str = ""
    element_id: str = ""
    href: str = ""
    name: str = ""
    client_x: int = 0
    client_y: int = 0
    data_attributes: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class SubmitEvent:
    action: str = ""
    method: str = "get"
    field_count: int = 0
    has_email_field: bool = False


@dataclass(frozen=True, slots=True)
class ScrollEvent:
    scroll_y: float
    page_height: float
    viewport_height: float


@dataclass(frozen=True, slots=True)
class VisibilityChangeEvent:
    hidden: bool


@dataclass(frozen=True, slots=True)
class PointerLeaveEvent:
    client_y: int


@dataclass(frozen=True, slots=True)
class CartPlatformEvent:
    """A storefront-theme cart event (cart:updated, ajaxCart:updated, ...)."""

    name: str
    detail: dict[str, object] = field(default_factory=dict)
