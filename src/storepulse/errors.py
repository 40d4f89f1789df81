# src/storepulse/errors.py
"""Library exceptions.

Only configuration and registration problems raise. Runtime failures
(transport, storage, consent timeouts, module init) are logged and degrade
instead, so nothing in the tracking path can break the host storefront.
"""


class StorePulseError(Exception):
    """Base class for all storepulse exceptions."""


class TrackerConfigError(StorePulseError):
    """Raised when tracker settings cannot produce a working tracker.

    Attributes:
        field: Name of the offending setting
        message: Human-readable error description
    """

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        self.message = message
        super().__init__(f"Invalid setting '{field}': {message}")


class ModuleRegistrationError(StorePulseError):
    """Raised when instrumentation module discovery or registration fails.

    Attributes:
        module_name: Name of the module (or plugin) that failed
        message: Human-readable error description
    """

    def __init__(self, module_name: str, message: str) -> None:
        self.module_name = module_name
        self.message = message
        super().__init__(f"Module '{module_name}' failed: {message}")


class DeliveryError(StorePulseError):
    """Raised by a transport when a batch was not accepted by the endpoint.

    Never escapes the event queue: the queue converts it into a write to the
    failed-delivery store.

    Attributes:
        status_code: HTTP status if a response was received, else None
    """

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)
