"""Error taxonomy for short link operations.

Every failure the core can report is a ``ShortLinkError`` subclass carrying the
HTTP status it maps to and a stable ``error_type`` used in response bodies.
"""

__all__ = [
    "ShortLinkError",
    "InvalidInput",
    "InvalidConfig",
    "NotFound",
    "Conflict",
    "StoreUnavailable",
    "StoreTimeout",
    "InternalError",
]


class ShortLinkError(Exception):
    """Base class for all structured short link failures."""

    status_code: int = 500
    error_type: str = "internal_error"

    def __init__(self, message: str = "Server error") -> None:
        super().__init__(message)
        self.message = message


class InvalidInput(ShortLinkError):
    """Malformed URL or id supplied by the caller."""

    status_code = 400
    error_type = "invalid_input"


class InvalidConfig(ShortLinkError):
    """Neither the configured nor the request-derived base URL is usable."""

    status_code = 500
    error_type = "invalid_config"


class NotFound(ShortLinkError):
    status_code = 404
    error_type = "not_found"


class Conflict(ShortLinkError):
    """Short code already taken in the store."""

    status_code = 409
    error_type = "conflict"


class StoreUnavailable(ShortLinkError):
    """The mapping store is disconnected, timed out or failed.

    ``reason`` is one of ``"disconnected"``, ``"timeout"`` or ``"error"``.
    """

    status_code = 503
    error_type = "store_unavailable"

    def __init__(self, message: str = "Store unavailable", reason: str = "error") -> None:
        super().__init__(message)
        self.reason = reason


class StoreTimeout(StoreUnavailable):
    def __init__(self, message: str = "Store operation timed out") -> None:
        super().__init__(message, reason="timeout")


class InternalError(ShortLinkError):
    status_code = 500
    error_type = "internal_error"
