"""Shared enums for the short link service.

This module defines all status and state enums used across the codebase.
Using enums instead of string literals provides type safety and prevents typos.
"""

from enum import StrEnum

__all__ = ["ConnectionState", "HealthStatus", "RequestStatus", "StoreOperation"]


class ConnectionState(StrEnum):
    """Observable state of the mapping store connection."""

    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    CONNECTING = "connecting"
    DISCONNECTING = "disconnecting"


class HealthStatus(StrEnum):
    """Health check status values."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"

    @classmethod
    def from_connection(cls, state: ConnectionState) -> "HealthStatus":
        return cls.HEALTHY if state is ConnectionState.CONNECTED else cls.DEGRADED


class RequestStatus(StrEnum):
    """Request status values for metrics and logging."""

    SUCCESS = "success"
    VALIDATION_ERROR = "validation_error"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    UNAVAILABLE = "unavailable"
    ERROR = "error"


class StoreOperation(StrEnum):
    """Operation classes used by the availability guard to pick a deadline."""

    LOOKUP = "lookup"
    WRITE = "write"
    SCAN = "scan"
