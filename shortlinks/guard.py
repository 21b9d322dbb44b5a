"""Availability guard around every mapping store call.

Flow Diagram — AvailabilityGuard.run()
======================================
::
    ┌─────────────┐
    │ run(op,     │
    │ func, args) │
    └──────┬──────┘
           ▼
    ┌─────────────┐  NO   ┌──────────────────────────┐
    │ CONNECTED?  │ ────▶ │ StoreUnavailable         │
    └──────┬──────┘       │ (reason="disconnected")  │
       YES │              │ func is never called      │
           ▼              └──────────────────────────┘
    ┌─────────────┐
    │ wait_for(   │── deadline ──▶ StoreTimeout
    │ func(*args),│── driver/db ──▶ StoreUnavailable
    │ timeout[op])│── ShortLinkError ──▶ re-raised as is
    └──────┬──────┘── anything else ──▶ InternalError (logged)
           ▼
        result

Key Behaviours
===============
- The guard never retries. Reconnection belongs to ``ConnectionSupervisor``.
- Deadlines are per operation class: lookups, writes and scans.
- A call abandoned on timeout may still complete in the database; its result
  is discarded.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Optional, TypeVar

from prometheus_client import Counter, Histogram
from sqlalchemy.exc import SQLAlchemyError

from shortlinks.config import Settings
from shortlinks.enums import ConnectionState, StoreOperation
from shortlinks.exceptions import InternalError, ShortLinkError, StoreTimeout, StoreUnavailable

__all__ = ["AvailabilityGuard"]

T = TypeVar("T")

STORE_CALLS_TOTAL = Counter(
    "shortlinks_store_calls_total",
    "Guarded mapping store calls by operation class and outcome",
    ["operation", "outcome"],
)
STORE_CALL_DURATION = Histogram(
    "shortlinks_store_call_duration_seconds",
    "Duration of guarded mapping store calls",
    ["operation"],
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 15.0],
)


class AvailabilityGuard:
    def __init__(
        self,
        connection,
        settings: Settings,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._connection = connection
        self._logger = logger or logging.getLogger("shortlinks")
        self._timeouts = {
            StoreOperation.LOOKUP: settings.STORE_LOOKUP_TIMEOUT_SECONDS,
            StoreOperation.WRITE: settings.STORE_WRITE_TIMEOUT_SECONDS,
            StoreOperation.SCAN: settings.STORE_SCAN_TIMEOUT_SECONDS,
        }

    def timeout_for(self, operation: StoreOperation) -> float:
        return self._timeouts[operation]

    async def run(
        self,
        operation: StoreOperation,
        func: Callable[..., Awaitable[T]],
        *args,
        label: Optional[str] = None,
    ) -> T:
        """Call ``func(*args)`` under the guard.

        Raises:
            StoreUnavailable: Store disconnected or failed.
            StoreTimeout: Deadline for the operation class expired.
            InternalError: Unanticipated fault.
        """
        name = label or getattr(func, "__name__", "store_call")

        if self._connection.state is not ConnectionState.CONNECTED:
            STORE_CALLS_TOTAL.labels(operation=operation.value, outcome="disconnected").inc()
            self._logger.warning(f"Store {self._connection.state}; skipping {name}")
            raise StoreUnavailable("Database is not connected", reason="disconnected")

        timeout = self._timeouts[operation]
        start_time = time.perf_counter()
        try:
            result = await asyncio.wait_for(func(*args), timeout=timeout)
        except asyncio.TimeoutError as exc:
            STORE_CALLS_TOTAL.labels(operation=operation.value, outcome="timeout").inc()
            self._logger.error(f"Store call {name} timed out after {timeout:.1f}s")
            raise StoreTimeout("Database operation timed out") from exc
        except ShortLinkError:
            STORE_CALLS_TOTAL.labels(operation=operation.value, outcome="rejected").inc()
            raise
        except (SQLAlchemyError, OSError, ConnectionError) as exc:
            STORE_CALLS_TOTAL.labels(operation=operation.value, outcome="error").inc()
            self._logger.error(f"Store call {name} failed: {exc}")
            raise StoreUnavailable("Database operation failed", reason="error") from exc
        except Exception as exc:
            STORE_CALLS_TOTAL.labels(operation=operation.value, outcome="internal_error").inc()
            self._logger.exception(f"Unexpected error in store call {name}")
            raise InternalError("Server error") from exc
        finally:
            STORE_CALL_DURATION.labels(operation=operation.value).observe(time.perf_counter() - start_time)

        STORE_CALLS_TOTAL.labels(operation=operation.value, outcome="success").inc()
        return result
