"""Link registry: the core short link operations.

This module orchestrates short code allocation, redirect resolution, updates,
removal and statistics on top of a ``MappingStore``, with every store call
passing through the ``AvailabilityGuard``.

Flow Diagram — create()
=======================
::
    ┌─────────────┐
    │ create(url, │
    │ base_url)   │
    └──────┬──────┘
           ▼
    ┌─────────────┐  invalid  ┌──────────────┐
    │ Validate URL│ ────────▶ │ InvalidInput │
    └──────┬──────┘           └──────────────┘
           ▼
    ┌─────────────┐  none     ┌──────────────┐
    │ Resolve base│ ────────▶ │ InvalidConfig│
    │ URL         │           └──────────────┘
    └──────┬──────┘
           ▼
    ┌─────────────┐  found    ┌──────────────┐
    │ Lookup by   │ ────────▶ │ Return       │
    │ original_url│           │ existing     │
    └──────┬──────┘           └──────────────┘
           ▼
    ┌─────────────┐  Conflict
    │ Generate +  │ ──┐ (retry up to SHORT_CODE_COLLISION_RETRIES)
    │ insert      │ ◀─┘
    └──────┬──────┘
           ▼
    base_url + "/" + short_code

Flow Diagram — resolve()
========================
::
    ┌─────────────┐      ┌─────────────┐      ┌──────────────────┐
    │ Lookup by   │ ───▶ │ Spawn click │ ───▶ │ Return original  │
    │ short_code  │      │ task        │      │ URL (redirect)   │
    └─────────────┘      └──────┬──────┘      └──────────────────┘
                                ▼
                      increment_clicks() under the guard;
                      failures are logged, never raised

Key Behaviours
===============
- Create is idempotent by URL value: an existing mapping is returned as is.
- Two concurrent creates for an unseen URL may both insert; the store does
  not enforce uniqueness on original_url and lookups return the oldest row.
- Click counting is best-effort and detached from the redirect.
- Every failure surfaces as a ShortLinkError subclass.

Classes:
    LinkRegistry:  Create, resolve, update, remove, get, list and stats.

Functions:
    parse_mapping_id():  Validate an external id.
    is_valid_url():  Absolute URL check shared by inputs and base URLs.
"""

import asyncio
import datetime
import logging
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Optional

import validators
from prometheus_client import Counter, Histogram

from shortlinks.codegen import generate_short_code
from shortlinks.config import Settings
from shortlinks.enums import RequestStatus, StoreOperation
from shortlinks.exceptions import (
    Conflict,
    InvalidConfig,
    InvalidInput,
    NotFound,
    ShortLinkError,
    StoreUnavailable,
)
from shortlinks.guard import AvailabilityGuard
from shortlinks.models import UrlMapping
from shortlinks.schemas import LinkStats, ShortLink
from shortlinks.store import MappingStore

__all__ = ["LinkRegistry", "parse_mapping_id", "is_valid_url"]

MAX_MAPPING_ID = 2**31 - 1

LINK_OPERATIONS_TOTAL = Counter(
    "shortlinks_operations_total",
    "Link registry operations by outcome",
    ["operation", "status"],
)
LINK_OPERATION_DURATION = Histogram(
    "shortlinks_operation_duration_seconds",
    "Time taken by link registry operations",
    ["operation"],
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)
SHORT_CODE_COLLISIONS_TOTAL = Counter(
    "shortlinks_short_code_collisions_total",
    "Generated short codes rejected by the store as duplicates",
)
CLICKS_LOST_TOTAL = Counter(
    "shortlinks_clicks_lost_total",
    "Click increments that could not be persisted",
)


def is_valid_url(value: object) -> bool:
    if not isinstance(value, str) or not value:
        return False
    return bool(validators.url(value, simple_host=True))


def parse_mapping_id(value: object) -> int:
    """Turn an external id into a store key.

    Raises:
        InvalidInput: If the id is not a positive integer in range.
    """
    if isinstance(value, bool):
        raise InvalidInput("Invalid URL id")
    if isinstance(value, int):
        key = value
    elif isinstance(value, str) and value.isascii() and value.isdigit():
        key = int(value)
    else:
        raise InvalidInput("Invalid URL id")
    if key <= 0 or key > MAX_MAPPING_ID:
        raise InvalidInput("Invalid URL id")
    return key


def _as_utc(value: datetime.datetime) -> datetime.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value


def _status_for(exc: BaseException) -> RequestStatus:
    if isinstance(exc, (InvalidInput, InvalidConfig)):
        return RequestStatus.VALIDATION_ERROR
    if isinstance(exc, NotFound):
        return RequestStatus.NOT_FOUND
    if isinstance(exc, Conflict):
        return RequestStatus.CONFLICT
    if isinstance(exc, StoreUnavailable):
        return RequestStatus.UNAVAILABLE
    return RequestStatus.ERROR


class LinkRegistry:
    """Core short link operations.

    One registry is shared by all requests. It holds no mapping state of its
    own; the only bookkeeping is the set of in-flight click tasks, kept so
    they are not garbage collected and can be drained at shutdown.
    """

    def __init__(
        self,
        store: MappingStore,
        guard: AvailabilityGuard,
        settings: Settings,
        logger: Optional[logging.Logger] = None,
        generator: Callable[[int], str] = generate_short_code,
    ) -> None:
        self._store = store
        self._guard = guard
        self._settings = settings
        self._logger = logger or logging.getLogger("shortlinks")
        self._generate = generator
        self._code_length = settings.SHORT_CODE_LENGTH
        self._collision_retries = max(settings.SHORT_CODE_COLLISION_RETRIES, 1)
        self._recent_window = datetime.timedelta(hours=settings.RECENT_WINDOW_HOURS)
        self._pending_clicks: set[asyncio.Task] = set()

    # ========================================================================
    # PUBLIC API METHODS
    # ========================================================================

    async def create(self, original_url: str, base_url: Optional[str] = None) -> ShortLink:
        """Return the mapping for ``original_url``, allocating one if needed.

        Args:
            original_url: Absolute URL to shorten.
            base_url: Scheme and host of the inbound request, used when no
                valid BASE_URL is configured.

        Raises:
            InvalidInput: ``original_url`` is not an absolute URL.
            InvalidConfig: No usable base URL.
            Conflict: Every generated code collided.
            StoreUnavailable: Store disconnected, failed or timed out.
        """
        with self._observe("create"):
            self._require_valid_url(original_url)
            base = self.resolve_base_url(base_url)

            existing = await self._guard.run(StoreOperation.LOOKUP, self._store.find_by_original_url, original_url)
            if existing is not None:
                self._logger.info(f"Reusing short code {existing.short_code} for {original_url}")
                return ShortLink.from_mapping(existing, base)

            mapping = await self._allocate(original_url)
            self._logger.info(f"Created short code {mapping.short_code} for {original_url}")
            return ShortLink.from_mapping(mapping, base)

    async def resolve(self, short_code: str) -> str:
        """Return the original URL for ``short_code`` and count the visit.

        The click increment runs as a detached task; its failure never
        reaches the caller.

        Raises:
            InvalidInput: Empty short code.
            NotFound: No mapping for the code.
            StoreUnavailable: The lookup could not be served.
        """
        with self._observe("resolve"):
            if not short_code:
                raise InvalidInput("Short code is required")

            mapping = await self._guard.run(StoreOperation.LOOKUP, self._store.find_by_short_code, short_code)
            if mapping is None:
                raise NotFound("URL not found")

            self._record_click(mapping)
            return mapping.original_url

    async def update(self, mapping_id: int | str, original_url: str, base_url: Optional[str] = None) -> ShortLink:
        """Point an existing mapping at a new URL.

        Only original_url is written, so clicks recorded by concurrent
        redirects are kept and a mapping removed concurrently stays removed.

        Raises:
            InvalidInput: Bad URL or id.
            NotFound: No mapping with that id.
            StoreUnavailable: Store disconnected, failed or timed out.
        """
        with self._observe("update"):
            self._require_valid_url(original_url)
            key = parse_mapping_id(mapping_id)

            saved = await self._guard.run(StoreOperation.WRITE, self._store.update_original_url, key, original_url)
            if saved is None:
                raise NotFound("URL not found")
            self._logger.info(f"Updated {saved.short_code} to {original_url}")
            return ShortLink.from_mapping(saved, self.resolve_base_url(base_url, strict=False))

    async def remove(self, mapping_id: int | str) -> None:
        with self._observe("remove"):
            key = parse_mapping_id(mapping_id)

            mapping = await self._guard.run(StoreOperation.LOOKUP, self._store.find_by_id, key)
            if mapping is None:
                raise NotFound("URL not found")

            deleted = await self._guard.run(StoreOperation.WRITE, self._store.delete_by_id, key)
            if not deleted:
                raise NotFound("URL not found")
            self._logger.info(f"Deleted {mapping.short_code}")

    async def get(self, mapping_id: int | str, base_url: Optional[str] = None) -> ShortLink:
        with self._observe("get"):
            key = parse_mapping_id(mapping_id)
            mapping = await self._guard.run(StoreOperation.LOOKUP, self._store.find_by_id, key)
            if mapping is None:
                raise NotFound("URL not found")
            return ShortLink.from_mapping(mapping, self.resolve_base_url(base_url, strict=False))

    async def list_all(self, base_url: Optional[str] = None) -> list[ShortLink]:
        """All mappings, newest first."""
        with self._observe("list"):
            mappings = await self._guard.run(StoreOperation.SCAN, self._store.find_all)
            base = self.resolve_base_url(base_url, strict=False)
            return [ShortLink.from_mapping(mapping, base) for mapping in mappings]

    async def stats(self, base_url: Optional[str] = None) -> LinkStats:
        """Aggregate statistics from a full scan.

        The most clicked mapping is the first one with the highest count in
        store order (newest first), so ties go to the newest mapping.
        """
        with self._observe("stats"):
            mappings = await self._guard.run(StoreOperation.SCAN, self._store.find_all)

            cutoff = datetime.datetime.now(datetime.timezone.utc) - self._recent_window
            most_clicked: Optional[UrlMapping] = None
            total_clicks = 0
            recent = 0
            for mapping in mappings:
                total_clicks += mapping.clicks
                if most_clicked is None or mapping.clicks > most_clicked.clicks:
                    most_clicked = mapping
                if _as_utc(mapping.created_at) > cutoff:
                    recent += 1

            base = self.resolve_base_url(base_url, strict=False)
            return LinkStats(
                total_urls=len(mappings),
                total_clicks=total_clicks,
                most_clicked_url=ShortLink.from_mapping(most_clicked, base) if most_clicked else None,
                recent_urls=recent,
            )

    def resolve_base_url(self, request_base_url: Optional[str] = None, strict: bool = True) -> str:
        """Pick the configured BASE_URL, else the request's, without trailing slash.

        With ``strict`` unset an empty prefix is returned instead of raising,
        which yields root-relative short URLs.

        Raises:
            InvalidConfig: ``strict`` and neither candidate is a valid URL.
        """
        for source, candidate in (("configured", self._settings.BASE_URL), ("request", request_base_url)):
            if not candidate:
                continue
            normalized = candidate.rstrip("/")
            if is_valid_url(normalized):
                return normalized
            self._logger.warning(f"Ignoring invalid {source} base URL: {candidate!r}")

        if strict:
            raise InvalidConfig("Invalid base URL")
        return ""

    async def wait_for_pending_clicks(self) -> None:
        """Wait until every detached click increment has finished."""
        while self._pending_clicks:
            await asyncio.gather(*list(self._pending_clicks), return_exceptions=True)

    @property
    def pending_clicks(self) -> int:
        return len(self._pending_clicks)

    # ========================================================================
    # PRIVATE HELPER METHODS
    # ========================================================================

    @contextmanager
    def _observe(self, operation: str) -> Iterator[None]:
        start_time = time.perf_counter()
        try:
            yield
        except Exception as exc:
            LINK_OPERATIONS_TOTAL.labels(operation=operation, status=_status_for(exc).value).inc()
            raise
        else:
            LINK_OPERATIONS_TOTAL.labels(operation=operation, status=RequestStatus.SUCCESS.value).inc()
        finally:
            LINK_OPERATION_DURATION.labels(operation=operation).observe(time.perf_counter() - start_time)

    def _require_valid_url(self, value: object) -> None:
        if not is_valid_url(value):
            raise InvalidInput("Invalid URL. Please provide a valid URL.")

    async def _allocate(self, original_url: str) -> UrlMapping:
        attempts = self._collision_retries + 1
        for attempt in range(1, attempts + 1):
            short_code = self._generate(self._code_length)
            mapping = UrlMapping(
                original_url=original_url,
                short_code=short_code,
                clicks=0,
                created_at=datetime.datetime.now(datetime.timezone.utc),
            )
            try:
                return await self._guard.run(StoreOperation.WRITE, self._store.insert, mapping)
            except Conflict:
                SHORT_CODE_COLLISIONS_TOTAL.inc()
                self._logger.warning(f"Short code collision on {short_code} (attempt {attempt}/{attempts})")

        raise Conflict(f"Could not allocate a unique short code after {attempts} attempts")

    def _record_click(self, mapping: UrlMapping) -> None:
        task = asyncio.create_task(
            self._increment_clicks(mapping.id, mapping.short_code),
            name=f"click:{mapping.short_code}",
        )
        self._pending_clicks.add(task)
        task.add_done_callback(self._pending_clicks.discard)

    async def _increment_clicks(self, mapping_id: int, short_code: str) -> None:
        try:
            updated = await self._guard.run(StoreOperation.WRITE, self._store.increment_clicks, mapping_id, 1)
        except ShortLinkError as exc:
            CLICKS_LOST_TOTAL.inc()
            self._logger.warning(f"Click for {short_code} not recorded: {exc}")
            return

        if not updated:
            CLICKS_LOST_TOTAL.inc()
            self._logger.warning(f"Click for {short_code} not recorded: mapping no longer exists")
