"""Shared pytest fixtures: in-memory mapping store, fake connection and API client."""

import datetime
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from shortlinks.config import Settings
from shortlinks.dependencies import ServiceManager
from shortlinks.enums import ConnectionState
from shortlinks.exceptions import Conflict
from shortlinks.guard import AvailabilityGuard
from shortlinks.main import create_app
from shortlinks.models import UrlMapping
from shortlinks.registry import LinkRegistry
from shortlinks.store import MappingStore


class FakeConnection:
    """Connection handle whose state the tests flip directly."""

    def __init__(self, state: ConnectionState = ConnectionState.CONNECTED, failures: int = 0) -> None:
        self.state = state
        self.failures = failures
        self.connect_calls = 0
        self.ping_ok = True

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    async def connect(self) -> None:
        self.connect_calls += 1
        self.state = ConnectionState.CONNECTING
        if self.failures > 0:
            self.failures -= 1
            self.state = ConnectionState.DISCONNECTED
            raise OSError("connection refused")
        self.state = ConnectionState.CONNECTED

    async def ping(self) -> bool:
        if not self.ping_ok:
            self.mark_disconnected()
            return False
        return self.state is ConnectionState.CONNECTED

    def mark_disconnected(self) -> None:
        self.state = ConnectionState.DISCONNECTED

    async def close(self) -> None:
        self.state = ConnectionState.DISCONNECTED


class InMemoryMappingStore(MappingStore):
    """Dict-backed MappingStore that hands out detached copies like a database."""

    def __init__(self) -> None:
        self._rows: dict[int, UrlMapping] = {}
        self._next_id = 1
        self.calls: list[str] = []

    @staticmethod
    def _copy(mapping: UrlMapping) -> UrlMapping:
        return UrlMapping(
            id=mapping.id,
            original_url=mapping.original_url,
            short_code=mapping.short_code,
            created_at=mapping.created_at,
            clicks=mapping.clicks,
        )

    def _ordered(self) -> list[UrlMapping]:
        return sorted(self._rows.values(), key=lambda row: (row.created_at, row.id))

    async def find_by_short_code(self, short_code: str) -> Optional[UrlMapping]:
        self.calls.append("find_by_short_code")
        for row in self._rows.values():
            if row.short_code == short_code:
                return self._copy(row)
        return None

    async def find_by_original_url(self, original_url: str) -> Optional[UrlMapping]:
        self.calls.append("find_by_original_url")
        for row in self._ordered():
            if row.original_url == original_url:
                return self._copy(row)
        return None

    async def find_by_id(self, mapping_id: int) -> Optional[UrlMapping]:
        self.calls.append("find_by_id")
        row = self._rows.get(mapping_id)
        return self._copy(row) if row else None

    async def find_all(self) -> list[UrlMapping]:
        self.calls.append("find_all")
        return [self._copy(row) for row in reversed(self._ordered())]

    async def insert(self, mapping: UrlMapping) -> UrlMapping:
        self.calls.append("insert")
        if any(row.short_code == mapping.short_code for row in self._rows.values()):
            raise Conflict(f"Short code '{mapping.short_code}' is already taken")
        row = self._copy(mapping)
        row.id = self._next_id
        row.clicks = row.clicks or 0
        row.created_at = row.created_at or datetime.datetime.now(datetime.timezone.utc)
        self._next_id += 1
        self._rows[row.id] = row
        return self._copy(row)

    async def update_original_url(self, mapping_id: int, original_url: str) -> Optional[UrlMapping]:
        self.calls.append("update_original_url")
        row = self._rows.get(mapping_id)
        if row is None:
            return None
        row.original_url = original_url
        return self._copy(row)

    async def increment_clicks(self, mapping_id: int, delta: int = 1) -> bool:
        self.calls.append("increment_clicks")
        row = self._rows.get(mapping_id)
        if row is None:
            return False
        row.clicks += delta
        return True

    async def delete_by_id(self, mapping_id: int) -> bool:
        self.calls.append("delete_by_id")
        return self._rows.pop(mapping_id, None) is not None

    def __len__(self) -> int:
        return len(self._rows)


def make_settings(**overrides) -> Settings:
    values = {
        "BASE_URL": "https://short.test",
        "METRICS_ENABLED": False,
        "LOG_LEVEL": "DEBUG",
        "STORE_LOOKUP_TIMEOUT_SECONDS": 0.5,
        "STORE_WRITE_TIMEOUT_SECONDS": 0.5,
        "STORE_SCAN_TIMEOUT_SECONDS": 1.0,
        "RECONNECT_INITIAL_DELAY_SECONDS": 0.01,
        "RECONNECT_MAX_DELAY_SECONDS": 0.04,
        "HEALTH_CHECK_INTERVAL_SECONDS": 0.01,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def connection() -> FakeConnection:
    return FakeConnection()


@pytest.fixture
def store() -> InMemoryMappingStore:
    return InMemoryMappingStore()


@pytest.fixture
def guard(connection: FakeConnection, settings: Settings) -> AvailabilityGuard:
    return AvailabilityGuard(connection, settings)


@pytest.fixture
def registry(store: InMemoryMappingStore, guard: AvailabilityGuard, settings: Settings) -> LinkRegistry:
    return LinkRegistry(store, guard, settings)


@pytest.fixture
def services(settings: Settings, connection: FakeConnection, store: InMemoryMappingStore) -> ServiceManager:
    return ServiceManager(settings, connection=connection, store=store)


@pytest_asyncio.fixture
async def client(settings: Settings, services: ServiceManager) -> AsyncGenerator[AsyncClient, None]:
    app = create_app(settings, services=services)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    await services.registry.wait_for_pending_clicks()


@pytest.fixture
def settings_factory():
    """Build Settings with test defaults plus per-test overrides."""
    return make_settings
