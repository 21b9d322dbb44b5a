"""Database connection handle and supervision for the short link service.

This module owns the SQLAlchemy async engine behind an explicit
``StoreConnection`` handle whose ``state`` is the only thing request code
reads. Establishing, checking and re-establishing the connection is the job of
``ConnectionSupervisor``, a background task with exponential backoff.

State Diagram — StoreConnection
===============================
::
    ┌──────────────┐  connect()   ┌──────────────┐
    │ DISCONNECTED │ ───────────▶ │  CONNECTING  │
    └──────────────┘              └──────┬───────┘
           ▲   ▲          failure        │ success
           │   └─────────────────────────┤
           │                             ▼
    ┌──────┴────────┐   close()   ┌──────────────┐
    │ DISCONNECTING │ ◀────────── │  CONNECTED   │
    └───────────────┘             └──────┬───────┘
                                         │ ping fails
                                         ▼
                                   DISCONNECTED

Flow Diagram — ConnectionSupervisor loop
========================================
::
    ┌─────────────┐
    │ state ==    │── NO ──▶ connect() ── fail ──▶ sleep(backoff) ──┐
    │ CONNECTED?  │                     └─ ok ──▶ attempt = 0 ──────┤
    └──────┬──────┘                                                 │
       YES │                                                        │
           ▼                                                        │
    sleep(interval) ──▶ ping() ── fail ──▶ mark_disconnected() ─────┤
                              └─ ok ────────────────────────────────┘

How to Use
===========
**Step 1 — Create the handle**::
    connection = StoreConnection(settings.DATABASE_URL, logger=logger)

**Step 2 — Supervise it**::
    supervisor = ConnectionSupervisor(connection, settings, logger)
    await supervisor.start()

**Step 3 — Open sessions from store code**::
    async with connection.session() as session:
        ...

**Step 4 — Shutdown**::
    await supervisor.stop()
    await connection.close()

Key Behaviours
===============
- Tables are created on the first successful connection.
- Request code never triggers reconnection; it only reads ``state``.
- Reads of ``state`` take no lock; the value is advisory.
- Backoff doubles per failed attempt and is capped.

Classes:
    Base:  SQLAlchemy declarative base for all models.
    StoreConnection:  Engine owner with observable connection state.
    ConnectionSupervisor:  Background connect/ping/reconnect task.

Functions:
    backoff_delay():  Delay before the next reconnect attempt.
"""

import asyncio
import logging
from typing import Optional

from prometheus_client import Counter, Gauge
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from shortlinks.config import Settings
from shortlinks.enums import ConnectionState
from shortlinks.exceptions import StoreUnavailable

__all__ = ["Base", "StoreConnection", "ConnectionSupervisor", "backoff_delay"]

STORE_CONNECTION_STATE = Gauge(
    "shortlinks_store_connection_state",
    "Mapping store connection state (1 for the current state)",
    ["state"],
)
STORE_RECONNECT_ATTEMPTS_TOTAL = Counter(
    "shortlinks_store_reconnect_attempts_total",
    "Connection attempts made by the supervisor",
    ["outcome"],
)


class Base(DeclarativeBase):
    pass


def backoff_delay(attempt: int, initial: float, maximum: float) -> float:
    """Return the delay before reconnect attempt ``attempt`` (0-based)."""
    if attempt < 0:
        raise ValueError(f"attempt must be non-negative, got {attempt!r}")
    return min(maximum, initial * (2**attempt))


class StoreConnection:
    """Explicit handle on the mapping store connection.

    The handle is created once per process and injected into the store,
    the availability guard and the supervisor.
    """

    def __init__(
        self,
        database_url: str,
        *,
        pool_size: int = 20,
        max_overflow: int = 10,
        connect_timeout: float = 5.0,
        echo: bool = False,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.database_url = database_url
        self._pool_size = pool_size
        self._max_overflow = max_overflow
        self._connect_timeout = connect_timeout
        self._echo = echo
        self._logger = logger or logging.getLogger("shortlinks")
        self._engine: Optional[AsyncEngine] = None
        self._sessionmaker: Optional[async_sessionmaker[AsyncSession]] = None
        self._schema_ready = False
        self._state = ConnectionState.DISCONNECTED
        self._publish_state()

    @classmethod
    def from_settings(cls, settings: Settings, logger: Optional[logging.Logger] = None) -> "StoreConnection":
        return cls(
            settings.DATABASE_URL,
            pool_size=settings.DATABASE_POOL_SIZE,
            max_overflow=settings.DATABASE_MAX_OVERFLOW,
            connect_timeout=settings.DATABASE_CONNECT_TIMEOUT_SECONDS,
            echo=(settings.APP_ENV == "development" and settings.LOG_LEVEL == "DEBUG"),
            logger=logger,
        )

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    def _set_state(self, state: ConnectionState) -> None:
        if state is not self._state:
            self._logger.info(f"Store connection state: {self._state} -> {state}")
        self._state = state
        self._publish_state()

    def _publish_state(self) -> None:
        for state in ConnectionState:
            STORE_CONNECTION_STATE.labels(state=state.value).set(1 if state is self._state else 0)

    def _ensure_engine(self) -> AsyncEngine:
        if self._engine is None:
            self._engine = create_async_engine(
                self.database_url,
                echo=self._echo,
                pool_size=self._pool_size,
                max_overflow=self._max_overflow,
                pool_pre_ping=True,
            )
            self._sessionmaker = async_sessionmaker(
                self._engine,
                class_=AsyncSession,
                expire_on_commit=False,
            )
        return self._engine

    async def connect(self) -> None:
        """Open the engine, create tables once and mark the handle CONNECTED.

        Raises whatever the driver raises when the database is unreachable;
        the handle is left DISCONNECTED in that case.
        """
        self._set_state(ConnectionState.CONNECTING)
        engine = self._ensure_engine()
        try:
            await asyncio.wait_for(self._open(engine), timeout=self._connect_timeout)
        except BaseException:
            self._set_state(ConnectionState.DISCONNECTED)
            raise
        self._set_state(ConnectionState.CONNECTED)

    async def _open(self, engine: AsyncEngine) -> None:
        async with engine.begin() as conn:
            if not self._schema_ready:
                await conn.run_sync(Base.metadata.create_all)
                self._schema_ready = True
            else:
                await conn.execute(text("SELECT 1"))

    async def ping(self) -> bool:
        """Round-trip ``SELECT 1``; mark the handle DISCONNECTED on failure."""
        if self._engine is None:
            self._set_state(ConnectionState.DISCONNECTED)
            return False
        try:
            async with asyncio.timeout(self._connect_timeout):
                async with self._engine.connect() as conn:
                    await conn.execute(text("SELECT 1"))
        except Exception as exc:
            self._logger.warning(f"Store ping failed: {exc}")
            self.mark_disconnected()
            return False
        return True

    def mark_disconnected(self) -> None:
        self._set_state(ConnectionState.DISCONNECTED)

    def session(self) -> AsyncSession:
        if self._sessionmaker is None:
            raise StoreUnavailable("Store connection has not been opened", reason="disconnected")
        return self._sessionmaker()

    async def close(self) -> None:
        if self._engine is None:
            self._set_state(ConnectionState.DISCONNECTED)
            return
        self._set_state(ConnectionState.DISCONNECTING)
        try:
            await self._engine.dispose()
        finally:
            self._engine = None
            self._sessionmaker = None
            self._set_state(ConnectionState.DISCONNECTED)


class ConnectionSupervisor:
    """Keeps a ``StoreConnection`` connected from a background task."""

    def __init__(self, connection: StoreConnection, settings: Settings, logger: Optional[logging.Logger] = None) -> None:
        self._connection = connection
        self._initial_delay = settings.RECONNECT_INITIAL_DELAY_SECONDS
        self._max_delay = settings.RECONNECT_MAX_DELAY_SECONDS
        self._interval = settings.HEALTH_CHECK_INTERVAL_SECONDS
        self._logger = logger or logging.getLogger("shortlinks")
        self._task: Optional[asyncio.Task] = None
        self.attempt = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="store-connection-supervisor")
        self._logger.info("Store connection supervisor started")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        self._logger.info("Store connection supervisor stopped")

    async def _run(self) -> None:
        while True:
            if self._connection.state is ConnectionState.CONNECTED:
                await asyncio.sleep(self._interval)
                await self._connection.ping()
                continue
            await self.connect_once()

    async def connect_once(self) -> bool:
        """Make one connection attempt, sleeping for the backoff delay on failure."""
        try:
            await self._connection.connect()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            delay = backoff_delay(self.attempt, self._initial_delay, self._max_delay)
            self.attempt += 1
            STORE_RECONNECT_ATTEMPTS_TOTAL.labels(outcome="failure").inc()
            self._logger.error(f"Store connection attempt {self.attempt} failed: {exc}; retrying in {delay:.1f}s")
            await asyncio.sleep(delay)
            return False

        STORE_RECONNECT_ATTEMPTS_TOTAL.labels(outcome="success").inc()
        if self.attempt:
            self._logger.info(f"Store connected after {self.attempt} failed attempts")
        else:
            self._logger.info("Store connected")
        self.attempt = 0
        return True
