"""Dependency injection for the short link API.

This module wires the process-wide resources (store connection, supervisor,
guard, registry) into a ``ServiceManager`` that lives on ``app.state``, and
provides a lightweight per-request context for logging.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Optional

from fastapi import Depends, Request

from shortlinks.config import Settings, get_settings
from shortlinks.database import ConnectionSupervisor, StoreConnection
from shortlinks.guard import AvailabilityGuard
from shortlinks.registry import LinkRegistry
from shortlinks.store import MappingStore, SQLAlchemyMappingStore

__all__ = [
    "ServiceManager",
    "RequestContext",
    "setup_logger",
    "get_service_manager",
    "get_request_context",
    "get_registry",
]


def setup_logger(settings: Settings) -> logging.Logger:
    logger = logging.getLogger("shortlinks")
    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.setLevel(settings.LOG_LEVEL.upper())
    return logger


# ============================================================================
# SERVICE MANAGER
# ============================================================================


class ServiceManager:
    """Owner of the shared resources for one application instance.

    The store connection is created here and handed explicitly to the store,
    the guard, the supervisor and (through them) the registry.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        connection=None,
        store: Optional[MappingStore] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.logger = logger or setup_logger(self.settings)
        self.connection = connection or StoreConnection.from_settings(self.settings, self.logger)
        self.store = store or SQLAlchemyMappingStore(self.connection)
        self.guard = AvailabilityGuard(self.connection, self.settings, self.logger)
        self.registry = LinkRegistry(self.store, self.guard, self.settings, self.logger)
        self.supervisor = ConnectionSupervisor(self.connection, self.settings, self.logger)
        self._initialized = False

    async def initialize(self) -> None:
        """Start the connection supervisor once."""
        if not self._initialized:
            await self.supervisor.start()
            self._initialized = True

    async def cleanup(self) -> None:
        """Drain click tasks, stop supervision and close the connection."""
        await self.registry.wait_for_pending_clicks()
        await self.supervisor.stop()
        await self.connection.close()
        self._initialized = False


# ============================================================================
# REQUEST CONTEXT
# ============================================================================


@dataclass
class RequestContext:
    """Per-request tracking data.

    Attributes:
        service_manager: Shared resources for the application
        base_url: Scheme and host the request arrived on
        request_id: Unique identifier for this request
        user_agent: Client user agent string
        client_ip: Client IP address
        start_time: Request start timestamp
    """

    service_manager: ServiceManager
    base_url: str
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    user_agent: Optional[str] = None
    client_ip: Optional[str] = None
    start_time: float = field(default_factory=time.time)

    @property
    def registry(self) -> LinkRegistry:
        return self.service_manager.registry

    @property
    def logger(self) -> logging.LoggerAdapter:
        """Shared logger with request context attached."""
        return logging.LoggerAdapter(
            self.service_manager.logger,
            {
                "request_id": self.request_id,
                "client_ip": self.client_ip,
                "user_agent": self.user_agent,
            },
        )

    def get_duration(self) -> float:
        """Get request duration in milliseconds."""
        return (time.time() - self.start_time) * 1000


# ============================================================================
# DEPENDENCY FUNCTIONS
# ============================================================================


def get_service_manager(request: Request) -> ServiceManager:
    return request.app.state.services


def get_request_context(
    request: Request,
    manager: ServiceManager = Depends(get_service_manager),
) -> RequestContext:
    return RequestContext(
        service_manager=manager,
        base_url=str(request.base_url),
        request_id=request.headers.get("x-request-id") or str(uuid.uuid4()),
        user_agent=request.headers.get("user-agent"),
        client_ip=request.client.host if request.client else None,
    )


def get_registry(manager: ServiceManager = Depends(get_service_manager)) -> LinkRegistry:
    return manager.registry
