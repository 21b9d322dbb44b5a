"""FastAPI application entry point for the short link service.

Application Lifecycle Diagram
=============================
::
    ┌──────────────┐
    │ create_app() │
    └──────┬───────┘
           ▼
    ┌──────────────┐
    │ CORS, error  │
    │ handlers,    │
    │ metrics      │
    └──────┬───────┘
           ▼
    ┌──────────────┐
    │ lifespan()   │
    │ startup:     │
    │ supervisor   │
    │ connects     │
    └──────┬───────┘
           ▼
    ┌──────────────┐
    │ Serve HTTP   │
    │ (degraded    │
    │ while store  │
    │ is down)     │
    └──────┬───────┘
           ▼
    ┌──────────────┐
    │ shutdown:    │
    │ drain clicks,│
    │ stop, close  │
    └──────────────┘

How to Use
===========
**Step 1 — Run with uvicorn**::
    uvicorn shortlinks.main:app --host 0.0.0.0 --port 8000

**Step 2 — Make API calls**::
    curl -X POST http://localhost:8000/api/shorten \
         -H "Content-Type: application/json" \
         -d '{"original_url": "https://example.com/a/long/path"}'

Key Behaviours
===============
- The app starts even when the database is unreachable; requests get 503
  until the supervisor connects.
- Every ShortLinkError becomes ``{"error": ..., "type": ...}`` with its
  status code; any other exception becomes a logged 500.
"""

__all__ = ["app", "create_app"]

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from shortlinks.config import Settings, get_settings
from shortlinks.dependencies import ServiceManager
from shortlinks.exceptions import InternalError, ShortLinkError
from shortlinks.routes import router
from shortlinks.schemas import ErrorResponse


async def _handle_short_link_error(request: Request, exc: ShortLinkError) -> JSONResponse:
    body = ErrorResponse(error=exc.message, type=exc.error_type)
    return JSONResponse(status_code=exc.status_code, content=body.model_dump())


async def _handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logging.getLogger("shortlinks").exception(f"Unhandled error on {request.method} {request.url.path}")
    return await _handle_short_link_error(request, InternalError("Server error. Please try again later."))


def create_app(settings: Optional[Settings] = None, services: Optional[ServiceManager] = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        manager: ServiceManager = app.state.services
        await manager.initialize()
        yield
        await manager.cleanup()

    app = FastAPI(
        title=settings.APP_NAME,
        version="1.0.0",
        description="Short link service with degraded-mode store access",
        lifespan=lifespan,
    )
    app.state.services = services or ServiceManager(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(ShortLinkError, _handle_short_link_error)
    app.add_exception_handler(Exception, _handle_unexpected_error)

    if settings.METRICS_ENABLED:
        Instrumentator(
            should_group_status_codes=True,
            should_ignore_untemplated=False,
            should_respect_env_var=False,
        ).instrument(app).expose(app)

    app.include_router(router)
    return app


app = create_app()
