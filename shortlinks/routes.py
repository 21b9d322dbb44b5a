"""FastAPI route definitions for the short link REST API.

API Endpoint Overview
=====================
::
    GET    /api/health
        └─ HealthResponse (200, even when the store is down)

    POST   /api/shorten
        ├─ ShortenRequest (request body)
        └─ ShortLink (200) or 400/500/503

    GET    /api/urls
        └─ list[ShortLink] (200) or 503

    GET    /api/url/{id}
    PUT    /api/url/{id}
    DELETE /api/url/{id}
        └─ ShortLink / DeleteResponse (200) or 400/404/503

    GET    /api/stats
        └─ LinkStats (200) or 503

    GET    /{short_code}
        └─ 307 Redirect or 404/503

Key Behaviours
===============
- Routes are thin; validation and failure classification live in the registry.
- ShortLinkError subclasses are turned into JSON by handlers in main.py.
- The redirect never waits for the click count to be written.
"""

import datetime

from fastapi import APIRouter, Depends
from fastapi.responses import RedirectResponse

from shortlinks.dependencies import RequestContext, ServiceManager, get_request_context, get_service_manager
from shortlinks.enums import HealthStatus
from shortlinks.schemas import (
    DatabaseHealth,
    DeleteResponse,
    HealthResponse,
    LinkStats,
    ShortenRequest,
    ShortLink,
    UpdateRequest,
)

__all__ = ["router"]

router = APIRouter()


@router.get("/api/health", response_model=HealthResponse, tags=["health"])
async def health_check(manager: ServiceManager = Depends(get_service_manager)) -> HealthResponse:
    state = manager.connection.state
    return HealthResponse(
        status=HealthStatus.from_connection(state),
        timestamp=datetime.datetime.now(datetime.timezone.utc),
        environment=manager.settings.APP_ENV,
        database=DatabaseHealth(state=state, connected=manager.connection.is_connected),
    )


@router.post("/api/shorten", response_model=ShortLink, tags=["urls"])
async def shorten_url(payload: ShortenRequest, ctx: RequestContext = Depends(get_request_context)) -> ShortLink:
    ctx.logger.info(f"URL shortening requested: {payload.original_url}")
    link = await ctx.registry.create(payload.original_url, base_url=ctx.base_url)
    ctx.logger.info(f"URL shortened: {link.short_code} in {ctx.get_duration():.1f}ms")
    return link


@router.get("/api/urls", response_model=list[ShortLink], tags=["urls"])
async def list_urls(ctx: RequestContext = Depends(get_request_context)) -> list[ShortLink]:
    return await ctx.registry.list_all(base_url=ctx.base_url)


@router.get("/api/url/{mapping_id}", response_model=ShortLink, tags=["urls"])
async def get_url(mapping_id: str, ctx: RequestContext = Depends(get_request_context)) -> ShortLink:
    return await ctx.registry.get(mapping_id, base_url=ctx.base_url)


@router.put("/api/url/{mapping_id}", response_model=ShortLink, tags=["urls"])
async def update_url(
    mapping_id: str,
    payload: UpdateRequest,
    ctx: RequestContext = Depends(get_request_context),
) -> ShortLink:
    ctx.logger.info(f"Update requested for {mapping_id}: {payload.original_url}")
    return await ctx.registry.update(mapping_id, payload.original_url, base_url=ctx.base_url)


@router.delete("/api/url/{mapping_id}", response_model=DeleteResponse, tags=["urls"])
async def delete_url(mapping_id: str, ctx: RequestContext = Depends(get_request_context)) -> DeleteResponse:
    ctx.logger.info(f"Delete requested for {mapping_id}")
    await ctx.registry.remove(mapping_id)
    return DeleteResponse()


@router.get("/api/stats", response_model=LinkStats, tags=["stats"])
async def get_stats(ctx: RequestContext = Depends(get_request_context)) -> LinkStats:
    return await ctx.registry.stats(base_url=ctx.base_url)


@router.get("/{short_code}", tags=["redirect"])
async def redirect_to_url(short_code: str, ctx: RequestContext = Depends(get_request_context)) -> RedirectResponse:
    original_url = await ctx.registry.resolve(short_code)
    ctx.logger.info(f"Redirect: {short_code} -> {original_url}")
    return RedirectResponse(url=original_url, status_code=307)
