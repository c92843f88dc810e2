"""FastAPI route definitions for the media vault HTTP API.

FastAPI only owns ``/health``. Every other path is handed to the dispatch
pipeline, which does its own routing, access token checks and error mapping.

API Endpoint Overview
=====================
::
    GET  /health
        └─ HealthResponse (200)

    GET  /status
    GET  /users/:user
    POST, DELETE  /users/:user/images/:imageIdentifier/shortUrls
    GET, DELETE   /users/:user/images/:imageIdentifier/shortUrls/:shortUrlId
    GET  /s/:shortUrlId
        └─ pipeline Response, or {"error": {"code", "message"}}

Request Flow Diagram
====================
::
    ┌─────────────┐
    │  HTTP       │
    │  Request    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Build       │
    │ Request-    │
    │ Context     │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Dispatcher  │
    │ .handle()   │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ JSON or     │
    │ empty (HEAD)│
    └─────────────┘

Key Behaviours
===============
- The raw path and query string reach the pipeline untouched.
- BREW is routed like any other verb so the pipeline can answer 418.
"""

from fastapi import APIRouter, Depends
from fastapi import Response as HttpResponse
from fastapi.responses import JSONResponse

from mediavault.dependencies import RequestContext, ServiceManager, get_request_context, get_service_manager
from mediavault.enums import HealthStatus, HttpMethod
from mediavault.schemas import HealthResponse

__all__ = ["router"]

router = APIRouter()

PIPELINE_METHODS = [method.value for method in HttpMethod]


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(
    ctx: RequestContext = Depends(get_request_context),
    manager: ServiceManager = Depends(get_service_manager),
) -> HealthResponse:
    ctx.logger.info("Health check requested")
    db_status = HealthStatus.HEALTHY if await ctx.database.get_status() else HealthStatus.UNHEALTHY
    cache_status = HealthStatus.HEALTHY

    if manager.cache is not None:
        try:
            await manager.cache.ping()
            ctx.logger.debug("Cache health check passed")
        except Exception as e:
            ctx.logger.error(f"Cache health check failed: {e}")
            cache_status = HealthStatus.UNHEALTHY

    status = (
        HealthStatus.HEALTHY
        if db_status is HealthStatus.HEALTHY and cache_status is HealthStatus.HEALTHY
        else HealthStatus.UNHEALTHY
    )

    ctx.logger.info(f"Health check completed: {status.value}")
    return HealthResponse(status=status, database=db_status, cache=cache_status)


@router.api_route("/{path:path}", methods=PIPELINE_METHODS, include_in_schema=False)
async def dispatch(
    path: str,
    ctx: RequestContext = Depends(get_request_context),
) -> HttpResponse:
    response = await ctx.dispatcher.handle(
        ctx.request,
        config=ctx.settings,
        access_control=ctx.access_control,
        database=ctx.database,
    )

    ctx.logger.info(
        f"{ctx.request.method} {ctx.request.raw_path} -> {response.status_code}",
        extra={"duration_ms": ctx.get_duration()},
    )

    if response.model is None:
        return HttpResponse(status_code=response.status_code, headers=response.headers)
    return JSONResponse(content=response.model, status_code=response.status_code, headers=response.headers)
