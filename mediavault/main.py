"""FastAPI application entry point for the media vault service.

Application Lifecycle Diagram
=============================
::
    ┌─────────────┐
    │  uvicorn    │
    │  startup    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ lifespan()  │
    │ startup:    │
    │ init_db()   │
    │ (sql only)  │
    │ build       │
    │ dispatcher  │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Serve HTTP  │
    │ requests    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ lifespan()  │
    │ shutdown:   │
    │ close_db()  │
    │ close_redis()│
    └─────────────┘

How to Use
===========
**Step 1 — Run with uvicorn**::
    uvicorn mediavault.main:app --host 0.0.0.0 --port 8000

**Step 2 — Sign and call**::
    TOKEN=$(printf '%s' "http://localhost:8000/users/christer" \\
        | openssl dgst -sha256 -hmac "private key" | cut -d' ' -f2)
    curl "http://localhost:8000/users/christer?accessToken=$TOKEN"

Key Behaviours
===============
- Tables are created on startup when DATABASE_BACKEND=sql.
- A misconfigured access token generator fails startup, not a request.
- Prometheus metrics are exposed on /metrics.
"""

__all__ = ["app"]

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator

from mediavault.config import DatabaseBackend, get_settings
from mediavault.database import close_db, init_db
from mediavault.dependencies import _service_manager
from mediavault.redis import close_redis
from mediavault.routes import router

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup
    if settings.DATABASE_BACKEND is DatabaseBackend.SQL:
        await init_db()
    await _service_manager.initialize()
    yield
    # Shutdown
    await _service_manager.cleanup()
    await close_db()
    await close_redis()


app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description="Media storage API with signed-URL access control",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=False,
    should_respect_env_var=False,
).instrument(app).expose(app)

app.include_router(router)
