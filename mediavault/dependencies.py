"""Dependency injection with a singleton service manager.

This module provides a centralized way to inject the dispatcher, adapters and
request context into the FastAPI routes, using a singleton for shared
resources to minimize per-request overhead.
"""

import logging
import time
import uuid
from collections.abc import AsyncGenerator
from dataclasses import dataclass, field
from typing import Optional

import redis.asyncio as redis
from fastapi import Depends, Request

from mediavault.access_control import AccessControlAdapter, ArrayAccessControl
from mediavault.adapters import DatabaseAdapter, InMemoryDatabaseAdapter, SqlDatabaseAdapter
from mediavault.config import DatabaseBackend, Settings, get_settings
from mediavault.database import get_db
from mediavault.http import Request as PipelineRequest
from mediavault.pipeline import Dispatcher, build_dispatcher
from mediavault.redis import get_redis


# ============================================================================
# SINGLETON SERVICE MANAGER
# ============================================================================


class ServiceManager:
    """Singleton service manager for shared resources.

    Holds what is built once per process: settings, the logger, the frozen
    dispatcher, the access control adapter and (for the SQL backend) the
    Redis cache client.
    """

    _instance: Optional["ServiceManager"] = None
    _initialized: bool = False

    def __new__(cls) -> "ServiceManager":
        """Implement singleton pattern."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    async def initialize(self) -> None:
        """Initialize shared resources once at startup."""
        if not self._initialized:
            self.settings = get_settings()
            self.logger = self._setup_logger()
            self.dispatcher: Dispatcher = build_dispatcher(self.settings)
            self.access_control: AccessControlAdapter = ArrayAccessControl(self.settings.ACCESS_CONTROL_KEYS)
            self.cache: redis.Redis | None = None
            self.memory_database: InMemoryDatabaseAdapter | None = None
            if self.settings.DATABASE_BACKEND is DatabaseBackend.MEMORY:
                self.memory_database = InMemoryDatabaseAdapter()
            else:
                self.cache = await get_redis()
            self._initialized = True
            self.logger.info(
                "Service manager initialized (backend=%s, protocol=%s)",
                self.settings.DATABASE_BACKEND.value,
                self.settings.AUTHENTICATION_PROTOCOL.value,
            )

    def _setup_logger(self) -> logging.Logger:
        """Setup logger once."""
        logger = logging.getLogger("mediavault")
        if not logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
            handler.setFormatter(formatter)
            logger.addHandler(handler)
            logger.setLevel(self.settings.LOG_LEVEL)
        return logger

    async def cleanup(self) -> None:
        """Cleanup shared resources at shutdown."""
        self.cache = None
        self.memory_database = None
        self._initialized = False


# Global singleton instance
_service_manager = ServiceManager()


# ============================================================================
# REQUEST CONTEXT
# ============================================================================


@dataclass
class RequestContext:
    """Per-request context handed to the routes.

    Attributes:
        request: Transport-neutral request for the dispatch pipeline
        database: Database adapter for this request
        service_manager: Singleton service manager with shared resources
        request_id: Unique identifier for this request
        client_ip: Client IP address
        user_agent: Client user agent string
        start_time: Request start timestamp
    """

    request: PipelineRequest
    database: DatabaseAdapter
    service_manager: ServiceManager
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    client_ip: Optional[str] = None
    user_agent: Optional[str] = None
    start_time: float = field(default_factory=lambda: time.time())

    @property
    def settings(self) -> Settings:
        return self.service_manager.settings

    @property
    def dispatcher(self) -> Dispatcher:
        return self.service_manager.dispatcher

    @property
    def access_control(self) -> AccessControlAdapter:
        return self.service_manager.access_control

    @property
    def logger(self) -> logging.LoggerAdapter:
        """Get shared logger with request context."""
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


async def get_service_manager() -> ServiceManager:
    if not _service_manager._initialized:
        await _service_manager.initialize()
    return _service_manager


async def get_database(
    manager: ServiceManager = Depends(get_service_manager),
) -> AsyncGenerator[DatabaseAdapter, None]:
    """Memory backend shares one adapter; SQL gets a fresh session per request."""
    if manager.memory_database is not None:
        yield manager.memory_database
        return

    async for session in get_db():
        yield SqlDatabaseAdapter(session, manager.cache, manager.settings.SHORT_URL_CACHE_TTL_SECONDS)


async def build_pipeline_request(request: Request, settings: Settings) -> PipelineRequest:
    """Translate a Starlette request, keeping path and query exactly as sent."""
    scope = request.scope
    raw_path = scope.get("raw_path") or scope["path"].encode("utf-8")
    raw_path = raw_path.split(b"?", 1)[0].decode("latin-1")
    query_string = scope.get("query_string", b"").decode("latin-1")

    scheme = request.url.scheme
    host = request.headers.get("host") or request.url.netloc
    client_ip = request.client.host if request.client else None
    if client_ip is not None and client_ip in settings.TRUSTED_PROXIES:
        scheme = request.headers.get("x-forwarded-proto", scheme).split(",")[0].strip()
        host = request.headers.get("x-forwarded-host", host).split(",")[0].strip()

    return PipelineRequest(
        method=request.method.upper(),
        scheme=scheme,
        host=host,
        raw_path=raw_path,
        query_string=query_string,
        headers={key.lower(): value for key, value in request.headers.items()},
        body=await request.body(),
    )


async def get_request_context(
    request: Request,
    database: DatabaseAdapter = Depends(get_database),
    manager: ServiceManager = Depends(get_service_manager),
) -> RequestContext:
    return RequestContext(
        request=await build_pipeline_request(request, manager.settings),
        database=database,
        service_manager=manager,
        client_ip=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
