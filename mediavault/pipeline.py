"""Request dispatch pipeline.

Resolves a request to a resource, fires the pre-exec event, runs the
resource operation, fires the post-exec event and returns the response.
Any ``MediaVaultError`` raised on the way aborts the remaining stages and is
rendered with its own status code.

State Machine — Dispatcher.handle()
===================================
::
    ┌──────────┐   BREW        ┌─────────────┐
    │ RESOLVE  │ ────────────▶ │ 418         │
    │          │   no route    ├─────────────┤
    │          │ ────────────▶ │ 400         │
    │          │   bad method  ├─────────────┤
    │          │ ────────────▶ │ 405 + Allow │
    └────┬─────┘               └─────────────┘
         ▼
    ┌──────────┐  publish <resource>.<method>.pre
    │ PRE_EXEC │  (access token check lives here)
    └────┬─────┘
         ▼
    ┌──────────┐  operations()[method](event)
    │ EXECUTE  │
    └────┬─────┘
         ▼
    ┌──────────┐  publish <resource>.<method>.post
    │ POST_EXEC│
    └────┬─────┘
         ▼
    ┌──────────┐
    │ RESPOND  │
    └──────────┘

How to Use
===========
**Step 1 — Build once at startup**::
    dispatcher = build_dispatcher(get_settings())

**Step 2 — Handle each request**::
    response = await dispatcher.handle(
        request,
        config=settings,
        access_control=ArrayAccessControl(settings.ACCESS_CONTROL_KEYS),
        database=InMemoryDatabaseAdapter(),
    )

Key Behaviours
===============
- Listeners and resources are registered once; the registry is frozen.
- Config and adapters are passed per call, nothing request-scoped is global.
- Unexpected exceptions are logged and answered with a bare 500.
"""

import logging
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, NamedTuple
from urllib.parse import unquote

from prometheus_client import Counter

from mediavault.access_token import AccessToken, AccessTokenGenerator, generator_from_config
from mediavault.enums import HttpMethod
from mediavault.events import Event, EventManager, Listener
from mediavault.exceptions import (
    BadRequestError,
    ConfigurationError,
    MediaVaultError,
    MethodNotAllowedError,
    TeapotError,
)
from mediavault.http import Request, Response
from mediavault.resources import GlobalShortUrl, Resource, ShortUrl, ShortUrls, Status, User
from mediavault.schemas import ErrorBody, ErrorResponse
from mediavault.transformations import TransformationFilterConfig

if TYPE_CHECKING:
    from mediavault.access_control import AccessControlAdapter
    from mediavault.adapters import DatabaseAdapter
    from mediavault.config import Settings

__all__ = ["DEFAULT_ROUTES", "Dispatcher", "Route", "RouteMatch", "Router", "build_dispatcher"]

logger = logging.getLogger(__name__)

PIPELINE_FAILURES_TOTAL = Counter(
    "mediavault_pipeline_failures_total",
    "Requests aborted by the dispatch pipeline",
    ["status"],
)


# ============================================================================
# ROUTING
# ============================================================================


@dataclass(frozen=True)
class Route:
    resource: str
    pattern: re.Pattern[str]


class RouteMatch(NamedTuple):
    resource: str
    params: dict[str, str]


_SEGMENT = r"[^/]+"
_ID = r"[A-Za-z0-9]+"

DEFAULT_ROUTES: tuple[Route, ...] = (
    Route("status", re.compile(r"^/status/?$")),
    Route("user", re.compile(rf"^/users/(?P<user>{_SEGMENT})/?$")),
    Route(
        "shorturls",
        re.compile(rf"^/users/(?P<user>{_SEGMENT})/images/(?P<imageIdentifier>{_SEGMENT})/shortUrls/?$"),
    ),
    Route(
        "shorturl",
        re.compile(
            rf"^/users/(?P<user>{_SEGMENT})/images/(?P<imageIdentifier>{_SEGMENT})"
            rf"/shortUrls/(?P<shortUrlId>{_ID})$"
        ),
    ),
    Route("globalshorturl", re.compile(rf"^/s/(?P<shortUrlId>{_ID})$")),
)


class Router:
    """First matching route wins."""

    def __init__(self, routes: Sequence[Route] = DEFAULT_ROUTES) -> None:
        self.routes = tuple(routes)

    def resolve(self, path: str) -> RouteMatch | None:
        for route in self.routes:
            match = route.pattern.match(path)
            if match:
                return RouteMatch(route.resource, match.groupdict())
        return None


# ============================================================================
# DISPATCH
# ============================================================================


def error_response(exc: MediaVaultError) -> Response:
    response = Response(
        status_code=exc.status_code,
        model=ErrorResponse(error=ErrorBody(code=exc.status_code, message=exc.message)).model_dump(),
    )
    if isinstance(exc, MethodNotAllowedError) and exc.allowed:
        response.set_header("Allow", ", ".join(exc.allowed))
    return response


class Dispatcher:
    def __init__(self, router: Router, manager: EventManager, resources: Mapping[str, Resource]) -> None:
        for route in router.routes:
            if route.resource not in resources:
                raise ConfigurationError(f"No resource registered for route {route.resource!r}")
        self.router = router
        self.manager = manager
        self.resources = dict(resources)

    async def handle(
        self,
        request: Request,
        *,
        config: "Settings",
        access_control: "AccessControlAdapter",
        database: "DatabaseAdapter",
    ) -> Response:
        response = Response()
        try:
            await self._dispatch(request, response, config, access_control, database)
        except MediaVaultError as exc:
            PIPELINE_FAILURES_TOTAL.labels(status=str(exc.status_code)).inc()
            log = logger.error if exc.status_code >= 500 else logger.info
            log("%s %s failed with %d: %s", request.method, request.raw_path, exc.status_code, exc.message)
            return error_response(exc)
        except Exception:
            PIPELINE_FAILURES_TOTAL.labels(status="500").inc()
            logger.exception("Unhandled error on %s %s", request.method, request.raw_path)
            return error_response(MediaVaultError("Internal server error", 500))
        return response

    async def _dispatch(
        self,
        request: Request,
        response: Response,
        config: "Settings",
        access_control: "AccessControlAdapter",
        database: "DatabaseAdapter",
    ) -> None:
        # RESOLVE
        if request.method.upper() == HttpMethod.BREW:
            raise TeapotError()

        match = self.router.resolve(unquote(request.raw_path))
        if match is None:
            raise BadRequestError("Invalid route")

        resource = self.resources[match.resource]
        allowed = [method.value for method in resource.allowed_methods()]
        try:
            method = HttpMethod(request.method.upper())
        except ValueError:
            raise MethodNotAllowedError(f"Method {request.method} not allowed", allowed) from None

        operation = resource.operation_for(method)
        if operation is None:
            raise MethodNotAllowedError(f"Method {method} not allowed", allowed)

        event_prefix = f"{match.resource}.{method.event_name}"
        event = Event(
            name=event_prefix,
            request=replace(request, route=match.params),
            response=response,
            config=config,
            access_control=access_control,
            database=database,
        )

        # PRE_EXEC
        await self.manager.publish(f"{event_prefix}.pre", event)

        # EXECUTE
        await operation(event)

        # POST_EXEC
        await self.manager.publish(f"{event_prefix}.post", event)

        # RESPOND
        if method is HttpMethod.HEAD:
            response.model = None


def build_dispatcher(
    settings: "Settings",
    access_token_generator: AccessTokenGenerator | None = None,
    extra_listeners: Sequence[Listener] = (),
) -> Dispatcher:
    """Wire resources and listeners for one server lifetime."""
    generator = access_token_generator or generator_from_config(
        settings.ACCESS_TOKEN_GENERATORS, settings.ACCESS_TOKEN_ARGUMENT_KEYS
    )
    access_token = AccessToken(
        access_token_generator=generator,
        transformation_filter=TransformationFilterConfig.from_lists(
            settings.TRANSFORMATIONS_WHITELIST, settings.TRANSFORMATIONS_BLACKLIST
        ),
    )
    global_short_url = GlobalShortUrl()
    resources: list[Resource] = [
        Status(),
        User(),
        ShortUrls(id_length=settings.SHORT_URL_ID_LENGTH),
        ShortUrl(),
        global_short_url,
    ]

    manager = EventManager()
    for listener in (access_token, global_short_url, *extra_listeners):
        manager.add_listener(listener)
    manager.freeze()

    return Dispatcher(Router(), manager, {resource.name: resource for resource in resources})
