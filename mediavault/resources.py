"""Resources served by the dispatch pipeline.

Each resource exposes an explicit operation table mapping ``HttpMethod`` to a
coroutine taking the current ``Event``. Operations write their result to
``event.response`` and raise ``MediaVaultError`` subclasses on failure.

Resource Overview
=================
::
    status          GET  /status
    user            GET  /users/{user}
    shorturls       POST, DELETE  /users/{user}/images/{imageIdentifier}/shortUrls
    shorturl        GET, DELETE   /users/{user}/images/{imageIdentifier}/shortUrls/{shortUrlId}
    globalshorturl  GET  /s/{shortUrlId}

Key Behaviours
===============
- HEAD is allowed wherever GET is; the dispatcher drops the body.
- A short URL that is absent and one owned by another user/image both
  answer 404 "ShortURL not found", so ids cannot be enumerated.
- GlobalShortUrl resolves the alias in a pre-exec listener and marks the
  response with X-Imbo-ShortUrl, which lets the access token check pass.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable

from pydantic import ValidationError

from mediavault.enums import HttpMethod, Propagation
from mediavault.events import Event, Listener
from mediavault.exceptions import InvalidArgumentError, ResourceError
from mediavault.http import SHORT_URL_HEADER
from mediavault.schemas import ImageIdentifierResponse, ShortUrlCreated, ShortUrlParams
from mediavault.service import create_short_url

__all__ = [
    "GlobalShortUrl",
    "Operation",
    "Resource",
    "ShortUrl",
    "ShortUrls",
    "Status",
    "User",
]

logger = logging.getLogger(__name__)

Operation = Callable[[Event], Awaitable[None]]


class Resource(ABC):
    name: str

    @abstractmethod
    def operations(self) -> dict[HttpMethod, Operation]:
        """Explicit method -> coroutine table."""

    def allowed_methods(self) -> tuple[HttpMethod, ...]:
        methods = list(self.operations())
        if HttpMethod.GET in methods and HttpMethod.HEAD not in methods:
            methods.append(HttpMethod.HEAD)
        return tuple(methods)

    def operation_for(self, method: HttpMethod) -> Operation | None:
        operations = self.operations()
        if method is HttpMethod.HEAD and HttpMethod.HEAD not in operations:
            return operations.get(HttpMethod.GET)
        return operations.get(method)


class Status(Resource):
    name = "status"

    def operations(self) -> dict[HttpMethod, Operation]:
        return {HttpMethod.GET: self.get}

    async def get(self, event: Event) -> None:
        healthy = await event.database.get_status()
        event.response.model = {"database": healthy}
        if not healthy:
            event.response.status_code = 503


class User(Resource):
    name = "user"

    def operations(self) -> dict[HttpMethod, Operation]:
        return {HttpMethod.GET: self.get}

    async def get(self, event: Event) -> None:
        event.response.model = {"user": event.request.user}


async def _owned_short_url(event: Event) -> ShortUrlParams:
    short_url_id = event.request.route["shortUrlId"]
    params = await event.database.get_short_url_params(short_url_id)
    if (
        params is None
        or params.user != event.request.user
        or params.image_identifier != event.request.image_identifier
    ):
        raise ResourceError("ShortURL not found", 404)
    return params


class ShortUrl(Resource):
    name = "shorturl"

    def operations(self) -> dict[HttpMethod, Operation]:
        return {
            HttpMethod.GET: self.get_short_url,
            HttpMethod.DELETE: self.delete_short_url,
        }

    async def get_short_url(self, event: Event) -> None:
        params = await _owned_short_url(event)
        event.response.model = params.to_response()

    async def delete_short_url(self, event: Event) -> None:
        await _owned_short_url(event)
        request = event.request
        await event.database.delete_short_urls(
            request.user, request.image_identifier, request.route["shortUrlId"]
        )
        event.response.model = ImageIdentifierResponse(
            image_identifier=request.image_identifier
        ).model_dump(by_alias=True)


class ShortUrls(Resource):
    name = "shorturls"

    def __init__(self, id_length: int = 7) -> None:
        self.id_length = id_length

    def operations(self) -> dict[HttpMethod, Operation]:
        return {
            HttpMethod.POST: self.create_short_url,
            HttpMethod.DELETE: self.delete_short_urls,
        }

    async def create_short_url(self, event: Event) -> None:
        request = event.request
        try:
            params = ShortUrlParams.model_validate(request.json())
        except ValidationError as exc:
            raise InvalidArgumentError("Missing or invalid short URL parameters") from exc

        if params.user != request.user or params.image_identifier != request.image_identifier:
            raise InvalidArgumentError("User and image identifier must match the requested image")

        short_url_id = await create_short_url(event.database, params, self.id_length)
        event.response.status_code = 201
        event.response.model = ShortUrlCreated(id=short_url_id).model_dump()

    async def delete_short_urls(self, event: Event) -> None:
        request = event.request
        deleted = await event.database.delete_short_urls(request.user, request.image_identifier)
        logger.info("Deleted %d short URL(s) for %s/%s", deleted, request.user, request.image_identifier)
        event.response.model = ImageIdentifierResponse(
            image_identifier=request.image_identifier
        ).model_dump(by_alias=True)


class GlobalShortUrl(Resource, Listener):
    """Public ``/s/{id}`` aliases. The alias itself is the authorization."""

    name = "globalshorturl"

    def __init__(self, priority: int = 200) -> None:
        self.priority = priority

    def operations(self) -> dict[HttpMethod, Operation]:
        return {HttpMethod.GET: self.get_short_url}

    def get_subscribed_events(self) -> dict[str, int]:
        return {
            "globalshorturl.get.pre": self.priority,
            "globalshorturl.head.pre": self.priority,
        }

    async def _resolve(self, event: Event) -> ShortUrlParams:
        params = await event.database.get_short_url_params(event.request.route["shortUrlId"])
        if params is None:
            raise ResourceError("ShortURL not found", 404)
        return params

    async def handle(self, event: Event) -> Propagation:
        await self._resolve(event)
        event.response.set_header(SHORT_URL_HEADER, event.request.route["shortUrlId"])
        return Propagation.CONTINUE

    async def get_short_url(self, event: Event) -> None:
        params = await self._resolve(event)
        event.response.model = params.to_response()
