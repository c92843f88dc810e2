"""Transport-neutral request and response objects passed through the pipeline.

The FastAPI layer translates Starlette requests into ``Request`` and renders
``Response`` back; everything between only sees these two types.
"""

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from functools import cached_property
from typing import Any
from urllib.parse import parse_qsl

from mediavault.exceptions import InvalidArgumentError
from mediavault.transformations import Transformation, parse_transformations

__all__ = ["PUBLIC_KEY_HEADER", "SHORT_URL_HEADER", "Request", "Response"]

SHORT_URL_HEADER = "X-Imbo-ShortUrl"
PUBLIC_KEY_HEADER = "X-Imbo-PublicKey"


@dataclass(frozen=True)
class Request:
    """An incoming request, kept exactly as transmitted.

    Attributes:
        method: Upper-case HTTP verb.
        scheme: ``http`` or ``https`` as seen by the application.
        host: Host header value, including any port.
        raw_path: Path exactly as transmitted (still percent-encoded).
        query_string: Query string exactly as transmitted, without ``?``.
        headers: Header mapping with lower-case names.
        route: Route parameters filled in by the router.
        body: Raw request body.
    """

    method: str
    scheme: str
    host: str
    raw_path: str
    query_string: str = ""
    headers: Mapping[str, str] = field(default_factory=dict)
    route: Mapping[str, str] = field(default_factory=dict)
    body: bytes = b""

    @property
    def uri_as_is(self) -> str:
        uri = f"{self.scheme}://{self.host}{self.raw_path}"
        if self.query_string:
            uri = f"{uri}?{self.query_string}"
        return uri

    @cached_property
    def query(self) -> list[tuple[str, str]]:
        return parse_qsl(self.query_string, keep_blank_values=True)

    def get_query(self, key: str, default: str | None = None) -> str | None:
        for name, value in self.query:
            if name == key:
                return value
        return default

    @cached_property
    def transformations(self) -> list[Transformation]:
        return parse_transformations(self.query)

    @property
    def transformation_names(self) -> list[str]:
        return [transformation.name for transformation in self.transformations]

    @property
    def user(self) -> str | None:
        return self.route.get("user")

    @property
    def image_identifier(self) -> str | None:
        return self.route.get("imageIdentifier")

    @property
    def public_key(self) -> str | None:
        """Public key from the query, the header, or the route user, in that order."""
        return self.get_query("publicKey") or self.headers.get(PUBLIC_KEY_HEADER.lower()) or self.user

    def json(self) -> Any:
        if not self.body:
            raise InvalidArgumentError("Missing JSON data")
        try:
            return json.loads(self.body)
        except ValueError as exc:
            raise InvalidArgumentError("Invalid JSON data") from exc


@dataclass
class Response:
    status_code: int = 200
    headers: dict[str, str] = field(default_factory=dict)
    model: Any = None

    def set_header(self, name: str, value: str) -> None:
        self.headers[name] = value

    def has_header(self, name: str) -> bool:
        wanted = name.lower()
        return any(key.lower() == wanted for key in self.headers)
