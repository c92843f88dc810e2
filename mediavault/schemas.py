"""Pydantic schemas for short URL records and response bodies.

Schema Hierarchy
=================
::
    ShortUrlParams (stored record / POST body)
    ├─ user: str
    ├─ imageIdentifier: str
    ├─ extension: str | None
    └─ query: dict  ("?t[]=a&t[]=b" is accepted and parsed)

    ShortUrlCreated (Output)
    └─ id: str

    ImageIdentifierResponse (Output)
    └─ imageIdentifier: str

    HealthResponse (Output)
    ├─ status: str
    ├─ database: str
    └─ cache: str

    ErrorResponse (Output)
    └─ error: {code: int, message: str}

Key Behaviours
===============
- Records serialize with the camelCase ``imageIdentifier`` key clients use.
- Field names and aliases are both accepted on input.
- Array style query keys (``t[]``, ``t[0]``) collapse into lists.
"""

from typing import Any
from urllib.parse import parse_qsl

from pydantic import BaseModel, ConfigDict, Field, field_validator

from mediavault.enums import HealthStatus

__all__ = [
    "ErrorBody",
    "ErrorResponse",
    "HealthResponse",
    "ImageIdentifierResponse",
    "ShortUrlCreated",
    "ShortUrlParams",
]


def _parse_query_string(query: str) -> dict[str, Any]:
    parsed: dict[str, Any] = {}
    for key, value in parse_qsl(query.lstrip("?"), keep_blank_values=True):
        if key.endswith("]") and "[" in key:
            parsed.setdefault(key[: key.index("[")], []).append(value)
        else:
            parsed[key] = value
    return parsed


class ShortUrlParams(BaseModel):
    user: str = Field(..., min_length=1)
    image_identifier: str = Field(..., alias="imageIdentifier", min_length=1)
    extension: str | None = None
    query: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("query", mode="before")
    @classmethod
    def parse_query(cls, v: Any) -> Any:
        if v is None:
            return {}
        if isinstance(v, str):
            return _parse_query_string(v)
        return v

    def to_response(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class ShortUrlCreated(BaseModel):
    id: str


class ImageIdentifierResponse(BaseModel):
    image_identifier: str = Field(..., alias="imageIdentifier")

    model_config = ConfigDict(populate_by_name=True)


class HealthResponse(BaseModel):
    status: HealthStatus
    database: HealthStatus
    cache: HealthStatus


class ErrorBody(BaseModel):
    code: int
    message: str


class ErrorResponse(BaseModel):
    error: ErrorBody
