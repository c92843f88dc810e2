"""Shared enums for the media vault application.

This module defines the HTTP verbs, protocol settings and status values used
across the codebase. Using enums instead of string literals provides type
safety and prevents typos.
"""

from enum import Enum, StrEnum

__all__ = ["AuthProtocol", "HealthStatus", "HttpMethod", "Propagation"]


class HealthStatus(StrEnum):
    """Health check status values."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"

    @classmethod
    def from_str(cls, value: str) -> "HealthStatus":
        """Safely parse from string, falling back to UNHEALTHY for unknown values."""
        try:
            return cls(value)
        except ValueError:
            return cls.UNHEALTHY


class HttpMethod(StrEnum):
    """HTTP verbs understood by the dispatch pipeline."""

    GET = "GET"
    HEAD = "HEAD"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"
    OPTIONS = "OPTIONS"
    # RFC 2324. Always answered with 418.
    BREW = "BREW"

    @property
    def event_name(self) -> str:
        return self.value.lower()


class AuthProtocol(StrEnum):
    """Which scheme(s) of the request URL an access token may be signed against."""

    INCOMING = "incoming"
    HTTP = "http"
    HTTPS = "https"
    BOTH = "both"

    @property
    def schemes(self) -> tuple[str, ...]:
        """Schemes candidate URLs are rewritten to. Empty means keep the incoming one."""
        if self is AuthProtocol.BOTH:
            return ("http", "https")
        if self is AuthProtocol.INCOMING:
            return ()
        return (self.value,)


class Propagation(Enum):
    """Returned by a listener to tell the event manager whether to keep going."""

    CONTINUE = "continue"
    STOP = "stop"
