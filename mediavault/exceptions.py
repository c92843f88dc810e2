"""Error hierarchy for the media vault.

Every error carries the HTTP status code the transport layer should answer
with. The dispatch pipeline catches ``MediaVaultError`` and renders
``{"error": {"code": ..., "message": ...}}``; anything else becomes a 500.

Error Taxonomy
==============
::
    MediaVaultError (500)
    ├─ ConfigurationError (500)      startup wiring problems
    ├─ InvalidArgumentError (400)    malformed request payloads
    ├─ AccessTokenError (400)
    │   ├─ MissingAccessToken
    │   ├─ IncorrectAccessToken
    │   └─ UnknownPublicKey
    ├─ ResourceError (404)           short URL absent or not owned
    ├─ BadRequestError (400)         unroutable request
    ├─ MethodNotAllowedError (405)
    ├─ TeapotError (418)
    └─ DatabaseError (500)           wrapped adapter failures
"""

from collections.abc import Iterable

__all__ = [
    "AccessTokenError",
    "BadRequestError",
    "ConfigurationError",
    "DatabaseError",
    "IncorrectAccessToken",
    "InvalidArgumentError",
    "MediaVaultError",
    "MethodNotAllowedError",
    "MissingAccessToken",
    "ResourceError",
    "TeapotError",
    "UnknownPublicKey",
]


class MediaVaultError(Exception):
    """Base error. ``status_code`` is surfaced verbatim to the client."""

    default_status_code = 500

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code if status_code is not None else self.default_status_code

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, status_code={self.status_code})"


class ConfigurationError(MediaVaultError):
    default_status_code = 500


class InvalidArgumentError(MediaVaultError):
    default_status_code = 400


class AccessTokenError(MediaVaultError):
    default_status_code = 400


class MissingAccessToken(AccessTokenError):
    def __init__(self) -> None:
        super().__init__("Missing access token")


class IncorrectAccessToken(AccessTokenError):
    def __init__(self) -> None:
        super().__init__("Incorrect access token")


class UnknownPublicKey(AccessTokenError):
    def __init__(self) -> None:
        super().__init__("Unknown public key")


class ResourceError(MediaVaultError):
    default_status_code = 404


class BadRequestError(MediaVaultError):
    default_status_code = 400


class MethodNotAllowedError(MediaVaultError):
    default_status_code = 405

    def __init__(self, message: str, allowed: Iterable[str] = ()) -> None:
        super().__init__(message)
        self.allowed = tuple(allowed)


class TeapotError(MediaVaultError):
    default_status_code = 418

    def __init__(self) -> None:
        super().__init__("I'm a teapot!")


class DatabaseError(MediaVaultError):
    default_status_code = 500
