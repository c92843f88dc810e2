"""Access-token signatures and the listener that enforces them.

Clients sign the full request URL with their private key and send the
signature in a query argument (``accessToken`` by default). The verifier
rebuilds every URL form the client may reasonably have signed and accepts
the request if any of them produces the supplied token.

Flow Diagram — check_access_token()
===================================
::
    ┌──────────────┐  yes
    │ X-Imbo-      │ ─────▶ skip (short URL already authorized)
    │ ShortUrl set?│
    └──────┬───────┘
           ▼       yes
    ┌──────────────┐ ─────▶ skip (whitelisted transformations)
    │ filter exempt│
    └──────┬───────┘
           ▼       none
    ┌──────────────┐ ─────▶ MissingAccessToken (400)
    │ find argument│
    │ key in query │
    └──────┬───────┘
           ▼       None
    ┌──────────────┐ ─────▶ UnknownPublicKey (400)
    │ private key  │
    └──────┬───────┘
           ▼
    ┌──────────────┐
    │ candidate    │  as-is, decoded, t[]<->t[0], escaped,
    │ URLs         │  then protocol rewrite, token stripped
    └──────┬───────┘
           ▼       no match
    ┌──────────────┐ ─────▶ IncorrectAccessToken (400)
    │ compare_     │
    │ digest each  │
    └──────┬───────┘
           ▼
         True

How to Use
===========
**Step 1 — Sign on the client**::
    url = "http://imbo/users/christer"
    token = SHA256().generate_signature("accessToken", url, "private key")
    requests.get(f"{url}?accessToken={token}")

**Step 2 — Several token formats at once**::
    generator = MultipleAccessTokenGenerators({
        "accessToken": SHA256(),
        "legacyToken": LegacySigner(),
    })
    listener = AccessToken(access_token_generator=generator)

Key Behaviours
===============
- The first configured argument key present in the query wins.
- Comparison uses hmac.compare_digest on every candidate.
- An invalid generator fails at construction, never per request.
"""

import hashlib
import hmac
import logging
import re
from abc import ABC, abstractmethod
from collections import defaultdict
from collections.abc import Iterable, Mapping, Sequence
from urllib.parse import quote, unquote

from prometheus_client import Counter

from mediavault.enums import AuthProtocol
from mediavault.events import Event, Listener
from mediavault.exceptions import (
    ConfigurationError,
    IncorrectAccessToken,
    MissingAccessToken,
    UnknownPublicKey,
)
from mediavault.http import SHORT_URL_HEADER
from mediavault.transformations import TransformationFilterConfig, is_exempt

__all__ = [
    "GENERATOR_TYPES",
    "GUARDED_EVENTS",
    "SHA256",
    "AccessToken",
    "AccessTokenGenerator",
    "MultipleAccessTokenGenerators",
    "candidate_uris",
    "generator_from_config",
]

logger = logging.getLogger(__name__)

DEFAULT_ARGUMENT_KEY = "accessToken"

GUARDED_EVENTS = (
    "user.get",
    "user.head",
    "shorturls.post",
    "shorturls.delete",
    "shorturl.get",
    "shorturl.head",
    "shorturl.delete",
    "globalshorturl.get",
    "globalshorturl.head",
)

ARRAY_INDEX_PATTERN = re.compile(r"\[\d+\]$")
SCHEME_PATTERN = re.compile(r"^https?")

ACCESS_TOKEN_CHECKS_TOTAL = Counter(
    "mediavault_access_token_checks_total",
    "Access token checks by outcome",
    ["outcome"],
)


# ============================================================================
# SIGNATURE GENERATORS
# ============================================================================


class AccessTokenGenerator(ABC):
    default_argument_keys: tuple[str, ...] = (DEFAULT_ARGUMENT_KEY,)

    def __init__(self, argument_keys: Sequence[str] | None = None) -> None:
        self.argument_keys = tuple(argument_keys or self.default_argument_keys)
        if not self.argument_keys:
            raise ConfigurationError("An access token generator needs at least one argument key")

    def get_argument_keys(self) -> tuple[str, ...]:
        return self.argument_keys

    @abstractmethod
    def generate_signature(self, argument_key: str, data: str, private_key: str) -> str:
        """Sign ``data`` with ``private_key``. ``argument_key`` is the query key the token came in."""


class SHA256(AccessTokenGenerator):
    """Lower-case hex HMAC-SHA256."""

    def generate_signature(self, argument_key: str, data: str, private_key: str) -> str:
        return hmac.new(private_key.encode("utf-8"), data.encode("utf-8"), hashlib.sha256).hexdigest()


class MultipleAccessTokenGenerators(AccessTokenGenerator):
    """Pick the generator by which argument key the client used.

    Keys are tried in declaration order, so with two keys present the one
    declared first decides.
    """

    def __init__(self, generators: Mapping[str, AccessTokenGenerator]) -> None:
        if not generators:
            raise ConfigurationError("No access token generators configured")
        for argument_key, generator in generators.items():
            if not isinstance(generator, AccessTokenGenerator):
                raise ConfigurationError(f"Invalid access token generator for {argument_key!r}")

        super().__init__(list(generators))
        self.generators = dict(generators)

    def generate_signature(self, argument_key: str, data: str, private_key: str) -> str:
        try:
            generator = self.generators[argument_key]
        except KeyError:
            raise ConfigurationError(f"No access token generator for {argument_key!r}") from None
        return generator.generate_signature(argument_key, data, private_key)


GENERATOR_TYPES: dict[str, type[AccessTokenGenerator]] = {"sha256": SHA256}


def generator_from_config(
    generators: Mapping[str, str], default_argument_keys: Sequence[str] | None = None
) -> AccessTokenGenerator:
    """Build the generator from an ``argument key -> algorithm name`` mapping.

    An empty mapping gives a single SHA256 on ``default_argument_keys``; more
    than one entry gives a ``MultipleAccessTokenGenerators`` in mapping order.
    """
    if not generators:
        return SHA256(argument_keys=default_argument_keys)

    built: dict[str, AccessTokenGenerator] = {}
    for argument_key, name in generators.items():
        try:
            generator_type = GENERATOR_TYPES[name.lower()]
        except KeyError:
            raise ConfigurationError(f"Unknown access token generator {name!r} for {argument_key!r}") from None
        built[argument_key] = generator_type(argument_keys=[argument_key])

    if len(built) == 1:
        return next(iter(built.values()))
    return MultipleAccessTokenGenerators(built)


# ============================================================================
# CANDIDATE URLS
# ============================================================================


def _query_pairs(query: str) -> list[tuple[str, str | None]]:
    pairs: list[tuple[str, str | None]] = []
    for argument in query.split("&"):
        if not argument:
            continue
        key, sep, value = argument.partition("=")
        pairs.append((unquote(key), unquote(value) if sep else None))
    return pairs


def _join(base: str, pairs: Iterable[tuple[str, str | None]], encode: bool) -> str:
    def enc(value: str) -> str:
        return quote(value, safe="") if encode else value

    arguments = [enc(key) if value is None else f"{enc(key)}={enc(value)}" for key, value in pairs]
    return f"{base}?{'&'.join(arguments)}" if arguments else base


def _index_array_keys(pairs: list[tuple[str, str | None]]) -> list[tuple[str, str | None]]:
    # t[]=a&t[]=b -> t[0]=a&t[1]=b
    counters: defaultdict[str, int] = defaultdict(int)
    indexed = []
    for key, value in pairs:
        if key.endswith("[]"):
            name = key[:-2]
            key = f"{name}[{counters[name]}]"
            counters[name] += 1
        indexed.append((key, value))
    return indexed


def _reduce_array_keys(pairs: list[tuple[str, str | None]]) -> list[tuple[str, str | None]]:
    return [(ARRAY_INDEX_PATTERN.sub("[]", key), value) for key, value in pairs]


def _strip_argument(uri: str, argument_key: str) -> str:
    pattern = rf"(?<=[?&]){re.escape(argument_key)}=[^&]*(&|$)"
    return re.sub(pattern, "", uri).rstrip("&?")


def candidate_uris(uri_as_is: str, protocol: AuthProtocol, argument_key: str) -> list[str]:
    """Every URL form a client may have signed, without the token argument.

    Order is stable and duplicates are dropped.
    """
    base, _, query = uri_as_is.partition("?")
    uris = [uri_as_is, unquote(uri_as_is)]

    if query:
        pairs = _query_pairs(query)
        for variant in (pairs, _index_array_keys(pairs), _reduce_array_keys(pairs)):
            uris.append(_join(unquote(base), variant, encode=False))
            uris.append(_join(base, variant, encode=True))

    schemes = protocol.schemes
    if schemes:
        uris = [SCHEME_PATTERN.sub(scheme, uri) for uri in uris for scheme in schemes]

    return list(dict.fromkeys(_strip_argument(uri, argument_key) for uri in uris))


# ============================================================================
# LISTENER
# ============================================================================


class AccessToken(Listener):
    """Reject requests to guarded resources that lack a valid access token."""

    def __init__(
        self,
        access_token_generator: AccessTokenGenerator | None = None,
        transformation_filter: TransformationFilterConfig | None = None,
        events: Iterable[str] = GUARDED_EVENTS,
        priority: int = 100,
    ) -> None:
        generator = access_token_generator if access_token_generator is not None else SHA256()
        if not isinstance(generator, AccessTokenGenerator):
            raise ConfigurationError("Invalid accessTokenGenerator")

        self.generator = generator
        self.transformation_filter = transformation_filter or TransformationFilterConfig()
        self.events = tuple(events)
        self.priority = priority

    def get_subscribed_events(self) -> dict[str, int]:
        return {f"{name}.pre": self.priority for name in self.events}

    async def handle(self, event: Event) -> None:
        await self.check_access_token(event)

    def _find_token(self, event: Event) -> tuple[str, str] | None:
        for argument_key in self.generator.get_argument_keys():
            token = event.request.get_query(argument_key)
            if token is not None:
                return argument_key, token
        return None

    async def check_access_token(self, event: Event) -> bool | None:
        """Verify the token on ``event``.

        Returns True when a token matched and None when the check was skipped.
        Raises an ``AccessTokenError`` otherwise.
        """
        request = event.request

        if event.response.has_header(SHORT_URL_HEADER):
            ACCESS_TOKEN_CHECKS_TOTAL.labels(outcome="bypassed").inc()
            return None

        if is_exempt(self.transformation_filter, request.transformation_names):
            ACCESS_TOKEN_CHECKS_TOTAL.labels(outcome="exempt").inc()
            return None

        found = self._find_token(event)
        if found is None:
            ACCESS_TOKEN_CHECKS_TOTAL.labels(outcome="missing").inc()
            raise MissingAccessToken()
        argument_key, token = found

        private_key = await event.access_control.get_private_key(request.public_key)
        if private_key is None:
            ACCESS_TOKEN_CHECKS_TOTAL.labels(outcome="unknown_key").inc()
            raise UnknownPublicKey()

        supplied = token.encode("utf-8")
        for uri in candidate_uris(request.uri_as_is, event.config.AUTHENTICATION_PROTOCOL, argument_key):
            expected = self.generator.generate_signature(argument_key, uri, private_key)
            if hmac.compare_digest(expected.encode("utf-8"), supplied):
                ACCESS_TOKEN_CHECKS_TOTAL.labels(outcome="verified").inc()
                return True

        ACCESS_TOKEN_CHECKS_TOTAL.labels(outcome="incorrect").inc()
        logger.warning("Incorrect access token for %s on %s", request.public_key, event.name)
        raise IncorrectAccessToken()
