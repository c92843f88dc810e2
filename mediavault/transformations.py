"""Transformation parsing and the token exemption filter.

Transformations arrive as repeated ``t[]`` (or ``t[0]``, ``t[1]`` ...) query
arguments of the form ``name:key=value,key=value``. The pixel work happens
elsewhere; here they only decide whether a request may skip the access token.

Filter Truth Table
==================
::
    exempt = (W ∪ B non-empty)
         and (T non-empty)
         and (T ∩ B empty)
         and (W empty or T ⊆ W)

    W={border}               T={border}            -> exempt
    W={border}               T={border,thumbnail}  -> token required
    B={border}               T={thumbnail}         -> exempt
    W={border}, B={border}   T={border}            -> token required

Key Behaviours
===============
- No configured filter means every request needs a token.
- Requests without transformations are never exempt.
- Blacklist membership wins over whitelist membership.
"""

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

__all__ = [
    "Transformation",
    "TransformationFilterConfig",
    "is_exempt",
    "parse_transformations",
]

TRANSFORMATION_KEY_PATTERN = re.compile(r"^t(\[\d*\])?$")


@dataclass(frozen=True)
class Transformation:
    name: str
    params: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class TransformationFilterConfig:
    whitelist: frozenset[str] = frozenset()
    blacklist: frozenset[str] = frozenset()

    @classmethod
    def from_lists(
        cls, whitelist: Iterable[str] | None = None, blacklist: Iterable[str] | None = None
    ) -> "TransformationFilterConfig":
        return cls(frozenset(whitelist or ()), frozenset(blacklist or ()))

    @property
    def configured(self) -> bool:
        return bool(self.whitelist or self.blacklist)


def is_exempt(config: TransformationFilterConfig, names: Iterable[str]) -> bool:
    """Return True when the requested transformations may skip token checks."""
    requested = set(names)
    if not config.configured or not requested:
        return False

    if requested & config.blacklist:
        return False

    if config.whitelist and not requested <= config.whitelist:
        return False

    return True


def _parse_one(value: str) -> Transformation:
    name, _, raw_params = value.partition(":")
    params: dict[str, str] = {}
    for pair in raw_params.split(","):
        if not pair:
            continue
        key, _, param_value = pair.partition("=")
        params[key] = param_value
    return Transformation(name=name, params=params)


def parse_transformations(query: Sequence[tuple[str, str]]) -> list[Transformation]:
    """Extract transformations from decoded ``(key, value)`` query pairs, in order."""
    return [_parse_one(value) for key, value in query if TRANSFORMATION_KEY_PATTERN.match(key) and value]
