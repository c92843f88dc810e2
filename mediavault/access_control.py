"""Access control adapters: map a public identity to its private key."""

from abc import ABC, abstractmethod
from collections.abc import Mapping

__all__ = ["AccessControlAdapter", "ArrayAccessControl"]


class AccessControlAdapter(ABC):
    @abstractmethod
    async def get_private_key(self, public_key: str | None) -> str | None:
        """Return the private key for ``public_key``, or None when unknown."""


class ArrayAccessControl(AccessControlAdapter):
    """Keys held in configuration (``ACCESS_CONTROL_KEYS``)."""

    def __init__(self, keys: Mapping[str, str]) -> None:
        self._keys = dict(keys)

    async def get_private_key(self, public_key: str | None) -> str | None:
        if public_key is None:
            return None
        return self._keys.get(public_key)

    def __repr__(self) -> str:
        return f"<ArrayAccessControl(public_keys={sorted(self._keys)})>"
