"""Short URL id generation and creation.

Flow Diagram — create_short_url()
=================================
::
    ┌─────────────┐
    │ Same params │  yes   ┌─────────────┐
    │ stored      │ ─────▶ │ reuse id    │
    │ already?    │        └─────────────┘
    └──────┬──────┘
           ▼ no
    ┌─────────────┐
    │ nanoid(7)   │ ◀──┐
    └──────┬──────┘    │ taken
           ▼           │
    ┌─────────────┐    │
    │ id unused?  │ ───┘
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ insert      │
    └─────────────┘

Functions:
    generate_short_url_id():  Random alphanumeric id.
    create_short_url():  Reuse or create a short URL for a parameter set.
"""

from nanoid import generate

from mediavault.adapters import DatabaseAdapter
from mediavault.config import get_settings
from mediavault.exceptions import DatabaseError
from mediavault.schemas import ShortUrlParams

__all__ = ["ALPHABET", "create_short_url", "generate_short_url_id"]

settings = get_settings()

ALPHABET = "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
MAX_ID_ATTEMPTS = 10


def generate_short_url_id(length: int = settings.SHORT_URL_ID_LENGTH) -> str:
    assert isinstance(length, int) and length > 0, f"length must be a positive integer, got {length!r}"
    return generate(ALPHABET, length)


async def create_short_url(
    database: DatabaseAdapter,
    params: ShortUrlParams,
    length: int = settings.SHORT_URL_ID_LENGTH,
) -> str:
    assert database is not None, "database must not be None"
    existing = await database.get_short_url_id(params)
    if existing is not None:
        return existing

    for _ in range(MAX_ID_ATTEMPTS):
        short_url_id = generate_short_url_id(length)
        if await database.get_short_url_params(short_url_id) is None:
            await database.insert_short_url(short_url_id, params)
            return short_url_id

    raise DatabaseError("Unable to allocate a unique short URL id")
