"""SQLAlchemy ORM models for the media vault application.

Data Model Layout
=================
::
    short_urls table
    ├─ id (SERIAL PRIMARY KEY)
    ├─ short_url_id (VARCHAR(32) UNIQUE, INDEXED)
    ├─ user (VARCHAR(255), INDEXED with image_identifier)
    ├─ image_identifier (VARCHAR(255))
    ├─ extension (VARCHAR(16) NULL)
    ├─ query (JSON)
    └─ created_at (TIMESTAMPTZ, DEFAULT NOW())

How to Use
===========
**Step 1 — Import**::
    from mediavault.models import ShortUrlRecord

**Step 2 — Query by alias**::
    result = await db.execute(
        select(ShortUrlRecord).where(ShortUrlRecord.short_url_id == "aaaaaaa")
    )
    record = result.scalar_one_or_none()

Key Behaviours
===============
- A record is addressed only through short_url_id.
- (user, image_identifier) is indexed for "all short URLs of an image" deletes.

Classes:
    ShortUrlRecord:  An opaque alias for a user's image plus query parameters.
"""

import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Index, String, func
from sqlalchemy.orm import Mapped, mapped_column

from mediavault.database import Base

__all__ = ["ShortUrlRecord"]


class ShortUrlRecord(Base):
    __tablename__ = "short_urls"
    __table_args__ = (Index("ix_short_urls_user_image", "user", "image_identifier"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    short_url_id: Mapped[str] = mapped_column(String(32), unique=True, index=True, nullable=False)
    user: Mapped[str] = mapped_column(String(255), nullable=False)
    image_identifier: Mapped[str] = mapped_column(String(255), nullable=False)
    extension: Mapped[str | None] = mapped_column(String(16), nullable=True)
    query: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<ShortUrlRecord(short_url_id='{self.short_url_id}', user='{self.user}')>"
