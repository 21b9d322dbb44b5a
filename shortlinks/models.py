"""SQLAlchemy ORM models for the short link service.

This module defines the persisted layout of a short link mapping with the
unique index that guarantees one mapping per short code.

Data Model Layout
=================
::
    url_mappings table
    ├─ id (SERIAL PRIMARY KEY)
    ├─ original_url (TEXT NOT NULL)
    ├─ short_code (VARCHAR(20) UNIQUE, INDEXED)
    ├─ created_at (TIMESTAMPTZ, DEFAULT NOW(), INDEXED)
    └─ clicks (INTEGER DEFAULT 0, CHECK clicks >= 0)

How to Use
===========
**Step 1 — Import**::
    from shortlinks.models import UrlMapping

**Step 2 — Build a new mapping**::
    mapping = UrlMapping(original_url="https://example.com", short_code="abc234", clicks=0)

**Step 3 — Persist through a MappingStore**::
    mapping = await store.insert(mapping)

Key Behaviours
===============
- short_code is unique and indexed for fast lookups during redirects.
- original_url is deliberately not unique; idempotent create is a lookup.
- created_at is set once and never updated.
- clicks starts at 0 and only grows.

Classes:
    UrlMapping:  A short code pointing at an original URL, with click count.
"""

import datetime

from sqlalchemy import CheckConstraint, DateTime, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from shortlinks.database import Base

__all__ = ["UrlMapping"]


class UrlMapping(Base):
    __tablename__ = "url_mappings"
    __table_args__ = (CheckConstraint("clicks >= 0", name="ck_url_mappings_clicks_non_negative"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    original_url: Mapped[str] = mapped_column(Text, nullable=False)
    short_code: Mapped[str] = mapped_column(String(20), unique=True, index=True, nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), index=True, nullable=False
    )
    clicks: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    def __repr__(self) -> str:
        return f"<UrlMapping(id={self.id}, short_code='{self.short_code}', clicks={self.clicks})>"
