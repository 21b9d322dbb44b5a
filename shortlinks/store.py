"""Mapping store contract and its PostgreSQL implementation.

``MappingStore`` is the persistence contract the registry relies on. It knows
nothing about deadlines or degraded mode; those belong to the availability
guard wrapped around every call.

Operation Overview
==================
::
    find_by_short_code(code)      ─┐
    find_by_original_url(url)      │ LOOKUP
    find_by_id(id)                ─┘
    find_all()                    ── SCAN   (created_at DESC)
    insert(mapping)               ─┐
    update_original_url(id, url)   │ WRITE  (insert raises Conflict on
    increment_clicks(id, delta)    │         a duplicate short_code)
    delete_by_id(id)              ─┘

Key Behaviours
===============
- ``insert`` fails with ``Conflict`` when the short code is already taken.
- ``find_by_original_url`` returns the oldest mapping, so concurrent creates
  that both inserted resolve to the first write.
- ``increment_clicks`` is a single ``UPDATE ... SET clicks = clicks + n``.
- ``update_original_url`` sets only ``original_url``; a concurrent click
  increment or delete is never overwritten or undone.
- Each call opens its own session; returned objects are detached.

Classes:
    MappingStore:  Abstract persistence contract.
    SQLAlchemyMappingStore:  Async SQLAlchemy implementation.
"""

from abc import ABC, abstractmethod
from typing import Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError

from shortlinks.database import StoreConnection
from shortlinks.exceptions import Conflict, InternalError
from shortlinks.models import UrlMapping

__all__ = ["MappingStore", "SQLAlchemyMappingStore"]

UNIQUE_VIOLATION = "23505"


def _is_short_code_conflict(exc: IntegrityError) -> bool:
    """True when ``exc`` is the unique index on short_code rejecting a duplicate."""
    message = str(exc.orig)
    if "short_code" not in message:
        return False
    sqlstate = getattr(exc.orig, "sqlstate", None) or getattr(exc.orig, "pgcode", None)
    return sqlstate == UNIQUE_VIOLATION or "unique" in message.lower() or "duplicate" in message.lower()


class MappingStore(ABC):
    """Abstract persistence contract for short link mappings."""

    @abstractmethod
    async def find_by_short_code(self, short_code: str) -> Optional[UrlMapping]:
        pass

    @abstractmethod
    async def find_by_original_url(self, original_url: str) -> Optional[UrlMapping]:
        pass

    @abstractmethod
    async def find_by_id(self, mapping_id: int) -> Optional[UrlMapping]:
        pass

    @abstractmethod
    async def find_all(self) -> list[UrlMapping]:
        """All mappings, newest first."""

    @abstractmethod
    async def insert(self, mapping: UrlMapping) -> UrlMapping:
        """Persist a new mapping and return it with its id assigned.

        Raises:
            Conflict: If the short code is already taken.
        """

    @abstractmethod
    async def update_original_url(self, mapping_id: int, original_url: str) -> Optional[UrlMapping]:
        """Point a mapping at a new URL; None when the mapping is gone."""

    @abstractmethod
    async def increment_clicks(self, mapping_id: int, delta: int = 1) -> bool:
        """Add ``delta`` to the click counter; False when the mapping is gone."""

    @abstractmethod
    async def delete_by_id(self, mapping_id: int) -> bool:
        """Delete a mapping; False when nothing was deleted."""


class SQLAlchemyMappingStore(MappingStore):
    def __init__(self, connection: StoreConnection) -> None:
        self._connection = connection

    async def find_by_short_code(self, short_code: str) -> Optional[UrlMapping]:
        async with self._connection.session() as session:
            result = await session.execute(select(UrlMapping).where(UrlMapping.short_code == short_code))
            return result.scalar_one_or_none()

    async def find_by_original_url(self, original_url: str) -> Optional[UrlMapping]:
        async with self._connection.session() as session:
            result = await session.execute(
                select(UrlMapping)
                .where(UrlMapping.original_url == original_url)
                .order_by(UrlMapping.created_at.asc(), UrlMapping.id.asc())
                .limit(1)
            )
            return result.scalars().first()

    async def find_by_id(self, mapping_id: int) -> Optional[UrlMapping]:
        async with self._connection.session() as session:
            return await session.get(UrlMapping, mapping_id)

    async def find_all(self) -> list[UrlMapping]:
        async with self._connection.session() as session:
            result = await session.execute(
                select(UrlMapping).order_by(UrlMapping.created_at.desc(), UrlMapping.id.desc())
            )
            return list(result.scalars().all())

    async def insert(self, mapping: UrlMapping) -> UrlMapping:
        async with self._connection.session() as session:
            session.add(mapping)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                if _is_short_code_conflict(exc):
                    raise Conflict(f"Short code '{mapping.short_code}' is already taken") from exc
                raise InternalError(f"Mapping rejected by the database: {exc.orig}") from exc
            await session.refresh(mapping)
            return mapping

    async def update_original_url(self, mapping_id: int, original_url: str) -> Optional[UrlMapping]:
        async with self._connection.session() as session:
            result = await session.execute(
                update(UrlMapping)
                .where(UrlMapping.id == mapping_id)
                .values(original_url=original_url)
                .returning(UrlMapping)
            )
            mapping = result.scalar_one_or_none()
            await session.commit()
            return mapping

    async def increment_clicks(self, mapping_id: int, delta: int = 1) -> bool:
        if delta < 1:
            raise ValueError(f"delta must be a positive integer, got {delta!r}")
        async with self._connection.session() as session:
            result = await session.execute(
                update(UrlMapping).where(UrlMapping.id == mapping_id).values(clicks=UrlMapping.clicks + delta)
            )
            await session.commit()
            return result.rowcount > 0

    async def delete_by_id(self, mapping_id: int) -> bool:
        async with self._connection.session() as session:
            result = await session.execute(delete(UrlMapping).where(UrlMapping.id == mapping_id))
            await session.commit()
            return result.rowcount > 0
