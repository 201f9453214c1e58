"""Keyed object store for watchlist records."""

from __future__ import annotations

import logging

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .db_models import MovieRecord

logger = logging.getLogger(__name__)


class StoreError(RuntimeError):
    """Raised when pending watchlist changes cannot be persisted."""


class MovieStore:
    """Unit of work over the watchlist tables.

    Records handed out by the store stay attached to its session, so mutations
    are picked up by the next :meth:`save`.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    def insert(self, record: MovieRecord) -> None:
        self._session.add(record)

    async def delete(self, record: MovieRecord) -> None:
        await self._session.delete(record)

    async def save(self) -> None:
        try:
            await self._session.commit()
        except SQLAlchemyError as exc:
            await self._session.rollback()
            logger.warning("Failed to persist watchlist changes: %s", exc)
            raise StoreError("Unable to save watchlist changes") from exc

    async def reload(self, record: MovieRecord) -> None:
        """Re-read the columns other sessions may have changed meanwhile."""

        await self._session.refresh(
            record, ["year", "plot", "poster_url", "runtime", "watch_position", "seen"]
        )

    async def get(self, record_id: str) -> MovieRecord | None:
        stmt = select(MovieRecord).where(MovieRecord.id == record_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_recent(self) -> list[MovieRecord]:
        """Return every record, most recently created first."""

        stmt = select(MovieRecord).order_by(MovieRecord.created_at.desc())
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def clear_stale_fetching(self) -> int:
        """Reset busy flags left behind by an interrupted process."""

        stmt = (
            update(MovieRecord)
            .where(MovieRecord.is_fetching.is_(True))
            .values(is_fetching=False)
        )
        result = await self._session.execute(stmt)
        await self.save()
        return result.rowcount or 0
