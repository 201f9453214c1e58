"""Watchlist operations and background enrichment scheduling."""

from __future__ import annotations

import asyncio
import logging

from ..database import Database
from ..db_models import MovieRecord
from ..models import MovieOut
from ..store import MovieStore, StoreError
from ..utils import clean_title
from .enrichment import EnrichmentWorkflow
from .tmdb import MissingCredential, TMDBClient, TMDBError

logger = logging.getLogger(__name__)


class WatchlistService:
    """Coordinates the local watchlist with TMDB enrichment."""

    def __init__(self, database: Database, client: TMDBClient | None):
        self._database = database
        self._client = client
        self._workflow = EnrichmentWorkflow(client) if client is not None else None
        self._jobs: dict[str, asyncio.Task[None]] = {}

    @property
    def client(self) -> TMDBClient:
        if self._client is None:
            raise MissingCredential()
        return self._client

    async def start(self) -> None:
        async with self._database.store() as store:
            cleared = await store.clear_stale_fetching()
        if cleared:
            logger.info("Reset %s records left in fetching state", cleared)

    async def stop(self) -> None:
        """Wait for running enrichments; they are never cancelled midway."""

        jobs = [job for job in self._jobs.values() if not job.done()]
        if jobs:
            await asyncio.gather(*jobs, return_exceptions=True)
        self._jobs.clear()

    async def list_movies(self) -> list[MovieOut]:
        async with self._database.store() as store:
            records = await store.list_recent()
            return [MovieOut.from_record(record) for record in records]

    async def get_movie(self, record_id: str) -> MovieOut:
        async with self._database.store() as store:
            record = await self._require(store, record_id)
            return MovieOut.from_record(record)

    async def add_title(self, title: str) -> MovieOut | None:
        """Insert a new record for ``title`` and enrich it in the background."""

        clean = clean_title(title)
        if not clean:
            return None

        record = MovieRecord.create(clean)
        async with self._database.store() as store:
            store.insert(record)
            await store.save()
            payload = MovieOut.from_record(record)

        self.schedule_enrichment(record.id)
        return payload

    async def refresh(self, record_id: str) -> MovieOut:
        """Re-run enrichment for an existing record."""

        async with self._database.store() as store:
            record = await self._require(store, record_id)
            if not self.is_enriching(record.id):
                record.is_fetching = True
                await store.save()
                self.schedule_enrichment(record.id)
            return MovieOut.from_record(record)

    async def toggle_seen(self, record_id: str) -> MovieOut:
        async with self._database.store() as store:
            record = await self._require(store, record_id)
            record.seen = not record.seen
            await store.save()
            return MovieOut.from_record(record)

    async def update(
        self,
        record_id: str,
        *,
        seen: bool | None = None,
        watch_position: int | None = None,
    ) -> MovieOut:
        async with self._database.store() as store:
            record = await self._require(store, record_id)
            if seen is not None:
                record.seen = seen
            if watch_position is not None:
                record.set_watch_position(watch_position)
            await store.save()
            return MovieOut.from_record(record)

    async def delete(self, record_id: str) -> None:
        async with self._database.store() as store:
            record = await self._require(store, record_id)
            await store.delete(record)
            await store.save()

    def is_enriching(self, record_id: str) -> bool:
        existing = self._jobs.get(record_id)
        return existing is not None and not existing.done()

    def schedule_enrichment(self, record_id: str) -> bool:
        """Start a background enrichment unless one is already running."""

        if self.is_enriching(record_id):
            return False

        async def _runner() -> None:
            try:
                await self.enrich(record_id)
            except (TMDBError, StoreError) as exc:
                logger.warning("TMDB enrichment for %s failed: %s", record_id, exc)
            except Exception as exc:  # pragma: no cover - background safety net
                logger.exception("Unexpected enrichment failure for %s: %s", record_id, exc)
            finally:
                self._jobs.pop(record_id, None)

        self._jobs[record_id] = asyncio.create_task(_runner())
        return True

    async def enrich(self, record_id: str) -> bool:
        """Enrich a stored record in place, raising on remote failures."""

        async with self._database.store() as store:
            record = await store.get(record_id)
            if record is None:
                logger.info("Record %s vanished before enrichment", record_id)
                return False
            if self._workflow is None:
                record.is_fetching = False
                await store.save()
                raise MissingCredential()
            return await self._workflow.run(record, store)

    @staticmethod
    async def _require(store: MovieStore, record_id: str) -> MovieRecord:
        record = await store.get(record_id)
        if record is None:
            raise KeyError(f"Movie {record_id} not found")
        return record
