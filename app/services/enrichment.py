"""Fetch TMDB metadata and merge it into a watchlist record."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from ..db_models import MovieRecord, ProviderRecord
from ..models import MovieDetails
from ..utils import parse_year
from .tmdb import NotFound, TMDBClient

logger = logging.getLogger(__name__)


class RecordStore(Protocol):
    async def save(self) -> None: ...

    async def reload(self, record: MovieRecord) -> None: ...


@dataclass(slots=True)
class EnrichmentResult:
    """What a completed enrichment fetched before merging."""

    tmdb_id: int
    details: MovieDetails
    providers: list[ProviderRecord]


def merge_enrichment(
    record: MovieRecord,
    details: MovieDetails,
    providers: list[ProviderRecord],
    *,
    poster_url: str | None = None,
) -> None:
    """Apply fetched metadata to ``record`` without clobbering user state.

    Year, plot and poster are only filled when missing. Runtime, rating and
    providers always take the latest fetched values.
    """

    if record.year is None:
        record.year = parse_year(details.release_date)
    if record.plot is None:
        record.plot = details.overview
    if record.poster_url is None:
        record.poster_url = poster_url

    if details.runtime is not None:
        record.apply_runtime(details.runtime)

    record.vote_average = details.vote_average
    record.vote_count = details.vote_count

    record.replace_providers(providers)


class EnrichmentWorkflow:
    """Runs search, details and provider lookups for one record at a time.

    Records are tracked by identifier while a run is in progress; a second run
    for the same record is skipped instead of racing the first one's merge.
    """

    def __init__(self, client: TMDBClient):
        self._client = client
        self._in_flight: set[str] = set()

    def is_running(self, record_id: str) -> bool:
        return record_id in self._in_flight

    async def run(self, record: MovieRecord, store: RecordStore) -> bool:
        """Enrich ``record`` and persist it through ``store``.

        Returns ``False`` when the record is already being enriched. Remote
        failures propagate to the caller after the busy flag is cleared.
        """

        if record.id in self._in_flight:
            logger.info("Enrichment already running for %s, skipping", record.id)
            return False

        self._in_flight.add(record.id)
        try:
            record.is_fetching = True
            await store.save()
            try:
                result = await self._fetch(record.title)
                # The user may have edited the record while the lookups ran.
                await store.reload(record)
                merge_enrichment(
                    record,
                    result.details,
                    result.providers,
                    poster_url=self._client.poster_url(result.details.poster_path),
                )
                logger.info(
                    "Enriched %s from TMDB movie %s", record.title, result.tmdb_id
                )
            finally:
                record.is_fetching = False
                await store.save()
        finally:
            self._in_flight.discard(record.id)
        return True

    async def _fetch(self, title: str) -> EnrichmentResult:
        matches = await self._client.search(title)
        if not matches:
            raise NotFound(title)
        tmdb_id = matches[0].id

        details = await self._client.fetch_details(tmdb_id)
        provider_map = await self._client.fetch_providers(tmdb_id)
        providers = self._client.providers_for_region(provider_map)
        return EnrichmentResult(tmdb_id=tmdb_id, details=details, providers=providers)
