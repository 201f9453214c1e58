"""Client for The Movie Database (TMDB) catalog API."""

from __future__ import annotations

import logging
from typing import Any, Iterable, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from ..config import DEFAULT_LANGUAGE, Settings
from ..db_models import ProviderRecord
from ..models import (
    MovieDetails,
    ProviderKind,
    RegionProviders,
    SearchResponse,
    SearchResult,
    WatchProvider,
    WatchProvidersResponse,
    provider_sort_key,
)
from ..utils import LOGO_SIZE, POSTER_SIZE, build_image_url

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_HOST = "image.tmdb.org"

ModelT = TypeVar("ModelT", bound=BaseModel)


class TMDBError(Exception):
    """Base class for failures talking to TMDB."""


class MissingCredential(TMDBError):
    def __init__(self) -> None:
        super().__init__("TMDB read token is not configured")


class NotFound(TMDBError):
    def __init__(self, title: str) -> None:
        super().__init__(f"No TMDB results for {title!r}")
        self.title = title


class BadStatus(TMDBError):
    def __init__(self, status_code: int) -> None:
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code


class InvalidResponse(TMDBError):
    def __init__(self, detail: str = "Invalid TMDB response") -> None:
        super().__init__(detail)


class TransportError(TMDBError):
    """Network level failure, including timeouts."""


def build_provider_records(
    flatrate: Iterable[WatchProvider] | None = None,
    rent: Iterable[WatchProvider] | None = None,
    buy: Iterable[WatchProvider] | None = None,
    *,
    image_host: str = DEFAULT_IMAGE_HOST,
) -> list[ProviderRecord]:
    """Return deduplicated provider records ordered by kind then name.

    Entries are keyed on ``(name, kind)``; when a provider is listed twice for
    the same kind the later listing wins.
    """

    unique: dict[tuple[str, ProviderKind], ProviderRecord] = {}
    for kind, entries in (
        (ProviderKind.FLATRATE, flatrate),
        (ProviderKind.RENT, rent),
        (ProviderKind.BUY, buy),
    ):
        for entry in entries or ():
            unique[(entry.provider_name, kind)] = ProviderRecord.create(
                name=entry.provider_name,
                kind=kind,
                logo_url=build_image_url(
                    entry.logo_path, host=image_host, size=LOGO_SIZE
                ),
            )

    return sorted(unique.values(), key=provider_sort_key)


class TMDBClient:
    """Stateless facade over the TMDB search, details and provider endpoints."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        if not settings.tmdb_read_token:
            raise MissingCredential()
        self._token = settings.tmdb_read_token
        self._language = settings.tmdb_language
        self._region = settings.watch_region
        self._image_host = settings.tmdb_image_host
        self._timeout = settings.request_timeout_seconds
        self._client = http_client

    @property
    def language(self) -> str:
        return self._language

    @property
    def region(self) -> str:
        return self._region

    @property
    def image_host(self) -> str:
        return self._image_host

    def _headers(self) -> dict[str, str]:
        return {
            "accept": "application/json",
            "Authorization": f"Bearer {self._token}",
        }

    async def _get(
        self,
        path: str,
        model: type[ModelT],
        params: dict[str, Any] | None = None,
    ) -> ModelT:
        try:
            response = await self._client.get(
                path,
                params=params,
                headers=self._headers(),
                timeout=self._timeout,
            )
        except httpx.HTTPError as exc:
            raise TransportError(
                f"{exc.__class__.__name__} while requesting {path}"
            ) from exc

        if not 200 <= response.status_code < 300:
            logger.debug(
                "TMDB request %s failed with %s: %s",
                path,
                response.status_code,
                response.text,
            )
            raise BadStatus(response.status_code)

        try:
            return model.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise InvalidResponse(f"Unexpected payload from {path}") from exc

    async def search(
        self, title: str, *, language: str | None = None
    ) -> list[SearchResult]:
        """Return TMDB matches for ``title`` in relevance order."""

        params = {
            "query": title,
            "include_adult": "false",
            "language": language or self._language,
            "page": 1,
        }
        payload = await self._get("/search/movie", SearchResponse, params=params)
        return payload.results

    async def search_titles(self, query: str) -> list[SearchResult]:
        """Live-search entry point; always queries in the default language."""

        return await self.search(query, language=DEFAULT_LANGUAGE)

    async def fetch_details(self, tmdb_id: int) -> MovieDetails:
        return await self._get(
            f"/movie/{tmdb_id}", MovieDetails, params={"language": self._language}
        )

    async def fetch_providers(self, tmdb_id: int) -> dict[str, RegionProviders]:
        """Return the region keyed provider map for a movie."""

        payload = await self._get(
            f"/movie/{tmdb_id}/watch/providers", WatchProvidersResponse
        )
        return payload.results

    def providers_for_region(
        self,
        providers: dict[str, RegionProviders],
        region: str | None = None,
    ) -> list[ProviderRecord]:
        """Project the provider map to one region; a missing region is empty."""

        offers = providers.get(region or self._region)
        if offers is None:
            return []
        return build_provider_records(
            offers.flatrate,
            offers.rent,
            offers.buy,
            image_host=self._image_host,
        )

    def poster_url(self, path: str | None) -> str | None:
        return build_image_url(path, host=self._image_host, size=POSTER_SIZE)

    def logo_url(self, path: str | None) -> str | None:
        return build_image_url(path, host=self._image_host, size=LOGO_SIZE)
