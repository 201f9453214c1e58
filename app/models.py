"""Pydantic models describing TMDB payloads and API responses."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

from .utils import parse_year

if TYPE_CHECKING:
    from .db_models import MovieRecord, ProviderRecord


class ProviderKind(str, Enum):
    """How a streaming provider offers a title, in display order."""

    FLATRATE = "flatrate"
    RENT = "rent"
    BUY = "buy"

    @property
    def priority(self) -> int:
        return _KIND_PRIORITY[self]


_KIND_PRIORITY = {
    ProviderKind.FLATRATE: 0,
    ProviderKind.RENT: 1,
    ProviderKind.BUY: 2,
}


def provider_sort_key(provider: "ProviderRecord") -> tuple[int, str, str]:
    """Order providers by kind, then name ignoring case, then exact name."""

    return (provider.kind.priority, provider.name.casefold(), provider.name)


class SearchResult(BaseModel):
    """Single entry of a TMDB movie search."""

    model_config = ConfigDict(extra="ignore")

    id: int
    title: str | None = None
    release_date: str | None = None
    poster_path: str | None = None

    @property
    def year(self) -> int | None:
        return parse_year(self.release_date)


class SearchResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    results: list[SearchResult]


class MovieDetails(BaseModel):
    """Subset of the TMDB movie details payload used for enrichment."""

    model_config = ConfigDict(extra="ignore")

    id: int
    title: str
    overview: str | None = None
    poster_path: str | None = None
    release_date: str | None = None
    runtime: int | None = None
    vote_average: float | None = None
    vote_count: int | None = None


class WatchProvider(BaseModel):
    model_config = ConfigDict(extra="ignore")

    provider_name: str
    logo_path: str | None = None
    provider_id: int | None = None


class RegionProviders(BaseModel):
    """Provider offers for a single watch region."""

    model_config = ConfigDict(extra="ignore")

    flatrate: list[WatchProvider] | None = None
    rent: list[WatchProvider] | None = None
    buy: list[WatchProvider] | None = None


class WatchProvidersResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    results: dict[str, RegionProviders] = Field(default_factory=dict)


class SearchResultOut(BaseModel):
    """Search result rendered for the presentation layer."""

    id: int
    title: str
    year: int | None = None
    release_date: str | None = None
    thumbnail: str | None = None


class ProviderOut(BaseModel):
    id: str
    name: str
    logo: str | None = None
    kind: ProviderKind


class MovieOut(BaseModel):
    """Watchlist entry returned by the HTTP API."""

    id: str
    title: str
    display_title: str
    year: int | None = None
    plot: str | None = None
    poster_url: str | None = None
    runtime: int = 0
    watch_position: int = 0
    seen: bool = False
    vote_average: float | None = None
    vote_count: int | None = None
    rating_label: str | None = None
    is_fetching: bool = False
    created_at: datetime
    providers: list[ProviderOut] = Field(default_factory=list)

    @classmethod
    def from_record(cls, record: "MovieRecord") -> "MovieOut":
        providers = sorted(
            record.providers,
            key=provider_sort_key,
        )
        return cls(
            id=record.id,
            title=record.title,
            display_title=record.display_title,
            year=record.year,
            plot=record.plot,
            poster_url=record.poster_url,
            runtime=record.runtime,
            watch_position=record.watch_position,
            seen=record.seen,
            vote_average=record.vote_average,
            vote_count=record.vote_count,
            rating_label=record.rating_label,
            is_fetching=record.is_fetching,
            created_at=record.created_at,
            providers=[
                ProviderOut(
                    id=provider.id,
                    name=provider.name,
                    logo=provider.logo_url,
                    kind=provider.kind,
                )
                for provider in providers
            ],
        )


class MovieCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)


class MovieUpdate(BaseModel):
    seen: bool | None = None
    watch_position: int | None = Field(default=None, ge=0)
