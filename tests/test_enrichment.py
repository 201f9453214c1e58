"""End-to-end behaviour of the TMDB enrichment workflow."""

from __future__ import annotations

import asyncio
from typing import Any

import httpx
import pytest

from app.config import Settings
from app.db_models import MovieRecord, ProviderRecord
from app.models import MovieDetails, ProviderKind
from app.services.enrichment import EnrichmentWorkflow, merge_enrichment
from app.services.tmdb import BadStatus, InvalidResponse, NotFound, TMDBClient

INTERSTELLAR_DETAILS: dict[str, Any] = {
    "id": 157336,
    "title": "Interstellar",
    "overview": "The adventures of a group of explorers.",
    "poster_path": "/gEU2QniE6E77NI6lCU6MxlNBvIx.jpg",
    "release_date": "2014-11-05",
    "runtime": 169,
    "vote_average": 8.6,
    "vote_count": 34000,
}


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


class RecordingStore:
    """Store stand-in that remembers the busy flag at every save."""

    def __init__(self, record: MovieRecord) -> None:
        self.record = record
        self.fetching_at_save: list[bool] = []
        self.reloads = 0

    async def save(self) -> None:
        self.fetching_at_save.append(self.record.is_fetching)

    async def reload(self, record: MovieRecord) -> None:
        self.reloads += 1


class FakeTMDB:
    """Routes mock transport requests to canned TMDB payloads."""

    def __init__(
        self,
        *,
        search: list[dict[str, Any]] | None = None,
        details: dict[str, Any] | None = None,
        providers: dict[str, Any] | None = None,
    ) -> None:
        self.search = [{"id": 157336, "title": "Interstellar"}] if search is None else search
        self.details = INTERSTELLAR_DETAILS if details is None else details
        self.providers = (
            {"IT": {"flatrate": [{"provider_name": "Netflix", "logo_path": "/n.jpg"}]}}
            if providers is None
            else providers
        )
        self.failures: dict[str, httpx.Response] = {}
        self.calls: list[str] = []
        self.gate: asyncio.Event | None = None

    def _endpoint(self, request: httpx.Request) -> str:
        path = request.url.path
        if path.endswith("/search/movie"):
            return "search"
        if path.endswith("/watch/providers"):
            return "providers"
        return "details"

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        endpoint = self._endpoint(request)
        self.calls.append(endpoint)
        if self.gate is not None:
            await self.gate.wait()
        if endpoint in self.failures:
            return self.failures[endpoint]
        if endpoint == "search":
            return httpx.Response(200, json={"page": 1, "results": self.search})
        if endpoint == "details":
            return httpx.Response(200, json=self.details)
        return httpx.Response(200, json={"id": 157336, "results": self.providers})


def build_client(fake: FakeTMDB, http_client: httpx.AsyncClient) -> TMDBClient:
    settings = Settings(_env_file=None, TMDB_READ_TOKEN="token", WATCH_REGION="IT")  # type: ignore[call-arg]
    return TMDBClient(settings, http_client)


def enriched_fields(record: MovieRecord) -> dict[str, Any]:
    return {
        "title": record.title,
        "year": record.year,
        "plot": record.plot,
        "poster_url": record.poster_url,
        "runtime": record.runtime,
        "watch_position": record.watch_position,
        "vote_average": record.vote_average,
        "vote_count": record.vote_count,
        "providers": [(p.name, p.kind, p.logo_url) for p in record.providers],
    }


@pytest.mark.anyio("asyncio")
async def test_interstellar_is_enriched_end_to_end() -> None:
    fake = FakeTMDB()
    record = MovieRecord.create("Interstellar")
    store = RecordingStore(record)

    async with httpx.AsyncClient(transport=httpx.MockTransport(fake), base_url="https://api.example.com/3") as http_client:
        workflow = EnrichmentWorkflow(build_client(fake, http_client))
        ran = await workflow.run(record, store)

    assert ran is True
    assert fake.calls == ["search", "details", "providers"]
    assert record.title == "Interstellar"
    assert record.year == 2014
    assert record.runtime == 169
    assert record.plot == "The adventures of a group of explorers."
    assert record.poster_url == "https://image.tmdb.org/t/p/w500/gEU2QniE6E77NI6lCU6MxlNBvIx.jpg"
    assert record.vote_average == pytest.approx(8.6)
    assert record.vote_count == 34000
    assert record.rating_label == "8.6"
    assert [(p.name, p.kind) for p in record.providers] == [("Netflix", ProviderKind.FLATRATE)]
    assert record.is_fetching is False
    assert store.fetching_at_save == [True, False]
    assert store.reloads == 1


@pytest.mark.anyio("asyncio")
async def test_empty_search_fails_with_not_found_and_skips_other_calls() -> None:
    fake = FakeTMDB(search=[])
    record = MovieRecord.create("Nonexistent Film")
    store = RecordingStore(record)

    async with httpx.AsyncClient(transport=httpx.MockTransport(fake), base_url="https://api.example.com/3") as http_client:
        workflow = EnrichmentWorkflow(build_client(fake, http_client))
        with pytest.raises(NotFound):
            await workflow.run(record, store)

    assert fake.calls == ["search"]
    assert record.is_fetching is False
    assert record.year is None
    assert record.providers == []


@pytest.mark.anyio("asyncio")
@pytest.mark.parametrize("failing_step", ["search", "details", "providers"])
async def test_busy_flag_clears_at_every_failure_point(failing_step: str) -> None:
    fake = FakeTMDB()
    fake.failures[failing_step] = httpx.Response(503, json={"status_message": "down"})
    record = MovieRecord.create("Interstellar")
    record.plot = "Kept plot"
    record.vote_average = 7.1
    record.replace_providers([ProviderRecord.create("Old Service", ProviderKind.BUY)])
    store = RecordingStore(record)

    async with httpx.AsyncClient(transport=httpx.MockTransport(fake), base_url="https://api.example.com/3") as http_client:
        workflow = EnrichmentWorkflow(build_client(fake, http_client))
        with pytest.raises(BadStatus) as excinfo:
            await workflow.run(record, store)

    assert excinfo.value.status_code == 503
    assert fake.calls[-1] == failing_step
    assert record.is_fetching is False
    assert store.fetching_at_save == [True, False]
    assert record.plot == "Kept plot"
    assert record.vote_average == 7.1
    assert [p.name for p in record.providers] == ["Old Service"]
    assert workflow.is_running(record.id) is False


@pytest.mark.anyio("asyncio")
async def test_undecodable_details_surface_invalid_response() -> None:
    fake = FakeTMDB()
    fake.failures["details"] = httpx.Response(200, content=b"{truncated")
    record = MovieRecord.create("Interstellar")

    async with httpx.AsyncClient(transport=httpx.MockTransport(fake), base_url="https://api.example.com/3") as http_client:
        workflow = EnrichmentWorkflow(build_client(fake, http_client))
        with pytest.raises(InvalidResponse):
            await workflow.run(record, RecordingStore(record))

    assert record.is_fetching is False


@pytest.mark.anyio("asyncio")
async def test_refresh_preserves_user_fields_and_replaces_providers() -> None:
    fake = FakeTMDB(
        details={**INTERSTELLAR_DETAILS, "runtime": 120, "vote_average": None, "vote_count": None},
        providers={
            "IT": {
                "flatrate": [{"provider_name": "Netflix"}, {"provider_name": "Netflix"}],
                "rent": [{"provider_name": "Apple TV"}],
            }
        },
    )
    record = MovieRecord.create("Interstellar", is_fetching=False)
    record.year = 2015
    record.plot = "My own notes"
    record.poster_url = "https://example.com/custom.jpg"
    record.runtime = 169
    record.watch_position = 150
    record.seen = True
    record.vote_average = 8.0
    record.vote_count = 10
    old_provider = ProviderRecord.create("Old Service", ProviderKind.FLATRATE)
    record.replace_providers([old_provider])

    async with httpx.AsyncClient(transport=httpx.MockTransport(fake), base_url="https://api.example.com/3") as http_client:
        workflow = EnrichmentWorkflow(build_client(fake, http_client))
        await workflow.run(record, RecordingStore(record))

    assert record.year == 2015
    assert record.plot == "My own notes"
    assert record.poster_url == "https://example.com/custom.jpg"
    assert record.seen is True
    assert record.runtime == 120
    assert record.watch_position == 120
    assert record.vote_average is None
    assert record.vote_count is None
    assert old_provider not in record.providers
    assert [(p.name, p.kind) for p in record.providers] == [
        ("Netflix", ProviderKind.FLATRATE),
        ("Apple TV", ProviderKind.RENT),
    ]


@pytest.mark.anyio("asyncio")
async def test_missing_region_leaves_an_empty_provider_set() -> None:
    fake = FakeTMDB(providers={"US": {"flatrate": [{"provider_name": "Max"}]}})
    record = MovieRecord.create("Interstellar")
    record.replace_providers([ProviderRecord.create("Stale", ProviderKind.RENT)])

    async with httpx.AsyncClient(transport=httpx.MockTransport(fake), base_url="https://api.example.com/3") as http_client:
        workflow = EnrichmentWorkflow(build_client(fake, http_client))
        await workflow.run(record, RecordingStore(record))

    assert record.providers == []
    assert record.runtime == 169


@pytest.mark.anyio("asyncio")
async def test_repeated_enrichment_is_idempotent_apart_from_provider_ids() -> None:
    fake = FakeTMDB(
        providers={
            "IT": {
                "flatrate": [{"provider_name": "Netflix"}],
                "buy": [{"provider_name": "Google Play Movies"}],
            }
        }
    )
    record = MovieRecord.create("Interstellar")

    async with httpx.AsyncClient(transport=httpx.MockTransport(fake), base_url="https://api.example.com/3") as http_client:
        workflow = EnrichmentWorkflow(build_client(fake, http_client))
        await workflow.run(record, RecordingStore(record))
        first = enriched_fields(record)
        first_ids = {p.id for p in record.providers}
        await workflow.run(record, RecordingStore(record))

    assert enriched_fields(record) == first
    assert first_ids.isdisjoint({p.id for p in record.providers})


@pytest.mark.anyio("asyncio")
async def test_overlapping_runs_for_one_record_are_skipped() -> None:
    fake = FakeTMDB()
    fake.gate = asyncio.Event()
    record = MovieRecord.create("Interstellar")

    async with httpx.AsyncClient(transport=httpx.MockTransport(fake), base_url="https://api.example.com/3") as http_client:
        workflow = EnrichmentWorkflow(build_client(fake, http_client))
        first = asyncio.create_task(workflow.run(record, RecordingStore(record)))
        while not fake.calls:
            await asyncio.sleep(0)

        assert workflow.is_running(record.id) is True
        assert await workflow.run(record, RecordingStore(record)) is False

        fake.gate.set()
        assert await first is True

    assert fake.calls == ["search", "details", "providers"]
    assert record.is_fetching is False


def test_merge_fills_missing_plot_only() -> None:
    details = MovieDetails.model_validate(INTERSTELLAR_DETAILS)

    blank = MovieRecord.create("Interstellar")
    merge_enrichment(blank, details, [])
    assert blank.plot == INTERSTELLAR_DETAILS["overview"]

    annotated = MovieRecord.create("Interstellar")
    annotated.plot = "Already written"
    merge_enrichment(annotated, details, [])
    assert annotated.plot == "Already written"


def test_merge_without_runtime_keeps_existing_runtime() -> None:
    details = MovieDetails.model_validate({**INTERSTELLAR_DETAILS, "runtime": None, "release_date": "TBA"})
    record = MovieRecord.create("Interstellar")
    record.runtime = 100
    record.watch_position = 40

    merge_enrichment(record, details, [])

    assert record.runtime == 100
    assert record.watch_position == 40
    assert record.year is None
