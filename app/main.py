"""Entry point for the FastAPI-powered watchlist service."""

from __future__ import annotations

import asyncio
import logging
from contextlib import AsyncExitStack, asynccontextmanager, suppress
from typing import Any, Literal

import httpx
from fastapi import FastAPI, HTTPException, Query, Response, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ValidationError

from .config import settings
from .database import Database
from .models import MovieCreate, MovieOut, MovieUpdate, SearchResult, SearchResultOut
from .services.search_session import SearchSession
from .services.tmdb import MissingCredential, TMDBClient, TMDBError
from .services.watchlist import WatchlistService
from .utils import THUMBNAIL_SIZE, build_image_url

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app: FastAPI


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    async with AsyncExitStack() as exit_stack:
        tmdb_http_client = await exit_stack.enter_async_context(
            httpx.AsyncClient(
                base_url=str(settings.tmdb_api_url),
                timeout=httpx.Timeout(settings.request_timeout_seconds),
            )
        )
        database = Database(settings.database_url)
        exit_stack.push_async_callback(database.dispose)
        await database.create_all()

        tmdb: TMDBClient | None
        try:
            tmdb = TMDBClient(settings, tmdb_http_client)
        except MissingCredential as exc:
            logger.error("%s; movies will be stored without TMDB metadata", exc)
            tmdb = None

        watchlist = WatchlistService(database, tmdb)
        fastapi_app.state.watchlist = watchlist
        fastapi_app.state.database = database
        await watchlist.start()

        try:
            yield
        finally:
            await watchlist.stop()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Personal movie watchlist enriched with TMDB metadata",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PATCH", "DELETE"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def get_watchlist(app: FastAPI) -> WatchlistService:
    service = getattr(app.state, "watchlist", None)
    if not isinstance(service, WatchlistService):
        raise RuntimeError("Watchlist service not initialised")
    return service


def serialize_search_result(result: SearchResult) -> dict[str, Any]:
    return SearchResultOut(
        id=result.id,
        title=result.title or "Untitled",
        year=result.year,
        release_date=result.release_date,
        thumbnail=build_image_url(
            result.poster_path, host=settings.tmdb_image_host, size=THUMBNAIL_SIZE
        ),
    ).model_dump(mode="json")


class SearchMessage(BaseModel):
    """Client-to-server message on the live search socket."""

    type: Literal["query", "submit"]
    query: str = ""


def register_routes(fastapi_app: FastAPI) -> None:
    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.get("/search")
    async def search(query: str = Query(default="")) -> list[dict[str, Any]]:
        trimmed = query.strip()
        if not trimmed:
            return []
        service = get_watchlist(fastapi_app)
        try:
            results = await service.client.search_titles(trimmed)
        except MissingCredential as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        except TMDBError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return [serialize_search_result(result) for result in results]

    @fastapi_app.websocket("/ws/search")
    async def live_search(websocket: WebSocket) -> None:
        service = get_watchlist(fastapi_app)
        try:
            client = service.client
        except MissingCredential as exc:
            await websocket.close(code=1011, reason=str(exc))
            return

        await websocket.accept()
        session = SearchSession(
            client, debounce_seconds=settings.search_debounce_seconds
        )
        outbox: asyncio.Queue[dict[str, Any]] = asyncio.Queue()

        def _on_change(current: SearchSession) -> None:
            outbox.put_nowait(
                {
                    "type": "state",
                    "query": current.query,
                    "phase": current.phase.value,
                    "loading": current.is_loading,
                    "results": [
                        serialize_search_result(result) for result in current.results
                    ],
                }
            )

        async def _sender() -> None:
            while True:
                payload = await outbox.get()
                await websocket.send_json(payload)

        unsubscribe = session.subscribe(_on_change)
        sender = asyncio.create_task(_sender())
        try:
            while True:
                raw = await websocket.receive_text()
                try:
                    message = SearchMessage.model_validate_json(raw)
                except ValidationError:
                    await websocket.send_json(
                        {"type": "error", "detail": "Unsupported search message"}
                    )
                    continue
                if message.type == "query":
                    session.query = message.query
                else:
                    session.search_immediately()
        except WebSocketDisconnect:
            logger.debug("Live search client disconnected")
        finally:
            unsubscribe()
            session.cancel()
            sender.cancel()
            with suppress(asyncio.CancelledError):
                await sender

    @fastapi_app.get("/movies")
    async def list_movies() -> list[MovieOut]:
        return await get_watchlist(fastapi_app).list_movies()

    @fastapi_app.post("/movies", status_code=202)
    async def add_movie(payload: MovieCreate) -> MovieOut:
        movie = await get_watchlist(fastapi_app).add_title(payload.title)
        if movie is None:
            raise HTTPException(status_code=400, detail="Title must not be blank")
        return movie

    @fastapi_app.get("/movies/{movie_id}")
    async def get_movie(movie_id: str) -> MovieOut:
        try:
            return await get_watchlist(fastapi_app).get_movie(movie_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc

    @fastapi_app.patch("/movies/{movie_id}")
    async def update_movie(movie_id: str, payload: MovieUpdate) -> MovieOut:
        try:
            return await get_watchlist(fastapi_app).update(
                movie_id,
                seen=payload.seen,
                watch_position=payload.watch_position,
            )
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc

    @fastapi_app.post("/movies/{movie_id}/toggle-seen")
    async def toggle_seen(movie_id: str) -> MovieOut:
        try:
            return await get_watchlist(fastapi_app).toggle_seen(movie_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc

    @fastapi_app.post("/movies/{movie_id}/refresh", status_code=202)
    async def refresh_movie(movie_id: str) -> MovieOut:
        try:
            return await get_watchlist(fastapi_app).refresh(movie_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc

    @fastapi_app.delete("/movies/{movie_id}", status_code=204)
    async def delete_movie(movie_id: str) -> Response:
        try:
            await get_watchlist(fastapi_app).delete(movie_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return Response(status_code=204)


app = create_app()
