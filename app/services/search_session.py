"""Debounced live search over the TMDB catalog."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Callable, Protocol

from ..models import SearchResult

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 0.32


class TitleSearcher(Protocol):
    async def search_titles(self, query: str) -> list[SearchResult]: ...


class SearchPhase(str, Enum):
    IDLE = "idle"
    DEBOUNCING = "debouncing"
    SEARCHING = "searching"


Listener = Callable[["SearchSession"], None]


class SearchSession:
    """Turns a stream of query edits into at most one in-flight search.

    Every edit cancels the outstanding operation and starts a new one that
    waits for ``debounce_seconds`` of quiet before searching. Results are only
    applied while the query that produced them is still the current one.
    """

    def __init__(
        self,
        client: TitleSearcher,
        *,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
    ) -> None:
        self._client = client
        self._debounce_seconds = debounce_seconds
        self._query = ""
        self._results: list[SearchResult] = []
        self._is_loading = False
        self._phase = SearchPhase.IDLE
        self._task: asyncio.Task[None] | None = None
        self._loading_owner: asyncio.Task[None] | None = None
        self._listeners: list[Listener] = []

    @property
    def query(self) -> str:
        return self._query

    @query.setter
    def query(self, value: str) -> None:
        self._query = value
        self._notify()
        self.schedule_search()

    @property
    def trimmed_query(self) -> str:
        return self._query.strip()

    @property
    def results(self) -> list[SearchResult]:
        return list(self._results)

    @property
    def is_loading(self) -> bool:
        return self._is_loading

    @property
    def phase(self) -> SearchPhase:
        return self._phase

    @property
    def pending(self) -> asyncio.Task[None] | None:
        """The outstanding search operation, if any."""

        return self._task

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a change listener and return a callable that removes it."""

        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def schedule_search(self) -> None:
        """Start a debounced search for the current query."""

        self._start(debounce=True)

    def search_immediately(self) -> None:
        """Search for the current query without waiting for input to settle."""

        self._start(debounce=False)

    def cancel(self) -> None:
        """Cancel the outstanding operation, leaving results untouched."""

        self._cancel_pending()
        self._is_loading = False
        self._loading_owner = None
        self._phase = SearchPhase.IDLE
        self._notify()

    def _start(self, *, debounce: bool) -> None:
        self._cancel_pending()
        trimmed = self.trimmed_query
        if not trimmed:
            self._results = []
            self._is_loading = False
            self._loading_owner = None
            self._phase = SearchPhase.IDLE
            self._notify()
            return

        self._phase = SearchPhase.DEBOUNCING if debounce else SearchPhase.SEARCHING
        self._task = asyncio.create_task(self._run(trimmed, debounce=debounce))
        self._notify()

    def _cancel_pending(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()

    async def _run(self, query: str, *, debounce: bool) -> None:
        if debounce:
            await asyncio.sleep(self._debounce_seconds)
            self._phase = SearchPhase.SEARCHING
        await self._perform_search(query)

    async def _perform_search(self, query: str) -> None:
        owner = asyncio.current_task()
        self._is_loading = True
        self._loading_owner = owner
        self._notify()
        try:
            found = await self._client.search_titles(query)
            if query == self.trimmed_query:
                self._results = list(found)
            else:
                logger.debug("Discarding stale search results for %r", query)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("Search for %r failed: %s", query, exc)
        finally:
            if self._loading_owner is owner:
                self._is_loading = False
                self._loading_owner = None
            if self._task is owner:
                self._task = None
                self._phase = SearchPhase.IDLE
            self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:  # pragma: no cover - listener bugs must not break search
                logger.exception("Search listener failed")
