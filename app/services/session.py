"""Per-user recommendation state kept consistent with the rated movies."""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from contextlib import AsyncExitStack

from ..exceptions import PreferenceSummaryMissing, RatingsChangedError
from ..models import RatedMovie, RatedMovieDraft, RecommendedMovie
from .assets import AssetPipeline
from .lookup import LookupResolver
from .preferences import PreferenceAnalyzer
from .ratings import RatedMovieSnapshot, RatedMovieStore
from .recommender import RecommendationGenerator

logger = logging.getLogger(__name__)


class RecommendationSession:
    """Holds one user's rated movies, preference summary and recommendations.

    The session subscribes to the user's rated movies. Whenever a new
    snapshot arrives the preference summary and the recommendations derived
    from the previous set are discarded before anything else reads them.
    """

    def __init__(
        self,
        user_id: str,
        store: RatedMovieStore,
        resolver: LookupResolver,
        analyzer: PreferenceAnalyzer,
        generator: RecommendationGenerator,
        pipeline: AssetPipeline,
    ):
        self.user_id = user_id
        self._store = store
        self._resolver = resolver
        self._analyzer = analyzer
        self._generator = generator
        self._pipeline = pipeline
        self._exit_stack: AsyncExitStack | None = None
        self._subscription = None
        self._rated_movies: RatedMovieSnapshot = ()
        self._preference_summary: str | None = None
        self._recommendations: list[RecommendedMovie] = []
        self._lock = asyncio.Lock()

    async def open(self) -> "RecommendationSession":
        if self._exit_stack is not None:
            return self
        exit_stack = AsyncExitStack()
        self._subscription = await exit_stack.enter_async_context(
            self._store.subscribe(self.user_id)
        )
        self._exit_stack = exit_stack
        self._sync()
        return self

    async def close(self) -> None:
        """Release the rated-movie subscription."""

        if self._exit_stack is None:
            return
        exit_stack, self._exit_stack = self._exit_stack, None
        self._subscription = None
        await exit_stack.aclose()

    async def __aenter__(self) -> "RecommendationSession":
        return await self.open()

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    @property
    def is_open(self) -> bool:
        return self._exit_stack is not None

    @property
    def rated_movies(self) -> list[RatedMovie]:
        self._sync()
        return list(self._rated_movies)

    @property
    def preference_summary(self) -> str | None:
        self._sync()
        return self._preference_summary

    @property
    def recommendations(self) -> list[RecommendedMovie]:
        self._sync()
        return list(self._recommendations)

    def _sync(self) -> None:
        if self._subscription is None:
            return
        snapshot = self._subscription.drain()
        if snapshot is not None:
            self._apply_snapshot(snapshot)

    def _apply_snapshot(self, snapshot: RatedMovieSnapshot) -> None:
        changed = snapshot != self._rated_movies
        self._rated_movies = snapshot
        if changed:
            self._invalidate()

    def _invalidate(self) -> None:
        if self._preference_summary is not None or self._recommendations:
            logger.debug("Rated movies changed for %s; clearing analysis", self.user_id)
        self._preference_summary = None
        self._recommendations = []

    async def rate(self, draft: RatedMovieDraft) -> RatedMovie:
        """Look up details for the title and store the rating."""

        metadata = await self._resolver.resolve(draft.title)
        movie = await self._store.add(self.user_id, draft, metadata)
        self._sync()
        if not any(existing.id == movie.id for existing in self._rated_movies):
            # Snapshot delivery failed; still honour the invalidation.
            self._invalidate()
        return movie

    async def analyze(self) -> str:
        """Replace the preference summary, keeping the old one on failure.

        Raises :class:`RatingsChangedError` when the rated movies changed
        before the analysis finished; the result is not stored.
        """

        async with self._lock:
            self._sync()
            rated = self._rated_movies
            summary = await self._analyzer.analyze(rated)
            self._sync()
            if self._rated_movies != rated:
                # Ratings changed mid-flight; the result describes a stale set.
                logger.info("Discarding stale preference analysis for %s", self.user_id)
                raise RatingsChangedError()
            self._preference_summary = summary
            self._recommendations = []
            return summary

    async def recommend(self) -> list[RecommendedMovie]:
        """Generate titles for the current summary and build their assets."""

        async with self._lock:
            self._sync()
            summary = self._preference_summary
            if not summary:
                raise PreferenceSummaryMissing()
            titles = await self._generator.recommend(summary)
            recommendations = await self._pipeline.build_assets(titles)
            self._sync()
            if self._preference_summary != summary:
                logger.info("Discarding stale recommendations for %s", self.user_id)
                raise RatingsChangedError()
            self._recommendations = recommendations
            return list(recommendations)


class SessionRegistry:
    """Keeps open sessions for the most recently active users.

    At most ``max_sessions`` sessions stay open. Fetching a session marks it
    as recently used; opening one past the limit closes the least recently
    used session, which drops its summary and recommendations.
    """

    def __init__(
        self,
        store: RatedMovieStore,
        resolver: LookupResolver,
        analyzer: PreferenceAnalyzer,
        generator: RecommendationGenerator,
        pipeline: AssetPipeline,
        *,
        max_sessions: int = 256,
    ):
        if max_sessions < 1:
            raise ValueError("max_sessions must be at least 1")
        self._store = store
        self._resolver = resolver
        self._analyzer = analyzer
        self._generator = generator
        self._pipeline = pipeline
        self._max_sessions = max_sessions
        self._sessions: OrderedDict[str, RecommendationSession] = OrderedDict()
        self._lock = asyncio.Lock()

    @property
    def store(self) -> RatedMovieStore:
        return self._store

    @property
    def resolver(self) -> LookupResolver:
        return self._resolver

    async def get(self, user_id: str) -> RecommendationSession:
        evicted: list[RecommendationSession] = []
        async with self._lock:
            session = self._sessions.get(user_id)
            if session is not None:
                self._sessions.move_to_end(user_id)
            else:
                session = RecommendationSession(
                    user_id,
                    self._store,
                    self._resolver,
                    self._analyzer,
                    self._generator,
                    self._pipeline,
                )
                await session.open()
                self._sessions[user_id] = session
                while len(self._sessions) > self._max_sessions:
                    _, stale = self._sessions.popitem(last=False)
                    evicted.append(stale)
        for stale in evicted:
            logger.debug("Evicting idle session for %s", stale.user_id)
            await stale.close()
        return session

    async def release(self, user_id: str) -> None:
        async with self._lock:
            session = self._sessions.pop(user_id, None)
        if session is not None:
            await session.close()

    async def close(self) -> None:
        async with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            await session.close()
