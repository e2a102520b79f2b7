"""Tests for per-user recommendation state and its invalidation rules."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, cast

import pytest

from app.config import DEFAULT_LOOKUP_DATA_PATH, Settings
from app.database import Database
from app.exceptions import (
    GenerationFailed,
    NoRatedMoviesError,
    PreferenceSummaryMissing,
    RatingsChangedError,
)
from app.models import PosterReference, RatedMovieDraft
from app.services.assets import AssetPipeline
from app.services.lookup import LocalDatasetSource, LookupResolver
from app.services.openrouter import OpenRouterClient
from app.services.preferences import PreferenceAnalyzer
from app.services.ratings import RatedMovieStore
from app.services.recommender import RecommendationGenerator
from app.services.session import RecommendationSession, SessionRegistry


class _ScriptedClient:
    """Answers each prompt family with the next queued reply."""

    def __init__(self) -> None:
        self.analysis_replies: list[dict[str, Any] | Exception] = []
        self.recommendation_replies: list[dict[str, Any] | Exception] = []
        self.prompts: list[str] = []
        self.before_reply: Callable[[], Awaitable[Any]] | None = None

    async def complete_json(self, prompt: str, **kwargs: Any) -> dict[str, Any]:
        self.prompts.append(prompt)
        if self.before_reply is not None:
            hook, self.before_reply = self.before_reply, None
            await hook()
        if "Rated Movies:" in prompt:
            reply = self.analysis_replies.pop(0)
        elif "They enjoy these types of movies" in prompt:
            reply = self.recommendation_replies.pop(0)
        else:
            title = prompt.split('"')[1]
            reply = {"summary": f"All about {title}.", "posterDescription": "Neon."}
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def generate_image(self, prompt: str) -> PosterReference:
        return PosterReference.generated("data:image/png;base64,AAAA")


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
async def components(tmp_path):
    settings = Settings(_env_file=None)
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'session.db'}")
    await database.create_all()
    client = _ScriptedClient()
    openrouter = cast(OpenRouterClient, client)
    resolver = LookupResolver(
        settings, [LocalDatasetSource.from_file(DEFAULT_LOOKUP_DATA_PATH)]
    )
    registry = SessionRegistry(
        RatedMovieStore(database.session_factory, settings.placeholder_poster_url),
        resolver,
        PreferenceAnalyzer(openrouter),
        RecommendationGenerator(openrouter),
        AssetPipeline(settings, resolver, openrouter),
    )
    try:
        yield registry, client
    finally:
        await registry.close()
        await database.dispose()


@pytest.mark.anyio("asyncio")
async def test_full_flow_produces_recommendations(components) -> None:
    registry, client = components
    session = await registry.get("user-1")

    rated = await session.rate(RatedMovieDraft(title="inception", rating=5))
    assert rated.summary.startswith("Cobb, a skilled thief")
    assert rated.poster.kind == "hosted"

    client.analysis_replies.append({"movieTypes": "Sci-Fi, Thriller"})
    assert await session.analyze() == "Sci-Fi, Thriller"
    assert "Rated Movies: inception (Rating: 5/5, Released: 2010-07-15, Score: 8.4/10)" in client.prompts[0]

    client.recommendation_replies.append({"recommendations": ["The Matrix", "Tenet"]})
    recommendations = await session.recommend()

    assert [movie.title for movie in recommendations] == ["The Matrix", "Tenet"]
    assert recommendations[0].poster.kind == "hosted"
    assert recommendations[1].summary == "All about Tenet."
    assert session.preference_summary == "Sci-Fi, Thriller"
    assert session.recommendations == recommendations


@pytest.mark.anyio("asyncio")
async def test_rating_clears_summary_and_recommendations(components) -> None:
    registry, client = components
    session = await registry.get("user-1")
    await session.rate(RatedMovieDraft(title="Inception", rating=5))
    client.analysis_replies.append({"movieTypes": "Sci-Fi"})
    client.recommendation_replies.append({"recommendations": ["Arrival"]})
    await session.analyze()
    await session.recommend()

    await session.rate(RatedMovieDraft(title="Heat", rating=4))

    assert session.preference_summary is None
    assert session.recommendations == []
    assert [movie.title for movie in session.rated_movies] == ["Heat", "Inception"]


@pytest.mark.anyio("asyncio")
async def test_rating_from_another_writer_clears_state(components) -> None:
    registry, client = components
    session = await registry.get("user-1")
    await session.rate(RatedMovieDraft(title="Inception", rating=5))
    client.analysis_replies.append({"movieTypes": "Sci-Fi"})
    await session.analyze()

    await registry.store.add("user-1", RatedMovieDraft(title="Heat", rating=4))

    assert session.preference_summary is None


@pytest.mark.anyio("asyncio")
async def test_failed_analysis_keeps_previous_summary(components) -> None:
    registry, client = components
    session = await registry.get("user-1")
    await session.rate(RatedMovieDraft(title="Inception", rating=5))
    client.analysis_replies.extend([{"movieTypes": "Sci-Fi"}, GenerationFailed("down")])
    await session.analyze()

    with pytest.raises(GenerationFailed):
        await session.analyze()

    assert session.preference_summary == "Sci-Fi"


@pytest.mark.anyio("asyncio")
async def test_analyze_without_ratings_is_rejected(components) -> None:
    registry, client = components
    session = await registry.get("user-1")

    with pytest.raises(NoRatedMoviesError):
        await session.analyze()
    assert client.prompts == []


@pytest.mark.anyio("asyncio")
async def test_recommend_requires_analysis(components) -> None:
    registry, _ = components
    session = await registry.get("user-1")
    await session.rate(RatedMovieDraft(title="Inception", rating=5))

    with pytest.raises(PreferenceSummaryMissing):
        await session.recommend()


@pytest.mark.anyio("asyncio")
async def test_failed_recommendation_keeps_previous_list(components) -> None:
    registry, client = components
    session = await registry.get("user-1")
    await session.rate(RatedMovieDraft(title="Inception", rating=5))
    client.analysis_replies.append({"movieTypes": "Sci-Fi"})
    client.recommendation_replies.extend(
        [{"recommendations": ["Arrival"]}, GenerationFailed("down")]
    )
    await session.analyze()
    first = await session.recommend()

    with pytest.raises(GenerationFailed):
        await session.recommend()

    assert session.recommendations == first


@pytest.mark.anyio("asyncio")
async def test_registry_reuses_and_releases_sessions(components) -> None:
    registry, _ = components
    first = await registry.get("user-1")
    assert await registry.get("user-1") is first
    assert registry.store.subscriber_count("user-1") == 1

    await registry.release("user-1")

    assert not first.is_open
    assert registry.store.subscriber_count("user-1") == 0
    assert await registry.get("user-1") is not first


@pytest.mark.anyio("asyncio")
async def test_session_context_manager_releases_subscription(components) -> None:
    registry, _ = components
    session = RecommendationSession(
        "user-9",
        registry.store,
        registry.resolver,
        cast(PreferenceAnalyzer, object()),
        cast(RecommendationGenerator, object()),
        cast(AssetPipeline, object()),
    )

    async with session:
        assert registry.store.subscriber_count("user-9") == 1

    assert registry.store.subscriber_count("user-9") == 0


@pytest.mark.anyio("asyncio")
async def test_analysis_outpaced_by_a_rating_is_rejected(components) -> None:
    registry, client = components
    session = await registry.get("user-1")
    await session.rate(RatedMovieDraft(title="Inception", rating=5))
    client.analysis_replies.append({"movieTypes": "Sci-Fi"})
    client.before_reply = lambda: registry.store.add(
        "user-1", RatedMovieDraft(title="Heat", rating=4)
    )

    with pytest.raises(RatingsChangedError):
        await session.analyze()

    assert session.preference_summary is None
    assert [movie.title for movie in session.rated_movies] == ["Heat", "Inception"]


@pytest.mark.anyio("asyncio")
async def test_recommendations_outpaced_by_a_rating_are_rejected(components) -> None:
    registry, client = components
    session = await registry.get("user-1")
    await session.rate(RatedMovieDraft(title="Inception", rating=5))
    client.analysis_replies.append({"movieTypes": "Sci-Fi"})
    client.recommendation_replies.append({"recommendations": ["The Matrix"]})
    await session.analyze()
    client.before_reply = lambda: registry.store.add(
        "user-1", RatedMovieDraft(title="Heat", rating=4)
    )

    with pytest.raises(RatingsChangedError):
        await session.recommend()

    assert session.preference_summary is None
    assert session.recommendations == []


@pytest.mark.anyio("asyncio")
async def test_registry_evicts_least_recently_used_sessions(components) -> None:
    registry, _ = components
    store = registry.store
    bounded = SessionRegistry(
        store,
        registry.resolver,
        cast(PreferenceAnalyzer, object()),
        cast(RecommendationGenerator, object()),
        cast(AssetPipeline, object()),
        max_sessions=2,
    )
    try:
        first = await bounded.get("user-a")
        second = await bounded.get("user-b")
        assert await bounded.get("user-a") is first

        third = await bounded.get("user-c")

        assert not second.is_open
        assert first.is_open and third.is_open
        assert store.subscriber_count("user-b") == 0
        assert await bounded.get("user-b") is not second

        for index in range(500):
            await bounded.get(f"user-{index}")

        open_subscriptions = sum(store.subscriber_count(f"user-{index}") for index in range(500))
        assert open_subscriptions == 2
        assert not first.is_open
    finally:
        await bounded.close()

    assert store.subscriber_count("user-498") == 0
    assert store.subscriber_count("user-499") == 0


def test_registry_rejects_non_positive_capacity() -> None:
    with pytest.raises(ValueError):
        SessionRegistry(
            cast(RatedMovieStore, object()),
            cast(LookupResolver, object()),
            cast(PreferenceAnalyzer, object()),
            cast(RecommendationGenerator, object()),
            cast(AssetPipeline, object()),
            max_sessions=0,
        )
