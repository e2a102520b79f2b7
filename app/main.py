"""Entry point for the FastAPI-powered recommendation service."""

from __future__ import annotations

import json
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any, AsyncIterator

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field, ValidationError

from . import __version__
from .config import settings
from .database import Database
from .exceptions import GenerationFailed, PersistenceFailed, RatingsChangedError
from .models import RatedMovie, RatedMovieDraft, RecommendedMovie
from .services.assets import AssetPipeline
from .services.lookup import LookupResolver, build_lookup_sources
from .services.openrouter import OpenRouterClient
from .services.preferences import PreferenceAnalyzer
from .services.ratings import RatedMovieStore
from .services.recommender import RecommendationGenerator
from .services.session import RecommendationSession, SessionRegistry

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app: FastAPI


@asynccontextmanager
async def lifespan(_: FastAPI):
    exit_stack = AsyncExitStack()
    openrouter_http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.openrouter_api_url),
            timeout=httpx.Timeout(60.0, connect=10.0),
        )
    )
    database = Database(settings.database_url)
    await database.create_all()

    openrouter = OpenRouterClient(settings, openrouter_http_client)
    resolver = LookupResolver(
        settings, build_lookup_sources(settings, database.session_factory)
    )
    store = RatedMovieStore(database.session_factory, settings.placeholder_poster_url)
    registry = SessionRegistry(
        store,
        resolver,
        PreferenceAnalyzer(openrouter),
        RecommendationGenerator(openrouter),
        AssetPipeline(settings, resolver, openrouter),
        max_sessions=settings.session_cache_size,
    )

    app.state.sessions = registry
    app.state.database = database

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await registry.close()
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="AI-powered movie preference analysis and recommendations",
        version=__version__,
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def get_session_registry(app: FastAPI) -> SessionRegistry:
    registry = getattr(app.state, "sessions", None)
    if not isinstance(registry, SessionRegistry):
        raise RuntimeError("Session registry not initialised")
    return registry


class LookupRequest(BaseModel):
    title: str = Field(min_length=1, max_length=255)


def _movie_payload(movie: RatedMovie | RecommendedMovie) -> dict[str, Any]:
    return movie.model_dump(mode="json", by_alias=True)


def _state_payload(session: RecommendationSession) -> dict[str, Any]:
    return {
        "userId": session.user_id,
        "ratedMovies": [_movie_payload(movie) for movie in session.rated_movies],
        "preferenceSummary": session.preference_summary,
        "recommendations": [
            _movie_payload(movie) for movie in session.recommendations
        ],
    }


def register_routes(fastapi_app: FastAPI) -> None:
    async def _session_for(user_id: str) -> RecommendationSession:
        user_id = user_id.strip()
        if not user_id:
            raise HTTPException(status_code=400, detail="User id is required")
        registry = get_session_registry(fastapi_app)
        try:
            return await registry.get(user_id)
        except PersistenceFailed as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc

    async def _json_body(request: Request) -> dict[str, Any]:
        try:
            payload = await request.json()
        except json.JSONDecodeError:
            payload = {}
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Invalid payload")
        return payload

    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.get("/api/users/{user_id}/ratings")
    async def list_ratings(user_id: str) -> JSONResponse:
        session = await _session_for(user_id)
        return JSONResponse(
            {"ratedMovies": [_movie_payload(movie) for movie in session.rated_movies]}
        )

    @fastapi_app.post("/api/users/{user_id}/ratings", status_code=201)
    async def rate_movie(request: Request, user_id: str) -> JSONResponse:
        session = await _session_for(user_id)
        payload = await _json_body(request)
        try:
            draft = RatedMovieDraft.model_validate(payload)
        except ValidationError as exc:
            raise HTTPException(
                status_code=400, detail=exc.errors(include_url=False, include_context=False)
            ) from exc
        try:
            movie = await session.rate(draft)
        except PersistenceFailed as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        return JSONResponse(_movie_payload(movie), status_code=201)

    @fastapi_app.get("/api/users/{user_id}/ratings/stream")
    async def stream_ratings(user_id: str) -> StreamingResponse:
        user_id = user_id.strip()
        if not user_id:
            raise HTTPException(status_code=400, detail="User id is required")
        store = get_session_registry(fastapi_app).store

        async def _events() -> AsyncIterator[str]:
            async with store.subscribe(user_id) as subscription:
                logger.info(
                    "Streaming ratings for %s (%s open subscriptions)",
                    user_id,
                    store.subscriber_count(user_id),
                )
                async for snapshot in subscription:
                    data = json.dumps([_movie_payload(movie) for movie in snapshot])
                    yield f"event: ratings\ndata: {data}\n\n"

        return StreamingResponse(_events(), media_type="text/event-stream")

    @fastapi_app.post("/api/users/{user_id}/analysis")
    async def analyze_preferences(user_id: str) -> JSONResponse:
        session = await _session_for(user_id)
        try:
            summary = await session.analyze()
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except RatingsChangedError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        except GenerationFailed as exc:
            logger.warning("Preference analysis failed for %s: %s", user_id, exc)
            raise HTTPException(
                status_code=502,
                detail="There was an issue analyzing your movie preferences. Please try again.",
            ) from exc
        return JSONResponse({"preferenceSummary": summary})

    @fastapi_app.post("/api/users/{user_id}/recommendations")
    async def recommend_movies(user_id: str) -> JSONResponse:
        session = await _session_for(user_id)
        try:
            recommendations = await session.recommend()
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except RatingsChangedError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        except GenerationFailed as exc:
            logger.warning("Recommendation failed for %s: %s", user_id, exc)
            raise HTTPException(
                status_code=502,
                detail="Could not generate recommendations at this time. Please try again.",
            ) from exc
        return JSONResponse(
            {"recommendations": [_movie_payload(movie) for movie in recommendations]}
        )

    @fastapi_app.get("/api/users/{user_id}/state")
    async def session_state(user_id: str) -> JSONResponse:
        session = await _session_for(user_id)
        return JSONResponse(_state_payload(session))

    @fastapi_app.post("/api/lookup")
    async def lookup_movie(request: Request) -> JSONResponse:
        payload = await _json_body(request)
        try:
            lookup = LookupRequest.model_validate(payload)
        except ValidationError as exc:
            raise HTTPException(
                status_code=400, detail=exc.errors(include_url=False, include_context=False)
            ) from exc
        metadata = await get_session_registry(fastapi_app).resolver.resolve(lookup.title)
        if metadata is None:
            raise HTTPException(status_code=404, detail="Movie not found")
        return JSONResponse(metadata.model_dump(mode="json"))


app = create_app()


if __name__ == "__main__":  # pragma: no cover - manual execution
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )
