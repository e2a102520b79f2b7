"""Ask the language model for titles matching a preference summary."""

from __future__ import annotations

import logging

from pydantic import ValidationError

from ..exceptions import GenerationFailed
from ..models import TitleRecommendations
from .openrouter import OpenRouterClient

logger = logging.getLogger(__name__)

RECOMMEND_TITLES_TEMPLATE = """
You are the trusted cinephile friend helping someone find their next favorite movie.

They enjoy these types of movies: {movie_types}

Rules:
1. Recommend real, released movies that fit those types.
2. Mix well-known favorites with a few overlooked picks.
3. Use each movie's common English title without the release year.

Respond strictly with JSON following this structure:
{{
  "recommendations": ["Title", "Another Title"]
}}
"""


class RecommendationGenerator:
    """Produces an ordered list of movie titles for a preference summary."""

    def __init__(self, client: OpenRouterClient):
        self._client = client

    async def recommend(self, movie_types: str) -> list[str]:
        if movie_types is None or not movie_types.strip():
            raise ValueError("A preference summary is required to recommend movies")

        prompt = RECOMMEND_TITLES_TEMPLATE.format(movie_types=movie_types.strip())
        data = await self._client.complete_json(prompt, temperature=0.95)
        try:
            parsed = TitleRecommendations.model_validate(data)
        except ValidationError as exc:
            raise GenerationFailed("Recommendation response was malformed") from exc

        titles = [title.strip() for title in parsed.recommendations if title.strip()]
        if not titles:
            raise GenerationFailed("Model returned no recommendations")
        logger.info("Model recommended %s titles for %s", len(titles), movie_types)
        return titles
