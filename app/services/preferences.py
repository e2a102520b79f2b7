"""Infer the kinds of movies a user enjoys from their ratings."""

from __future__ import annotations

import logging
from typing import Sequence

from pydantic import ValidationError

from ..exceptions import GenerationFailed, NoRatedMoviesError
from ..models import PreferenceAnalysis, RatedMovie
from .openrouter import OpenRouterClient

logger = logging.getLogger(__name__)

ANALYZE_PREFERENCES_TEMPLATE = """
You are an AI movie expert. Analyze the following list of movies the user has rated and determine the types of movies they like.
Ratings run from 1 (disliked) to 5 (loved). Weigh highly rated movies more than poorly rated ones.

Rated Movies: {rated_movies}

Respond strictly with JSON following this structure:
{{
  "movieTypes": "Genre or style, Another genre, ..."
}}
"""


def serialize_rated_movies(rated_movies: Sequence[RatedMovie]) -> str:
    """Render ratings as ``"Title (Rating: 5/5), Other (Rating: 3/5)"``."""

    return ", ".join(movie.describe() for movie in rated_movies)


class PreferenceAnalyzer:
    """Turns rated movies into a comma separated list of movie types."""

    def __init__(self, client: OpenRouterClient):
        self._client = client

    async def analyze(self, rated_movies: Sequence[RatedMovie]) -> str:
        if not rated_movies:
            raise NoRatedMoviesError()

        prompt = ANALYZE_PREFERENCES_TEMPLATE.format(
            rated_movies=serialize_rated_movies(rated_movies)
        )
        data = await self._client.complete_json(prompt, temperature=0.4)
        try:
            analysis = PreferenceAnalysis.model_validate(data)
        except ValidationError as exc:
            raise GenerationFailed("Preference analysis returned no movie types") from exc

        movie_types = analysis.movie_types.strip()
        if not movie_types:
            raise GenerationFailed("Preference analysis returned no movie types")
        logger.info(
            "Analyzed %s rated movies into preferences: %s", len(rated_movies), movie_types
        )
        return movie_types
