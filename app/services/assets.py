"""Build display records for recommended titles.

Each title is handled by its own task. Existing metadata wins; otherwise the
language model writes a summary and a poster concept and the image model
paints the poster. A title whose generation fails still yields a record with
an error summary and a placeholder poster.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Sequence

from pydantic import ValidationError

from ..config import Settings
from ..exceptions import GenerationFailed
from ..models import CreativeAssets, MovieMetadata, RecommendedMovie
from .lookup import LookupResolver
from .openrouter import OpenRouterClient

logger = logging.getLogger(__name__)

CREATIVE_ASSETS_TEMPLATE = """
You are a creative assistant for a movie database.
For the movie titled "{title}":
1. Generate a concise and engaging summary (2-3 sentences).
2. Generate a brief textual description (1-2 sentences) for a visually appealing movie poster concept. This description should guide an AI image generator. Focus on mood, key elements, and style.

Respond strictly with JSON following this structure:
{{
  "summary": "short summary",
  "posterDescription": "poster concept"
}}
"""

POSTER_IMAGE_TEMPLATE = (
    'Generate a movie poster based on this description: "{description}". '
    'The movie title is "{title}". If possible, subtly incorporate the movie title '
    "text into the poster design. The style should be cinematic and visually appealing."
)


class AssetPipeline:
    """Resolve or generate the summary and poster for each recommended title."""

    def __init__(
        self,
        settings: Settings,
        resolver: LookupResolver,
        client: OpenRouterClient,
    ):
        self._settings = settings
        self._resolver = resolver
        self._client = client
        self._semaphore = asyncio.Semaphore(settings.asset_concurrency)

    async def build_assets(self, titles: Sequence[str]) -> list[RecommendedMovie]:
        """Return one record per title, in the same order as ``titles``."""

        tasks = [asyncio.create_task(self._guarded_build(title)) for title in titles]
        if not tasks:
            return []
        return list(await asyncio.gather(*tasks))

    async def _guarded_build(self, title: str) -> RecommendedMovie:
        # The timeout covers waiting for a free slot as well as the work.
        timeout = self._settings.asset_task_timeout_seconds
        try:
            if timeout is None:
                return await self._limited_build(title)
            return await asyncio.wait_for(self._limited_build(title), timeout)
        except GenerationFailed as exc:
            logger.warning("Asset generation failed for %s: %s", title, exc)
        except asyncio.TimeoutError:
            logger.warning("Asset generation timed out for %s after %ss", title, timeout)
        except Exception:
            logger.exception("Unexpected error while building assets for %s", title)
        return RecommendedMovie.failed(title, self._settings.placeholder_poster_url)

    async def _limited_build(self, title: str) -> RecommendedMovie:
        async with self._semaphore:
            return await self._build_one(title)

    async def _build_one(self, title: str) -> RecommendedMovie:
        metadata = await self._resolver.resolve(title)
        if metadata is not None and metadata.complete:
            logger.debug("Using %s metadata for %s", metadata.source, title)
            return RecommendedMovie.from_metadata(title, metadata)
        return await self._generate(title, metadata)

    async def _generate(
        self, title: str, metadata: MovieMetadata | None
    ) -> RecommendedMovie:
        assets = await self.generate_creative_assets(title)
        poster = await self._client.generate_image(
            POSTER_IMAGE_TEMPLATE.format(
                description=assets.poster_description, title=title
            )
        )
        return RecommendedMovie(
            title=title,
            summary=assets.summary,
            poster=poster,
            release_date=metadata.release_date if metadata else None,
            external_rating_score=metadata.external_rating_score if metadata else None,
        )

    async def generate_creative_assets(self, title: str) -> CreativeAssets:
        """Ask the model for a summary and a poster concept for ``title``."""

        data = await self._client.complete_json(
            CREATIVE_ASSETS_TEMPLATE.format(title=title), temperature=0.8
        )
        try:
            assets = CreativeAssets.model_validate(data)
        except ValidationError as exc:
            raise GenerationFailed("Creative assets response was malformed") from exc
        if not assets.summary.strip() or not assets.poster_description.strip():
            raise GenerationFailed("Creative assets response was empty")
        return assets
