"""Integration helpers for the OpenRouter API."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from ..config import Settings
from ..exceptions import GenerationFailed
from ..models import PosterReference
from ..utils import extract_json_object

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are Movie Recs, an AI movie expert that helps people discover films they will love. "
    "You always respond with a single JSON object that matches the documented schema and "
    "never include commentary outside JSON."
)


class OpenRouterClient:
    """Client responsible for talking to OpenRouter.

    One instance is created at startup and shared by every service. Text
    prompts go through :meth:`complete_json`; poster art goes through
    :meth:`generate_image`.
    """

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client

    async def complete_json(
        self,
        prompt: str,
        *,
        temperature: float = 0.7,
        max_output_tokens: int = 1_200,
    ) -> dict[str, Any]:
        """Send ``prompt`` to the text model and return the parsed JSON reply."""

        payload = {
            "model": self._settings.openrouter_model,
            "temperature": temperature,
            "top_p": 0.95,
            "max_output_tokens": max_output_tokens,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
        }
        message = await self._chat_completion(payload)
        content = message.get("content")
        if not isinstance(content, str) or not content.strip():
            raise GenerationFailed("Model response missing content")

        try:
            parsed = extract_json_object(content)
        except ValueError as exc:
            raise GenerationFailed(str(exc)) from exc
        if not isinstance(parsed, dict):
            raise GenerationFailed("Model response was not a JSON object")
        return parsed

    async def generate_image(self, prompt: str) -> PosterReference:
        """Ask the image model for a poster.

        Inline ``data:`` payloads become generated posters and URLs become
        hosted posters. A reply without any image falls back to a transparent
        pixel so the caller always gets something renderable.
        """

        payload = {
            "model": self._settings.openrouter_image_model,
            "modalities": ["image", "text"],
            "messages": [{"role": "user", "content": prompt}],
        }
        message = await self._chat_completion(payload)

        url = self._first_image_url(message)
        if url is None:
            logger.error("Image generation returned no image; using blank poster")
            return PosterReference.blank()
        if url.startswith("data:image/"):
            return PosterReference.generated(url)
        return PosterReference.hosted(url)

    async def _chat_completion(self, payload: dict[str, Any]) -> dict[str, Any]:
        api_key = self._settings.openrouter_api_key
        if not api_key:
            raise GenerationFailed("OpenRouter API key is required to generate content")

        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "HTTP-Referer": "https://github.com/movierecs/movierecs",
            "X-Title": "Movie Recs",
        }
        try:
            response = await self._client.post(
                "/chat/completions", json=payload, headers=headers
            )
        except httpx.HTTPError as exc:
            raise GenerationFailed(f"OpenRouter request failed: {exc}") from exc
        if response.status_code >= 400:
            logger.error(
                "OpenRouter request failed (%s): %s", response.status_code, response.text
            )
            raise GenerationFailed(response.text or f"HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as exc:
            raise GenerationFailed("OpenRouter returned a non-JSON body") from exc
        choices = data.get("choices", []) if isinstance(data, dict) else []
        if not choices:
            raise GenerationFailed("Model returned no choices")
        message = choices[0].get("message", {})
        if not isinstance(message, dict):
            raise GenerationFailed("Model response missing message")
        return message

    @staticmethod
    def _first_image_url(message: dict[str, Any]) -> str | None:
        images = message.get("images") or []
        if not isinstance(images, list):
            return None
        for image in images:
            if not isinstance(image, dict):
                continue
            image_url = image.get("image_url") or {}
            url = image_url.get("url") if isinstance(image_url, dict) else image_url
            if isinstance(url, str) and url.strip():
                return url.strip()
        return None
