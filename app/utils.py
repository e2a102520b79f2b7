"""Utility helpers for the Movie Recs service."""

from __future__ import annotations

import json
import re
from typing import Any
from urllib.parse import quote_plus


JSON_BLOCK_RE = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL)
BARE_JSON_RE = re.compile(r"\{.*\}", re.DOTALL)


def normalize_title(value: str | None) -> str:
    """Return the casefolded lookup key for a movie title."""

    return " ".join((value or "").split()).casefold()


def extract_json_object(content: str) -> dict[str, Any]:
    """Extract and parse the first JSON object from the model response."""

    match = JSON_BLOCK_RE.search(content)
    if match:
        payload = match.group(1)
    else:
        match = BARE_JSON_RE.search(content)
        if not match:
            raise ValueError("No JSON object found in response")
        payload = match.group(0)

    try:
        return json.loads(payload)
    except json.JSONDecodeError as exc:
        raise ValueError("Invalid JSON payload produced by the model") from exc


def placeholder_image_url(base_url: str, text: str) -> str:
    """Return a placehold.co style URL with ``text`` rendered as overlay."""

    return f"{base_url}?text={quote_plus(text)}"


def build_image_url(path: str, base_url: str) -> str:
    if not path:
        return ""
    if path.startswith("http"):
        return path
    if not path.startswith("/"):
        path = f"/{path}"
    return f"{base_url}{path}"
