"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_LOOKUP_DATA_PATH = Path(__file__).resolve().parent / "data" / "movies.json"


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="Movie Recs", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")

    openrouter_api_key: str | None = Field(
        default=None, alias="OPENROUTER_API_KEY"
    )
    openrouter_api_url: HttpUrl = Field(
        default="https://openrouter.ai/api/v1", alias="OPENROUTER_API_URL"
    )
    openrouter_model: str = Field(
        default="google/gemini-2.5-flash-lite", alias="OPENROUTER_MODEL"
    )
    openrouter_image_model: str = Field(
        default="google/gemini-2.5-flash-image-preview",
        alias="OPENROUTER_IMAGE_MODEL",
    )

    database_url: str = Field(
        default="sqlite+aiosqlite:///./movierecs.db", alias="DATABASE_URL"
    )

    lookup_data_path: Path | None = Field(
        default=DEFAULT_LOOKUP_DATA_PATH, alias="LOOKUP_DATA_PATH"
    )
    lookup_use_document_store: bool = Field(
        default=True, alias="LOOKUP_USE_DOCUMENT_STORE"
    )
    poster_base_url: str = Field(
        default="https://image.tmdb.org/t/p/w500", alias="POSTER_BASE_URL"
    )
    placeholder_poster_url: str = Field(
        default="https://placehold.co/300x450.png", alias="PLACEHOLDER_POSTER_URL"
    )

    asset_task_timeout_seconds: float | None = Field(
        default=90.0, alias="ASSET_TASK_TIMEOUT", ge=0
    )
    asset_concurrency: int = Field(
        default=8, alias="ASSET_CONCURRENCY", ge=1, le=64
    )
    session_cache_size: int = Field(
        default=256, alias="SESSION_CACHE_SIZE", ge=1
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("poster_base_url", "placeholder_poster_url", mode="after")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.strip().rstrip("/")

    @field_validator("lookup_data_path", mode="before")
    @classmethod
    def _blank_path_disables_dataset(cls, value: object) -> object:
        """An empty LOOKUP_DATA_PATH turns the bundled dataset off."""

        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("asset_task_timeout_seconds", mode="after")
    @classmethod
    def _zero_disables_timeout(cls, value: float | None) -> float | None:
        if value is None or value <= 0:
            return None
        return value

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
