"""Pydantic models describing rated and recommended movies."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from .utils import placeholder_image_url

PosterKind = Literal["generated", "hosted", "placeholder"]
MetadataSource = Literal["local", "document-store"]

# 1x1 transparent PNG used when the image model returns nothing.
TRANSPARENT_PIXEL_DATA_URI = (
    "data:image/png;base64,iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR42mNk"
    "YAAAAAYAAjCB0C8AAAAASUVORK5CYII="
)
MISSING_SUMMARY_TEXT = "No summary available."
ERROR_SUMMARY_TEXT = "Could not load details for this movie."


class PosterReference(BaseModel):
    """Poster image tagged with where it came from."""

    model_config = ConfigDict(frozen=True)

    kind: PosterKind
    value: str

    @classmethod
    def hosted(cls, url: str) -> "PosterReference":
        return cls(kind="hosted", value=url)

    @classmethod
    def generated(cls, data_uri: str) -> "PosterReference":
        return cls(kind="generated", value=data_uri)

    @classmethod
    def placeholder(cls, base_url: str, title: str, *, error: bool = False) -> "PosterReference":
        """Return a placeholder image with the title drawn on it."""

        text = f"{title} (Error)" if error else title
        return cls(kind="placeholder", value=placeholder_image_url(base_url, text))

    @classmethod
    def blank(cls) -> "PosterReference":
        return cls(kind="placeholder", value=TRANSPARENT_PIXEL_DATA_URI)


class RatedMovieDraft(BaseModel):
    """User input submitted when rating a movie."""

    title: str = Field(min_length=1, max_length=100)
    rating: int = Field(ge=1, le=5)

    @field_validator("title", mode="before")
    @classmethod
    def _strip_title(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip()
        return value


class MovieMetadata(BaseModel):
    """Existing movie details found in a lookup source."""

    title: str
    summary: str
    poster: PosterReference
    release_date: str | None = None
    external_rating_score: float | None = Field(default=None, ge=0, le=10)
    source: MetadataSource
    complete: bool = False


class RatedMovie(BaseModel):
    """A movie rated by a single user. Never mutated after creation."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    title: str = Field(min_length=1)
    rating: int = Field(ge=1, le=5)
    summary: str
    poster: PosterReference
    created_at: datetime = Field(serialization_alias="createdAt")
    release_date: str | None = Field(default=None, serialization_alias="releaseDate")
    external_rating_score: float | None = Field(
        default=None,
        ge=0,
        le=10,
        serialization_alias="externalRatingScore",
    )

    def describe(self) -> str:
        """Return the text used to describe this rating to the language model."""

        details = [f"Rating: {self.rating}/5"]
        if self.release_date:
            details.append(f"Released: {self.release_date}")
        if self.external_rating_score is not None:
            details.append(f"Score: {self.external_rating_score:g}/10")
        return f"{self.title} ({', '.join(details)})"


class RecommendedMovie(BaseModel):
    """A recommendation ready for display. Recomputed on every run."""

    model_config = ConfigDict(populate_by_name=True)

    title: str
    summary: str
    poster: PosterReference
    release_date: str | None = Field(default=None, serialization_alias="releaseDate")
    external_rating_score: float | None = Field(
        default=None, serialization_alias="externalRatingScore"
    )

    @classmethod
    def from_metadata(cls, title: str, metadata: MovieMetadata) -> "RecommendedMovie":
        return cls(
            title=title,
            summary=metadata.summary,
            poster=metadata.poster,
            release_date=metadata.release_date,
            external_rating_score=metadata.external_rating_score,
        )

    @classmethod
    def failed(cls, title: str, placeholder_base_url: str) -> "RecommendedMovie":
        """Return the record shown when details could not be generated."""

        return cls(
            title=title,
            summary=ERROR_SUMMARY_TEXT,
            poster=PosterReference.placeholder(placeholder_base_url, title, error=True),
        )


class PreferenceAnalysis(BaseModel):
    """Structured reply of the preference analysis prompt."""

    movie_types: str = Field(validation_alias=AliasChoices("movieTypes", "movie_types"))


class TitleRecommendations(BaseModel):
    """Structured reply of the recommendation prompt."""

    recommendations: list[str] = Field(default_factory=list)


class CreativeAssets(BaseModel):
    """Structured reply of the creative assets prompt."""

    summary: str
    poster_description: str = Field(
        validation_alias=AliasChoices("posterDescription", "poster_description")
    )
