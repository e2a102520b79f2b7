"""SQLAlchemy ORM models backing the persistent state."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Float, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from .database import Base


class RatedMovieRecord(Base):
    """A single rating appended to a user's collection."""

    __tablename__ = "rated_movies"
    __table_args__ = (Index("ix_rated_movies_user_created", "user_id", "created_at"),)

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String(32), unique=True)
    user_id: Mapped[str] = mapped_column(String(128), index=True)
    title: Mapped[str] = mapped_column(String(255))
    rating: Mapped[int] = mapped_column(Integer)
    summary: Mapped[str] = mapped_column(Text)
    poster_kind: Mapped[str] = mapped_column(String(16))
    poster_value: Mapped[str] = mapped_column(Text)
    release_date: Mapped[str | None] = mapped_column(String(32), nullable=True)
    external_rating_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now()
    )


class MovieMetadataRecord(Base):
    """Known movie metadata consulted before generating anything."""

    __tablename__ = "movie_metadata"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(255))
    title_key: Mapped[str] = mapped_column(String(255), index=True)
    overview: Mapped[str | None] = mapped_column(Text, nullable=True)
    poster_path: Mapped[str | None] = mapped_column(String(512), nullable=True)
    release_date: Mapped[str | None] = mapped_column(String(32), nullable=True)
    vote_average: Mapped[float | None] = mapped_column(Float, nullable=True)
