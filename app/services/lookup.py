"""Resolve existing movie metadata before falling back to generation."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import Settings
from ..database import Database
from ..db_models import MovieMetadataRecord
from ..models import MISSING_SUMMARY_TEXT, MetadataSource, MovieMetadata, PosterReference
from ..utils import build_image_url, normalize_title

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class LookupEntry:
    """Raw metadata as stored by a lookup source."""

    title: str
    overview: str | None = None
    poster_path: str | None = None
    release_date: str | None = None
    vote_average: float | None = None

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> "LookupEntry | None":
        title = data.get("title")
        if not isinstance(title, str) or not title.strip():
            return None
        return cls(
            title=title.strip(),
            overview=_clean_text(data.get("overview")),
            poster_path=_clean_text(data.get("poster_path")),
            release_date=_clean_text(data.get("release_date")),
            vote_average=_coerce_score(data.get("vote_average")),
        )


class LookupSource(Protocol):
    name: MetadataSource

    async def find(self, title_key: str) -> LookupEntry | None:
        """Return the entry whose casefolded title equals ``title_key``."""


class LocalDatasetSource:
    """Static JSON dataset loaded once and kept in memory."""

    name: MetadataSource = "local"

    def __init__(self, entries: Sequence[LookupEntry]):
        self._entries: dict[str, LookupEntry] = {}
        for entry in entries:
            self._entries.setdefault(normalize_title(entry.title), entry)

    @classmethod
    def from_file(cls, path: Path) -> "LocalDatasetSource":
        """Load the dataset, treating an unreadable file as an empty one."""

        try:
            entries = read_lookup_entries(path)
        except (OSError, ValueError) as exc:
            logger.warning("Could not load lookup dataset from %s: %s", path, exc)
            return cls([])
        logger.info("Loaded %s movies from lookup dataset %s", len(entries), path)
        return cls(entries)

    async def find(self, title_key: str) -> LookupEntry | None:
        return self._entries.get(title_key)


class DocumentStoreSource:
    """Metadata collection stored in the ``movie_metadata`` table."""

    name: MetadataSource = "document-store"

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def find(self, title_key: str) -> LookupEntry | None:
        stmt = (
            select(MovieMetadataRecord)
            .where(MovieMetadataRecord.title_key == title_key)
            .order_by(MovieMetadataRecord.id)
            .limit(1)
        )
        async with self._session_factory() as session:
            record = (await session.execute(stmt)).scalar_one_or_none()
        if record is None:
            return None
        return LookupEntry(
            title=record.title,
            overview=_clean_text(record.overview),
            poster_path=_clean_text(record.poster_path),
            release_date=_clean_text(record.release_date),
            vote_average=_coerce_score(record.vote_average),
        )

    async def upsert(self, entry: LookupEntry) -> None:
        """Insert or replace the stored metadata for ``entry.title``."""

        title_key = normalize_title(entry.title)
        async with self._session_factory() as session:
            stmt = select(MovieMetadataRecord).where(
                MovieMetadataRecord.title_key == title_key
            )
            record = (await session.execute(stmt)).scalars().first()
            if record is None:
                record = MovieMetadataRecord(title=entry.title, title_key=title_key)
                session.add(record)
            record.title = entry.title
            record.overview = entry.overview
            record.poster_path = entry.poster_path
            record.release_date = entry.release_date
            record.vote_average = entry.vote_average
            await session.commit()


class LookupResolver:
    """Query lookup sources in priority order and normalise the first hit."""

    def __init__(self, settings: Settings, sources: Sequence[LookupSource]):
        self._settings = settings
        self._sources = tuple(sources)

    async def resolve(self, title: str) -> MovieMetadata | None:
        """Return metadata for ``title`` or ``None`` when no source knows it.

        Source failures are logged and skipped, never raised.
        """

        title_key = normalize_title(title)
        if not title_key:
            return None

        for source in self._sources:
            try:
                entry = await source.find(title_key)
            except Exception as exc:
                logger.warning(
                    "Lookup via %s failed for %s: %s", source.name, title, exc
                )
                continue
            if entry is not None:
                return self._to_metadata(entry, source.name)
        return None

    def _to_metadata(self, entry: LookupEntry, source: MetadataSource) -> MovieMetadata:
        if entry.poster_path:
            poster = PosterReference.hosted(
                build_image_url(entry.poster_path, self._settings.poster_base_url)
            )
        else:
            poster = PosterReference.placeholder(
                self._settings.placeholder_poster_url, entry.title
            )
        return MovieMetadata(
            title=entry.title,
            summary=entry.overview or MISSING_SUMMARY_TEXT,
            poster=poster,
            release_date=entry.release_date,
            external_rating_score=entry.vote_average,
            source=source,
            complete=bool(entry.overview and entry.poster_path),
        )


def build_lookup_sources(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> list[LookupSource]:
    """Return the configured sources: bundled dataset first, then the store."""

    sources: list[LookupSource] = []
    if settings.lookup_data_path is not None:
        sources.append(LocalDatasetSource.from_file(settings.lookup_data_path))
    if settings.lookup_use_document_store and session_factory is not None:
        sources.append(DocumentStoreSource(session_factory))
    return sources


def read_lookup_entries(path: Path) -> list[LookupEntry]:
    """Parse a JSON array of movie mappings, skipping malformed items."""

    raw = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw, list):
        raise ValueError(f"Lookup dataset {path} is not a JSON array")
    return [
        entry
        for entry in (
            LookupEntry.from_mapping(item) for item in raw if isinstance(item, dict)
        )
        if entry is not None
    ]


async def seed_document_store(database_url: str, path: Path) -> int:
    """Copy the movies in ``path`` into the ``movie_metadata`` table.

    Existing rows with the same title are replaced. Returns the number of
    movies written.
    """

    entries = read_lookup_entries(path)
    database = Database(database_url)
    try:
        await database.create_all()
        store = DocumentStoreSource(database.session_factory)
        for entry in entries:
            await store.upsert(entry)
    finally:
        await database.dispose()
    logger.info("Seeded %s movies from %s into the document store", len(entries), path)
    return len(entries)


def _clean_text(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    cleaned = value.strip()
    return cleaned or None


def _coerce_score(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        score = float(value)
    except (TypeError, ValueError):
        return None
    if 0 <= score <= 10:
        return score
    return None
