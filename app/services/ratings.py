"""Append-only storage of rated movies with live snapshot subscriptions."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import RatedMovieRecord
from ..exceptions import PersistenceFailed
from ..models import MISSING_SUMMARY_TEXT, MovieMetadata, PosterReference, RatedMovie, RatedMovieDraft

logger = logging.getLogger(__name__)

RatedMovieSnapshot = tuple[RatedMovie, ...]


class RatedMovieSubscription:
    """Stream of rated-movie snapshots for a single user.

    Obtain one through :meth:`RatedMovieStore.subscribe`; it stops receiving
    updates once that context exits.
    """

    def __init__(self, user_id: str):
        self.user_id = user_id
        self._queue: asyncio.Queue[RatedMovieSnapshot] = asyncio.Queue(maxsize=1)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _publish(self, snapshot: RatedMovieSnapshot) -> None:
        if self._closed:
            return
        # Snapshots are complete; only the newest pending one is kept.
        if self._queue.full():
            self._queue.get_nowait()
        self._queue.put_nowait(snapshot)

    def _close(self) -> None:
        self._closed = True

    def drain(self) -> RatedMovieSnapshot | None:
        """Return the newest pending snapshot without waiting, if any."""

        latest: RatedMovieSnapshot | None = None
        while True:
            try:
                latest = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return latest

    async def next(self) -> RatedMovieSnapshot:
        """Wait for the next snapshot."""

        return await self._queue.get()

    def __aiter__(self) -> AsyncIterator[RatedMovieSnapshot]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[RatedMovieSnapshot]:
        while not self._closed:
            yield await self._queue.get()


class RatedMovieStore:
    """Persistence adapter for each user's rated movies."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        placeholder_poster_url: str,
    ):
        self._session_factory = session_factory
        self._placeholder_poster_url = placeholder_poster_url
        self._subscribers: dict[str, set[RatedMovieSubscription]] = defaultdict(set)
        self._snapshot_lock = asyncio.Lock()

    async def add(
        self,
        user_id: str,
        draft: RatedMovieDraft,
        metadata: MovieMetadata | None = None,
    ) -> RatedMovie:
        """Append a rating. The database assigns ``created_at``."""

        if metadata is not None:
            summary = metadata.summary
            poster = metadata.poster
        else:
            summary = MISSING_SUMMARY_TEXT
            poster = PosterReference.placeholder(self._placeholder_poster_url, draft.title)

        record = RatedMovieRecord(
            id=uuid.uuid4().hex,
            user_id=user_id,
            title=draft.title,
            rating=draft.rating,
            summary=summary,
            poster_kind=poster.kind,
            poster_value=poster.value,
            release_date=metadata.release_date if metadata else None,
            external_rating_score=metadata.external_rating_score if metadata else None,
        )
        try:
            async with self._session_factory() as session:
                session.add(record)
                await session.commit()
                await session.refresh(record)
        except SQLAlchemyError as exc:
            logger.exception("Could not save rating of %s for %s", draft.title, user_id)
            raise PersistenceFailed("Could not save your rating. Please try again.") from exc

        movie = self._record_to_movie(record)
        logger.info("Stored rating %s/5 for %s (user %s)", movie.rating, movie.title, user_id)
        if self._subscribers.get(user_id):
            await self._notify(user_id)
        return movie

    async def list(self, user_id: str) -> list[RatedMovie]:
        """Return the user's ratings, newest first."""

        stmt = (
            select(RatedMovieRecord)
            .where(RatedMovieRecord.user_id == user_id)
            .order_by(RatedMovieRecord.created_at.desc(), RatedMovieRecord.seq.desc())
        )
        try:
            async with self._session_factory() as session:
                records = (await session.execute(stmt)).scalars().all()
        except SQLAlchemyError as exc:
            logger.exception("Could not load ratings for %s", user_id)
            raise PersistenceFailed("Could not fetch your rated movies.") from exc
        return [self._record_to_movie(record) for record in records]

    @asynccontextmanager
    async def subscribe(self, user_id: str) -> AsyncIterator[RatedMovieSubscription]:
        """Yield a subscription that starts with the current snapshot."""

        subscription = RatedMovieSubscription(user_id)
        self._subscribers[user_id].add(subscription)
        try:
            async with self._snapshot_lock:
                subscription._publish(tuple(await self.list(user_id)))
            yield subscription
        finally:
            subscription._close()
            subscribers = self._subscribers.get(user_id)
            if subscribers is not None:
                subscribers.discard(subscription)
                if not subscribers:
                    self._subscribers.pop(user_id, None)

    def subscriber_count(self, user_id: str) -> int:
        return len(self._subscribers.get(user_id, ()))

    async def _notify(self, user_id: str) -> None:
        # Serialised with initial snapshots so a newer list is never overtaken.
        async with self._snapshot_lock:
            try:
                snapshot = tuple(await self.list(user_id))
            except PersistenceFailed:
                logger.warning("Skipping snapshot delivery for %s", user_id)
                return
            for subscription in list(self._subscribers.get(user_id, ())):
                subscription._publish(snapshot)

    @staticmethod
    def _record_to_movie(record: RatedMovieRecord) -> RatedMovie:
        return RatedMovie(
            id=record.id,
            title=record.title,
            rating=record.rating,
            summary=record.summary,
            poster=PosterReference(kind=record.poster_kind, value=record.poster_value),
            created_at=record.created_at,
            release_date=record.release_date,
            external_rating_score=record.external_rating_score,
        )
