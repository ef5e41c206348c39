"""
Evaluator working set: a bulk load fused with the live change feed.

The set is ordered newest first. After the initial load it is never
re-fetched; it stays current only because every committed change to the
submissions table arrives as a change event, in commit order.
"""
from __future__ import annotations
import asyncio
from contextlib import asynccontextmanager
from dataclasses import replace
from typing import AsyncIterator, Awaitable, Callable

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from portal.errors import PortalError, ReadError, SubscriptionError
from portal.models.submission import Submission
from portal.services.changefeed import (
    ChangeEvent, ChangeFeed, Deleted, Inserted, SubmissionRow, Subscription, Updated,
)

log = structlog.get_logger()

OnChange = Callable[["SubmissionSyncStore"], Awaitable[None]]
OnError = Callable[[PortalError], Awaitable[None]]


class SubmissionSyncStore:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        feed: ChangeFeed,
        on_change: OnChange | None = None,
        on_error: OnError | None = None,
    ):
        self._sessions = session_factory
        self._feed = feed
        self._on_change = on_change
        self._on_error = on_error
        self._subscription: Subscription | None = None
        self._listener: asyncio.Task | None = None
        self.records: list[SubmissionRow] = []
        self.loaded = False
        self.error: PortalError | None = None

    def get(self, submission_id: int) -> SubmissionRow | None:
        for r in self.records:
            if r.id == submission_id:
                return r
        return None

    def _index(self, submission_id: int) -> int | None:
        for i, r in enumerate(self.records):
            if r.id == submission_id:
                return i
        return None

    async def initial_load(self) -> list[SubmissionRow]:
        try:
            async with self._sessions() as session:
                rows = (await session.execute(
                    select(Submission).order_by(Submission.created_at.desc(), Submission.id.desc())
                )).scalars().all()
        except SQLAlchemyError as e:
            self.records = []
            self.error = ReadError("could not load submissions", cause=e)
            log.warning("sync_initial_load_failed", error=str(e))
            raise self.error from e
        self.records = [SubmissionRow.from_model(s) for s in rows]
        self.loaded = True
        self.error = None
        return self.records

    def apply(self, ev: ChangeEvent) -> bool:
        """Apply one change event. Returns False when the event was a no-op."""
        if isinstance(ev, Inserted):
            idx = self._index(ev.record.id)
            if idx is not None:
                # raced the initial load: the row is already in the snapshot
                self.records[idx] = ev.record
            else:
                self.records.insert(0, ev.record)
            return True
        if isinstance(ev, Updated):
            idx = self._index(ev.record.id)
            if idx is None:
                return False
            self.records[idx] = ev.record
            return True
        if isinstance(ev, Deleted):
            idx = self._index(ev.id)
            if idx is None:
                return False
            del self.records[idx]
            return True
        raise TypeError(f"unknown change event {ev!r}")

    def set_feedback(self, submission_id: int, text: str) -> bool:
        """Local, unsaved feedback edit; persisted only by a decision."""
        idx = self._index(submission_id)
        if idx is None:
            return False
        self.records[idx] = replace(self.records[idx], feedback=text)
        return True

    async def _listen(self, sub: Subscription) -> None:
        try:
            async for ev in sub:
                if self.apply(ev) and self._on_change is not None:
                    await self._on_change(self)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # a set that stopped following the feed must not look live
            self.error = SubscriptionError("change listener stopped", cause=e)
            log.exception("sync_listener_failed")
            sub.close()
            if self._on_error is not None:
                await self._on_error(self.error)

    async def settle(self) -> None:
        """Wait until every event delivered so far has been applied."""
        if self._subscription is not None and self._listener is not None and not self._listener.done():
            await self._subscription.join()

    @asynccontextmanager
    async def open(self) -> AsyncIterator[SubmissionSyncStore]:
        """
        Subscribe, load, then apply live events until the block exits.

        The subscription is taken before the load so that nothing committed
        in between is missed; it is released exactly once on every exit path.
        If the initial load fails the set stays empty and ReadError propagates.
        If the listener fails later, ``error`` holds a SubscriptionError, the
        subscription is released and ``on_error`` is awaited.
        """
        sub = self._feed.subscribe()
        self._subscription = sub
        try:
            await self.initial_load()
            self._listener = asyncio.create_task(self._listen(sub))
            yield self
        finally:
            sub.close()
            if self._listener is not None:
                self._listener.cancel()
                try:
                    await self._listener
                except asyncio.CancelledError:
                    pass
                self._listener = None
            self._subscription = None
