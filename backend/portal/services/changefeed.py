"""
In-process change feed for the submissions table.

Rows flushed through an ORM session built with ``ChangeFeed.session_class``
are snapshotted after each flush and published once the transaction commits,
in commit order. Rolled-back changes are never published.
"""
from __future__ import annotations
import asyncio
import uuid
from dataclasses import dataclass, fields
from datetime import datetime
from typing import Callable, Union

import structlog
from sqlalchemy import event, inspect
from sqlalchemy.orm import Session

from portal.models.submission import Submission

log = structlog.get_logger()

_PENDING_KEY = "portal.pending_changes"


@dataclass(frozen=True)
class SubmissionRow:
    id: int
    user_id: uuid.UUID
    full_name: str
    email: str
    phone: str
    location: str
    hobby: str | None
    profile_picture: str | None
    zip_file: str | None
    feedback: str | None
    status: str | None
    created_at: datetime

    @classmethod
    def from_model(cls, s: Submission) -> SubmissionRow:
        # read the loaded state only; columns left unset on insert went in as NULL
        values = inspect(s).dict
        return cls(**{f.name: values.get(f.name) for f in fields(cls)})


@dataclass(frozen=True)
class Inserted:
    record: SubmissionRow


@dataclass(frozen=True)
class Updated:
    record: SubmissionRow


@dataclass(frozen=True)
class Deleted:
    id: int


ChangeEvent = Union[Inserted, Updated, Deleted]
Predicate = Callable[[ChangeEvent], bool]

_CLOSED = object()


class Subscription:
    """
    A channel of change events. Iterate it with ``async for``; iteration ends
    once ``close()`` is called. ``close()`` releases the feed registration
    exactly once no matter how often it is called.
    """

    def __init__(self, feed: ChangeFeed, predicate: Predicate | None = None):
        self._feed = feed
        self._predicate = predicate
        self._queue: asyncio.Queue = asyncio.Queue()
        self._handed_out = False
        self.closed = False

    def deliver(self, ev: ChangeEvent) -> None:
        if self.closed:
            return
        if self._predicate is not None and not self._predicate(ev):
            return
        self._queue.put_nowait(ev)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._feed._release(self)
        self._queue.put_nowait(_CLOSED)

    async def join(self) -> None:
        """Wait until every delivered event has been handed out and the consumer came back for more."""
        await self._queue.join()

    def __aiter__(self):
        return self

    async def __anext__(self) -> ChangeEvent:
        # an item counts as done once the consumer asks for the next one
        if self._handed_out:
            self._handed_out = False
            self._queue.task_done()
        item = await self._queue.get()
        if item is _CLOSED:
            self._queue.task_done()
            raise StopAsyncIteration
        self._handed_out = True
        return item

    async def __aenter__(self) -> Subscription:
        return self

    async def __aexit__(self, *exc) -> None:
        self.close()


class ChangeFeed:
    def __init__(self):
        self._subscribers: list[Subscription] = []
        self.session_class = self._make_session_class()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self, predicate: Predicate | None = None) -> Subscription:
        sub = Subscription(self, predicate)
        self._subscribers.append(sub)
        log.debug("feed_subscribed", subscribers=len(self._subscribers))
        return sub

    def _release(self, sub: Subscription) -> None:
        if sub in self._subscribers:
            self._subscribers.remove(sub)
            log.debug("feed_released", subscribers=len(self._subscribers))

    def publish(self, ev: ChangeEvent) -> None:
        for sub in list(self._subscribers):
            sub.deliver(ev)

    def _make_session_class(self) -> type[Session]:
        feed = self

        class FeedSession(Session):
            pass

        @event.listens_for(FeedSession, "after_flush")
        def _collect(session, _flush_context):
            pending = session.info.setdefault(_PENDING_KEY, [])
            for obj in session.new:
                if isinstance(obj, Submission):
                    pending.append(Inserted(SubmissionRow.from_model(obj)))
            for obj in session.dirty:
                if isinstance(obj, Submission) and session.is_modified(obj):
                    pending.append(Updated(SubmissionRow.from_model(obj)))
            for obj in session.deleted:
                if isinstance(obj, Submission):
                    pending.append(Deleted(obj.id))

        @event.listens_for(FeedSession, "after_commit")
        def _publish(session):
            for ev in session.info.pop(_PENDING_KEY, []):
                feed.publish(ev)

        @event.listens_for(FeedSession, "after_rollback")
        def _discard(session):
            session.info.pop(_PENDING_KEY, None)

        return FeedSession
