from __future__ import annotations
from dataclasses import dataclass

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from portal.errors import DecisionInProgress, NotInWorkingSet, NotifyError, PersistError, ReadError
from portal.models.submission import Submission
from portal.services.changefeed import SubmissionRow
from portal.services.notifier import Notifier
from portal.services.sync_store import SubmissionSyncStore

log = structlog.get_logger()

DECISIONS = ("accepted", "rejected")


@dataclass(frozen=True)
class ReviewOutcome:
    submission_id: int
    status: str
    notified: bool
    notify_error: NotifyError | None = None

    @property
    def warning(self) -> str | None:
        if self.notified:
            return None
        return "Decision saved, but the applicant was not notified."


class ReviewWorkflow:
    """
    Two strictly sequential steps: persist the decision, then notify.

    A persisted decision is authoritative; a failed notification is reported
    in the outcome and never rolls it back. Retry the notification alone with
    ``renotify`` rather than re-deciding, which would send the email again.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], notifier: Notifier):
        self._sessions = session_factory
        self._notifier = notifier
        self._in_flight: set[int] = set()

    def in_flight(self, submission_id: int) -> bool:
        return submission_id in self._in_flight

    def _claim(self, store: SubmissionSyncStore, submission_id: int) -> SubmissionRow:
        current = store.get(submission_id)
        if current is None:
            raise NotInWorkingSet(f"submission {submission_id} is not loaded")
        if submission_id in self._in_flight:
            raise DecisionInProgress(f"submission {submission_id} is already being saved")
        self._in_flight.add(submission_id)
        return current

    async def decide(self, store: SubmissionSyncStore, submission_id: int, decision: str) -> ReviewOutcome:
        if decision not in DECISIONS:
            raise ValueError(f"decision must be one of {DECISIONS}")
        current = self._claim(store, submission_id)
        try:
            # feedback comes from the working copy, including unsaved edits
            feedback = current.feedback or ""
            await self._persist(submission_id, decision, feedback)
            return await self._notify(current, decision, feedback)
        finally:
            self._in_flight.discard(submission_id)

    async def renotify(self, store: SubmissionSyncStore, submission_id: int) -> ReviewOutcome:
        current = self._claim(store, submission_id)
        try:
            try:
                async with self._sessions() as session:
                    row = await session.get(Submission, submission_id)
            except SQLAlchemyError as e:
                raise ReadError("could not read submission", cause=e) from e
            if row is None or row.status not in DECISIONS:
                raise NotifyError("no saved decision to notify about")
            return await self._notify(current, row.status, row.feedback or "")
        finally:
            self._in_flight.discard(submission_id)

    async def _persist(self, submission_id: int, decision: str, feedback: str) -> None:
        try:
            async with self._sessions() as session:
                row = await session.get(Submission, submission_id)
                if row is None:
                    raise PersistError(f"submission {submission_id} no longer exists")
                row.status = decision
                row.feedback = feedback
                await session.commit()
        except SQLAlchemyError as e:
            log.warning("decision_persist_failed", submission_id=submission_id, error=str(e))
            raise PersistError("could not save decision", cause=e) from e
        log.info("decision_persisted", submission_id=submission_id, status=decision)

    async def _notify(self, current: SubmissionRow, decision: str, feedback: str) -> ReviewOutcome:
        try:
            await self._notifier.send(
                to_email=current.email, full_name=current.full_name, status=decision, feedback=feedback
            )
        except NotifyError as e:
            log.warning("decision_not_notified", submission_id=current.id, error=str(e))
            return ReviewOutcome(current.id, decision, notified=False, notify_error=e)
        return ReviewOutcome(current.id, decision, notified=True)
