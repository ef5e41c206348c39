from __future__ import annotations
import asyncio
import time
import uuid

import structlog
from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from portal.auth_deps import get_clients, guard_websocket, require_role
from portal.clients import PortalClients
from portal.db import get_session
from portal.errors import (
    DecisionInProgress, NotInWorkingSet, NotifyError, PersistError, PortalError, ReadError, UploadError,
)
from portal.models.submission import Submission
from portal.schemas.submission import ReviewOutcomePublic, SubmissionPublic
from portal.services.artifacts import ArtifactLinkResolver
from portal.services.changefeed import SubmissionRow
from portal.services.identity import Identity
from portal.services.media import compress_picture, ext_for_mime, is_zip, sniff_mime
from portal.services.review import DECISIONS, ReviewOutcome
from portal.services.sync_store import SubmissionSyncStore

log = structlog.get_logger()

router = APIRouter(prefix="/submissions", tags=["submissions"])


def _pub(s, artifacts: ArtifactLinkResolver) -> SubmissionPublic:
    # accepts ORM rows and feed snapshots alike
    return SubmissionPublic(
        id=s.id,
        user_id=s.user_id,
        full_name=s.full_name,
        email=s.email,
        phone=s.phone,
        location=s.location,
        hobby=s.hobby,
        feedback=s.feedback,
        status=s.status,
        created_at=s.created_at,
        profile_picture_url=artifacts.resolve(s.profile_picture),
        zip_file_url=artifacts.resolve(s.zip_file),
    )


def _outcome(o: ReviewOutcome) -> ReviewOutcomePublic:
    return ReviewOutcomePublic(
        submission_id=o.submission_id, status=o.status, persisted=True, notified=o.notified, warning=o.warning
    )


@router.post("", response_model=SubmissionPublic, status_code=201)
async def create_submission(
    full_name: str = Form(..., min_length=1, max_length=200),
    email: str = Form(..., min_length=3, max_length=320),
    phone: str = Form(..., min_length=1, max_length=64),
    location: str = Form(..., min_length=1, max_length=200),
    hobby: str | None = Form(default=None),
    profile_picture: UploadFile | None = File(default=None),
    zip_file: UploadFile | None = File(default=None),
    user: Identity = Depends(require_role("developer")),
    session: AsyncSession = Depends(get_session),
    clients: PortalClients = Depends(get_clients),
):
    if not profile_picture or not zip_file:
        raise HTTPException(status_code=400, detail="Please upload both profile picture and source code.")
    if not is_zip(zip_file.filename, zip_file.content_type):
        raise HTTPException(status_code=400, detail="Source code must be a zip file.")

    pic = await profile_picture.read()
    mime = sniff_mime(pic)
    if mime is None:
        raise HTTPException(status_code=400, detail="Profile picture must be an image.")
    if len(pic) > clients.settings.picture_max_bytes:
        pic = await run_in_threadpool(
            compress_picture, pic, clients.settings.picture_max_dim, clients.settings.picture_max_bytes
        )
        mime = "image/jpeg"
    archive = await zip_file.read()

    # unique per upload, not just per millisecond
    stamp = f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"
    pic_key = f"profile-pics/{stamp}.{ext_for_mime(mime)}"
    zip_key = f"source-zips/{stamp}.zip"
    try:
        await run_in_threadpool(clients.blobs.upload, pic_key, pic, mime, True)
    except UploadError:
        raise HTTPException(status_code=502, detail="Failed to upload profile picture.")
    try:
        await run_in_threadpool(clients.blobs.upload, zip_key, archive, "application/zip", True)
    except UploadError:
        raise HTTPException(status_code=502, detail="Failed to upload source code.")

    # store object keys only; links are resolved on read
    sub = Submission(
        user_id=user.id,
        full_name=full_name.strip(),
        email=email.strip(),
        phone=phone.strip(),
        location=location.strip(),
        hobby=(hobby or "").strip() or None,
        profile_picture=pic_key,
        zip_file=zip_key,
    )
    session.add(sub)
    try:
        await session.commit()
    except SQLAlchemyError:
        log.exception("submission_insert_failed", user_id=str(user.id))
        raise HTTPException(status_code=500, detail="Failed to save your submission.")
    log.info("submission_created", submission_id=sub.id, user_id=str(user.id))
    return _pub(SubmissionRow.from_model(sub), clients.artifacts)


@router.get("/mine", response_model=SubmissionPublic | None)
async def my_submission(
    user: Identity = Depends(require_role("developer")),
    session: AsyncSession = Depends(get_session),
    clients: PortalClients = Depends(get_clients),
):
    """The applicant's most recent submission, or null."""
    s = await session.scalar(
        select(Submission)
        .where(Submission.user_id == user.id)
        .order_by(Submission.created_at.desc(), Submission.id.desc())
        .limit(1)
    )
    return _pub(s, clients.artifacts) if s else None


@router.get("", response_model=list[SubmissionPublic])
async def list_submissions(
    user: Identity = Depends(require_role("evaluator")),
    clients: PortalClients = Depends(get_clients),
):
    store = SubmissionSyncStore(clients.session_factory, clients.feed)
    try:
        rows = await store.initial_load()
    except ReadError:
        raise HTTPException(status_code=503, detail="Could not load submissions, try again")
    return [_pub(r, clients.artifacts) for r in rows]


class _LiveView:
    """One evaluator's websocket session: owns a working set and issues decisions from it."""

    def __init__(self, websocket: WebSocket, clients: PortalClients):
        self.ws = websocket
        self.clients = clients
        self.alive = True
        self._send_lock = asyncio.Lock()
        self._tasks: set[asyncio.Task] = set()
        self.store = SubmissionSyncStore(
            clients.session_factory, clients.feed, on_change=self.push_snapshot, on_error=self.fail
        )

    async def send(self, message: dict) -> None:
        if not self.alive:
            return
        async with self._send_lock:
            try:
                await self.ws.send_json(message)
            except (WebSocketDisconnect, RuntimeError):
                # peer went away; drop updates from now on
                self.alive = False

    async def push_snapshot(self, store: SubmissionSyncStore) -> None:
        rows = [_pub(r, self.clients.artifacts).model_dump(mode="json") for r in store.records]
        await self.send({"type": "snapshot", "submissions": rows})

    async def fail(self, err: PortalError) -> None:
        """The working set stopped following the feed; end the session so the client reloads."""
        await self.send({"type": "error", "code": err.code, "message": "Live updates stopped, reload to continue"})
        self.alive = False
        try:
            await self.ws.close(code=1011)
        except RuntimeError:
            # already closed by the peer
            pass

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _review(self, action: str, submission_id: int, decision: str | None = None) -> None:
        review = self.clients.review
        await self.send({"type": "saving", "id": submission_id})
        try:
            if action == "decide":
                outcome = await review.decide(self.store, submission_id, decision)
            else:
                outcome = await review.renotify(self.store, submission_id)
        except (PersistError, ReadError, NotifyError, NotInWorkingSet, DecisionInProgress) as e:
            await self.send({"type": "error", "id": submission_id, "code": e.code, "message": str(e)})
            return
        await self.send({"type": "outcome", **_outcome(outcome).model_dump(mode="json")})

    async def handle(self, msg: dict) -> None:
        kind = msg.get("type")
        try:
            submission_id = int(msg.get("id"))
        except (TypeError, ValueError):
            await self.send({"type": "error", "code": "bad_request", "message": "id is required"})
            return

        if kind == "feedback":
            if not self.store.set_feedback(submission_id, str(msg.get("text") or "")):
                await self.send({"type": "error", "id": submission_id, "code": NotInWorkingSet.code})
            return

        if kind not in ("decide", "renotify"):
            await self.send({"type": "error", "code": "bad_request", "message": f"unknown message {kind!r}"})
            return
        if self.store.error is not None:
            await self.send({"type": "error", "id": submission_id, "code": self.store.error.code})
            return
        decision = msg.get("decision")
        if kind == "decide" and decision not in DECISIONS:
            await self.send({"type": "error", "id": submission_id, "code": "bad_request", "message": "bad decision"})
            return
        # reject early so the in-flight guard answers before any task starts
        if self.store.get(submission_id) is None:
            await self.send({"type": "error", "id": submission_id, "code": NotInWorkingSet.code})
            return
        if self.clients.review.in_flight(submission_id):
            await self.send({"type": "error", "id": submission_id, "code": DecisionInProgress.code})
            return
        self._spawn(self._review(kind, submission_id, decision))

    async def run(self) -> None:
        try:
            async with self.store.open():
                await self.push_snapshot(self.store)
                while self.alive:
                    try:
                        msg = await self.ws.receive_json()
                    except ValueError:
                        await self.send({"type": "error", "code": "bad_request", "message": "expected JSON"})
                        continue
                    if isinstance(msg, dict):
                        await self.handle(msg)
        except ReadError as e:
            await self.send({"type": "error", "code": e.code, "message": "Could not load submissions"})
            await self.ws.close(code=1011)
        except WebSocketDisconnect:
            pass
        finally:
            # decisions already issued still complete; only their replies are dropped
            self.alive = False


@router.websocket("/live")
async def live_submissions(websocket: WebSocket):
    user = await guard_websocket(websocket, "evaluator")
    if user is None:
        return
    await websocket.accept()
    log.info("live_view_open", user_id=str(user.id))
    await _LiveView(websocket, websocket.app.state.clients).run()
    log.info("live_view_closed", user_id=str(user.id))
