from __future__ import annotations
import uuid
from datetime import datetime, timedelta, timezone

import httpx
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from portal.clients import build_clients
from portal.config import Settings
from portal.db import Base
from portal.errors import NotifyError
from portal.main import create_app
from portal.models.profile import Profile
from portal.models.submission import Submission
from portal.models.user import User
from portal.security import hash_password, make_access_token
from portal.services.storage import BlobStore

T0 = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


class MemoryBlobStore(BlobStore):
    def __init__(self, bucket: str = "uploads"):
        super().__init__("http://minio:9000", "https://files.example.test", "k", "s", bucket)
        self.objects: dict[str, tuple[bytes, str]] = {}

    def exists(self, key: str) -> bool:
        return key in self.objects

    def upload(self, key: str, data: bytes, content_type: str, overwrite: bool = True) -> None:
        if not overwrite and key in self.objects:
            raise FileExistsError(key)
        self.objects[key] = (data, content_type)


class RecordingNotifier:
    def __init__(self):
        self.sent: list[dict] = []
        self.fail = False

    async def send(self, *, to_email: str, full_name: str, status: str, feedback: str) -> None:
        if self.fail:
            raise NotifyError("email function returned 500")
        self.sent.append({"to_email": to_email, "full_name": full_name, "status": status, "feedback": feedback})


@pytest_asyncio.fixture
async def clients():
    engine = create_async_engine(
        "sqlite+aiosqlite://", poolclass=StaticPool, connect_args={"check_same_thread": False}
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    c = build_clients(
        Settings(guard_timeout_seconds=2.0, storage_bucket="uploads"),
        engine,
        blobs=MemoryBlobStore(),
        notifier=RecordingNotifier(),
    )
    yield c
    await c.aclose()


@pytest_asyncio.fixture
async def ac(clients):
    app = create_app(clients=clients)
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        yield client


async def add_user(clients, role: str | None = None, role_hint: str | None = None) -> User:
    async with clients.session_factory() as session:
        user = User(email=f"{uuid.uuid4().hex[:10]}@example.com", password_hash=hash_password("supersecret"), role_hint=role_hint)
        session.add(user)
        await session.flush()
        if role:
            session.add(Profile(id=user.id, role=role, full_name=""))
        await session.commit()
    return user


def auth(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {make_access_token(str(user.id))}"}


async def add_submission(clients, user: User, minutes: int = 0, **fields) -> Submission:
    values = dict(
        user_id=user.id,
        full_name="Ada Lovelace",
        email="ada@example.com",
        phone="555-0100",
        location="London",
        hobby="engines",
        profile_picture="profile-pics/1.jpg",
        zip_file="source-zips/1.zip",
        created_at=T0 + timedelta(minutes=minutes),
    )
    values.update(fields)
    async with clients.session_factory() as session:
        s = Submission(**values)
        session.add(s)
        await session.commit()
    return s
