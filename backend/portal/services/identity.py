from __future__ import annotations
import uuid
from dataclasses import dataclass
import jwt
import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from portal.errors import AuthError, EmailTaken, ReadError
from portal.models.user import User
from portal.security import decode_token, hash_password, verify_password

log = structlog.get_logger()


@dataclass(frozen=True)
class Identity:
    id: uuid.UUID
    email: str
    role_hint: str | None = None


def _identity(user: User) -> Identity:
    return Identity(id=user.id, email=user.email, role_hint=user.role_hint)


class IdentityGateway:
    """Answers "who is the current user" for a bearer token; also owns signup/login."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._sessions = session_factory

    async def current_user(self, token: str | None, token_type: str = "access") -> Identity | None:
        if not token:
            return None
        try:
            data = decode_token(token)
        except jwt.PyJWTError:
            return None
        if data.get("type") != token_type:
            return None
        try:
            user_id = uuid.UUID(str(data.get("sub")))
        except ValueError:
            return None
        try:
            async with self._sessions() as session:
                user = await session.get(User, user_id)
        except SQLAlchemyError as e:
            raise ReadError("identity lookup failed", cause=e) from e
        return _identity(user) if user else None

    async def signup(self, email: str, password: str, role_hint: str | None) -> Identity:
        email = email.strip().lower()
        async with self._sessions() as session:
            exists = await session.scalar(select(User.id).where(User.email == email))
            if exists:
                raise EmailTaken("Email already registered")
            user = User(email=email, password_hash=hash_password(password), role_hint=role_hint)
            session.add(user)
            try:
                await session.commit()
            except IntegrityError as e:
                raise EmailTaken("Email already registered") from e
        log.info("signup", user_id=str(user.id), role_hint=role_hint)
        return _identity(user)

    async def login(self, email: str, password: str) -> Identity:
        async with self._sessions() as session:
            user = await session.scalar(select(User).where(User.email == email.strip().lower()))
        if not user or not verify_password(password, user.password_hash):
            raise AuthError("Invalid credentials")
        return _identity(user)
