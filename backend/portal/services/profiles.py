from __future__ import annotations
import uuid
from dataclasses import dataclass
import structlog
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from portal.errors import InsertError, MissingRole, NoUser, ReadError
from portal.models.profile import Profile
from portal.services.identity import Identity

log = structlog.get_logger()

ROLES = ("developer", "evaluator")


@dataclass(frozen=True)
class ProvisionResult:
    created: bool
    role: str


class ProfileProvisioner:
    """
    Guarantees exactly one profile (role record) per user.

    An existing role is authoritative: role hints are only consulted when the
    profile is absent, so calling this on every protected request never flips
    a user's role.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._sessions = session_factory

    async def get_role(self, user_id: uuid.UUID) -> str | None:
        try:
            async with self._sessions() as session:
                prof = await session.get(Profile, user_id)
        except SQLAlchemyError as e:
            raise ReadError("profile read failed", cause=e) from e
        return prof.role if prof else None

    async def ensure_profile(self, identity: Identity | None, role_hint: str | None = None) -> ProvisionResult:
        if identity is None:
            raise NoUser("not signed in")

        existing = await self.get_role(identity.id)
        if existing:
            return ProvisionResult(created=False, role=existing)

        role = role_hint or identity.role_hint
        if role not in ROLES:
            raise MissingRole("choose a role to continue")

        try:
            async with self._sessions() as session:
                session.add(Profile(id=identity.id, role=role, full_name=""))
                await session.commit()
        except IntegrityError as e:
            # lost a first-login race: someone else inserted the row already
            winner = await self.get_role(identity.id)
            if winner:
                log.info("profile_insert_race", user_id=str(identity.id), role=winner)
                return ProvisionResult(created=False, role=winner)
            raise InsertError("profile insert failed", cause=e) from e
        except SQLAlchemyError as e:
            raise InsertError("profile insert failed", cause=e) from e

        log.info("profile_created", user_id=str(identity.id), role=role)
        return ProvisionResult(created=True, role=role)
