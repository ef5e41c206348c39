"""
Route guard: decides whether a view may render for the current identity.

Each evaluation moves ``checking`` to exactly one terminal state:
``allowed``, ``redirect_login`` (carrying the requested path as ``next``)
or ``redirect_forbidden``.
"""
from __future__ import annotations
import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Iterable, TypeVar
from urllib.parse import quote, urlsplit

import structlog

from portal.errors import ReadError
from portal.services.identity import Identity, IdentityGateway
from portal.services.profiles import ProfileProvisioner

log = structlog.get_logger()

T = TypeVar("T")

LOGIN_PATH = "/login"
FORBIDDEN_PATH = "/not-authorized"
ROLE_SELECT_PATH = "/select-role"
DEFAULT_DESTINATIONS = {
    "evaluator": "/dashboard/evaluate",
    "developer": "/dashboard/submit",
}
# Known looseness: a signed-in user without a profile is treated as a developer.
FALLBACK_ROLE = "developer"


class GuardState(str, Enum):
    CHECKING = "checking"
    ALLOWED = "allowed"
    REDIRECT_LOGIN = "redirect_login"
    REDIRECT_FORBIDDEN = "redirect_forbidden"


@dataclass(frozen=True)
class GuardDecision:
    state: GuardState
    redirect: str | None = None
    user: Identity | None = None

    @property
    def allowed(self) -> bool:
        return self.state is GuardState.ALLOWED


ALLOWED = GuardDecision(GuardState.ALLOWED)


def safe_next(candidate: str | None) -> str | None:
    """Return ``candidate`` if it is an absolute site-local path, else None."""
    if not candidate:
        return None
    target = candidate.strip()
    if not target.startswith("/"):
        return None
    # protocol-relative ("//host", "/\\host") or smuggled absolute URLs
    if target.startswith("//") or target.startswith("/\\") or target.lower().startswith("/http"):
        return None
    parts = urlsplit(target)
    if parts.scheme or parts.netloc:
        return None
    if any(ch in target for ch in ("\r", "\n", "\t")):
        return None
    return target


def login_redirect(path: str) -> str:
    return f"{LOGIN_PATH}?next={quote(path, safe='')}"


def destination_for(role: str, next_path: str | None = None) -> str:
    return safe_next(next_path) or DEFAULT_DESTINATIONS.get(role, DEFAULT_DESTINATIONS[FALLBACK_ROLE])


def role_select_redirect(next_path: str | None = None) -> str:
    nxt = safe_next(next_path)
    return f"{ROLE_SELECT_PATH}?next={quote(nxt, safe='')}" if nxt else ROLE_SELECT_PATH


class RouteGuard:
    def __init__(
        self,
        identity: IdentityGateway,
        profiles: ProfileProvisioner,
        public_paths: Iterable[str],
        timeout: float | None = None,
    ):
        self.identity = identity
        self.profiles = profiles
        self.public_paths = frozenset(p.strip() for p in public_paths if p.strip())
        self.timeout = timeout

    def is_public(self, path: str) -> bool:
        return urlsplit(path).path in self.public_paths

    async def _bounded(self, aw: Awaitable[T], what: str) -> T:
        if not self.timeout:
            return await aw
        try:
            return await asyncio.wait_for(aw, self.timeout)
        except asyncio.TimeoutError as e:
            log.warning("guard_timeout", lookup=what, timeout=self.timeout)
            raise ReadError(f"{what} lookup timed out", cause=e) from e

    async def check(self, path: str, required_role: str | None, token: str | None) -> GuardDecision:
        # public views never touch the identity provider
        if self.is_public(path):
            return ALLOWED

        user = await self._bounded(self.identity.current_user(token), "identity")
        if user is None:
            return GuardDecision(GuardState.REDIRECT_LOGIN, login_redirect(path))

        if not required_role:
            return GuardDecision(GuardState.ALLOWED, user=user)

        role = await self._bounded(self.profiles.get_role(user.id), "profile") or FALLBACK_ROLE
        if role != required_role:
            log.info("guard_forbidden", user_id=str(user.id), path=path, role=role, required=required_role)
            return GuardDecision(GuardState.REDIRECT_FORBIDDEN, FORBIDDEN_PATH, user=user)
        return GuardDecision(GuardState.ALLOWED, user=user)

    def mount(self, token: str | None) -> GuardMount:
        return GuardMount(self, token)


class GuardMount:
    """
    Per-view guard handle. ``navigate`` runs one evaluation per navigation;
    results that resolve after ``unmount()`` or after a newer navigation
    are discarded and never become the mount's state.
    """

    def __init__(self, guard: RouteGuard, token: str | None):
        self._guard = guard
        self._token = token
        self._generation = 0
        self.alive = True
        self.decision: GuardDecision | None = None

    @property
    def state(self) -> GuardState:
        return self.decision.state if self.decision else GuardState.CHECKING

    async def navigate(self, path: str, required_role: str | None = None) -> GuardDecision | None:
        self._generation += 1
        generation = self._generation
        self.decision = None
        decision = await self._guard.check(path, required_role, self._token)
        if not self.alive or generation != self._generation:
            return None
        self.decision = decision
        return decision

    def unmount(self) -> None:
        self.alive = False
