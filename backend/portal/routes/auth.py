from __future__ import annotations
from fastapi import APIRouter, Depends, HTTPException, Header, Query
from portal.auth_deps import get_clients, get_current_user, get_token, run_guard
from portal.clients import PortalClients
from portal.models.user import User
from portal.errors import AuthError, EmailTaken, InsertError, MissingRole, NoUser, ReadError
from portal.schemas.auth import (
    GuardResult, LoginRequest, LoginResult, ProfileRequest, ProfileResult, SignupRequest, TokenPair, UserPublic,
)
from portal.security import bearer_token, make_access_token, make_refresh_token
from portal.services.identity import Identity
from portal.services.route_guard import FALLBACK_ROLE, destination_for, role_select_redirect

router = APIRouter(prefix="/auth", tags=["auth"])

@router.post("/signup", status_code=201, response_model=UserPublic)
async def signup(payload: SignupRequest, clients: PortalClients = Depends(get_clients)):
    try:
        ident = await clients.identity.signup(payload.email, payload.password, payload.role)
    except EmailTaken:
        raise HTTPException(status_code=409, detail="Email already registered")
    return await _me(clients, ident)

@router.post("/login", response_model=LoginResult)
async def login(payload: LoginRequest, clients: PortalClients = Depends(get_clients)):
    try:
        ident = await clients.identity.login(payload.email, payload.password)
    except AuthError:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    # profile role wins; a missing profile is created from the signup role
    try:
        prov = await clients.profiles.ensure_profile(ident, ident.role_hint or FALLBACK_ROLE)
    except (ReadError, InsertError):
        raise HTTPException(status_code=503, detail="Could not load your profile, try again")
    sub = str(ident.id)
    return LoginResult(
        access=make_access_token(sub),
        refresh=make_refresh_token(sub),
        role=prov.role,
        destination=destination_for(prov.role, payload.next),
    )

@router.post("/profile", response_model=ProfileResult)
async def ensure_profile(
    payload: ProfileRequest,
    token: str | None = Depends(get_token),
    clients: PortalClients = Depends(get_clients),
):
    """Explicit role selection for users whose profile could not be provisioned implicitly."""
    try:
        ident = await clients.identity.current_user(token)
        prov = await clients.profiles.ensure_profile(ident, payload.role)
    except NoUser:
        raise HTTPException(status_code=401, detail="Not signed in")
    except MissingRole:
        raise HTTPException(
            status_code=409,
            detail={"message": "Choose a role to continue", "redirect": role_select_redirect(payload.next)},
        )
    except (ReadError, InsertError):
        raise HTTPException(status_code=503, detail="Could not save your profile, try again")
    return ProfileResult(created=prov.created, role=prov.role, destination=destination_for(prov.role, payload.next))

@router.post("/refresh", response_model=TokenPair)
async def refresh(authorization: str | None = Header(None), clients: PortalClients = Depends(get_clients)):
    token = bearer_token(authorization)
    if not token:
        raise HTTPException(status_code=401, detail="Missing refresh token")
    try:
        ident = await clients.identity.current_user(token, token_type="refresh")
    except ReadError:
        raise HTTPException(status_code=503, detail="Could not verify token, try again")
    if ident is None:
        raise HTTPException(status_code=401, detail="Invalid token")
    sub = str(ident.id)
    return TokenPair(access=make_access_token(sub), refresh=make_refresh_token(sub))

@router.get("/me", response_model=UserPublic)
async def me(user: Identity = Depends(get_current_user), clients: PortalClients = Depends(get_clients)):
    return await _me(clients, user)

@router.get("/guard", response_model=GuardResult)
async def guard(
    path: str = Query(..., description="view path being opened"),
    role: str | None = Query(default=None, pattern="^(developer|evaluator)$"),
    token: str | None = Depends(get_token),
    clients: PortalClients = Depends(get_clients),
):
    """Guard decision for a front end view: allowed, or where to redirect."""
    decision = await run_guard(clients, path, role, token)
    return GuardResult(state=decision.state.value, redirect=decision.redirect)

async def _me(clients: PortalClients, ident: Identity) -> UserPublic:
    async with clients.session_factory() as session:
        user = await session.get(User, ident.id)
    if user is None:
        # deleted after the token was issued
        raise HTTPException(status_code=401, detail="Invalid token")
    try:
        role = await clients.profiles.get_role(ident.id)
    except ReadError:
        role = None
    return UserPublic(id=user.id, email=user.email, role=role, created_at=user.created_at)
