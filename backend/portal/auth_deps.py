from __future__ import annotations
from fastapi import Depends, HTTPException, Request, WebSocket
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from portal.clients import PortalClients
from portal.errors import ReadError
from portal.services.identity import Identity
from portal.services.route_guard import GuardDecision, GuardState

security = HTTPBearer(auto_error=False)


class GuardRedirect(Exception):
    """Raised by guarded routes; rendered as 401/403 carrying the redirect target."""

    def __init__(self, decision: GuardDecision):
        super().__init__(decision.state.value)
        self.decision = decision

    @property
    def status_code(self) -> int:
        return 401 if self.decision.state is GuardState.REDIRECT_LOGIN else 403


def get_clients(request: Request) -> PortalClients:
    return request.app.state.clients


async def get_token(credentials: HTTPAuthorizationCredentials | None = Depends(security)) -> str | None:
    return credentials.credentials if credentials else None


async def run_guard(clients: PortalClients, path: str, role: str | None, token: str | None) -> GuardDecision:
    mount = clients.guard.mount(token)
    try:
        decision = await mount.navigate(path, role)
    except ReadError:
        raise HTTPException(status_code=503, detail="Could not verify access, try again")
    finally:
        mount.unmount()
    return decision


def require_role(role: str | None = None):
    """Dependency: the signed-in identity, after the route guard allowed it."""

    async def _guarded(
        request: Request,
        token: str | None = Depends(get_token),
        clients: PortalClients = Depends(get_clients),
    ) -> Identity:
        decision = await run_guard(clients, request.url.path, role, token)
        if not decision.allowed:
            raise GuardRedirect(decision)
        return decision.user

    return _guarded


get_current_user = require_role(None)


async def guard_websocket(websocket: WebSocket, role: str | None) -> Identity | None:
    """Same guard for websocket views; the token travels as ``?token=``. Closes the socket when denied."""
    clients: PortalClients = websocket.app.state.clients
    try:
        decision = await run_guard(clients, websocket.url.path, role, websocket.query_params.get("token"))
    except HTTPException:
        await websocket.close(code=1011)
        return None
    if not decision.allowed:
        await websocket.close(code=4401 if decision.state is GuardState.REDIRECT_LOGIN else 4403)
        return None
    return decision.user
