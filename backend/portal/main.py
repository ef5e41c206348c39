from __future__ import annotations
import uuid
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from portal.auth_deps import GuardRedirect
from portal.clients import PortalClients, build_clients
from portal.config import Settings, settings
from portal.db import make_engine
from portal.logging_setup import configure_logging
from portal.routes.system import router as system_router
from portal.routes.auth import router as auth_router
from portal.routes.submissions import router as submissions_router
import structlog

configure_logging()
log = structlog.get_logger()

def create_app(clients: PortalClients | None = None, app_settings: Settings | None = None) -> FastAPI:
    cfg = app_settings or (clients.settings if clients else settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        if getattr(app.state, "clients", None) is None:
            app.state.clients = build_clients(cfg, make_engine(cfg.database_url))
        log.info("startup", env=cfg.environment, version=cfg.app_version, git_sha=cfg.git_sha)
        yield
        # Shutdown
        await app.state.clients.aclose()
        log.info("shutdown")

    app = FastAPI(
        title=f"{cfg.app_display_name} API",
        version=cfg.app_version,
        lifespan=lifespan,
        description=f"{cfg.app_display_name} API for internship applications and reviews",
    )
    app.state.clients = clients

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if cfg.environment == "dev" else cfg.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(system_router)
    app.include_router(auth_router)
    app.include_router(submissions_router)

    @app.exception_handler(GuardRedirect)
    async def guard_redirect(request: Request, exc: GuardRedirect):
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.decision.state.value, "redirect": exc.decision.redirect},
        )

    @app.middleware("http")
    async def add_request_id(request: Request, call_next):
        rid = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = rid
        structlog.contextvars.bind_contextvars(request_id=rid)
        try:
            response: Response = await call_next(request)
        finally:
            structlog.contextvars.clear_contextvars()
        response.headers["X-Request-ID"] = rid
        return response

    return app

app = create_app()
