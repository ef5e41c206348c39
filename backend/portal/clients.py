"""
Process-wide clients, built once at startup and shared by reference.

Routes reach them through ``request.app.state.clients``; tests build their
own ``PortalClients`` around an in-memory database and fakes.
"""
from __future__ import annotations
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from portal.config import Settings
from portal.services.artifacts import ArtifactLinkResolver
from portal.services.changefeed import ChangeFeed
from portal.services.identity import IdentityGateway
from portal.services.notifier import Notifier
from portal.services.profiles import ProfileProvisioner
from portal.services.review import ReviewWorkflow
from portal.services.route_guard import RouteGuard
from portal.services.storage import BlobStore


@dataclass
class PortalClients:
    settings: Settings
    engine: AsyncEngine
    feed: ChangeFeed
    session_factory: async_sessionmaker[AsyncSession]
    blobs: BlobStore
    notifier: Notifier
    identity: IdentityGateway = field(init=False)
    profiles: ProfileProvisioner = field(init=False)
    guard: RouteGuard = field(init=False)
    review: ReviewWorkflow = field(init=False)
    artifacts: ArtifactLinkResolver = field(init=False)

    def __post_init__(self):
        self.identity = IdentityGateway(self.session_factory)
        self.profiles = ProfileProvisioner(self.session_factory)
        self.guard = RouteGuard(
            self.identity, self.profiles, self.settings.public_paths, timeout=self.settings.guard_timeout_seconds
        )
        self.review = ReviewWorkflow(self.session_factory, self.notifier)
        self.artifacts = ArtifactLinkResolver(self.blobs.bucket, self.blobs.public_url)

    async def aclose(self) -> None:
        await self.engine.dispose()


def build_clients(
    settings: Settings,
    engine: AsyncEngine,
    blobs: BlobStore | None = None,
    notifier: Notifier | None = None,
) -> PortalClients:
    feed = ChangeFeed()
    session_factory = async_sessionmaker(engine, expire_on_commit=False, sync_session_class=feed.session_class)
    return PortalClients(
        settings=settings,
        engine=engine,
        feed=feed,
        session_factory=session_factory,
        blobs=blobs or BlobStore(
            settings.storage_endpoint,
            settings.storage_public_url,
            settings.storage_access_key,
            settings.storage_secret_key,
            settings.storage_bucket,
        ),
        notifier=notifier or Notifier(
            settings.notify_url, settings.notify_api_key, timeout=settings.notify_timeout_seconds
        ),
    )
