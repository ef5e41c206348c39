from __future__ import annotations
from typing import AsyncGenerator
from fastapi import Request
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import DeclarativeBase
from portal.config import settings

class Base(DeclarativeBase):
    pass

def make_engine(url: str | None = None):
    return create_async_engine(url or settings.database_url, future=True, echo=False)

async def get_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    async with request.app.state.clients.session_factory() as session:
        yield session
