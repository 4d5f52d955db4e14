"""Request-scoped dependencies for the read-only race views."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from murahdahla.db.engine import create_session_factory
from murahdahla.db.repository import Repository


async def get_engine(request: Request) -> AsyncEngine:
    """The engine opened by the app lifespan."""
    return request.app.state.engine


async def get_session(
    engine: Annotated[AsyncEngine, Depends(get_engine)],
) -> AsyncGenerator[AsyncSession, None]:
    """Yield a read-only session; nothing is committed."""
    factory = create_session_factory(engine)
    async with factory() as session:
        try:
            yield session
        finally:
            await session.rollback()


async def get_repo(session: Annotated[AsyncSession, Depends(get_session)]) -> Repository:
    """Repository over the request's session; views only read through it."""
    return Repository(session)


RepoDep = Annotated[Repository, Depends(get_repo)]
