"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from murahdahla.api.groups import router as groups_router
from murahdahla.api.races import router as races_router
from murahdahla.config import Settings
from murahdahla.db.engine import create_engine, create_tables

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup: create engine/tables, optionally start the Discord bot."""
    settings: Settings = app.state.settings
    engine = create_engine(settings.database_url)
    await create_tables(engine)
    app.state.engine = engine

    discord_bot = None
    from murahdahla.discord.bot import is_discord_enabled

    if is_discord_enabled(settings):
        from murahdahla.discord.bot import start_discord_bot

        discord_bot = await start_discord_bot(settings, engine)
        app.state.discord_bot = discord_bot
        logger.info("discord_bot_integration_started")
    else:
        logger.info("discord_bot_integration_disabled")

    yield

    if discord_bot is not None:
        await discord_bot.close()
        logger.info("discord_bot_integration_stopped")

    await engine.dispose()


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the Murahdahla FastAPI application."""
    settings = settings or Settings()

    logging.basicConfig(
        level=getattr(logging, settings.murahdahla_log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(
        title="Murahdahla",
        version="0.1.0",
        description="Asynchronous speedrun race bot with read-only leaderboard views",
        docs_url="/docs" if settings.murahdahla_env != "production" else None,
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.include_router(groups_router)
    app.include_router(races_router)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok", "env": settings.murahdahla_env}

    return app


app = create_app()


def run() -> None:
    """Console entry point: serve the app (and the bot it starts) with uvicorn."""
    settings = Settings()
    uvicorn.run("murahdahla.main:app", host=settings.host, port=settings.port)
