"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from devpath.config import get_settings
from devpath.database import close_db, get_session, init_db
from devpath.dependencies import build_orchestrator
from devpath.health.router import router as health_router
from devpath.middleware import setup_middleware
from devpath.progression.router import router as progression_router
from devpath.progression.seed import seed_catalog
from devpath.redis_client import close_redis, init_redis

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    if settings.redis_url:
        await init_redis(settings.redis_url)

    # Seed catalog (idempotent)
    if settings.seed_catalog:
        try:
            async for db in get_session():
                await seed_catalog(db)
                break
        except Exception:
            logger.warning("Catalog seeding failed (tables may not exist yet)", exc_info=True)

    app.state.orchestrator = build_orchestrator(settings)

    yield

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="DevPath Progression API",
        description="XP, levels, quests, skill trees and badges for DevPath learners",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(progression_router)

    return app


app = create_app()
