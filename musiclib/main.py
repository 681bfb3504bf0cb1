"""
FastAPI application factory — entry point for the media library backend.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from musiclib.api.events import router as events_router
from musiclib.api.files import router as files_router
from musiclib.api.v1.router import v1_router
from musiclib.config import settings
from musiclib.db.base import Base
from musiclib.db.session import create_engine, create_session_factory
from musiclib.middleware.error_handler import (
    ErrorHandlerMiddleware,
    RequestIdMiddleware,
    register_exception_handlers,
)
from musiclib.utils.progress import ProgressManager, create_progress_manager
from musiclib.utils.sessions import UploadSessionRegistry
from musiclib.utils.storage import StorageProvider, create_storage
from musiclib.utils.url_cache import UrlCache

logger = logging.getLogger(__name__)


def create_app(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    storage: StorageProvider | None = None,
    progress: ProgressManager | None = None,
) -> FastAPI:
    """Build the app. Components not passed in are created from settings at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine = None
        factory = session_factory
        if factory is None:
            engine = create_engine()
            # Create all tables (dev convenience; use Alembic in production)
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            factory = create_session_factory(engine)

        store = storage or create_storage(settings)
        await store.initialize()

        url_cache = UrlCache(
            store,
            cache_seconds=settings.URL_CACHE_SECONDS,
            default_ttl=settings.SIGNED_URL_TTL_SECONDS,
        )
        registry = UploadSessionRegistry(
            max_sessions=settings.MAX_UPLOAD_SESSIONS,
            max_age=settings.UPLOAD_SESSION_MAX_AGE_SECONDS,
            sweep_interval=settings.UPLOAD_SWEEP_INTERVAL_SECONDS,
        )
        tracker = progress or await create_progress_manager(settings.REDIS_URL)

        app.state.session_factory = factory
        app.state.storage = store
        app.state.url_cache = url_cache
        app.state.registry = registry
        app.state.progress = tracker

        registry.start()
        url_cache.start()
        logger.info("Started with %s storage", type(store).__name__)

        yield

        await registry.stop()
        await url_cache.stop()
        await tracker.close()
        if engine is not None:
            await engine.dispose()

    app = FastAPI(
        title="MusicLib API",
        description="Backend API for the music library: uploads, images and catalog deletion.",
        version="1.0.0",
        lifespan=lifespan,
    )

    # ── Middleware (order matters, outermost first) ──────
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(ErrorHandlerMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_exception_handlers(app)

    # ── Routes ───────────────────────────────────────────
    app.include_router(v1_router)
    app.include_router(files_router)
    app.include_router(events_router)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=settings.LOG_LEVEL)
    uvicorn.run(
        "musiclib.main:app",
        host=settings.BACKEND_HOST,
        port=settings.BACKEND_PORT,
        reload=True,
    )
