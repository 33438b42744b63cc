"""Main FastAPI application"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tracker.api import dashboard, items, sync
from tracker.config import Settings, get_settings
from tracker.models.base import init_db, make_engine, make_session_factory
from tracker.scheduler import SyncScheduler
from tracker.security import ApiAuthMiddleware

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings):
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the application around one explicit settings object"""
    settings = settings or get_settings()
    configure_logging(settings)

    engine = make_engine(settings.database_url)
    session_factory = make_session_factory(engine)
    scheduler = SyncScheduler(settings, session_factory)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan events"""
        # Startup
        logger.info("Starting repository item tracker")
        init_db(engine)
        scheduler.start()
        yield
        # Shutdown
        logger.info("Stopping repository item tracker")
        scheduler.stop()
        engine.dispose()

    app = FastAPI(
        title="Repository Item Tracker",
        description="Track remote issues and pull requests with local triage fields",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.scheduler = scheduler

    # Optional built-in auth (recommended if exposed beyond localhost/private networks)
    if settings.auth_enabled:
        if not settings.api_token and not (settings.auth_username and settings.auth_password):
            raise RuntimeError(
                "AUTH_ENABLED=true requires AUTH_USERNAME and AUTH_PASSWORD or API_TOKEN to be set"
            )
        app.add_middleware(
            ApiAuthMiddleware,
            username=settings.auth_username,
            password=settings.auth_password,
            api_token=settings.api_token,
        )

    # Added last so it wraps auth and answers preflight requests itself.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.cors_origin],
        allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
        allow_headers=["Accept", "Authorization", "Content-Type", "X-CSRF-Token"],
        expose_headers=["Link"],
        allow_credentials=True,
        max_age=300,
    )

    # Include API routers
    app.include_router(items.router)
    app.include_router(sync.router)
    app.include_router(dashboard.router)

    @app.get("/health")
    @app.get("/api/health")
    async def health_check():
        """Health check endpoint"""
        return {"ok": True, "time": datetime.now(timezone.utc).isoformat(timespec="seconds")}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    _settings = get_settings()
    uvicorn.run(
        "tracker.main:app",
        host=_settings.host,
        port=_settings.port,
        reload=False,
        log_level=_settings.log_level.lower(),
    )
