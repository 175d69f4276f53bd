from typing import Optional

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.orm import Session, sessionmaker

from commsflow.config import Settings, get_settings
from commsflow.database import build_engine, build_session_factory, get_db, init_db
from commsflow.dependencies import Services, build_services
from commsflow.logging_config import get_logger, setup_logging
from commsflow.routers import actions, batches, communications, jobs, reminders, sessions, webhook

logger = get_logger("main")


def create_app(
    settings: Optional[Settings] = None,
    *,
    session_factory: Optional[sessionmaker] = None,
    services: Optional[Services] = None,
) -> FastAPI:
    """Build the API with its store and collaborators attached to app.state."""
    settings = settings or get_settings()
    setup_logging(settings.log_level)

    app = FastAPI(
        title="Commsflow API",
        description="Communication routing and action lifecycle for construction projects",
        version="0.1.0",
    )

    cors_origins = [origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins or ["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if session_factory is None:
        engine = build_engine(settings.database_url, echo=settings.debug)
        if settings.auto_create_tables:
            init_db(engine)
        session_factory = build_session_factory(engine)
    app.state.session_factory = session_factory
    app.state.services = services or build_services(settings)

    app.include_router(webhook.router)
    app.include_router(communications.router)
    app.include_router(actions.router)
    app.include_router(jobs.router)
    app.include_router(sessions.router)
    app.include_router(reminders.router)
    app.include_router(batches.router)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.get("/db-check")
    def db_check(db: Session = Depends(get_db)):
        db.execute(text("SELECT 1"))
        return {"status": "ok"}

    logger.info("Application created", extra={"context": {"debug": settings.debug}})
    return app
