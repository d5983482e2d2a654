"""FastAPI application factory."""
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from sqlmodel import Session, SQLModel

from runtracker.api.routes import activities, session as session_routes
from runtracker.db.engine import get_engine, get_session
from runtracker.tracking.session import ActivitySession


def create_app(tracker: Optional[ActivitySession] = None, engine=None) -> FastAPI:
    """
    Build and return the FastAPI app.

    Args:
        tracker: session to control; built from Settings at startup when None.
        engine: database engine; defaults to the module-level engine.
    """
    engine = engine if engine is not None else get_engine()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Create tables on startup (idempotent)
        SQLModel.metadata.create_all(engine)
        if tracker is None:
            from runtracker.factory import build_session
            app.state.tracker = build_session(engine=engine)
        else:
            app.state.tracker = tracker
        await app.state.tracker.open()
        try:
            yield
        finally:
            await app.state.tracker.close()

    app = FastAPI(
        title="Run Tracker API",
        description="Activity tracking and sensor fusion",
        version="0.1.0",
        lifespan=lifespan,
    )

    def session_for_engine():
        with Session(engine) as s:
            yield s

    app.dependency_overrides[get_session] = session_for_engine

    app.include_router(session_routes.router, prefix="/session", tags=["session"])
    app.include_router(activities.router, prefix="/activities", tags=["activities"])

    return app
