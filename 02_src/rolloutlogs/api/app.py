"""FastAPI application."""

import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ..app import Application
from .routes import logs, observability


# Global application instance
_app: Application | None = None

DEFAULT_CORS_ORIGINS = "http://localhost:5173,http://localhost:5174"  # Vite default


def get_app() -> Application:
    """Get the global application instance."""
    global _app
    if not _app:
        _app = Application()
    return _app


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan."""
    application = get_app()
    await application.start()
    yield
    await application.stop()


def create_fastapi_app(application: Application | None = None) -> FastAPI:
    """Create and configure FastAPI application."""
    global _app
    if application is not None:
        _app = application

    fastapi_app = FastAPI(
        title="Rollout Logs API",
        description="Live pod logs of rollout releases",
        version="0.1.0",
        lifespan=lifespan,
    )

    origins = os.getenv("CORS_ORIGINS", DEFAULT_CORS_ORIGINS)
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in origins.split(",") if o.strip()],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application = get_app()
    fastapi_app.include_router(logs.create_logs_router(application))
    fastapi_app.include_router(observability.create_observability_router(application))

    return fastapi_app
