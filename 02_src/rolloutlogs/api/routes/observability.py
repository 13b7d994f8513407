"""Observability API routes."""

from datetime import datetime

from pydantic import BaseModel
from fastapi import APIRouter

from ...app import IApplication


class PodResponse(BaseModel):
    """Response model for a roster entry."""

    name: str
    namespace: str
    type: str


class StreamResponse(BaseModel):
    """Response model for an open log stream."""

    id: str
    release: str | None
    source_type: str | None
    targets: list[str]
    pods: list[PodResponse]
    dropped_events: int
    started_at: datetime | None


class HealthResponse(BaseModel):
    status: str
    streams: int


def create_observability_router(app: IApplication) -> APIRouter:
    """Create observability router."""
    router = APIRouter(prefix="/api", tags=["observability"])

    @router.get("/streams", response_model=list[StreamResponse])
    async def get_streams() -> list[dict]:
        """Currently open log streams."""
        return await app.list_streams()

    @router.get("/health", response_model=HealthResponse)
    async def health() -> dict:
        return {"status": "ok", "streams": len(await app.list_streams())}

    return router
