"""Log streaming API routes."""

import asyncio
from datetime import datetime, timezone
from typing import AsyncIterator

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import StreamingResponse

from ...app import IApplication
from ...cluster import ClusterError, ClusterNotFoundError
from ...engine import ILogStream
from ...logging_config import get_logger
from ...models import ReleaseRef, SourceType

logger = get_logger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def millis_to_datetime(millis: int) -> datetime:
    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc)


async def _keepalive(stream: ILogStream, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        stream.send_keepalive()


async def _event_source(
    app: IApplication, stream: ILogStream, keepalive_interval: float
) -> AsyncIterator[str]:
    keepalive = asyncio.create_task(_keepalive(stream, keepalive_interval))
    try:
        async for event in stream.events():
            yield event.to_sse()
    finally:
        keepalive.cancel()
        logger.info("Client of stream %s gone, closing", stream.id)
        # Runs to completion even if the response task is being cancelled
        await asyncio.shield(app.close_stream(stream))


def create_logs_router(app: IApplication) -> APIRouter:
    """Create log streaming router."""
    router = APIRouter(prefix="/api", tags=["logs"])

    @router.get("/rollouts/{namespace}/{name}/pods/logs")
    async def stream_logs(
        namespace: str,
        name: str,
        type: str | None = Query(None, description="workload or job (aliases: pod, test)"),
        since: int | None = Query(None, ge=0, description="Epoch milliseconds"),
        pod: str | None = Query(None, description="Tail a single pod"),
        container: str | None = Query(None, description="Container of the single pod"),
    ) -> StreamingResponse:
        """Stream pod logs of a release as server-sent events."""
        try:
            source_type = SourceType.parse(type)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        since_time = millis_to_datetime(since) if since is not None else None
        release = ReleaseRef(namespace=namespace, name=name)

        try:
            if pod:
                if not container:
                    raise HTTPException(
                        status_code=400, detail="container is required together with pod"
                    )
                stream = await app.open_container_stream(
                    namespace, pod, container, source_type=source_type, since=since_time
                )
            else:
                await app.check_release(release)
                stream = await app.open_release_stream(
                    release, source_type=source_type, since=since_time
                )
        except HTTPException:
            raise
        except ClusterNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        except ClusterError as e:
            raise HTTPException(status_code=502, detail=str(e))

        return StreamingResponse(
            _event_source(app, stream, app.settings.keepalive_interval),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )

    return router
