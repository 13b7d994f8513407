"""Application bootstrap and lifecycle management."""

import asyncio
from datetime import datetime
from typing import Protocol

from .cluster import IClusterClient, KubernetesClient
from .config import ClusterSettings, StreamSettings
from .engine import ContainerLogStream, ILogStream, LogStreamEngine
from .logging_config import get_logger
from .models import ReleaseRef, SourceType

logger = get_logger(__name__)


class IApplication(Protocol):
    """Bootstrap and lifecycle."""

    @property
    def settings(self) -> StreamSettings:
        ...

    async def start(self) -> None:
        """Connect to the cluster."""
        ...

    async def stop(self) -> None:
        """Stop every open stream, then release the cluster client."""
        ...

    async def check_release(self, release: ReleaseRef) -> None:
        """Raise ClusterNotFoundError if the release does not exist."""
        ...

    async def open_release_stream(
        self,
        release: ReleaseRef,
        source_type: SourceType | None = None,
        since: datetime | None = None,
    ) -> ILogStream:
        """Start an aggregated stream over every Target of a release."""
        ...

    async def open_container_stream(
        self,
        namespace: str,
        pod: str,
        container: str,
        source_type: SourceType | None = None,
        since: datetime | None = None,
    ) -> ILogStream:
        """Start a stream over one named container."""
        ...

    async def close_stream(self, stream: ILogStream) -> None:
        """Stop a stream and forget it."""
        ...

    async def list_streams(self) -> list[dict]:
        """Summaries of the open streams."""
        ...


class Application:
    """Main application bootstrap."""

    def __init__(
        self,
        cluster: IClusterClient | None = None,
        cluster_settings: ClusterSettings | None = None,
        settings: StreamSettings | None = None,
    ):
        self._cluster = cluster
        self._owns_cluster = False
        self._cluster_settings = cluster_settings
        self._settings = settings or StreamSettings.from_env()
        self._streams: dict[str, ILogStream] = {}

    @property
    def settings(self) -> StreamSettings:
        return self._settings

    @property
    def cluster(self) -> IClusterClient:
        if self._cluster is None:
            raise RuntimeError("Application not started")
        return self._cluster

    async def start(self) -> None:
        """Create the cluster client unless one was injected."""
        logger.info("Starting application")
        if self._cluster is None:
            settings = self._cluster_settings or ClusterSettings.from_env()
            self._cluster = KubernetesClient(settings)
            self._owns_cluster = True
            logger.info("Cluster client initialized for %s", settings.api_url)

    async def stop(self) -> None:
        """Shutdown in reverse order."""
        streams = list(self._streams.values())
        self._streams.clear()
        if streams:
            logger.info("Stopping %d open streams", len(streams))
            await asyncio.gather(*(s.stop() for s in streams), return_exceptions=True)

        if self._cluster is not None and self._owns_cluster:
            await self._cluster.close()
            self._cluster = None
            self._owns_cluster = False
            logger.info("Cluster client closed")

    async def check_release(self, release: ReleaseRef) -> None:
        await self.cluster.get_release(release)

    async def open_release_stream(
        self,
        release: ReleaseRef,
        source_type: SourceType | None = None,
        since: datetime | None = None,
    ) -> ILogStream:
        stream = LogStreamEngine(
            cluster=self.cluster,
            release=release,
            settings=self._settings,
            source_type=source_type,
            since=since,
        )
        return await self._register(stream)

    async def open_container_stream(
        self,
        namespace: str,
        pod: str,
        container: str,
        source_type: SourceType | None = None,
        since: datetime | None = None,
    ) -> ILogStream:
        stream = ContainerLogStream(
            cluster=self.cluster,
            namespace=namespace,
            pod=pod,
            container=container,
            settings=self._settings,
            source_type=source_type or SourceType.WORKLOAD,
            since=since,
        )
        return await self._register(stream)

    async def _register(self, stream: ILogStream) -> ILogStream:
        self._streams[stream.id] = stream
        try:
            await stream.start()
        except BaseException:
            self._streams.pop(stream.id, None)
            await stream.stop()
            raise
        return stream

    async def close_stream(self, stream: ILogStream) -> None:
        self._streams.pop(stream.id, None)
        await stream.stop()

    async def list_streams(self) -> list[dict]:
        return [await stream.describe() for stream in list(self._streams.values())]
