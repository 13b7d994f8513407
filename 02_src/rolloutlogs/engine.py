"""Log stream engines: the root scope that owns a whole stream's tasks."""

import asyncio
import uuid
from datetime import datetime, timezone
from typing import AsyncIterator, Protocol

from .cluster import IClusterClient
from .config import StreamSettings
from .discovery import DiscoveryReconciler, ITargetResolver, RolloutMetadata, TargetResolver
from .logging_config import get_logger
from .models import PodInfo, ReleaseRef, SourceType, StreamEvent, Target
from .streaming import (
    ContainerTailer,
    EventMultiplexer,
    PodEnumerator,
    PodRoster,
    StreamSupervisor,
)

logger = get_logger(__name__)


class ILogStream(Protocol):
    """A running log stream as seen by the web layer."""

    id: str

    async def start(self) -> None:
        """Start producing events."""
        ...

    async def stop(self) -> None:
        """Cancel every task and close the event channel."""
        ...

    def events(self) -> AsyncIterator[StreamEvent]:
        """Events in channel order until the stream is stopped."""
        ...

    def send_keepalive(self) -> bool:
        """Enqueue a ping event."""
        ...

    async def describe(self) -> dict:
        """Summary for observability endpoints."""
        ...


async def _wait_bounded(task: asyncio.Task, timeout: float, what: str) -> None:
    done, _ = await asyncio.wait({task}, timeout=timeout)
    if not done:
        logger.warning("Timed out after %.1fs waiting for %s; proceeding", timeout, what)
    elif not task.cancelled() and task.exception() is not None:
        logger.error("Error while stopping %s: %s", what, task.exception())


class LogStreamEngine:
    """
    Aggregated log stream of one release.

    Owns the reconciler (which owns supervisors, which own tailers) and the
    multiplexer. Stopping cancels the whole tree, waits a bounded time and
    closes the channel exactly once.
    """

    def __init__(
        self,
        cluster: IClusterClient,
        release: ReleaseRef,
        settings: StreamSettings | None = None,
        source_type: SourceType | None = None,
        since: datetime | None = None,
        resolver: ITargetResolver | None = None,
    ):
        self.id = str(uuid.uuid4())
        self.release = release
        self.source_type = source_type
        self.since = since
        self.started_at: datetime | None = None

        self._cluster = cluster
        self._settings = settings or StreamSettings()
        self._roster = PodRoster()
        self._multiplexer = EventMultiplexer(
            capacity=self._settings.channel_capacity,
            roster=self._roster,
            snapshot_interval=self._settings.snapshot_interval,
        )
        self._enumerator = PodEnumerator(cluster)
        self._reconciler = DiscoveryReconciler(
            resolver=resolver or TargetResolver(cluster, RolloutMetadata(cluster)),
            release=release,
            supervisor_factory=self._create_supervisor,
            interval=self._settings.discovery_interval,
            source_type=source_type,
        )
        self._stopped = False
        self._stopping: asyncio.Task | None = None

    @property
    def dropped_events(self) -> int:
        return self._multiplexer.dropped

    @property
    def target_ids(self) -> list[str]:
        return self._reconciler.target_ids

    async def pods(self) -> list[PodInfo]:
        """Current pod roster."""
        return await self._roster.snapshot()

    def _create_supervisor(self, target: Target) -> StreamSupervisor:
        return StreamSupervisor(
            target=target,
            enumerator=self._enumerator,
            tailer_factory=self._create_tailer,
            roster=self._roster,
            interval=self._settings.supervisor_interval,
            since=self.since,
        )

    def _create_tailer(
        self, namespace: str, pod: str, container: str, target: Target
    ) -> ContainerTailer:
        return ContainerTailer(
            cluster=self._cluster,
            sink=self._multiplexer,
            namespace=namespace,
            pod=pod,
            container=container,
            source_type=target.kind,
            tail_lines=self._settings.tail_lines,
        )

    async def start(self) -> None:
        """Discover Targets, start their Supervisors and publish the first roster."""
        logger.info(
            "Starting log stream %s for release %s",
            self.id, self.release,
            extra={"context": {"source_type": self.source_type, "since": self.since}},
        )
        self.started_at = datetime.now(timezone.utc)
        await self._reconciler.start()
        self._multiplexer.start()
        await self._multiplexer.publish_snapshot()

    async def stop(self) -> None:
        """Cancel the task tree, wait up to shutdown_timeout, close the channel."""
        if self._stopped:
            return
        self._stopped = True

        # Kept referenced so a straggler is not garbage collected mid-shutdown
        self._stopping = asyncio.create_task(self._reconciler.stop())
        await _wait_bounded(
            self._stopping, self._settings.shutdown_timeout, f"release stream {self.id}"
        )
        await self._multiplexer.close()
        logger.info(
            "Stopped log stream %s for release %s (%d events dropped)",
            self.id, self.release, self._multiplexer.dropped,
        )

    def events(self) -> AsyncIterator[StreamEvent]:
        return self._multiplexer.events()

    def send_keepalive(self) -> bool:
        return self._multiplexer.send_keepalive()

    async def describe(self) -> dict:
        return {
            "id": self.id,
            "release": str(self.release),
            "source_type": self.source_type.value if self.source_type else None,
            "targets": self.target_ids,
            "pods": [pod.to_dict() for pod in await self.pods()],
            "dropped_events": self.dropped_events,
            "started_at": self.started_at,
        }

    async def __aenter__(self) -> "LogStreamEngine":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()


class ContainerLogStream:
    """Log stream of a single named container, without discovery."""

    def __init__(
        self,
        cluster: IClusterClient,
        namespace: str,
        pod: str,
        container: str,
        settings: StreamSettings | None = None,
        source_type: SourceType = SourceType.WORKLOAD,
        since: datetime | None = None,
    ):
        self.id = str(uuid.uuid4())
        self.namespace = namespace
        self.pod = pod
        self.container = container
        self.since = since
        self.started_at: datetime | None = None

        self._settings = settings or StreamSettings()
        self._multiplexer = EventMultiplexer(capacity=self._settings.channel_capacity)
        self._tailer = ContainerTailer(
            cluster=cluster,
            sink=self._multiplexer,
            namespace=namespace,
            pod=pod,
            container=container,
            source_type=source_type,
            tail_lines=self._settings.tail_lines,
        )
        self._task: asyncio.Task | None = None
        self._stopped = False

    async def start(self) -> None:
        self.started_at = datetime.now(timezone.utc)
        self._task = asyncio.create_task(self._run())

    async def _run(self) -> None:
        await self._tailer.run(since_time=self.since)
        # The stream ended on its own: let the consumer finish
        await self._multiplexer.close()

    async def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        if self._task:
            self._task.cancel()
            await _wait_bounded(
                self._task, self._settings.shutdown_timeout, f"container stream {self.id}"
            )
        await self._multiplexer.close()

    def events(self) -> AsyncIterator[StreamEvent]:
        return self._multiplexer.events()

    def send_keepalive(self) -> bool:
        return self._multiplexer.send_keepalive()

    async def describe(self) -> dict:
        return {
            "id": self.id,
            "release": None,
            "source_type": self._tailer.source_type.value,
            "targets": [f"{self.namespace}/{self._tailer.stream_key}"],
            "pods": [{"name": self.pod, "namespace": self.namespace, "type": self._tailer.source_type.value}],
            "dropped_events": self._multiplexer.dropped,
            "started_at": self.started_at,
        }
