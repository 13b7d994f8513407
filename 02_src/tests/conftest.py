"""Pytest configuration and fixtures."""

import asyncio
import sys
from contextlib import asynccontextmanager
from pathlib import Path

import pytest

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from rolloutlogs.cluster import ClusterError, ClusterNotFoundError  # noqa: E402
from rolloutlogs.config import StreamSettings  # noqa: E402


def make_pod(
    name: str,
    namespace: str = "default",
    labels: dict | None = None,
    containers: tuple[str, ...] = ("app",),
    init_containers: tuple[str, ...] = (),
    terminated: tuple[str, ...] = (),
) -> dict:
    """Pod object as returned by the API server."""
    statuses = [
        {"name": c, "state": {"terminated": {"exitCode": 0}} if c in terminated else {"running": {}}}
        for c in containers
    ]
    init_statuses = [
        {"name": c, "state": {"terminated": {"exitCode": 0}} if c in terminated else {"running": {}}}
        for c in init_containers
    ]
    return {
        "metadata": {"name": name, "namespace": namespace, "labels": dict(labels or {})},
        "spec": {
            "initContainers": [{"name": c} for c in init_containers],
            "containers": [{"name": c} for c in containers],
        },
        "status": {
            "phase": "Running",
            "initContainerStatuses": init_statuses,
            "containerStatuses": statuses,
        },
    }


def log_line(second: int, text: str, nanos: str = "000000000") -> str:
    """Timestamped line as produced with timestamps=true."""
    return f"2024-05-01T12:00:{second:02d}.{nanos}Z {text}"


class FakeLogSource:
    """Log of one container; stays open until finish() unless follow is False."""

    def __init__(self, lines=(), follow: bool = True):
        self.lines = list(lines)
        self.follow = follow
        self._changed = asyncio.Event()
        self._generation = 0

    def _notify(self) -> None:
        self._changed.set()
        self._changed = asyncio.Event()

    def append(self, line: str) -> None:
        self.lines.append(line)
        self._notify()

    def finish(self) -> None:
        self.follow = False
        self._notify()

    def disconnect(self) -> None:
        """End the reads that are open now; later reads follow again."""
        self._generation += 1
        self._notify()

    async def iterate(self, tail_lines: int | None):
        start = max(len(self.lines) - tail_lines, 0) if tail_lines is not None else 0
        index = start
        generation = self._generation
        while True:
            changed = self._changed
            while index < len(self.lines):
                yield self.lines[index]
                index += 1
            if not self.follow or generation != self._generation:
                return
            await changed.wait()


class FakeCluster:
    """In-memory IClusterClient."""

    def __init__(self):
        self.pods: dict[str, list[dict]] = {}
        self.logs: dict[tuple[str, str, str], FakeLogSource] = {}
        self.log_errors: dict[tuple[str, str, str], ClusterError] = {}
        self.pod_error: ClusterError | None = None
        self.releases: dict[tuple[str, str], dict] = {}
        self.descriptors: dict[tuple[str, str], list] = {}
        self.managed: dict[str, list] = {}
        self.managed_errors: dict[str, ClusterError] = {}
        self.replica_sets: dict[str, list[dict]] = {}

        self.log_opens: list[dict] = []
        self.open_streams = 0
        self.pod_queries = 0

    # Test helpers

    def add_pod(self, pod: dict) -> None:
        self.pods.setdefault(pod["metadata"]["namespace"], []).append(pod)

    def remove_pod(self, namespace: str, name: str) -> None:
        self.pods[namespace] = [
            p for p in self.pods.get(namespace, []) if p["metadata"]["name"] != name
        ]

    def set_log(self, namespace: str, pod: str, container: str, lines=(), follow=True) -> FakeLogSource:
        source = FakeLogSource(lines, follow)
        self.logs[(namespace, pod, container)] = source
        return source

    def opens_for(self, pod: str, container: str) -> list[dict]:
        return [o for o in self.log_opens if o["pod"] == pod and o["container"] == container]

    # IClusterClient

    async def get_pods(self, namespace, selector):
        self.pod_queries += 1
        if self.pod_error is not None:
            raise self.pod_error
        return [
            p for p in self.pods.get(namespace, [])
            if selector.matches(p["metadata"].get("labels"))
        ]

    @asynccontextmanager
    async def stream_container_logs(
        self, namespace, pod, container, *, since_time=None, tail_lines=None
    ):
        key = (namespace, pod, container)
        self.log_opens.append(
            {
                "namespace": namespace,
                "pod": pod,
                "container": container,
                "since_time": since_time,
                "tail_lines": tail_lines,
            }
        )
        if key in self.log_errors:
            raise self.log_errors[key]
        if key not in self.logs:
            raise ClusterNotFoundError(f"container {container} not found", status_code=404)

        self.open_streams += 1
        try:
            yield self.logs[key].iterate(tail_lines)
        finally:
            self.open_streams -= 1

    async def get_release(self, release):
        try:
            return self.releases[(release.namespace, release.name)]
        except KeyError:
            raise ClusterNotFoundError(f"rollout {release} not found", status_code=404) from None

    async def get_descriptors_for_release(self, release):
        return list(self.descriptors.get((release.namespace, release.name), []))

    async def get_managed_resources(self, descriptor, kinds=None):
        if descriptor.name in self.managed_errors:
            raise self.managed_errors[descriptor.name]
        return [
            r for r in self.managed.get(descriptor.name, [])
            if kinds is None or r.kind in kinds
        ]

    async def get_replica_sets(self, namespace):
        return list(self.replica_sets.get(namespace, []))

    async def close(self):
        pass


async def wait_for(predicate, timeout: float = 2.0, interval: float = 0.01) -> None:
    """Poll until predicate() is true or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not met in time")
        await asyncio.sleep(interval)


@pytest.fixture
def cluster():
    """In-memory cluster."""
    return FakeCluster()


@pytest.fixture
def settings():
    """Stream settings with short timers."""
    return StreamSettings(
        discovery_interval=0.05,
        supervisor_interval=0.05,
        snapshot_interval=0.05,
        keepalive_interval=0.05,
        channel_capacity=100,
        tail_lines=500,
        shutdown_timeout=1.0,
    )
