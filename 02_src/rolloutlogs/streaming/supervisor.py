"""Stream Supervisor: keeps one tailer per container of a Target's pods."""

import asyncio
from datetime import datetime, timedelta
from typing import Callable, Protocol

from ..cluster import ClusterError
from ..logging_config import bind_context, get_logger
from ..models import ContainerRef, Pod, PodInfo, Target
from .enumerator import IPodEnumerator
from .roster import PodRoster
from .tailer import ContainerTailer

logger = get_logger(__name__)

# (namespace, pod, container, target) -> tailer
TailerFactory = Callable[[str, str, str, Target], ContainerTailer]


class IStreamSupervisor(Protocol):
    """Lifecycle of the tailers of one Target."""

    async def start(self) -> None:
        """Reconcile once, then keep reconciling on a timer."""
        ...

    async def stop(self) -> None:
        """Cancel every tailer and wait for them to exit."""
        ...


class StreamSupervisor:
    """
    Owns the StreamKey -> tailer task map of one Target.

    Each tick enumerates the Target's pods, starts a tailer for every
    (pod, container) without a live one and cancels tailers whose container
    is gone. A tailer that ended on its own is restarted on a later tick,
    resuming after the last line it read.
    """

    def __init__(
        self,
        target: Target,
        enumerator: IPodEnumerator,
        tailer_factory: TailerFactory,
        roster: PodRoster,
        interval: float = 2.0,
        since: datetime | None = None,
    ):
        self._target = target
        self._enumerator = enumerator
        self._tailer_factory = tailer_factory
        self._roster = roster
        self._interval = interval
        self._since = since

        self._streams: dict[str, asyncio.Task] = {}
        self._cursors: dict[str, datetime] = {}
        self._drained: set[str] = set()
        self._lock = asyncio.Lock()
        self._task: asyncio.Task | None = None
        self._stopped = False
        self._log = bind_context(logger, target=target.id)

    @property
    def target(self) -> Target:
        return self._target

    @property
    def stream_keys(self) -> list[str]:
        """Keys of the live tailers."""
        return sorted(self._streams)

    async def start(self) -> None:
        """Reconcile once, then keep reconciling on a timer."""
        self._log.info("Starting supervisor for target %s", self._target.id)
        try:
            await self.reconcile()
        except Exception:
            self._log.exception("Initial reconciliation failed for target %s", self._target.id)
        if not self._stopped:
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Cancel the timer and every tailer, wait for them, drop our pods from the roster."""
        self._stopped = True
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        async with self._lock:
            tasks = list(self._streams.values())
            self._streams.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        await self._roster.remove(self._target.id)
        self._log.info(
            "Stopped supervisor for target %s (%d streams)", self._target.id, len(tasks)
        )

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.reconcile()
            except Exception:
                self._log.exception("Reconciliation failed for target %s", self._target.id)

    async def reconcile(self) -> None:
        """One pass: enumerate pods and diff tailers against them."""
        try:
            pods = await self._enumerator.enumerate(
                self._target.namespace, self._target.selector
            )
        except ClusterError as e:
            self._log.warning("Pod enumeration failed for target %s: %s", self._target.id, e)
            return
        if self._stopped:
            return

        wanted: dict[str, tuple[Pod, ContainerRef]] = {}
        roster: dict[tuple[str, str], PodInfo] = {}
        for pod in pods:
            roster[(pod.namespace, pod.name)] = PodInfo(
                name=pod.name, namespace=pod.namespace, type=self._target.kind
            )
            for container in pod.containers:
                hint = self._target.container_hint
                if hint and container.name != hint:
                    continue
                wanted.setdefault(f"{pod.name}/{container.name}", (pod, container))

        await self._roster.update(self._target.id, list(roster.values()))

        cancelled = []
        started = []
        async with self._lock:
            if self._stopped:
                return
            for key in list(self._streams):
                if key not in wanted:
                    cancelled.append(self._streams.pop(key))

            for key in list(self._cursors):
                if key not in wanted:
                    del self._cursors[key]
            self._drained &= set(wanted)

            for key, (pod, container) in wanted.items():
                if key in self._streams:
                    continue
                if container.terminated and key in self._drained:
                    continue
                self._drained.discard(key)
                self._streams[key] = asyncio.create_task(
                    self._tail(key, pod, container), name=f"tail:{key}"
                )
                started.append(key)

        for task in cancelled:
            task.cancel()
        if cancelled:
            await asyncio.gather(*cancelled, return_exceptions=True)
            self._log.info(
                "Target %s: stopped %d streams for vanished containers",
                self._target.id, len(cancelled),
            )
        if started:
            self._log.info("Target %s: started streams %s", self._target.id, started)

    def _since_for(self, key: str) -> datetime | None:
        cursor = self._cursors.get(key)
        if cursor is not None:
            # Resume strictly after the last line read
            return cursor + timedelta(microseconds=1)
        return self._since

    async def _tail(self, key: str, pod: Pod, container: ContainerRef) -> None:
        tailer = self._tailer_factory(pod.namespace, pod.name, container.name, self._target)
        cancelled = False
        try:
            await tailer.run(since_time=self._since_for(key))
        except asyncio.CancelledError:
            cancelled = True
            raise
        except Exception:
            self._log.exception(
                "Tailer for %s/%s crashed", pod.namespace, key, extra={"context": {"stream": key}}
            )
        finally:
            async with self._lock:
                if not cancelled and tailer.last_timestamp is not None:
                    self._cursors[key] = tailer.last_timestamp
                if self._streams.get(key) is asyncio.current_task():
                    del self._streams[key]
                if container.terminated and not cancelled:
                    self._drained.add(key)
