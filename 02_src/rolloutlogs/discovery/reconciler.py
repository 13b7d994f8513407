"""Discovery Reconciler: keeps one Stream Supervisor per resolved Target."""

import asyncio
from typing import Callable

from ..cluster import ClusterError
from ..logging_config import bind_context, get_logger
from ..models import ReleaseRef, SourceType, Target
from ..streaming import IStreamSupervisor
from .resolver import ITargetResolver

logger = get_logger(__name__)

SupervisorFactory = Callable[[Target], IStreamSupervisor]


class DiscoveryReconciler:
    """
    Re-resolves a release on a timer and diffs Supervisors by Target id.

    A Target whose id is still resolved keeps its Supervisor untouched; new
    ids get a Supervisor, vanished ids have theirs stopped.
    """

    def __init__(
        self,
        resolver: ITargetResolver,
        release: ReleaseRef,
        supervisor_factory: SupervisorFactory,
        interval: float = 5.0,
        source_type: SourceType | None = None,
    ):
        self._resolver = resolver
        self._release = release
        self._supervisor_factory = supervisor_factory
        self._interval = interval
        self._source_type = source_type

        self._supervisors: dict[str, IStreamSupervisor] = {}
        self._lock = asyncio.Lock()
        self._task: asyncio.Task | None = None
        self._log = bind_context(logger, release=str(release))

    @property
    def target_ids(self) -> list[str]:
        return sorted(self._supervisors)

    async def start(self) -> None:
        """Resolve once, start Supervisors for the Targets, then start the timer."""
        self._log.info("Starting discovery for release %s", self._release)
        await self.reconcile()
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop the timer and every Supervisor."""
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        async with self._lock:
            supervisors = list(self._supervisors.values())
            self._supervisors.clear()
        await self._gather_logged("stop", [s.stop() for s in supervisors])
        self._log.info("Stopped discovery for release %s", self._release)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.reconcile()
            except Exception:
                self._log.exception("Discovery failed for release %s", self._release)

    async def reconcile(self) -> None:
        """One pass: resolve Targets and start/stop Supervisors to match."""
        try:
            targets = await self._resolver.resolve(self._release, self._source_type)
        except ClusterError as e:
            self._log.warning("Target resolution failed for release %s: %s", self._release, e)
            return

        wanted = {target.id: target for target in targets}

        async with self._lock:
            removed = [
                self._supervisors.pop(target_id)
                for target_id in list(self._supervisors)
                if target_id not in wanted
            ]
            added: dict[str, IStreamSupervisor] = {}
            for target_id, target in wanted.items():
                if target_id in self._supervisors:
                    continue
                supervisor = self._supervisor_factory(target)
                self._supervisors[target_id] = supervisor
                added[target_id] = supervisor

        if removed:
            self._log.info("Release %s: removing %d supervisors", self._release, len(removed))
            await self._gather_logged("stop", [s.stop() for s in removed])
        if added:
            self._log.info("Release %s: adding supervisors %s", self._release, list(added))
            results = await self._gather_logged("start", [s.start() for s in added.values()])
            failed = [
                (target_id, supervisor)
                for (target_id, supervisor), result in zip(added.items(), results)
                if isinstance(result, Exception)
            ]
            if failed:
                await self._forget(failed)

    async def _forget(self, failed: list[tuple[str, IStreamSupervisor]]) -> None:
        """Drop Supervisors that failed to start so the next pass rebuilds them."""
        async with self._lock:
            for target_id, supervisor in failed:
                if self._supervisors.get(target_id) is supervisor:
                    del self._supervisors[target_id]
        await self._gather_logged("stop", [s.stop() for _, s in failed])
        self._log.warning(
            "Release %s: retrying targets %s on the next pass",
            self._release, [target_id for target_id, _ in failed],
        )

    async def _gather_logged(self, action: str, calls: list) -> list:
        results = await asyncio.gather(*calls, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                self._log.error("Failed to %s supervisor for %s: %s", action, self._release, result)
        return results
