"""Release-wide roster of pods currently being tailed."""

import asyncio

from ..models import PodInfo


class PodRoster:
    """Aggregate view of enumerated pods, one slice per Target."""

    def __init__(self):
        self._slices: dict[str, dict[tuple[str, str], PodInfo]] = {}
        self._lock = asyncio.Lock()

    async def update(self, target_id: str, pods: list[PodInfo]) -> None:
        """Replace the pods contributed by one Target."""
        async with self._lock:
            self._slices[target_id] = {(p.namespace, p.name): p for p in pods}

    async def remove(self, target_id: str) -> None:
        """Drop a Target's pods from the roster."""
        async with self._lock:
            self._slices.pop(target_id, None)

    async def snapshot(self) -> list[PodInfo]:
        """Pods present in any Target's latest enumeration, sorted by namespace/name."""
        async with self._lock:
            merged: dict[tuple[str, str], PodInfo] = {}
            for pods in self._slices.values():
                merged.update(pods)
        return [merged[key] for key in sorted(merged)]
