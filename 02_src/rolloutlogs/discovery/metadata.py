"""Release metadata lookups."""

from typing import Protocol

from ..cluster import IClusterClient
from ..models import ReleaseRef


class IReleaseMetadata(Protocol):
    """Resolves the revision a release currently wants deployed."""

    async def current_revision(self, release: ReleaseRef) -> str:
        """Return the current revision token, or "" when unknown."""
        ...


class RolloutMetadata:
    """Reads the revision token from the Rollout's deployment history."""

    def __init__(self, cluster: IClusterClient):
        self._cluster = cluster

    async def current_revision(self, release: ReleaseRef) -> str:
        """Version tag of the most recent history entry ("" without history)."""
        rollout = await self._cluster.get_release(release)
        history = (rollout.get("status") or {}).get("history") or []
        if not history:
            return ""
        version = history[0].get("version") or {}
        return version.get("tag") or ""
