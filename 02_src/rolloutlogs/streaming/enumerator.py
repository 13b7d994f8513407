"""Pod Enumerator: pods currently matching a Target's selector."""

from typing import Protocol

from ..cluster import IClusterClient
from ..models import LabelSelector, Pod


class IPodEnumerator(Protocol):
    """Read-only pod query."""

    async def enumerate(self, namespace: str, selector: LabelSelector) -> list[Pod]:
        """List pods matching the selector. Raises ClusterError on failure."""
        ...


class PodEnumerator:
    """Lists pods through the cluster client; no retries of its own."""

    def __init__(self, cluster: IClusterClient):
        self._cluster = cluster

    async def enumerate(self, namespace: str, selector: LabelSelector) -> list[Pod]:
        """List pods matching the selector. Raises ClusterError on failure."""
        items = await self._cluster.get_pods(namespace, selector)
        return [Pod.from_api(item) for item in items]
