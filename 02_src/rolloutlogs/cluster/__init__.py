"""Cluster API collaborator module."""

from .client import IClusterClient, KubernetesClient
from .errors import ClusterConfigError, ClusterError, ClusterNotFoundError

__all__ = [
    "IClusterClient",
    "KubernetesClient",
    "ClusterError",
    "ClusterNotFoundError",
    "ClusterConfigError",
]
