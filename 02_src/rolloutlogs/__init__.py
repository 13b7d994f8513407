"""Live log streaming for rollout releases."""

from .app import Application, IApplication
from .cluster import (
    ClusterConfigError,
    ClusterError,
    ClusterNotFoundError,
    IClusterClient,
    KubernetesClient,
)
from .config import ClusterSettings, StreamSettings
from .discovery import DiscoveryReconciler, ITargetResolver, RolloutMetadata, TargetResolver
from .engine import ContainerLogStream, ILogStream, LogStreamEngine
from .models import (
    LogEvent,
    PodInfo,
    ReleaseRef,
    SourceType,
    StreamEvent,
    Target,
)
from .streaming import (
    ContainerTailer,
    EventMultiplexer,
    PodEnumerator,
    PodRoster,
    StreamSupervisor,
)

__all__ = [
    # Application
    "Application",
    "IApplication",
    # Configuration
    "ClusterSettings",
    "StreamSettings",
    # Cluster
    "IClusterClient",
    "KubernetesClient",
    "ClusterError",
    "ClusterNotFoundError",
    "ClusterConfigError",
    # Models
    "ReleaseRef",
    "SourceType",
    "Target",
    "PodInfo",
    "LogEvent",
    "StreamEvent",
    # Discovery
    "ITargetResolver",
    "TargetResolver",
    "RolloutMetadata",
    "DiscoveryReconciler",
    # Streaming
    "StreamSupervisor",
    "PodEnumerator",
    "PodRoster",
    "ContainerTailer",
    "EventMultiplexer",
    # Engine
    "ILogStream",
    "LogStreamEngine",
    "ContainerLogStream",
]
