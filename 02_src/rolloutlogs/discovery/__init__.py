"""Discovery module: release metadata, target resolution and reconciliation."""

from .metadata import IReleaseMetadata, RolloutMetadata
from .reconciler import DiscoveryReconciler
from .resolver import ITargetResolver, TargetResolver

__all__ = [
    "IReleaseMetadata",
    "RolloutMetadata",
    "ITargetResolver",
    "TargetResolver",
    "DiscoveryReconciler",
]
