"""Core data models for the rollout log streamer."""

from .events import EventType, LogEvent, StreamEvent
from .pods import ContainerRef, Pod, PodInfo
from .targets import (
    Descriptor,
    LabelSelector,
    ManagedResource,
    ReleaseRef,
    SelectorRequirement,
    SourceType,
    Target,
)

__all__ = [
    # Targets
    "ReleaseRef",
    "SourceType",
    "LabelSelector",
    "SelectorRequirement",
    "Target",
    "Descriptor",
    "ManagedResource",
    # Pods
    "Pod",
    "PodInfo",
    "ContainerRef",
    # Events
    "EventType",
    "LogEvent",
    "StreamEvent",
]
