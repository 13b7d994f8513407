"""Events delivered to a log stream consumer."""

import json
from dataclasses import dataclass
from enum import Enum

from .pods import PodInfo
from .targets import SourceType


class EventType(str, Enum):
    """Named server-push events."""

    PODS = "pods"
    LOG = "log"
    PING = "ping"


@dataclass(frozen=True)
class LogEvent:
    """One log line from one container."""

    pod: str
    container: str
    source_type: SourceType
    text: str
    timestamp_millis: int

    @property
    def stream_key(self) -> str:
        return f"{self.pod}/{self.container}"

    def to_dict(self) -> dict:
        return {
            "pod": self.pod,
            "container": self.container,
            "sourceType": self.source_type.value,
            "text": self.text,
            "timestampMillis": self.timestamp_millis,
        }


@dataclass(frozen=True)
class StreamEvent:
    """An entry of the multiplexed output channel."""

    type: EventType
    log: LogEvent | None = None
    pods: tuple[PodInfo, ...] = ()

    @classmethod
    def for_log(cls, event: LogEvent) -> "StreamEvent":
        return cls(type=EventType.LOG, log=event)

    @classmethod
    def for_pods(cls, pods: list[PodInfo]) -> "StreamEvent":
        return cls(type=EventType.PODS, pods=tuple(pods))

    @classmethod
    def ping(cls) -> "StreamEvent":
        return cls(type=EventType.PING)

    def data(self) -> str:
        """Payload as sent on the wire."""
        if self.type is EventType.LOG and self.log is not None:
            return json.dumps(self.log.to_dict())
        if self.type is EventType.PODS:
            return json.dumps([pod.to_dict() for pod in self.pods])
        return "keepalive"

    def to_sse(self) -> str:
        """Format as a server-sent event frame."""
        return f"event: {self.type.value}\ndata: {self.data()}\n\n"
