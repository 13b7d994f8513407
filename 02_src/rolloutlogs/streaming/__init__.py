"""Log streaming module: tailers, supervisors and the output channel."""

from .enumerator import IPodEnumerator, PodEnumerator
from .multiplexer import EventMultiplexer, IEventSink
from .roster import PodRoster
from .supervisor import IStreamSupervisor, StreamSupervisor
from .tailer import ContainerTailer, parse_log_line

__all__ = [
    "IPodEnumerator",
    "PodEnumerator",
    "IEventSink",
    "EventMultiplexer",
    "PodRoster",
    "IStreamSupervisor",
    "StreamSupervisor",
    "ContainerTailer",
    "parse_log_line",
]
