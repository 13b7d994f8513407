"""Container Tailer: follows one container's log output."""

import re
from datetime import datetime, timezone

from ..cluster import ClusterError, IClusterClient
from ..logging_config import bind_context, get_logger
from ..models import LogEvent, SourceType
from .multiplexer import IEventSink

logger = get_logger(__name__)

_TIMESTAMP_RE = re.compile(
    r"^(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})(?:\.(\d+))?(Z|[+-]\d{2}:\d{2})(?:\s|$)"
)


def parse_log_line(line: str) -> tuple[datetime | None, str]:
    """
    Split a leading ISO-8601 timestamp off a log line.

    Fractional seconds beyond microseconds are truncated.

    Returns:
        (timestamp, text) - timestamp is None and text the whole line when
        the line does not start with a valid timestamp
    """
    match = _TIMESTAMP_RE.match(line)
    if not match:
        return None, line

    base, fraction, zone = match.groups()
    micros = (fraction or "")[:6].ljust(6, "0")
    if zone == "Z":
        zone = "+00:00"
    try:
        ts = datetime.fromisoformat(f"{base}.{micros}{zone}")
    except ValueError:
        return None, line
    return ts, line[match.end():]


def to_millis(ts: datetime) -> int:
    return int(ts.timestamp() * 1000)


class ContainerTailer:
    """Follow-mode reader for one (pod, container) pair."""

    def __init__(
        self,
        cluster: IClusterClient,
        sink: IEventSink,
        namespace: str,
        pod: str,
        container: str,
        source_type: SourceType,
        tail_lines: int | None = 500,
    ):
        self._cluster = cluster
        self._sink = sink
        self.namespace = namespace
        self.pod = pod
        self.container = container
        self.source_type = source_type
        self._tail_lines = tail_lines
        self.last_timestamp: datetime | None = None
        self.lines_read = 0
        self._log = bind_context(
            logger, stream=f"{namespace}/{pod}/{container}", source_type=source_type.value
        )

    @property
    def stream_key(self) -> str:
        return f"{self.pod}/{self.container}"

    async def run(self, since_time: datetime | None = None) -> None:
        """
        Stream lines into the sink until the log ends or the task is cancelled.

        With since_time the read starts there and lines stamped earlier are
        discarded; without it only the last tail_lines lines of history are read.
        A failure to open or read the stream ends the run quietly.
        """
        tail_lines = None if since_time is not None else self._tail_lines
        try:
            async with self._cluster.stream_container_logs(
                self.namespace,
                self.pod,
                self.container,
                since_time=since_time,
                tail_lines=tail_lines,
            ) as lines:
                self._log.info(
                    "Streaming logs for %s/%s (since=%s)",
                    self.namespace, self.stream_key, since_time,
                )
                async for raw in lines:
                    self._handle_line(raw, since_time)
        except ClusterError as e:
            self._log.warning("Log stream for %s/%s ended: %s", self.namespace, self.stream_key, e)
            return

        self._log.info(
            "Finished streaming %s/%s (%d lines)",
            self.namespace, self.stream_key, self.lines_read,
        )

    def _handle_line(self, raw: str, since_time: datetime | None) -> None:
        line = raw.rstrip("\r\n")
        if not line:
            return

        ts, text = parse_log_line(line)
        if ts is not None:
            if since_time is not None and ts < since_time:
                return
            self.last_timestamp = ts
        else:
            ts = datetime.now(timezone.utc)

        self.lines_read += 1
        self._sink.push_log(
            LogEvent(
                pod=self.pod,
                container=self.container,
                source_type=self.source_type,
                text=text,
                timestamp_millis=to_millis(ts),
            )
        )
