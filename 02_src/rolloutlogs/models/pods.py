"""Pod-related data models."""

from dataclasses import dataclass, field

from .targets import SourceType


@dataclass(frozen=True)
class PodInfo:
    """A pod in the release-wide roster, as published in `pods` events."""

    name: str
    namespace: str
    type: SourceType

    def to_dict(self) -> dict:
        return {"name": self.name, "namespace": self.namespace, "type": self.type.value}


@dataclass(frozen=True)
class ContainerRef:
    """A container of an enumerated pod."""

    name: str
    terminated: bool = False


@dataclass
class Pod:
    """A pod returned by the Pod Enumerator."""

    name: str
    namespace: str
    containers: list[ContainerRef] = field(default_factory=list)

    @classmethod
    def from_api(cls, obj: dict) -> "Pod":
        """Build from a Pod object returned by the API server."""
        metadata = obj.get("metadata") or {}
        spec = obj.get("spec") or {}
        status = obj.get("status") or {}

        terminated = set()
        for key in ("initContainerStatuses", "containerStatuses"):
            for cs in status.get(key) or []:
                state = cs.get("state") or {}
                if "terminated" in state:
                    terminated.add(cs.get("name"))

        containers = [
            ContainerRef(name=c["name"], terminated=c["name"] in terminated)
            for c in spec.get("initContainers") or []
        ]
        containers.extend(
            ContainerRef(name=c["name"], terminated=c["name"] in terminated)
            for c in spec.get("containers") or []
        )

        return cls(
            name=metadata.get("name", ""),
            namespace=metadata.get("namespace", ""),
            containers=containers,
        )
