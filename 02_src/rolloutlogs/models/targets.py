"""Release, target and label selector models."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping


class SourceType(str, Enum):
    """Kind of workload a log line comes from."""

    WORKLOAD = "workload"
    JOB = "job"

    @classmethod
    def parse(cls, value: str | None) -> "SourceType | None":
        """Parse a filter value; empty means no filter.

        The legacy names "pod" and "test" are accepted as well.
        """
        if not value:
            return None
        normalized = value.strip().lower()
        aliases = {"pod": cls.WORKLOAD, "test": cls.JOB}
        if normalized in aliases:
            return aliases[normalized]
        try:
            return cls(normalized)
        except ValueError:
            raise ValueError(f"Unknown source type: {value!r}") from None


@dataclass(frozen=True)
class ReleaseRef:
    """A logical release (rollout) identified by namespace and name."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass(frozen=True)
class SelectorRequirement:
    """One matchExpressions entry."""

    key: str
    operator: str  # In, NotIn, Exists, DoesNotExist
    values: tuple[str, ...] = ()

    def matches(self, labels: Mapping[str, str]) -> bool:
        if self.operator == "In":
            return self.key in labels and labels[self.key] in self.values
        if self.operator == "NotIn":
            return self.key not in labels or labels[self.key] not in self.values
        if self.operator == "Exists":
            return self.key in labels
        if self.operator == "DoesNotExist":
            return self.key not in labels
        raise ValueError(f"Unsupported selector operator: {self.operator}")

    def render(self) -> str:
        if self.operator == "In":
            return f"{self.key} in ({','.join(self.values)})"
        if self.operator == "NotIn":
            return f"{self.key} notin ({','.join(self.values)})"
        if self.operator == "Exists":
            return self.key
        if self.operator == "DoesNotExist":
            return f"!{self.key}"
        raise ValueError(f"Unsupported selector operator: {self.operator}")


@dataclass(frozen=True)
class LabelSelector:
    """Kubernetes label selector (matchLabels + matchExpressions)."""

    match_labels: tuple[tuple[str, str], ...] = ()
    match_expressions: tuple[SelectorRequirement, ...] = ()

    @classmethod
    def from_labels(cls, **labels: str) -> "LabelSelector":
        return cls(match_labels=tuple(sorted(labels.items())))

    @classmethod
    def equals(cls, key: str, value: str) -> "LabelSelector":
        """Selector for a single key=value pair."""
        return cls(match_labels=((key, value),))

    @classmethod
    def from_dict(cls, data: Mapping) -> "LabelSelector":
        """Build from the API representation."""
        labels = data.get("matchLabels") or {}
        expressions = tuple(
            SelectorRequirement(
                key=expr["key"],
                operator=expr["operator"],
                values=tuple(expr.get("values") or ()),
            )
            for expr in data.get("matchExpressions") or []
        )
        return cls(
            match_labels=tuple(sorted(labels.items())),
            match_expressions=expressions,
        )

    def is_empty(self) -> bool:
        return not self.match_labels and not self.match_expressions

    def matches(self, labels: Mapping[str, str] | None) -> bool:
        """Check a label set against the selector. An empty selector matches everything."""
        labels = labels or {}
        for key, value in self.match_labels:
            if labels.get(key) != value:
                return False
        return all(expr.matches(labels) for expr in self.match_expressions)

    def to_query(self) -> str:
        """Render as the labelSelector query string understood by the API server."""
        parts = [f"{key}={value}" for key, value in self.match_labels]
        parts.extend(expr.render() for expr in self.match_expressions)
        return ",".join(parts)

    def __str__(self) -> str:
        return self.to_query()


@dataclass(frozen=True)
class Target:
    """A version-scoped group of pods to tail.

    The id is derived from the concrete resource revision (a ReplicaSet or a
    Job), so a new rollout iteration yields a new Target.
    """

    id: str
    namespace: str
    selector: LabelSelector
    kind: SourceType
    container_hint: str | None = None


@dataclass
class Descriptor:
    """A deployment descriptor (Flux Kustomization) associated with a release."""

    namespace: str
    name: str
    substitutions: dict[str, str] = field(default_factory=dict)

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"

    def substitute(self, text: str) -> str:
        """Apply post-build variables in ${VAR} and $(VAR) form."""
        for key, value in self.substitutions.items():
            text = text.replace(f"${{{key}}}", value)
            text = text.replace(f"$({key})", value)
        return text


@dataclass
class ManagedResource:
    """One inventory entry of a descriptor, with the live object when it exists."""

    group: str
    version: str
    kind: str
    namespace: str
    name: str
    obj: dict | None = None
