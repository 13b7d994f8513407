"""Target Resolver: from a release to version-scoped pod groups."""

import json
from typing import Protocol

from ..cluster import ClusterError, IClusterClient
from ..logging_config import get_logger
from ..models import Descriptor, LabelSelector, ManagedResource, ReleaseRef, SourceType, Target
from .metadata import IReleaseMetadata

logger = get_logger(__name__)

POD_TEMPLATE_HASH_LABEL = "pod-template-hash"
JOB_NAME_LABEL = "batch.kubernetes.io/job-name"

WORKLOAD_KINDS = frozenset({"Deployment"})
JOB_KINDS = frozenset({"Job", "RolloutTest"})


class ITargetResolver(Protocol):
    """Produces the Targets of a release."""

    async def resolve(
        self, release: ReleaseRef, source_type: SourceType | None = None
    ) -> list[Target]:
        """Resolve the release to Targets. Raises ClusterError if the release itself cannot be read."""
        ...


def contains_revision(obj: dict, revision: str, descriptor: Descriptor) -> bool:
    """Permissive revision match: substring search over the serialized object.

    Covers labels, annotations and image references alike; descriptor
    substitution variables are expanded first.
    """
    text = descriptor.substitute(json.dumps(obj, sort_keys=True))
    return revision in text


def is_owned_by(replica_set: dict, deployment_name: str, selector: LabelSelector | None) -> bool:
    metadata = replica_set.get("metadata") or {}
    for ref in metadata.get("ownerReferences") or []:
        if ref.get("kind") == "Deployment" and ref.get("name") == deployment_name:
            return True
    if selector is None or selector.is_empty():
        return False
    return selector.matches(metadata.get("labels"))


class TargetResolver:
    """Walks release -> descriptors -> inventory -> Targets."""

    def __init__(self, cluster: IClusterClient, metadata: IReleaseMetadata):
        self._cluster = cluster
        self._metadata = metadata

    async def resolve(
        self, release: ReleaseRef, source_type: SourceType | None = None
    ) -> list[Target]:
        """
        Resolve the Targets of a release.

        Descriptors are resolved independently: one that fails is logged and
        skipped, the others still contribute Targets.

        Args:
            release: The release to resolve
            source_type: Restrict to workload or job Targets (None for both)

        Returns:
            Targets de-duplicated by id, in discovery order
        """
        revision = await self._metadata.current_revision(release)
        descriptors = await self._cluster.get_descriptors_for_release(release)

        kinds: set[str] = set()
        if source_type in (None, SourceType.WORKLOAD):
            kinds |= WORKLOAD_KINDS
        if source_type in (None, SourceType.JOB):
            kinds |= JOB_KINDS

        targets: dict[str, Target] = {}
        for descriptor in descriptors:
            try:
                found = await self._resolve_descriptor(descriptor, revision, kinds)
            except ClusterError as e:
                logger.warning(
                    "Skipping descriptor %s of release %s: %s", descriptor, release, e
                )
                continue
            for target in found:
                targets.setdefault(target.id, target)

        logger.debug(
            "Resolved %d targets for release %s (revision %r)",
            len(targets), release, revision,
        )
        return list(targets.values())

    async def _resolve_descriptor(
        self, descriptor: Descriptor, revision: str, kinds: set[str]
    ) -> list[Target]:
        resources = await self._cluster.get_managed_resources(descriptor, kinds)
        replica_sets: dict[str, list[dict]] = {}

        targets = []
        for resource in resources:
            if resource.obj is None:
                continue
            if resource.kind in WORKLOAD_KINDS:
                targets.extend(
                    await self._workload_targets(resource, descriptor, revision, replica_sets)
                )
            elif resource.kind in JOB_KINDS:
                target = self._job_target(resource, descriptor)
                if target is not None:
                    targets.append(target)
        return targets

    async def _workload_targets(
        self,
        resource: ManagedResource,
        descriptor: Descriptor,
        revision: str,
        replica_sets: dict[str, list[dict]],
    ) -> list[Target]:
        deployment = resource.obj
        metadata = deployment.get("metadata") or {}
        namespace = metadata.get("namespace") or resource.namespace
        name = metadata.get("name") or resource.name

        selector_data = (deployment.get("spec") or {}).get("selector")
        selector = LabelSelector.from_dict(selector_data) if selector_data else None

        if namespace not in replica_sets:
            replica_sets[namespace] = await self._cluster.get_replica_sets(namespace)

        targets = []
        for rs in replica_sets[namespace]:
            if not is_owned_by(rs, name, selector):
                continue

            rs_metadata = rs.get("metadata") or {}
            if revision:
                if not contains_revision(rs, revision, descriptor):
                    continue
            elif not (rs.get("status") or {}).get("replicas"):
                # Without a revision every historical ReplicaSet matches; only
                # the ones that still run pods are worth a Target
                continue

            template_hash = (rs_metadata.get("labels") or {}).get(POD_TEMPLATE_HASH_LABEL)
            if not template_hash:
                continue

            base = selector or LabelSelector()
            labels = dict(base.match_labels)
            labels[POD_TEMPLATE_HASH_LABEL] = template_hash
            scoped = LabelSelector(
                match_labels=tuple(sorted(labels.items())),
                match_expressions=base.match_expressions,
            )
            rs_namespace = rs_metadata.get("namespace") or namespace
            targets.append(
                Target(
                    id=f"rs/{rs_namespace}/{rs_metadata['name']}",
                    namespace=rs_namespace,
                    selector=scoped,
                    kind=SourceType.WORKLOAD,
                )
            )
        return targets

    @staticmethod
    def _job_target(resource: ManagedResource, descriptor: Descriptor) -> Target | None:
        obj = resource.obj
        metadata = obj.get("metadata") or {}
        namespace = metadata.get("namespace") or resource.namespace or descriptor.namespace

        if resource.kind == "RolloutTest":
            job_name = (obj.get("status") or {}).get("jobName")
            if not job_name:
                logger.debug("RolloutTest %s/%s has no job yet", namespace, resource.name)
                return None
        else:
            job_name = metadata.get("name") or resource.name

        return Target(
            id=f"job/{namespace}/{job_name}",
            namespace=namespace,
            selector=LabelSelector.equals(JOB_NAME_LABEL, job_name),
            kind=SourceType.JOB,
        )
