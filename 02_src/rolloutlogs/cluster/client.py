"""Kubernetes REST API client used by the log streaming engine."""

import json
import ssl
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Collection, Protocol

import httpx

from ..config import ClusterSettings, ResourceGroup
from ..logging_config import get_logger
from ..models import Descriptor, LabelSelector, ManagedResource, ReleaseRef
from .errors import ClusterError, ClusterNotFoundError
from .inventory import parse_inventory_id, plural_for, resource_path

logger = get_logger(__name__)

SUBSTITUTE_ANNOTATION_PREFIX = "rollout.kuberik.com/substitute."
SUBSTITUTE_ANNOTATION_SUFFIX = ".from"
ROLLOUT_ANNOTATION = "rollout.kuberik.com/rollout"


def _tls_verify(settings: ClusterSettings) -> ssl.SSLContext | bool:
    if not settings.verify_ssl:
        return False
    if not (settings.ca_file or settings.cert_file):
        return True
    context = ssl.create_default_context(cafile=settings.ca_file)
    if settings.cert_file:
        context.load_cert_chain(settings.cert_file, settings.key_file)
    return context


class IClusterClient(Protocol):
    """Read-only access to the cluster state the engine needs."""

    async def get_pods(self, namespace: str, selector: LabelSelector) -> list[dict]:
        """List pod objects matching a selector."""
        ...

    def stream_container_logs(
        self,
        namespace: str,
        pod: str,
        container: str,
        *,
        since_time: datetime | None = None,
        tail_lines: int | None = None,
    ) -> AbstractAsyncContextManager[AsyncIterator[str]]:
        """Open a follow-mode log read yielding timestamped lines."""
        ...

    async def get_descriptors_for_release(self, release: ReleaseRef) -> list[Descriptor]:
        """Find deployment descriptors associated with a release."""
        ...

    async def get_managed_resources(
        self, descriptor: Descriptor, kinds: Collection[str] | None = None
    ) -> list[ManagedResource]:
        """Read a descriptor's inventory, fetching objects of the given kinds."""
        ...

    async def get_replica_sets(self, namespace: str) -> list[dict]:
        """List ReplicaSets in a namespace."""
        ...

    async def get_release(self, release: ReleaseRef) -> dict:
        """Fetch the release (Rollout) object."""
        ...


class KubernetesClient:
    """IClusterClient over the Kubernetes REST API using httpx."""

    def __init__(
        self,
        settings: ClusterSettings,
        http_client: httpx.AsyncClient | None = None,
    ):
        self._settings = settings
        self._owns_client = http_client is None
        if http_client is None:
            headers = {"Accept": "application/json"}
            if settings.token:
                headers["Authorization"] = f"Bearer {settings.token}"
            http_client = httpx.AsyncClient(
                base_url=settings.api_url,
                headers=headers,
                verify=_tls_verify(settings),
                timeout=settings.request_timeout,
            )
        self._http = http_client

    async def close(self) -> None:
        """Release the underlying HTTP client if we created it."""
        if self._owns_client:
            await self._http.aclose()

    # Low-level helpers

    async def _get_json(self, path: str, params: dict | None = None) -> dict:
        try:
            response = await self._http.get(path, params=params)
        except httpx.HTTPError as e:
            raise ClusterError(f"GET {path} failed: {e}") from e
        if response.status_code >= 400:
            raise self._status_error(path, response.status_code, response.content)
        try:
            return response.json()
        except ValueError as e:
            raise ClusterError(
                f"GET {path} returned a non-JSON body: {e}", response.status_code
            ) from e

    @staticmethod
    def _status_error(path: str, status_code: int, body: bytes) -> ClusterError:
        message = body.decode("utf-8", errors="replace")[:200]
        try:
            message = json.loads(body).get("message", message)
        except (ValueError, AttributeError):
            pass
        error_cls = ClusterNotFoundError if status_code == 404 else ClusterError
        return error_cls(f"GET {path} returned {status_code}: {message}", status_code)

    async def _list(self, resource: ResourceGroup, namespace: str) -> list[dict]:
        path = resource_path(resource.group, resource.version, resource.plural, namespace)
        data = await self._get_json(path)
        return data.get("items") or []

    # Pods and logs

    async def get_pods(self, namespace: str, selector: LabelSelector) -> list[dict]:
        """List pod objects matching a selector."""
        params = {}
        if not selector.is_empty():
            params["labelSelector"] = selector.to_query()
        data = await self._get_json(f"/api/v1/namespaces/{namespace}/pods", params)
        return data.get("items") or []

    @asynccontextmanager
    async def stream_container_logs(
        self,
        namespace: str,
        pod: str,
        container: str,
        *,
        since_time: datetime | None = None,
        tail_lines: int | None = None,
    ) -> AsyncIterator[AsyncIterator[str]]:
        """
        Open a follow-mode log read.

        sinceTime and tailLines are mutually exclusive: a resumed read never
        applies the tail limit.
        """
        path = f"/api/v1/namespaces/{namespace}/pods/{pod}/log"
        params = {"container": container, "follow": "true", "timestamps": "true"}
        if since_time is not None:
            params["sinceTime"] = since_time.astimezone(timezone.utc).strftime(
                "%Y-%m-%dT%H:%M:%SZ"
            )
        elif tail_lines is not None:
            params["tailLines"] = str(tail_lines)

        # No read timeout: a follow read legitimately idles
        timeout = httpx.Timeout(self._settings.request_timeout, read=None)
        try:
            async with self._http.stream(
                "GET", path, params=params, timeout=timeout
            ) as response:
                if response.status_code >= 400:
                    body = await response.aread()
                    raise self._status_error(path, response.status_code, body)
                yield response.aiter_lines()
        except httpx.HTTPError as e:
            raise ClusterError(f"Log stream {namespace}/{pod}/{container} failed: {e}") from e

    # Release, descriptors and inventory

    async def get_release(self, release: ReleaseRef) -> dict:
        """Fetch the Rollout object of a release."""
        rollouts = self._settings.rollouts
        path = resource_path(
            rollouts.group, rollouts.version, rollouts.plural, release.namespace, release.name
        )
        return await self._get_json(path)

    async def get_descriptors_for_release(self, release: ReleaseRef) -> list[Descriptor]:
        """
        Find Kustomizations that belong to a release.

        A Kustomization belongs to the release when it takes substitution
        variables from it (rollout.kuberik.com/substitute.<VAR>.from annotation)
        or when its source is an OCIRepository annotated with the release name.
        """
        kustomizations = await self._list(self._settings.kustomizations, release.namespace)
        oci_repositories = await self._list(
            self._settings.oci_repositories, release.namespace
        )

        oci_names = {
            repo["metadata"]["name"]
            for repo in oci_repositories
            if (repo["metadata"].get("annotations") or {}).get(ROLLOUT_ANNOTATION)
            == release.name
        }

        descriptors = []
        for kustomization in kustomizations:
            metadata = kustomization.get("metadata") or {}
            spec = kustomization.get("spec") or {}
            annotations = metadata.get("annotations") or {}

            by_annotation = any(
                key.startswith(SUBSTITUTE_ANNOTATION_PREFIX)
                and key.endswith(SUBSTITUTE_ANNOTATION_SUFFIX)
                and value == release.name
                for key, value in annotations.items()
            )
            source_ref = spec.get("sourceRef") or {}
            by_source = (
                source_ref.get("kind") == "OCIRepository"
                and source_ref.get("name") in oci_names
            )
            if not (by_annotation or by_source):
                continue

            post_build = spec.get("postBuild") or {}
            descriptors.append(
                Descriptor(
                    namespace=metadata.get("namespace", release.namespace),
                    name=metadata["name"],
                    substitutions=dict(post_build.get("substitute") or {}),
                )
            )

        logger.debug("Found %d descriptors for release %s", len(descriptors), release)
        return descriptors

    async def get_managed_resources(
        self, descriptor: Descriptor, kinds: Collection[str] | None = None
    ) -> list[ManagedResource]:
        """
        Read the inventory recorded in a Kustomization's status.

        Objects are fetched only for the requested kinds; an object that no
        longer exists is returned with obj=None.
        """
        resource = self._settings.kustomizations
        path = resource_path(
            resource.group, resource.version, resource.plural,
            descriptor.namespace, descriptor.name,
        )
        kustomization = await self._get_json(path)
        inventory = (kustomization.get("status") or {}).get("inventory") or {}

        resources = []
        for entry in inventory.get("entries") or []:
            try:
                ref = parse_inventory_id(entry.get("id", ""))
            except ValueError as e:
                logger.warning("Skipping inventory entry of %s: %s", descriptor, e)
                continue
            if kinds is not None and ref.kind not in kinds:
                continue

            version = entry.get("v", "v1")
            managed = ManagedResource(
                group=ref.group,
                version=version,
                kind=ref.kind,
                namespace=ref.namespace,
                name=ref.name,
            )
            object_path = resource_path(
                ref.group, version, plural_for(ref.kind), ref.namespace or None, ref.name
            )
            try:
                managed.obj = await self._get_json(object_path)
            except ClusterNotFoundError:
                logger.debug("Inventory object %s not found", object_path)
            resources.append(managed)

        return resources

    async def get_replica_sets(self, namespace: str) -> list[dict]:
        """List ReplicaSets in a namespace."""
        data = await self._get_json(f"/apis/apps/v1/namespaces/{namespace}/replicasets")
        return data.get("items") or []
