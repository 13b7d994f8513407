"""Tests for the Kubernetes REST client."""

import json
from datetime import datetime, timezone

import httpx
import pytest

from rolloutlogs.cluster import ClusterError, ClusterNotFoundError, KubernetesClient
from rolloutlogs.cluster.client import _tls_verify
from rolloutlogs.config import ClusterSettings
from rolloutlogs.discovery import RolloutMetadata, TargetResolver
from rolloutlogs.models import Descriptor, LabelSelector, ReleaseRef

from conftest import make_pod


class FakeApiServer:
    """Routes requests to canned JSON responses by path."""

    def __init__(self):
        self.objects: dict[str, object] = {}
        self.logs: dict[str, str] = {}
        self.raw: dict[str, str] = {}
        self.requests: list[httpx.Request] = []
        self.fail_with: Exception | None = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_with is not None:
            raise self.fail_with
        path = request.url.path
        if path in self.logs:
            return httpx.Response(200, text=self.logs[path])
        if path in self.raw:
            return httpx.Response(200, text=self.raw[path])
        if path in self.objects:
            return httpx.Response(200, json=self.objects[path])
        return httpx.Response(
            404, json={"kind": "Status", "message": f"{path} not found", "code": 404}
        )


@pytest.fixture
def api():
    return FakeApiServer()


@pytest.fixture
async def client(api):
    http = httpx.AsyncClient(
        base_url="https://kube.test", transport=httpx.MockTransport(api.handler)
    )
    kube = KubernetesClient(ClusterSettings(api_url="https://kube.test"), http_client=http)
    yield kube
    await http.aclose()


def kustomization(name, annotations=None, source=None, substitute=None, entries=()):
    return {
        "metadata": {"name": name, "namespace": "shop", "annotations": annotations or {}},
        "spec": {
            "sourceRef": source or {"kind": "GitRepository", "name": "repo"},
            "postBuild": {"substitute": substitute or {}},
        },
        "status": {"inventory": {"entries": list(entries)}},
    }


KUSTOMIZATIONS = "/apis/kustomize.toolkit.fluxcd.io/v1/namespaces/shop/kustomizations"
OCI_REPOSITORIES = "/apis/source.toolkit.fluxcd.io/v1/namespaces/shop/ocirepositories"


class TestPods:
    """Tests for pod listing."""

    @pytest.mark.asyncio
    async def test_get_pods_sends_selector(self, api, client):
        """Test that the label selector is sent as a query parameter."""
        api.objects["/api/v1/namespaces/shop/pods"] = {"items": [make_pod("web-1", "shop")]}

        pods = await client.get_pods("shop", LabelSelector.from_labels(app="web", tier="fe"))

        assert [p["metadata"]["name"] for p in pods] == ["web-1"]
        assert api.requests[0].url.params["labelSelector"] == "app=web,tier=fe"

    @pytest.mark.asyncio
    async def test_empty_selector_not_sent(self, api, client):
        """Test that an empty selector lists every pod."""
        api.objects["/api/v1/namespaces/shop/pods"] = {"items": []}

        assert await client.get_pods("shop", LabelSelector()) == []
        assert "labelSelector" not in api.requests[0].url.params


class TestErrors:
    """Tests for error mapping."""

    @pytest.mark.asyncio
    async def test_not_found(self, client):
        """Test that 404 maps to ClusterNotFoundError with the API message."""
        with pytest.raises(ClusterNotFoundError) as exc_info:
            await client.get_release(ReleaseRef("shop", "missing"))
        assert exc_info.value.status_code == 404
        assert "not found" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_transport_error(self, api, client):
        """Test that transport failures map to ClusterError."""
        api.fail_with = httpx.ConnectError("connection refused")

        with pytest.raises(ClusterError) as exc_info:
            await client.get_replica_sets("shop")
        assert not isinstance(exc_info.value, ClusterNotFoundError)
        assert exc_info.value.status_code is None

    @pytest.mark.asyncio
    async def test_non_json_body(self, api, client):
        """Test that a 2xx body that is not JSON raises ClusterError."""
        api.raw["/apis/apps/v1/namespaces/shop/replicasets"] = "<html>sign in</html>"

        with pytest.raises(ClusterError) as exc_info:
            await client.get_replica_sets("shop")
        assert exc_info.value.status_code == 200
        assert "non-JSON" in str(exc_info.value)


class TestLogStream:
    """Tests for follow-mode log reads."""

    @pytest.mark.asyncio
    async def test_tail_lines_params(self, api, client):
        """Test follow-mode query parameters with a tail limit."""
        path = "/api/v1/namespaces/shop/pods/web-1/log"
        api.logs[path] = "2024-05-01T12:00:01Z a\n2024-05-01T12:00:02Z b\n"

        async with client.stream_container_logs("shop", "web-1", "app", tail_lines=10) as lines:
            received = [line async for line in lines]

        assert received == ["2024-05-01T12:00:01Z a", "2024-05-01T12:00:02Z b"]
        params = api.requests[0].url.params
        assert params["container"] == "app"
        assert params["follow"] == "true"
        assert params["timestamps"] == "true"
        assert params["tailLines"] == "10"
        assert "sinceTime" not in params

    @pytest.mark.asyncio
    async def test_since_time_excludes_tail(self, api, client):
        """Test that sinceTime replaces tailLines."""
        api.logs["/api/v1/namespaces/shop/pods/web-1/log"] = ""
        since = datetime(2024, 5, 1, 12, 0, 2, 500000, tzinfo=timezone.utc)

        async with client.stream_container_logs(
            "shop", "web-1", "app", since_time=since, tail_lines=10
        ) as lines:
            assert [line async for line in lines] == []

        params = api.requests[0].url.params
        assert params["sinceTime"] == "2024-05-01T12:00:02Z"
        assert "tailLines" not in params

    @pytest.mark.asyncio
    async def test_open_failure(self, client):
        """Test that a failed log open raises."""
        with pytest.raises(ClusterNotFoundError):
            async with client.stream_container_logs("shop", "gone", "app"):
                pass


class TestDescriptors:
    """Tests for descriptor discovery."""

    @pytest.mark.asyncio
    async def test_by_annotation_and_oci_source(self, api, client):
        """Test both ways a descriptor is linked to a release."""
        api.objects[KUSTOMIZATIONS] = {
            "items": [
                kustomization(
                    "by-annotation",
                    annotations={"rollout.kuberik.com/substitute.VERSION.from": "frontend"},
                    substitute={"VERSION": "1.2.3"},
                ),
                kustomization(
                    "by-oci", source={"kind": "OCIRepository", "name": "frontend-oci"}
                ),
                kustomization(
                    "other-release",
                    annotations={"rollout.kuberik.com/substitute.VERSION.from": "backend"},
                ),
                kustomization("unrelated"),
            ]
        }
        api.objects[OCI_REPOSITORIES] = {
            "items": [
                {
                    "metadata": {
                        "name": "frontend-oci",
                        "annotations": {"rollout.kuberik.com/rollout": "frontend"},
                    }
                },
                {"metadata": {"name": "plain"}},
            ]
        }

        descriptors = await client.get_descriptors_for_release(ReleaseRef("shop", "frontend"))

        assert [d.name for d in descriptors] == ["by-annotation", "by-oci"]
        assert descriptors[0].substitutions == {"VERSION": "1.2.3"}


class TestManagedResources:
    """Tests for inventory reads."""

    @pytest.mark.asyncio
    async def test_fetches_requested_kinds(self, api, client):
        """Test that only objects of the requested kinds are fetched."""
        api.objects[f"{KUSTOMIZATIONS}/web"] = kustomization(
            "web",
            entries=[
                {"id": "shop_web_apps_Deployment", "v": "v1"},
                {"id": "shop_web__Service", "v": "v1"},
                {"id": "shop_migrate_batch_Job", "v": "v1"},
                {"id": "broken", "v": "v1"},
            ],
        )
        api.objects["/apis/apps/v1/namespaces/shop/deployments/web"] = {
            "metadata": {"name": "web", "namespace": "shop"}
        }

        resources = await client.get_managed_resources(
            Descriptor(namespace="shop", name="web"), kinds={"Deployment", "Job"}
        )

        assert [(r.kind, r.name) for r in resources] == [("Deployment", "web"), ("Job", "migrate")]
        assert resources[0].obj == {"metadata": {"name": "web", "namespace": "shop"}}
        assert (resources[0].group, resources[0].version) == ("apps", "v1")
        # Job listed in the inventory but already deleted
        assert resources[1].obj is None
        paths = [r.url.path for r in api.requests]
        assert "/api/v1/namespaces/shop/services/web" not in paths

    @pytest.mark.asyncio
    async def test_descriptor_missing(self, client):
        """Test that a missing descriptor raises ClusterNotFoundError."""
        with pytest.raises(ClusterNotFoundError):
            await client.get_managed_resources(Descriptor(namespace="shop", name="gone"))


class TestOwnership:
    """Tests for client lifecycle."""

    @pytest.mark.asyncio
    async def test_injected_client_not_closed(self, api):
        """Test that an injected HTTP client is left open."""
        http = httpx.AsyncClient(
            base_url="https://kube.test", transport=httpx.MockTransport(api.handler)
        )
        kube = KubernetesClient(ClusterSettings(api_url="https://kube.test"), http_client=http)

        await kube.close()

        assert not http.is_closed
        await http.aclose()

    def test_error_message_from_status_body(self):
        """Test that the Status message is used in errors."""
        body = json.dumps({"message": "pods is forbidden"}).encode()
        error = KubernetesClient._status_error("/api/v1/pods", 403, body)
        assert type(error) is ClusterError
        assert error.status_code == 403
        assert "pods is forbidden" in str(error)

    def test_tls_verification_settings(self):
        """Test that TLS verification follows the loaded cluster settings."""
        assert _tls_verify(ClusterSettings(api_url="https://kube.test")) is True
        insecure = ClusterSettings(api_url="https://kube.test", verify_ssl=False)
        assert _tls_verify(insecure) is False


class TestResolveOverApi:
    """Tests for resolving Targets through the REST client."""

    @pytest.mark.asyncio
    async def test_unreadable_descriptor_skipped(self, api, client):
        """Test that a descriptor answering with a non-JSON body does not hide the others."""
        annotations = {"rollout.kuberik.com/substitute.VERSION.from": "frontend"}
        api.objects["/apis/kuberik.com/v1alpha1/namespaces/shop/rollouts/frontend"] = {
            "status": {"history": [{"version": {"tag": "1.0.0"}}]}
        }
        api.objects[KUSTOMIZATIONS] = {
            "items": [
                kustomization("bad", annotations=annotations),
                kustomization("good", annotations=annotations),
            ]
        }
        api.objects[OCI_REPOSITORIES] = {"items": []}
        api.raw[f"{KUSTOMIZATIONS}/bad"] = "not json"
        api.objects[f"{KUSTOMIZATIONS}/good"] = kustomization(
            "good", entries=[{"id": "shop_migrate_batch_Job", "v": "v1"}]
        )
        api.objects["/apis/batch/v1/namespaces/shop/jobs/migrate"] = {
            "metadata": {"name": "migrate", "namespace": "shop"}
        }

        resolver = TargetResolver(client, RolloutMetadata(client))
        targets = await resolver.resolve(ReleaseRef("shop", "frontend"))

        assert [t.id for t in targets] == ["job/shop/migrate"]
