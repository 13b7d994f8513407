"""Project-level configuration and environment helpers."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from kubernetes import config
from kubernetes.client import Configuration

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
LOGS_DIR = PROJECT_ROOT / "04_logs"
DEFAULT_LOG_PATH = LOGS_DIR / "app.log"

logger = logging.getLogger(__name__)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {raw!r}")
    return value


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {raw!r}")
    return value


@dataclass
class StreamSettings:
    """Timers and limits of one log stream engine."""

    discovery_interval: float = 5.0
    supervisor_interval: float = 2.0
    snapshot_interval: float = 2.0
    keepalive_interval: float = 15.0
    channel_capacity: int = 1000
    tail_lines: int = 500
    shutdown_timeout: float = 5.0

    @classmethod
    def from_env(cls) -> "StreamSettings":
        """Build settings from environment variables, falling back to defaults."""
        return cls(
            discovery_interval=_env_float("DISCOVERY_INTERVAL_SECONDS", 5.0),
            supervisor_interval=_env_float("SUPERVISOR_INTERVAL_SECONDS", 2.0),
            snapshot_interval=_env_float("PODS_SNAPSHOT_INTERVAL_SECONDS", 2.0),
            keepalive_interval=_env_float("KEEPALIVE_INTERVAL_SECONDS", 15.0),
            channel_capacity=_env_int("STREAM_CHANNEL_CAPACITY", 1000),
            tail_lines=_env_int("STREAM_TAIL_LINES", 500),
            shutdown_timeout=_env_float("STREAM_SHUTDOWN_TIMEOUT_SECONDS", 5.0),
        )


@dataclass
class ResourceGroup:
    """API group/version/plural of a custom resource."""

    group: str
    version: str
    plural: str


def load_kube_configuration() -> Configuration | None:
    """
    Load cluster credentials the way kubectl finds them.

    The in-cluster service account is tried first, then the kubeconfig file
    (KUBECONFIG or ~/.kube/config). Returns None when neither is available.
    """
    configuration = Configuration()
    try:
        config.load_incluster_config(client_configuration=configuration)
        logger.info("Loaded in-cluster Kubernetes config")
        return configuration
    except config.ConfigException:
        pass
    try:
        config.load_kube_config(
            config_file=os.getenv("KUBECONFIG") or None,
            client_configuration=configuration,
            persist_config=False,
        )
        logger.info("Loaded kubeconfig")
        return configuration
    except config.ConfigException as e:
        logger.debug("No kubeconfig available: %s", e)
        return None


def _bearer_token(configuration: Configuration) -> str | None:
    header = configuration.get_api_key_with_prefix("authorization")
    if not header:
        header = configuration.api_key.get("BearerToken")
    if not header:
        return None
    scheme, _, token = header.partition(" ")
    return token if scheme.lower() == "bearer" and token else header


@dataclass
class ClusterSettings:
    """How to reach the Kubernetes API server."""

    api_url: str
    token: str | None = None
    ca_file: str | None = None
    cert_file: str | None = None
    key_file: str | None = None
    verify_ssl: bool = True
    request_timeout: float = 30.0
    rollouts: ResourceGroup = field(
        default_factory=lambda: ResourceGroup("kuberik.com", "v1alpha1", "rollouts")
    )
    kustomizations: ResourceGroup = field(
        default_factory=lambda: ResourceGroup(
            "kustomize.toolkit.fluxcd.io", "v1", "kustomizations"
        )
    )
    oci_repositories: ResourceGroup = field(
        default_factory=lambda: ResourceGroup(
            "source.toolkit.fluxcd.io", "v1", "ocirepositories"
        )
    )

    @classmethod
    def from_env(cls) -> "ClusterSettings":
        """
        Resolve API server settings.

        Credentials come from the in-cluster service account or the kubeconfig.
        KUBE_API_URL / KUBE_TOKEN / KUBE_CA_FILE override what was loaded.
        """
        configuration = load_kube_configuration()

        api_url = os.getenv("KUBE_API_URL") or (configuration.host if configuration else None)
        if not api_url:
            from .cluster.errors import ClusterConfigError

            raise ClusterConfigError(
                "No Kubernetes API server configured "
                "(not in a cluster, no kubeconfig and KUBE_API_URL unset)"
            )

        token = os.getenv("KUBE_TOKEN")
        ca_file = os.getenv("KUBE_CA_FILE")
        cert_file = key_file = None
        verify_ssl = True
        if configuration is not None:
            token = token or _bearer_token(configuration)
            ca_file = ca_file or configuration.ssl_ca_cert
            cert_file = configuration.cert_file
            key_file = configuration.key_file
            verify_ssl = configuration.verify_ssl

        return cls(
            api_url=api_url.rstrip("/"),
            token=token,
            ca_file=ca_file,
            cert_file=cert_file,
            key_file=key_file,
            verify_ssl=verify_ssl,
            request_timeout=_env_float("KUBE_REQUEST_TIMEOUT_SECONDS", 30.0),
            rollouts=ResourceGroup(
                os.getenv("ROLLOUT_API_GROUP", "kuberik.com"),
                os.getenv("ROLLOUT_API_VERSION", "v1alpha1"),
                "rollouts",
            ),
        )
