"""Errors raised by the cluster API collaborator."""


class ClusterError(Exception):
    """A cluster API call failed (transport error or non-2xx response)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ClusterNotFoundError(ClusterError):
    """The requested object does not exist."""


class ClusterConfigError(ClusterError):
    """No usable API server configuration."""
