"""Settings for running the agent server."""

from dataclasses import dataclass
from pathlib import Path

__all__ = [
    "AgentConfig",
]


DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8443
DEFAULT_TLS_CERT = Path("/etc/certs/tls.crt")
DEFAULT_TLS_KEY = Path("/etc/certs/tls.key")
DEFAULT_STATE_PATH = Path("/etc/zarf-state/state")


@dataclass
class AgentConfig:
    """Where the agent listens and where it reads its inputs from."""

    host: str = DEFAULT_HOST
    """Address the server binds to."""

    port: int = DEFAULT_PORT
    """Port serving both the admission webhooks and the proxy."""

    tls_cert: Path = DEFAULT_TLS_CERT
    """PEM certificate presented to the API server and proxy clients."""

    tls_key: Path = DEFAULT_TLS_KEY

    state_path: Path = DEFAULT_STATE_PATH
    """File holding the cluster state, read again on every request."""
