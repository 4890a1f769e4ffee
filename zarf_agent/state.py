"""Representation of the cluster state that drives every rewrite.

The state records where the internal git server, container registry and
artifact server live and which credentials to use for each. It is owned by
the cluster and read on every request through a `StateProvider` so that a
change of mirror is picked up immediately.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
import logging
from pathlib import Path
from typing import Any

import aiofiles
import yaml
from mashumaro import DataClassDictMixin, field_options
from mashumaro.config import BaseConfig
from mashumaro.exceptions import MissingField, InvalidFieldValue

from .exceptions import StateException

__all__ = [
    "GitServerInfo",
    "RegistryInfo",
    "RegistryMTLS",
    "ArtifactServerInfo",
    "State",
    "StateProvider",
    "StaticStateProvider",
    "FileStateProvider",
]

_LOGGER = logging.getLogger(__name__)


ZARF_GIT_PUSH_USER = "zarf-git-user"
ZARF_GIT_READ_USER = "zarf-git-read-user"
ZARF_REGISTRY_PUSH_USER = "zarf-push"
ZARF_REGISTRY_PULL_USER = "zarf-pull"
ZARF_IN_CLUSTER_REGISTRY_NODE_PORT = 31999
ZARF_IN_CLUSTER_GIT_SERVICE_URL = "http://zarf-gitea-http.zarf.svc.cluster.local:3000"
ZARF_IN_CLUSTER_ARTIFACT_SERVICE_URL = (
    f"{ZARF_IN_CLUSTER_GIT_SERVICE_URL}/api/packages/{ZARF_GIT_PUSH_USER}"
)


@dataclass
class BaseState(DataClassDictMixin):
    """Base class for state records read from the cluster."""

    class Config(BaseConfig):
        omit_none = True


@dataclass
class GitServerInfo(BaseState):
    """Location and credentials of the git server repositories are mirrored to."""

    address: str = ZARF_IN_CLUSTER_GIT_SERVICE_URL
    """Base url of the git server."""

    push_username: str = field(
        metadata=field_options(alias="pushUsername"), default=ZARF_GIT_PUSH_USER
    )
    """User with push access, repositories are mirrored under this user."""

    push_password: str = field(metadata=field_options(alias="pushPassword"), default="")

    pull_username: str = field(
        metadata=field_options(alias="pullUsername"), default=ZARF_GIT_READ_USER
    )
    """User with read-only access, handed to in-cluster git clients."""

    pull_password: str = field(metadata=field_options(alias="pullPassword"), default="")


@dataclass
class RegistryMTLS(BaseState):
    """Client certificate presented to a registry that requires mutual TLS."""

    client_cert: str = field(metadata=field_options(alias="clientCert"))
    """PEM encoded client certificate."""

    client_key: str = field(metadata=field_options(alias="clientKey"))
    """PEM encoded private key of the client certificate."""


@dataclass
class RegistryInfo(BaseState):
    """Location and credentials of the container registry images are mirrored to."""

    address: str = f"127.0.0.1:{ZARF_IN_CLUSTER_REGISTRY_NODE_PORT}"
    """Host and port of the registry, without a scheme."""

    push_username: str = field(
        metadata=field_options(alias="pushUsername"), default=ZARF_REGISTRY_PUSH_USER
    )
    push_password: str = field(metadata=field_options(alias="pushPassword"), default="")
    pull_username: str = field(
        metadata=field_options(alias="pullUsername"), default=ZARF_REGISTRY_PULL_USER
    )
    pull_password: str = field(metadata=field_options(alias="pullPassword"), default="")

    node_port: int = field(
        metadata=field_options(alias="nodePort"),
        default=ZARF_IN_CLUSTER_REGISTRY_NODE_PORT,
    )
    """NodePort of the internal registry service."""

    mtls: RegistryMTLS | None = None
    """Client certificate used when the registry requires mutual TLS."""

    @property
    def is_internal(self) -> bool:
        """Return True if the registry is reached through the in-cluster NodePort."""
        return self.address in (
            f"127.0.0.1:{self.node_port}",
            f"[::1]:{self.node_port}",
        )


@dataclass
class ArtifactServerInfo(BaseState):
    """Location and credentials of the package registry artifacts are mirrored to."""

    address: str = ZARF_IN_CLUSTER_ARTIFACT_SERVICE_URL
    """Base url of the package API, e.g. `<git server>/api/packages/<user>`."""

    push_username: str = field(
        metadata=field_options(alias="pushUsername"), default=ZARF_GIT_PUSH_USER
    )
    push_token: str = field(metadata=field_options(alias="pushPassword"), default="")


@dataclass
class State(BaseState):
    """A snapshot of the mirror configuration for the cluster."""

    git_server: GitServerInfo = field(
        metadata=field_options(alias="gitServer"), default_factory=GitServerInfo
    )
    registry_info: RegistryInfo = field(
        metadata=field_options(alias="registryInfo"), default_factory=RegistryInfo
    )
    artifact_server: ArtifactServerInfo = field(
        metadata=field_options(alias="artifactServer"),
        default_factory=ArtifactServerInfo,
    )

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "State":
        """Parse the state from its serialized cluster representation."""
        if not isinstance(doc, dict):
            raise StateException(f"Invalid {cls.__name__} expected a mapping: {doc}")
        try:
            return cls.from_dict(doc)
        except (MissingField, InvalidFieldValue) as err:
            raise StateException(f"Invalid {cls.__name__}: {err}") from err


class StateProvider(ABC):
    """Supplies the current cluster state to hooks and the proxy."""

    @abstractmethod
    async def load_state(self) -> State:
        """Return a fresh snapshot of the state, raising StateException on failure."""

    async def registry_service_address(self, registry: RegistryInfo) -> str:
        """Return the registry address in-cluster controllers should pull from.

        Controllers such as flux and argo pull from inside the cluster network
        where the NodePort address may not resolve, so providers that know
        about the cluster can override this with the service address.
        """
        return registry.address


class StaticStateProvider(StateProvider):
    """A StateProvider that always returns the same state."""

    def __init__(self, state: State) -> None:
        """Initialize StaticStateProvider."""
        self._state = state

    async def load_state(self) -> State:
        return self._state


class FileStateProvider(StateProvider):
    """A StateProvider that reads the state from a mounted secret file."""

    def __init__(self, path: Path) -> None:
        """Initialize FileStateProvider."""
        self._path = path

    async def load_state(self) -> State:
        _LOGGER.debug("Loading state from %s", self._path)
        try:
            async with aiofiles.open(str(self._path)) as state_file:
                content = await state_file.read()
        except OSError as err:
            raise StateException(
                f"unable to load the Zarf state from {self._path}: {err}"
            ) from err
        try:
            doc = yaml.safe_load(content)
        except yaml.YAMLError as err:
            raise StateException(
                f"unable to parse the Zarf state from {self._path}: {err}"
            ) from err
        return State.parse_doc(doc)
