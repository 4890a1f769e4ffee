"""Shared test fixtures for zarf-agent."""

import pytest

from zarf_agent.state import (
    ArtifactServerInfo,
    GitServerInfo,
    RegistryInfo,
    State,
    StaticStateProvider,
)

GIT_SERVER = "https://git-server.com"
PUSH_USER = "a-push-user"
REGISTRY = "127.0.0.1:31999"
ARTIFACT_SERVER = "https://git-server.com/api/packages/a-push-user"


@pytest.fixture(name="state")
def state_fixture() -> State:
    """State pointing at a fake git server, registry and artifact server."""
    return State(
        git_server=GitServerInfo(
            address=GIT_SERVER,
            push_username=PUSH_USER,
            push_password="a-push-password",
            pull_username="a-pull-user",
            pull_password="a-pull-password",
        ),
        registry_info=RegistryInfo(
            address=REGISTRY,
            pull_username="a-registry-pull-user",
            pull_password="a-registry-pull-password",
        ),
        artifact_server=ArtifactServerInfo(
            address=ARTIFACT_SERVER,
            push_username=PUSH_USER,
            push_token="a-push-token",
        ),
    )


@pytest.fixture(name="provider")
def provider_fixture(state: State) -> StaticStateProvider:
    """A provider that always returns the test state."""
    return StaticStateProvider(state)
