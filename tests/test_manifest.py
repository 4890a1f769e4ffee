"""Tests for manifest library."""

import base64
from typing import Any

import pytest
import yaml

from zarf_agent.exceptions import InputException
from zarf_agent.manifest import (
    AppProject,
    Application,
    ApplicationSet,
    CrossplanePackage,
    GitRepository,
    HelmRepository,
    OCIRepository,
    Pod,
    RepositorySecret,
)


def _b64(value: str) -> str:
    return base64.b64encode(value.encode()).decode()


def test_parse_pod() -> None:
    """Test parsing a pod doc."""
    pod = Pod.parse_doc(
        yaml.safe_load(
            """\
apiVersion: v1
kind: Pod
metadata:
  name: podinfo
  namespace: podinfo
  annotations:
    example.com/owner: team
spec:
  initContainers:
    - name: init
      image: busybox
  containers:
    - name: podinfo
      image: ghcr.io/stefanprodan/podinfo:6.4.0
  ephemeralContainers:
    - name: debug
      image: alpine
"""
        )
    )
    assert pod.metadata.name == "podinfo"
    assert pod.metadata.namespace == "podinfo"
    assert pod.metadata.annotations == {"example.com/owner": "team"}
    assert [c.image for c in pod.containers] == ["ghcr.io/stefanprodan/podinfo:6.4.0"]
    assert [c.image for c in pod.init_containers] == ["busybox"]
    assert [c.name for c in pod.ephemeral_containers] == ["debug"]


def test_parse_pod_generate_name() -> None:
    """Test the generated name prefix is used when the name is not set."""
    pod = Pod.parse_doc(
        {
            "apiVersion": "v1",
            "kind": "Pod",
            "metadata": {"generateName": "podinfo-"},
            "spec": {"containers": [{"name": "podinfo", "image": "nginx"}]},
        }
    )
    assert pod.metadata.name == "podinfo-"


@pytest.mark.parametrize(
    ("doc", "error"),
    [
        ({"kind": "Pod"}, "missing apiVersion"),
        ({"apiVersion": "apps/v1", "kind": "Pod"}, "expected 'v1'"),
        ({"apiVersion": "v1", "kind": "Pod"}, "missing spec"),
        (
            {"apiVersion": "v1", "spec": {"containers": [{"name": "a"}]}},
            "missing image",
        ),
    ],
)
def test_parse_pod_invalid(doc: dict[str, Any], error: str) -> None:
    """Test invalid pods are rejected."""
    with pytest.raises(InputException, match=error):
        Pod.parse_doc(doc)


def test_parse_application() -> None:
    """Test parsing an ArgoCD application doc."""
    app = Application.parse_doc(
        {
            "apiVersion": "argoproj.io/v1alpha1",
            "kind": "Application",
            "metadata": {"name": "podinfo"},
            "spec": {
                "source": {"repoURL": "https://github.com/stefanprodan/podinfo.git"},
                "sources": [
                    {"repoURL": "oci://ghcr.io/stefanprodan/charts/podinfo"},
                    {"ref": "values"},
                ],
            },
        }
    )
    assert app.metadata.name == "podinfo"
    assert app.source is not None
    assert app.source.repo_url == "https://github.com/stefanprodan/podinfo.git"
    assert [s.repo_url for s in app.sources] == [
        "oci://ghcr.io/stefanprodan/charts/podinfo",
        "",
    ]


def test_parse_application_set() -> None:
    """Test parsing an ArgoCD application set doc."""
    app_set = ApplicationSet.parse_doc(
        {
            "apiVersion": "argoproj.io/v1alpha1",
            "kind": "ApplicationSet",
            "metadata": {"name": "apps"},
            "spec": {
                "generators": [
                    {"list": {"elements": []}},
                    {"git": {"repoURL": "https://github.com/argoproj/apps.git"}},
                ],
                "template": {
                    "spec": {"source": {"repoURL": "https://github.com/a/b.git"}}
                },
            },
        }
    )
    assert app_set.source is not None
    assert app_set.source.repo_url == "https://github.com/a/b.git"
    assert app_set.sources == []
    assert app_set.git_generators == {1: "https://github.com/argoproj/apps.git"}


def test_parse_app_project() -> None:
    """Test parsing an ArgoCD project doc."""
    project = AppProject.parse_doc(
        {
            "apiVersion": "argoproj.io/v1alpha1",
            "kind": "AppProject",
            "metadata": {"name": "default"},
            "spec": {"sourceRepos": ["*", "https://github.com/a/b.git"]},
        }
    )
    assert project.source_repos == ["*", "https://github.com/a/b.git"]


def test_parse_repository_secret() -> None:
    """Test parsing an ArgoCD repository secret."""
    secret = RepositorySecret.parse_doc(
        {
            "apiVersion": "v1",
            "kind": "Secret",
            "metadata": {
                "name": "podinfo",
                "labels": {"argocd.argoproj.io/secret-type": "repository"},
            },
            "data": {
                "url": _b64("ghcr.io/stefanprodan/charts"),
                "type": _b64("helm"),
                "enableOCI": _b64("true"),
            },
        }
    )
    assert secret.secret_type == "repository"
    assert secret.url == "ghcr.io/stefanprodan/charts"
    assert secret.repo_type == "helm"
    assert secret.enable_oci
    assert secret.is_oci


@pytest.mark.parametrize(
    ("data", "expected"),
    [
        ({"url": _b64("https://github.com/a/b.git")}, False),
        ({"url": _b64("oci://ghcr.io/a"), "type": _b64("oci")}, True),
        ({"url": _b64("ghcr.io/a"), "type": _b64("helm")}, False),
        ({"url": _b64("ghcr.io/a"), "type": _b64("helm"), "enableOCI": _b64("false")}, False),
    ],
    ids=["git", "oci", "helm", "helm-oci-disabled"],
)
def test_repository_secret_is_oci(data: dict[str, str], expected: bool) -> None:
    """Test selecting the OCI credentials for a repository secret."""
    secret = RepositorySecret.parse_doc(
        {
            "apiVersion": "v1",
            "kind": "Secret",
            "metadata": {"labels": {"argocd.argoproj.io/secret-type": "repo-creds"}},
            "data": data,
        }
    )
    assert secret.is_oci == expected


@pytest.mark.parametrize(
    ("doc", "error"),
    [
        (
            {"apiVersion": "v1", "kind": "Secret", "data": {"url": _b64("a")}},
            "must be 'repository' or 'repo-creds'",
        ),
        (
            {
                "apiVersion": "v1",
                "kind": "Secret",
                "metadata": {"labels": {"argocd.argoproj.io/secret-type": "repository"}},
            },
            "missing data.url",
        ),
        (
            {
                "apiVersion": "v1",
                "kind": "Secret",
                "metadata": {"labels": {"argocd.argoproj.io/secret-type": "repository"}},
                "data": {"url": "not base64!"},
            },
            "is not base64 encoded",
        ),
    ],
    ids=["no-label", "no-url", "not-base64"],
)
def test_parse_repository_secret_invalid(doc: dict[str, Any], error: str) -> None:
    """Test invalid repository secrets are rejected."""
    with pytest.raises(InputException, match=error):
        RepositorySecret.parse_doc(doc)


def test_parse_git_repository() -> None:
    """Test parsing a flux git repository doc."""
    repo = GitRepository.parse_doc(
        {
            "apiVersion": "source.toolkit.fluxcd.io/v1",
            "kind": "GitRepository",
            "metadata": {"name": "podinfo", "namespace": "flux-system"},
            "spec": {
                "url": "https://github.com/stefanprodan/podinfo.git",
                "ref": {"tag": "6.4.0"},
                "secretRef": {"name": "git-credentials"},
            },
        }
    )
    assert repo.metadata.namespace == "flux-system"
    assert repo.url == "https://github.com/stefanprodan/podinfo.git"
    assert repo.secret_ref is not None
    assert repo.secret_ref.name == "git-credentials"


@pytest.mark.parametrize(
    ("repo_type", "expected"),
    [(None, False), ("default", False), ("oci", True), ("OCI", True)],
)
def test_parse_helm_repository(repo_type: str | None, expected: bool) -> None:
    """Test parsing a flux helm repository doc."""
    spec = {"url": "oci://ghcr.io/stefanprodan/charts"}
    if repo_type:
        spec["type"] = repo_type
    repo = HelmRepository.parse_doc(
        {
            "apiVersion": "source.toolkit.fluxcd.io/v1beta2",
            "kind": "HelmRepository",
            "metadata": {"name": "podinfo"},
            "spec": spec,
        }
    )
    assert repo.is_oci == expected
    assert repo.secret_ref is None


@pytest.mark.parametrize(
    ("ref", "expected"),
    [
        (None, "oci://ghcr.io/stefanprodan/podinfo"),
        ({"tag": "6.9.0"}, "oci://ghcr.io/stefanprodan/podinfo:6.9.0"),
        (
            {"tag": "6.9.0", "digest": "sha256:abcd"},
            "oci://ghcr.io/stefanprodan/podinfo@sha256:abcd",
        ),
        ({"semver": ">= 6.4.0"}, "oci://ghcr.io/stefanprodan/podinfo"),
    ],
    ids=["no-ref", "tag", "digest", "semver"],
)
def test_oci_repository_versioned_url(ref: dict[str, str] | None, expected: str) -> None:
    """Test the digest of the ref takes precedence over the tag."""
    spec: dict[str, Any] = {"url": "oci://ghcr.io/stefanprodan/podinfo"}
    if ref is not None:
        spec["ref"] = ref
    repo = OCIRepository.parse_doc(
        {
            "apiVersion": "source.toolkit.fluxcd.io/v1beta2",
            "kind": "OCIRepository",
            "metadata": {"name": "podinfo"},
            "spec": spec,
        }
    )
    assert repo.versioned_url == expected


@pytest.mark.parametrize(
    "doc",
    [
        {"apiVersion": "v1", "kind": "GitRepository", "spec": {"url": "x"}},
        {"apiVersion": "source.toolkit.fluxcd.io/v1", "kind": "GitRepository"},
        {"apiVersion": "source.toolkit.fluxcd.io/v1", "spec": {}},
    ],
    ids=["wrong-group", "no-spec", "no-url"],
)
def test_parse_git_repository_invalid(doc: dict[str, Any]) -> None:
    """Test invalid git repositories are rejected."""
    with pytest.raises(InputException):
        GitRepository.parse_doc(doc)


@pytest.mark.parametrize("kind", ["Configuration", "Function", "Provider"])
def test_parse_crossplane_package(kind: str) -> None:
    """Test parsing each kind of crossplane package."""
    package = CrossplanePackage.parse_doc(
        {
            "apiVersion": "pkg.crossplane.io/v1",
            "kind": kind,
            "metadata": {"name": "provider-aws"},
            "spec": {
                "package": "xpkg.upbound.io/crossplane-contrib/provider-aws:v0.1.0",
                "packagePullSecrets": [{"name": "pull-secret"}],
            },
        }
    )
    assert package.kind == kind
    assert package.package == "xpkg.upbound.io/crossplane-contrib/provider-aws:v0.1.0"
    assert package.package_pull_secrets is not None
    assert [s.name for s in package.package_pull_secrets] == ["pull-secret"]


def test_parse_crossplane_package_invalid_kind() -> None:
    """Test only package kinds are accepted."""
    with pytest.raises(InputException, match="kind must be one of"):
        CrossplanePackage.parse_doc(
            {
                "apiVersion": "pkg.crossplane.io/v1",
                "kind": "Lock",
                "spec": {"package": "xpkg.upbound.io/a/b:v1"},
            }
        )


_REPO_SECRET_META = {"labels": {"argocd.argoproj.io/secret-type": "repository"}}


@pytest.mark.parametrize(
    ("parser", "doc", "error"),
    [
        (
            Pod.parse_doc,
            {"apiVersion": "v1", "spec": {"containers": {"name": "a"}}},
            "spec.containers is not a list",
        ),
        (
            Pod.parse_doc,
            {"apiVersion": "v1", "spec": {"initContainers": ["nginx"]}},
            "Container is not a mapping",
        ),
        (
            Application.parse_doc,
            {"apiVersion": "argoproj.io/v1alpha1", "spec": {"sources": "a"}},
            "spec.sources is not a list",
        ),
        (
            ApplicationSet.parse_doc,
            {"apiVersion": "argoproj.io/v1alpha1", "spec": {"template": "a"}},
            "spec.template is not a mapping",
        ),
        (
            ApplicationSet.parse_doc,
            {"apiVersion": "argoproj.io/v1alpha1", "spec": {"generators": ["git"]}},
            r"spec.generators\[0\] is not a mapping",
        ),
        (
            ApplicationSet.parse_doc,
            {
                "apiVersion": "argoproj.io/v1alpha1",
                "spec": {"generators": [{"git": "https://github.com/a/b"}]},
            },
            r"spec.generators\[0\].git is not a mapping",
        ),
        (
            AppProject.parse_doc,
            {"apiVersion": "argoproj.io/v1alpha1", "spec": {"sourceRepos": [{}]}},
            "spec.sourceRepos must be strings",
        ),
        (
            RepositorySecret.parse_doc,
            {"apiVersion": "v1", "metadata": _REPO_SECRET_META, "data": ["url"]},
            "data is not a mapping",
        ),
        (
            RepositorySecret.parse_doc,
            {"apiVersion": "v1", "metadata": _REPO_SECRET_META, "data": {"url": 1}},
            "data.url is not a string",
        ),
        (
            GitRepository.parse_doc,
            {
                "apiVersion": "source.toolkit.fluxcd.io/v1",
                "spec": {"url": "https://github.com/a/b", "secretRef": "creds"},
            },
            "spec.secretRef is not a mapping",
        ),
        (
            OCIRepository.parse_doc,
            {
                "apiVersion": "source.toolkit.fluxcd.io/v1beta2",
                "spec": {"url": "oci://ghcr.io/a/b", "ref": "latest"},
            },
            "spec.ref is not a mapping",
        ),
        (
            CrossplanePackage.parse_doc,
            {
                "apiVersion": "pkg.crossplane.io/v1",
                "kind": "Provider",
                "spec": {
                    "package": "xpkg.upbound.io/a/b:v1",
                    "packagePullSecrets": ["a"],
                },
            },
            "spec.packagePullSecrets is not a mapping",
        ),
        (
            CrossplanePackage.parse_doc,
            {
                "apiVersion": "pkg.crossplane.io/v1",
                "kind": "Provider",
                "spec": {"package": "xpkg.upbound.io/a/b:v1", "packagePullSecrets": {}},
            },
            "spec.packagePullSecrets is not a list",
        ),
    ],
    ids=[
        "pod-containers",
        "pod-container",
        "application-sources",
        "application-set-template",
        "application-set-generator",
        "application-set-git-generator",
        "app-project-source-repos",
        "repository-secret-data",
        "repository-secret-url",
        "git-repository-secret-ref",
        "oci-repository-ref",
        "crossplane-pull-secret",
        "crossplane-pull-secrets",
    ],
)
def test_parse_malformed_fields(parser: Any, doc: dict[str, Any], error: str) -> None:
    """Test fields with the wrong shape are rejected as invalid input."""
    with pytest.raises(InputException, match=error):
        parser(doc)
