"""Representation of the resources the agent mutates.

Only the fields that hold references to external locations are parsed. The
rest of the object is left as-is and never re-serialized, since changes are
expressed as JSON patch operations against the original object.
"""

import base64
import binascii
from dataclasses import dataclass, field
import logging
from typing import Any, ClassVar

from mashumaro import DataClassDictMixin, field_options
from mashumaro.config import BaseConfig

from .exceptions import InputException

__all__ = [
    "ObjectMeta",
    "Container",
    "Pod",
    "ApplicationSource",
    "Application",
    "ApplicationSet",
    "AppProject",
    "RepositorySecret",
    "GitRepository",
    "HelmRepository",
    "OCIRepositoryRef",
    "OCIRepository",
    "CrossplanePackage",
]

_LOGGER = logging.getLogger(__name__)


# Match a prefix of apiVersion to ensure we have the right type of object.
# We don't check specific versions for forward compatibility on upgrade.
CORE_VERSION = "v1"
ARGOCD_DOMAIN = "argoproj.io"
FLUX_SOURCE_DOMAIN = "source.toolkit.fluxcd.io"
CROSSPLANE_PKG_DOMAIN = "pkg.crossplane.io"

POD_KIND = "Pod"
SECRET_KIND = "Secret"
APPLICATION_KIND = "Application"
APPLICATION_SET_KIND = "ApplicationSet"
APP_PROJECT_KIND = "AppProject"
GIT_REPOSITORY_KIND = "GitRepository"
HELM_REPOSITORY_KIND = "HelmRepository"
OCI_REPOSITORY_KIND = "OCIRepository"
CROSSPLANE_PACKAGE_KINDS = ("Configuration", "Function", "Provider")

ARGOCD_SECRET_TYPE_LABEL = "argocd.argoproj.io/secret-type"
ARGOCD_SECRET_TYPE_REPOSITORY = "repository"
ARGOCD_SECRET_TYPE_REPO_CREDS = "repo-creds"

REPO_TYPE_DEFAULT = "default"
REPO_TYPE_OCI = "oci"
REPO_TYPE_HELM = "helm"


def _check_version(doc: dict[str, Any], version: str) -> None:
    """Assert that the resource has the specified version."""
    if not isinstance(doc, dict):
        raise InputException(f"Invalid object expected a mapping: {doc}")
    if not (api_version := doc.get("apiVersion")):
        raise InputException(f"Invalid object missing apiVersion: {doc}")
    if not api_version.startswith(version):
        raise InputException(f"Invalid object expected '{version}': {doc}")


def _spec(cls: type, doc: dict[str, Any]) -> dict[str, Any]:
    if not isinstance(spec := doc.get("spec"), dict):
        raise InputException(f"Invalid {cls.__name__} missing spec: {doc}")
    return spec


def _mapping(cls: type, value: Any, name: str) -> dict[str, Any]:
    """Return an optional mapping field, treating null as empty."""
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise InputException(
            f"Invalid {cls.__name__} {name} is not a mapping: {value}"
        )
    return value


def _list(cls: type, value: Any, name: str) -> list[Any]:
    """Return an optional list field, treating null as empty."""
    if value is None:
        return []
    if not isinstance(value, list):
        raise InputException(f"Invalid {cls.__name__} {name} is not a list: {value}")
    return value


def _check_optional_mapping(
    cls: type, value: Any, name: str
) -> dict[str, Any] | None:
    if value is None:
        return None
    return _mapping(cls, value, name)


def _decode(cls: type, key: str, value: Any) -> str:
    if not isinstance(value, str):
        raise InputException(f"Invalid {cls.__name__} data.{key} is not a string")
    try:
        return base64.b64decode(value, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as err:
        raise InputException(
            f"Invalid {cls.__name__} data.{key} is not base64 encoded: {err}"
        ) from err


@dataclass
class BaseManifest(DataClassDictMixin):
    """Base class for all manifest objects."""

    class Config(BaseConfig):
        omit_none = True


@dataclass
class ObjectMeta(BaseManifest):
    """The metadata common to every object."""

    name: str = ""
    """The name of the object, empty when the name is generated."""

    namespace: str = ""

    labels: dict[str, str] | None = None

    annotations: dict[str, str] | None = None

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "ObjectMeta":
        """Parse the metadata of a kubernetes resource."""
        metadata = doc.get("metadata") or {}
        if not isinstance(metadata, dict):
            raise InputException(f"Invalid {cls.__name__} is not a mapping: {doc}")
        return cls(
            name=metadata.get("name") or metadata.get("generateName") or "",
            namespace=metadata.get("namespace", ""),
            labels=_check_optional_mapping(
                cls, metadata.get("labels"), "metadata.labels"
            ),
            annotations=_check_optional_mapping(
                cls, metadata.get("annotations"), "metadata.annotations"
            ),
        )


@dataclass
class Container(BaseManifest):
    """A container within a Pod."""

    name: str
    """The name of the container, unique within the Pod."""

    image: str
    """The container image reference."""

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "Container":
        """Parse a container from a Pod spec."""
        if not isinstance(doc, dict):
            raise InputException(f"Invalid {cls.__name__} is not a mapping: {doc}")
        if not (name := doc.get("name")):
            raise InputException(f"Invalid {cls.__name__} missing name: {doc}")
        if not (image := doc.get("image")):
            raise InputException(f"Invalid {cls.__name__} missing image: {doc}")
        return cls(name=name, image=image)


def _parse_containers(cls: type, spec: dict[str, Any], key: str) -> list[Container]:
    return [Container.parse_doc(c) for c in _list(cls, spec.get(key), f"spec.{key}")]


@dataclass
class Pod(BaseManifest):
    """A representation of a Pod and its container images."""

    kind: ClassVar[str] = POD_KIND

    metadata: ObjectMeta

    containers: list[Container] = field(default_factory=list)

    init_containers: list[Container] = field(
        metadata=field_options(alias="initContainers"), default_factory=list
    )

    ephemeral_containers: list[Container] = field(
        metadata=field_options(alias="ephemeralContainers"), default_factory=list
    )

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "Pod":
        """Parse a Pod from a kubernetes resource."""
        _check_version(doc, CORE_VERSION)
        spec = _spec(cls, doc)
        return cls(
            metadata=ObjectMeta.parse_doc(doc),
            containers=_parse_containers(cls, spec, "containers"),
            init_containers=_parse_containers(cls, spec, "initContainers"),
            ephemeral_containers=_parse_containers(cls, spec, "ephemeralContainers"),
        )


@dataclass
class ApplicationSource(BaseManifest):
    """The location of the manifests an ArgoCD Application deploys."""

    repo_url: str = field(metadata=field_options(alias="repoURL"), default="")

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "ApplicationSource":
        """Parse an ApplicationSource from an Application spec."""
        if not isinstance(doc, dict):
            raise InputException(f"Invalid {cls.__name__} is not a mapping: {doc}")
        return cls(repo_url=doc.get("repoURL") or "")


def _parse_sources(
    cls: type, spec: dict[str, Any]
) -> tuple[ApplicationSource | None, list[ApplicationSource]]:
    source = None
    if (source_doc := spec.get("source")) is not None:
        source = ApplicationSource.parse_doc(source_doc)
    sources = [
        ApplicationSource.parse_doc(s)
        for s in _list(cls, spec.get("sources"), "spec.sources")
    ]
    return source, sources


@dataclass
class Application(BaseManifest):
    """A representation of an ArgoCD Application."""

    kind: ClassVar[str] = APPLICATION_KIND

    metadata: ObjectMeta

    source: ApplicationSource | None = None
    """The single source of the Application."""

    sources: list[ApplicationSource] = field(default_factory=list)
    """The sources of a multi-source Application."""

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "Application":
        """Parse an Application from a kubernetes resource."""
        _check_version(doc, ARGOCD_DOMAIN)
        source, sources = _parse_sources(cls, _spec(cls, doc))
        return cls(metadata=ObjectMeta.parse_doc(doc), source=source, sources=sources)


@dataclass
class ApplicationSet(BaseManifest):
    """A representation of an ArgoCD ApplicationSet."""

    kind: ClassVar[str] = APPLICATION_SET_KIND

    metadata: ObjectMeta

    source: ApplicationSource | None = None
    """The single source of the Application template."""

    sources: list[ApplicationSource] = field(default_factory=list)
    """The sources of a multi-source Application template."""

    git_generators: dict[int, str] = field(default_factory=dict)
    """The repoURL of each git generator keyed by its index in the generators."""

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "ApplicationSet":
        """Parse an ApplicationSet from a kubernetes resource."""
        _check_version(doc, ARGOCD_DOMAIN)
        spec = _spec(cls, doc)
        template = _mapping(cls, spec.get("template"), "spec.template")
        template_spec = _mapping(cls, template.get("spec"), "spec.template.spec")
        source, sources = _parse_sources(cls, template_spec)
        git_generators = {}
        generators = _list(cls, spec.get("generators"), "spec.generators")
        for idx, generator in enumerate(generators):
            name = f"spec.generators[{idx}]"
            generator = _mapping(cls, generator, name)
            git = _mapping(cls, generator.get("git"), f"{name}.git")
            if repo_url := git.get("repoURL"):
                git_generators[idx] = repo_url
        return cls(
            metadata=ObjectMeta.parse_doc(doc),
            source=source,
            sources=sources,
            git_generators=git_generators,
        )


@dataclass
class AppProject(BaseManifest):
    """A representation of an ArgoCD AppProject."""

    kind: ClassVar[str] = APP_PROJECT_KIND

    metadata: ObjectMeta

    source_repos: list[str] = field(
        metadata=field_options(alias="sourceRepos"), default_factory=list
    )
    """Repository urls or glob patterns Applications in the project may use."""

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "AppProject":
        """Parse an AppProject from a kubernetes resource."""
        _check_version(doc, ARGOCD_DOMAIN)
        spec = _spec(cls, doc)
        source_repos = _list(cls, spec.get("sourceRepos"), "spec.sourceRepos")
        if not all(isinstance(repo, str) for repo in source_repos):
            raise InputException(
                f"Invalid {cls.__name__} spec.sourceRepos must be strings: {doc}"
            )
        return cls(
            metadata=ObjectMeta.parse_doc(doc),
            source_repos=source_repos,
        )


@dataclass
class RepositorySecret(BaseManifest):
    """A Secret holding an ArgoCD repository or repository credential template."""

    kind: ClassVar[str] = SECRET_KIND

    metadata: ObjectMeta

    secret_type: str
    """Either `repository` or `repo-creds`."""

    url: str
    """The decoded repository url, or url prefix for credential templates."""

    repo_type: str = "git"
    """The decoded repository type, `git`, `helm` or `oci`."""

    enable_oci: bool = False
    """Whether a helm repository is served from an OCI registry."""

    data: dict[str, str] = field(default_factory=dict)
    """The raw base64 data of the secret."""

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "RepositorySecret":
        """Parse an ArgoCD repository Secret from a kubernetes resource."""
        _check_version(doc, CORE_VERSION)
        metadata = ObjectMeta.parse_doc(doc)
        secret_type = (metadata.labels or {}).get(ARGOCD_SECRET_TYPE_LABEL)
        if secret_type not in (
            ARGOCD_SECRET_TYPE_REPOSITORY,
            ARGOCD_SECRET_TYPE_REPO_CREDS,
        ):
            raise InputException(
                f"Invalid {cls.__name__} label {ARGOCD_SECRET_TYPE_LABEL} must be "
                f"'{ARGOCD_SECRET_TYPE_REPOSITORY}' or "
                f"'{ARGOCD_SECRET_TYPE_REPO_CREDS}': {doc}"
            )
        data = _mapping(cls, doc.get("data"), "data")
        if not (encoded_url := data.get("url")):
            raise InputException(f"Invalid {cls.__name__} missing data.url: {doc}")
        repo_type = "git"
        if encoded_type := data.get("type"):
            repo_type = _decode(cls, "type", encoded_type).lower()
        enable_oci = False
        if encoded_oci := data.get("enableOCI"):
            enable_oci = _decode(cls, "enableOCI", encoded_oci).lower() == "true"
        return cls(
            metadata=metadata,
            secret_type=secret_type,
            url=_decode(cls, "url", encoded_url),
            repo_type=repo_type,
            enable_oci=enable_oci,
            data=dict(data),
        )

    @property
    def is_oci(self) -> bool:
        """Return True if the secret grants access to an OCI registry."""
        return self.repo_type == REPO_TYPE_OCI or (
            self.repo_type == REPO_TYPE_HELM and self.enable_oci
        )


@dataclass
class LocalObjectReference(BaseManifest):
    """A reference to an object in the same namespace."""

    name: str = ""


def _secret_ref(cls: type, spec: dict[str, Any]) -> LocalObjectReference | None:
    if (secret_ref := spec.get("secretRef")) is None:
        return None
    secret_ref = _mapping(cls, secret_ref, "spec.secretRef")
    return LocalObjectReference(name=secret_ref.get("name") or "")


@dataclass
class GitRepository(BaseManifest):
    """A representation of a flux GitRepository."""

    kind: ClassVar[str] = GIT_REPOSITORY_KIND

    metadata: ObjectMeta

    url: str
    """The url of the git repository."""

    secret_ref: LocalObjectReference | None = field(
        metadata=field_options(alias="secretRef"), default=None
    )
    """The secret holding credentials for the repository."""

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "GitRepository":
        """Parse a GitRepository from a kubernetes resource."""
        _check_version(doc, FLUX_SOURCE_DOMAIN)
        spec = _spec(cls, doc)
        if not (url := spec.get("url")):
            raise InputException(f"Invalid {cls.__name__} missing spec.url: {doc}")
        return cls(
            metadata=ObjectMeta.parse_doc(doc),
            url=url,
            secret_ref=_secret_ref(cls, spec),
        )


@dataclass
class HelmRepository(BaseManifest):
    """A representation of a flux HelmRepository."""

    kind: ClassVar[str] = HELM_REPOSITORY_KIND

    metadata: ObjectMeta

    url: str
    """The chart repository url, rehosted when it is an `oci://` url."""

    repo_type: str = REPO_TYPE_DEFAULT
    """The type of the HelmRepository, only `oci` repositories are mirrored."""

    secret_ref: LocalObjectReference | None = field(
        metadata=field_options(alias="secretRef"), default=None
    )

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "HelmRepository":
        """Parse a HelmRepository from a kubernetes resource."""
        _check_version(doc, FLUX_SOURCE_DOMAIN)
        spec = _spec(cls, doc)
        if not (url := spec.get("url")):
            raise InputException(f"Invalid {cls.__name__} missing spec.url: {doc}")
        return cls(
            metadata=ObjectMeta.parse_doc(doc),
            url=url,
            repo_type=spec.get("type") or REPO_TYPE_DEFAULT,
            secret_ref=_secret_ref(cls, spec),
        )

    @property
    def is_oci(self) -> bool:
        return self.repo_type.lower() == REPO_TYPE_OCI


@dataclass
class OCIRepositoryRef(BaseManifest):
    """The artifact version an OCIRepository pulls."""

    digest: str | None = None
    """Pins the artifact by digest, no tag is rewritten."""

    tag: str | None = None
    """The artifact tag, rewritten with the checksum suffix."""

    semver: str | None = None
    """A semver range, left as-is since it cannot carry the checksum."""

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "OCIRepositoryRef":
        """Parse the spec.ref of an OCIRepository."""
        return cls(
            digest=doc.get("digest"),
            tag=doc.get("tag"),
            semver=doc.get("semver"),
        )


@dataclass
class OCIRepository(BaseManifest):
    """A representation of a flux OCIRepository."""

    kind: ClassVar[str] = OCI_REPOSITORY_KIND

    metadata: ObjectMeta

    url: str
    """The `oci://` url of the artifact repository."""

    ref: OCIRepositoryRef | None = None
    """The version selector, absent means the `latest` tag."""

    secret_ref: LocalObjectReference | None = field(
        metadata=field_options(alias="secretRef"), default=None
    )

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "OCIRepository":
        """Parse an OCIRepository from a kubernetes resource."""
        _check_version(doc, FLUX_SOURCE_DOMAIN)
        spec = _spec(cls, doc)
        if not (url := spec.get("url")):
            raise InputException(f"Invalid {cls.__name__} missing spec.url: {doc}")
        repo_ref: OCIRepositoryRef | None = None
        if (ref := spec.get("ref")) is not None:
            repo_ref = OCIRepositoryRef.parse_doc(_mapping(cls, ref, "spec.ref"))
        return cls(
            metadata=ObjectMeta.parse_doc(doc),
            url=url,
            ref=repo_ref,
            secret_ref=_secret_ref(cls, spec),
        )

    @property
    def versioned_url(self) -> str:
        """Return the url with the digest or tag of the ref appended."""
        if self.ref is not None:
            if self.ref.digest:
                return f"{self.url}@{self.ref.digest}"
            if self.ref.tag:
                return f"{self.url}:{self.ref.tag}"
        return self.url


@dataclass
class CrossplanePackage(BaseManifest):
    """A Crossplane Configuration, Function or Provider package."""

    kind: str

    metadata: ObjectMeta

    package: str
    """The OCI image reference of the package."""

    package_pull_secrets: list[LocalObjectReference] | None = field(
        metadata=field_options(alias="packagePullSecrets"), default=None
    )

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "CrossplanePackage":
        """Parse a Crossplane package from a kubernetes resource."""
        _check_version(doc, CROSSPLANE_PKG_DOMAIN)
        if (kind := doc.get("kind")) not in CROSSPLANE_PACKAGE_KINDS:
            raise InputException(
                f"Invalid {cls.__name__} kind must be one of "
                f"{CROSSPLANE_PACKAGE_KINDS}: {doc}"
            )
        spec = _spec(cls, doc)
        if not (package := spec.get("package")):
            raise InputException(f"Invalid {cls.__name__} missing spec.package: {doc}")
        pull_secrets = None
        if (secrets := spec.get("packagePullSecrets")) is not None:
            pull_secrets = [
                LocalObjectReference(
                    name=_mapping(cls, s, "spec.packagePullSecrets").get("name") or ""
                )
                for s in _list(cls, secrets, "spec.packagePullSecrets")
            ]
        return cls(
            kind=kind,
            metadata=ObjectMeta.parse_doc(doc),
            package=package,
            package_pull_secrets=pull_secrets,
        )
