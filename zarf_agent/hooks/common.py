"""Shared building blocks for the resource hooks.

Hooks describe the references they find in an object as `Reference` values
and hand them to `reference_patches`, which decides whether each one needs
rewriting and emits the JSON patch operations for it.
"""

from dataclasses import dataclass
import enum
import logging
from typing import Any, Callable

from zarf_agent import transform
from zarf_agent.exceptions import InputException, TransformException
from zarf_agent.operations import (
    AdmissionRequest,
    Operation,
    PatchOperation,
    add_patch_operation,
    replace_patch_operation,
)
from zarf_agent.state import State, StateProvider

__all__ = [
    "MutationContext",
    "ReferenceKind",
    "Reference",
    "new_mutation_context",
    "oci_url",
    "reference_patches",
    "transform_reference",
    "get_label_patch",
    "upsert_patch",
    "is_patched",
    "ZARF_IMAGE_PULL_SECRET_NAME",
    "ZARF_GIT_SERVER_SECRET_NAME",
]

_LOGGER = logging.getLogger(__name__)


ZARF_IMAGE_PULL_SECRET_NAME = "private-registry"
ZARF_GIT_SERVER_SECRET_NAME = "private-git-server"
AGENT_LABEL = "zarf-agent"
AGENT_LABEL_PATCHED = "patched"
ANNOTATION_PREFIX = "zarf.dev"

LABELS_PATH = "/metadata/labels"
ANNOTATIONS_PATH = "/metadata/annotations"


@dataclass(frozen=True)
class MutationContext:
    """Values scoped to a single admission request."""

    operation: Operation
    """The admission operation being handled."""

    state: State
    """The state snapshot loaded for this request."""

    registry_address: str
    """The registry address in-cluster controllers pull OCI artifacts from."""

    @property
    def is_create(self) -> bool:
        return self.operation == Operation.CREATE

    @property
    def is_update(self) -> bool:
        return self.operation == Operation.UPDATE


async def new_mutation_context(
    provider: StateProvider, request: AdmissionRequest
) -> MutationContext:
    """Load the state and build the context for a request."""
    state = await provider.load_state()
    registry_address = await provider.registry_service_address(state.registry_info)
    return MutationContext(
        operation=request.operation,
        state=state,
        registry_address=registry_address,
    )


class ReferenceKind(enum.Enum):
    """The kind of location a reference field points at."""

    GIT = "git"
    """A git repository url."""

    OCI = "oci"
    """An `oci://` artifact url."""

    IMAGE = "image"
    """A bare container image reference."""

    UNKNOWN = "unknown"
    """A value that is neither, such as a glob pattern, left as-is."""


@dataclass(frozen=True)
class Reference:
    """A reference found inside an object and the JSON pointer to it."""

    path: str
    value: str
    kind: ReferenceKind

    @classmethod
    def classify(cls, path: str, value: str) -> "Reference":
        """Build a reference for a repository url, deciding its kind from the value."""
        if value.startswith(transform.OCI_URL_PREFIX):
            return cls(path, value, ReferenceKind.OCI)
        if "*" in value:
            return cls(path, value, ReferenceKind.UNKNOWN)
        try:
            transform.git_url_to_repo_name(value)
        except TransformException:
            return cls(path, value, ReferenceKind.UNKNOWN)
        return cls(path, value, ReferenceKind.GIT)


def oci_url(registry_address: str, url: str) -> str:
    """Rehost an `oci://` url onto the registry, dropping any tag or digest."""
    source = url.removeprefix(transform.OCI_URL_PREFIX)
    rehosted = transform.image_transform_host(registry_address, source)
    return transform.OCI_URL_PREFIX + transform.parse_image_ref(rehosted).name


def _already_on(ctx: MutationContext, server_url: str, value: str) -> bool:
    if not ctx.is_update:
        return False
    return transform.hostnames_match(server_url, value)


def transform_reference(ctx: MutationContext, ref: Reference) -> str:
    """Return the rewritten value of a reference.

    On update a reference that already points at the configured server is
    returned unchanged so that resources are never rewritten twice.
    """
    if ref.kind == ReferenceKind.GIT:
        git_server = ctx.state.git_server
        if _already_on(ctx, git_server.address, ref.value):
            return ref.value
        try:
            return transform.git_url(
                git_server.address, ref.value, git_server.push_username
            )
        except TransformException as err:
            raise TransformException(f"unable to transform the git url: {err}") from err
    if ref.kind == ReferenceKind.OCI:
        registry_url = transform.OCI_URL_PREFIX + ctx.registry_address
        if _already_on(ctx, registry_url, ref.value):
            return ref.value
        try:
            return oci_url(ctx.registry_address, ref.value)
        except TransformException as err:
            raise TransformException(f"unable to transform the OCI url: {err}") from err
    if ref.kind == ReferenceKind.IMAGE:
        try:
            return transform.image_transform_host(ctx.registry_address, ref.value)
        except TransformException as err:
            raise TransformException(
                f"unable to transform the image reference: {err}"
            ) from err
    _LOGGER.warning("Skipping reference %s=%s of unknown kind", ref.path, ref.value)
    return ref.value


def reference_patches(
    ctx: MutationContext,
    refs: list[Reference],
    encode: Callable[[str], Any] | None = None,
) -> list[PatchOperation]:
    """Return a replace operation for every reference that is not of unknown kind.

    The optional encode function is applied to each rewritten value, for
    references stored in an encoded form such as Secret data.
    """
    patches = []
    for ref in refs:
        if ref.kind == ReferenceKind.UNKNOWN:
            _LOGGER.info(
                "Leaving %s unchanged, %s is not a git or OCI url", ref.path, ref.value
            )
            continue
        patched = transform_reference(ctx, ref)
        _LOGGER.debug("Mutated %s from %s to %s", ref.path, ref.value, patched)
        value = encode(patched) if encode is not None else patched
        patches.append(replace_patch_operation(ref.path, value))
    return patches


def metadata(obj: dict[str, Any]) -> dict[str, Any]:
    """Return the metadata of an object, validating its shape."""
    meta = obj.get("metadata") or {}
    if not isinstance(meta, dict):
        raise InputException(f"Invalid object metadata is not a mapping: {obj}")
    return meta


def is_patched(obj: dict[str, Any]) -> bool:
    """Return True if the object already carries the agent label."""
    labels = metadata(obj).get("labels") or {}
    return labels.get(AGENT_LABEL) == AGENT_LABEL_PATCHED


def upsert_patch(
    parent: dict[str, Any] | None, key: str, path: str, value: Any
) -> PatchOperation:
    """Return a replace when the key exists in the parent, otherwise an add."""
    if parent is not None and key in parent:
        return replace_patch_operation(path, value)
    return add_patch_operation(path, value)


def get_label_patch(obj: dict[str, Any]) -> PatchOperation:
    """Return the operation that marks the object as patched by the agent."""
    meta = metadata(obj)
    labels = dict(meta.get("labels") or {})
    labels[AGENT_LABEL] = AGENT_LABEL_PATCHED
    return upsert_patch(meta, "labels", LABELS_PATH, labels)
