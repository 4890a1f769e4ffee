"""Hooks that point flux sources at the internal git server and registry."""

import logging

from zarf_agent import transform
from zarf_agent.exceptions import TransformException
from zarf_agent.manifest import (
    GitRepository,
    HelmRepository,
    LocalObjectReference,
    OCIRepository,
)
from zarf_agent.operations import (
    AdmissionRequest,
    Hook,
    PatchOperation,
    Result,
    add_patch_operation,
    replace_patch_operation,
)
from zarf_agent.state import StateProvider

from .common import (
    ZARF_GIT_SERVER_SECRET_NAME,
    ZARF_IMAGE_PULL_SECRET_NAME,
    MutationContext,
    Reference,
    ReferenceKind,
    get_label_patch,
    new_mutation_context,
    oci_url,
    reference_patches,
)

__all__ = [
    "new_git_repository_mutation_hook",
    "new_helm_repository_mutation_hook",
    "new_oci_repository_mutation_hook",
]

_LOGGER = logging.getLogger(__name__)


def secret_ref_patch(
    secret_ref: LocalObjectReference | None, name: str
) -> PatchOperation:
    """Return the operation that points spec.secretRef at the named secret.

    A secretRef without a name is replaced whole since there is no
    spec.secretRef.name member to replace.
    """
    if secret_ref is not None and secret_ref.name:
        return replace_patch_operation("/spec/secretRef/name", name)
    return add_patch_operation("/spec/secretRef", {"name": name})


def _registry_is_patched(ctx: MutationContext, url: str) -> bool:
    if not ctx.is_update:
        return False
    return transform.hostnames_match(
        transform.OCI_URL_PREFIX + ctx.registry_address, url
    )


async def mutate_git_repository(
    provider: StateProvider, request: AdmissionRequest
) -> Result:
    """Rewrite the url of a GitRepository and use the git server credentials."""
    repo = GitRepository.parse_doc(request.object)
    ctx = await new_mutation_context(provider, request)
    _LOGGER.info(
        "Using the git server %s to mutate the flux GitRepository %s",
        ctx.state.git_server.address,
        repo.metadata.name,
    )
    url_patches = reference_patches(
        ctx, [Reference("/spec/url", repo.url, ReferenceKind.GIT)]
    )
    return Result(
        allowed=True,
        patch_ops=(
            *url_patches,
            secret_ref_patch(repo.secret_ref, ZARF_GIT_SERVER_SECRET_NAME),
            get_label_patch(request.object),
        ),
    )


async def mutate_helm_repository(
    provider: StateProvider, request: AdmissionRequest
) -> Result:
    """Rewrite the url of an OCI HelmRepository onto the registry.

    HelmRepositories of the default type serve an index.yaml over http and
    cannot be mirrored into a registry, so they are allowed unchanged.
    """
    repo = HelmRepository.parse_doc(request.object)
    if not repo.is_oci:
        _LOGGER.warning(
            "Skipping HelmRepo mutation because the type is not OCI: %s",
            repo.repo_type,
        )
        return Result(allowed=True)

    ctx = await new_mutation_context(provider, request)
    _LOGGER.info(
        "Using the registry %s to mutate the flux HelmRepository %s",
        ctx.registry_address,
        repo.metadata.name,
    )
    patched_url = repo.url
    if not _registry_is_patched(ctx, repo.url):
        try:
            patched_url = oci_url(ctx.registry_address, repo.url)
        except TransformException as err:
            raise TransformException(
                f"unable to transform the HelmRepo URL: {err}"
            ) from err
    _LOGGER.debug("Mutated HelmRepository url %s to %s", repo.url, patched_url)

    patches = [replace_patch_operation("/spec/url", patched_url)]
    if ctx.state.registry_info.is_internal:
        patches.append(add_patch_operation("/spec/insecure", True))
    patches.append(
        secret_ref_patch(repo.secret_ref, ZARF_IMAGE_PULL_SECRET_NAME)
    )
    patches.append(get_label_patch(request.object))
    return Result(allowed=True, patch_ops=tuple(patches))


async def mutate_oci_repository(
    provider: StateProvider, request: AdmissionRequest
) -> Result:
    """Rewrite the url and tag of an OCIRepository onto the registry.

    The tag gets the same checksum suffix as rehosted images so artifacts with
    the same name from different registries do not collide. A semver ref
    cannot be rewritten and is left to match the mirrored tags.
    """
    repo = OCIRepository.parse_doc(request.object)
    ref = repo.ref
    if ref is not None and ref.semver:
        _LOGGER.warning(
            "Detected a semver OCI ref %s on %s, continuing but will be unable to "
            "guarantee against collisions if multiple OCI artifacts with the same "
            "name are brought in from different registries",
            ref.semver,
            repo.metadata.name,
        )

    ctx = await new_mutation_context(provider, request)
    _LOGGER.info(
        "Using the registry %s to mutate the flux OCIRepository %s",
        ctx.registry_address,
        repo.metadata.name,
    )

    patched_url = repo.url
    patched_tag = ref.tag if ref is not None else None
    if not _registry_is_patched(ctx, repo.url):
        source = repo.versioned_url.removeprefix(transform.OCI_URL_PREFIX)
        try:
            patched_src = transform.image_transform_host(ctx.registry_address, source)
            patched = transform.parse_image_ref(patched_src)
        except TransformException as err:
            raise TransformException(
                f"unable to transform the OCIRepo URL: {err}"
            ) from err
        patched_url = transform.OCI_URL_PREFIX + patched.name
        if not patched.digest and not (ref is not None and ref.semver):
            patched_tag = patched.tag
    _LOGGER.debug("Mutated OCIRepository url %s to %s", repo.url, patched_url)

    patches = [
        replace_patch_operation("/spec/url", patched_url),
        secret_ref_patch(repo.secret_ref, ZARF_IMAGE_PULL_SECRET_NAME),
    ]
    if ctx.state.registry_info.is_internal:
        patches.append(add_patch_operation("/spec/insecure", True))
    if patched_tag and not (ref is not None and ref.semver):
        if ref is None:
            patches.append(add_patch_operation("/spec/ref", {"tag": patched_tag}))
        else:
            patches.append(upsert_tag_patch(ref.tag, patched_tag))
    patches.append(get_label_patch(request.object))
    return Result(allowed=True, patch_ops=tuple(patches))


def upsert_tag_patch(current: str | None, tag: str) -> PatchOperation:
    """Return the operation setting spec.ref.tag on an existing ref."""
    if current is None:
        return add_patch_operation("/spec/ref/tag", tag)
    return replace_patch_operation("/spec/ref/tag", tag)


def new_git_repository_mutation_hook(provider: StateProvider) -> Hook:
    """Return the hook that mutates flux GitRepositories."""

    async def mutate(request: AdmissionRequest) -> Result:
        return await mutate_git_repository(provider, request)

    return Hook(create=mutate, update=mutate)


def new_helm_repository_mutation_hook(provider: StateProvider) -> Hook:
    """Return the hook that mutates flux HelmRepositories."""

    async def mutate(request: AdmissionRequest) -> Result:
        return await mutate_helm_repository(provider, request)

    return Hook(create=mutate, update=mutate)


def new_oci_repository_mutation_hook(provider: StateProvider) -> Hook:
    """Return the hook that mutates flux OCIRepositories."""

    async def mutate(request: AdmissionRequest) -> Result:
        return await mutate_oci_repository(provider, request)

    return Hook(create=mutate, update=mutate)
