"""Hook that rewrites Crossplane package images onto the internal registry."""

import logging

from zarf_agent.manifest import CrossplanePackage
from zarf_agent.operations import (
    AdmissionRequest,
    Hook,
    Result,
    add_patch_operation,
    replace_patch_operation,
)
from zarf_agent.state import StateProvider

from .common import (
    ZARF_IMAGE_PULL_SECRET_NAME,
    Reference,
    ReferenceKind,
    get_label_patch,
    new_mutation_context,
    reference_patches,
)

__all__ = ["new_package_mutation_hook"]

_LOGGER = logging.getLogger(__name__)


async def mutate_package(provider: StateProvider, request: AdmissionRequest) -> Result:
    """Rewrite the package image of a Configuration, Function or Provider."""
    package = CrossplanePackage.parse_doc(request.object)
    ctx = await new_mutation_context(provider, request)
    _LOGGER.info(
        "Using the registry %s to mutate the Crossplane %s %s",
        ctx.registry_address,
        package.kind,
        package.metadata.name,
    )
    patches = reference_patches(
        ctx, [Reference("/spec/package", package.package, ReferenceKind.IMAGE)]
    )
    pull_secrets = [{"name": ZARF_IMAGE_PULL_SECRET_NAME}]
    if package.package_pull_secrets is not None:
        _LOGGER.debug(
            "Replacing the package pull secrets %s of %s",
            [secret.name for secret in package.package_pull_secrets],
            package.metadata.name,
        )
        patches.append(
            replace_patch_operation("/spec/packagePullSecrets", pull_secrets)
        )
    else:
        patches.append(add_patch_operation("/spec/packagePullSecrets", pull_secrets))
    patches.append(get_label_patch(request.object))
    return Result(allowed=True, patch_ops=tuple(patches))


def new_package_mutation_hook(provider: StateProvider) -> Hook:
    """Return the hook that mutates Crossplane packages."""

    async def mutate(request: AdmissionRequest) -> Result:
        return await mutate_package(provider, request)

    return Hook(create=mutate, update=mutate)
