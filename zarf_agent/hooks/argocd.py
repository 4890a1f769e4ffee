"""Hooks that point ArgoCD at the internal git server and registry.

ArgoCD finds manifests through repository urls on Applications,
ApplicationSets and AppProjects, and authenticates with repository Secrets.
All of them are rewritten so that the repo server only talks to the mirrors.
"""

import base64
import logging

from zarf_agent import transform
from zarf_agent.exceptions import TransformException
from zarf_agent.manifest import (
    ARGOCD_SECRET_TYPE_REPO_CREDS,
    AppProject,
    Application,
    ApplicationSet,
    ApplicationSource,
    RepositorySecret,
)
from zarf_agent.operations import (
    AdmissionRequest,
    Hook,
    PatchOperation,
    Result,
    replace_patch_operation,
)
from zarf_agent.state import StateProvider

from .common import (
    MutationContext,
    Reference,
    ReferenceKind,
    get_label_patch,
    new_mutation_context,
    oci_url,
    reference_patches,
    upsert_patch,
)

__all__ = [
    "new_application_mutation_hook",
    "new_application_set_mutation_hook",
    "new_app_project_mutation_hook",
    "new_repository_mutation_hook",
]

_LOGGER = logging.getLogger(__name__)


def repo_reference(path: str, repo_url: str) -> Reference:
    """Return the reference for an Application source url."""
    if repo_url.startswith(transform.OCI_URL_PREFIX):
        return Reference(path, repo_url, ReferenceKind.OCI)
    return Reference(path, repo_url, ReferenceKind.GIT)


def source_references(
    prefix: str, source: ApplicationSource | None, sources: list[ApplicationSource]
) -> list[Reference]:
    """Return the references of the single source and multiple sources under prefix."""
    refs = []
    if source is not None and source.repo_url:
        refs.append(repo_reference(f"{prefix}/source/repoURL", source.repo_url))
    for idx, item in enumerate(sources):
        if item.repo_url:
            path = f"{prefix}/sources/{idx}/repoURL"
            refs.append(repo_reference(path, item.repo_url))
    return refs


async def mutate_application(
    provider: StateProvider, request: AdmissionRequest
) -> Result:
    """Rewrite the source repository urls of an Application."""
    app = Application.parse_doc(request.object)
    ctx = await new_mutation_context(provider, request)
    _LOGGER.info(
        "Using the git server %s to mutate the ArgoCD Application %s",
        ctx.state.git_server.address,
        app.metadata.name,
    )
    refs = source_references("/spec", app.source, app.sources)
    patches = reference_patches(ctx, refs)
    patches.append(get_label_patch(request.object))
    return Result(allowed=True, patch_ops=tuple(patches))


async def mutate_application_set(
    provider: StateProvider, request: AdmissionRequest
) -> Result:
    """Rewrite the template sources and git generators of an ApplicationSet."""
    app_set = ApplicationSet.parse_doc(request.object)
    ctx = await new_mutation_context(provider, request)
    _LOGGER.info(
        "Using the git server %s to mutate the ArgoCD ApplicationSet %s",
        ctx.state.git_server.address,
        app_set.metadata.name,
    )
    refs = source_references("/spec/template/spec", app_set.source, app_set.sources)
    refs.extend(
        Reference(f"/spec/generators/{idx}/git/repoURL", repo_url, ReferenceKind.GIT)
        for idx, repo_url in app_set.git_generators.items()
    )
    patches = reference_patches(ctx, refs)
    patches.append(get_label_patch(request.object))
    return Result(allowed=True, patch_ops=tuple(patches))


async def mutate_app_project(
    provider: StateProvider, request: AdmissionRequest
) -> Result:
    """Rewrite the allowed source repositories of an AppProject.

    Entries that are glob patterns or otherwise not a repository url are left
    untouched, since they may legitimately match the mirrored urls already.
    """
    project = AppProject.parse_doc(request.object)
    ctx = await new_mutation_context(provider, request)
    refs = [
        Reference.classify(f"/spec/sourceRepos/{idx}", repo)
        for idx, repo in enumerate(project.source_repos)
    ]
    patches = reference_patches(ctx, refs)
    patches.append(get_label_patch(request.object))
    return Result(allowed=True, patch_ops=tuple(patches))


def _encode(value: str) -> str:
    return base64.b64encode(value.encode("utf-8")).decode("ascii")


def _url_patch(secret: RepositorySecret, patched_url: str) -> PatchOperation:
    """Return the operation replacing the required data.url of a repository secret."""
    _LOGGER.debug("Mutated ArgoCD repository url %s to %s", secret.url, patched_url)
    return replace_patch_operation("/data/url", _encode(patched_url))


def _registry_url(ctx: MutationContext, url: str) -> str:
    """Rewrite a registry url, keeping the `oci://` prefix only if it was present."""
    has_prefix = url.startswith(transform.OCI_URL_PREFIX)
    source = url if has_prefix else transform.OCI_URL_PREFIX + url
    if ctx.is_update and transform.hostnames_match(
        transform.OCI_URL_PREFIX + ctx.registry_address, source
    ):
        return url
    try:
        patched = oci_url(ctx.registry_address, source)
    except TransformException as err:
        raise TransformException(f"unable to transform the OCI url: {err}") from err
    return patched if has_prefix else patched.removeprefix(transform.OCI_URL_PREFIX)


def _credential_template_kind(secret: RepositorySecret) -> ReferenceKind:
    """Classify the url prefix of a repo-creds secret."""
    if secret.is_oci:
        return ReferenceKind.OCI
    try:
        parsed = transform.parse_url(secret.url)
    except TransformException:
        return ReferenceKind.UNKNOWN
    if not parsed.scheme or not transform.hostname(parsed):
        return ReferenceKind.UNKNOWN
    return ReferenceKind.GIT


def _credential_template_url(
    ctx: MutationContext, secret: RepositorySecret, kind: ReferenceKind
) -> str:
    """Rewrite the url prefix of a repo-creds secret onto the mirror root."""
    if kind == ReferenceKind.OCI:
        has_prefix = secret.url.startswith(transform.OCI_URL_PREFIX)
        source = secret.url if has_prefix else transform.OCI_URL_PREFIX + secret.url
        registry_url = transform.OCI_URL_PREFIX + ctx.registry_address
        if ctx.is_update and transform.hostnames_match(registry_url, source):
            return secret.url
        return registry_url if has_prefix else ctx.registry_address
    git_server = ctx.state.git_server
    if ctx.is_update and transform.hostnames_match(git_server.address, secret.url):
        return secret.url
    return f"{git_server.address}/{git_server.push_username}"


async def mutate_repository(
    provider: StateProvider, request: AdmissionRequest
) -> Result:
    """Point an ArgoCD repository Secret at the mirror and set its credentials."""
    secret = RepositorySecret.parse_doc(request.object)
    ctx = await new_mutation_context(provider, request)

    if secret.secret_type == ARGOCD_SECRET_TYPE_REPO_CREDS:
        kind = _credential_template_kind(secret)
        if kind == ReferenceKind.UNKNOWN:
            _LOGGER.warning(
                "Skipping ArgoCD credential template %s, %s is not a git or OCI url",
                secret.metadata.name,
                secret.url,
            )
            return Result(allowed=True)
        url_patches = [_url_patch(secret, _credential_template_url(ctx, secret, kind))]
    elif secret.is_oci:
        kind = ReferenceKind.OCI
        url_patches = [_url_patch(secret, _registry_url(ctx, secret.url))]
    else:
        kind = ReferenceKind.GIT
        url_patches = reference_patches(
            ctx,
            [Reference("/data/url", secret.url, ReferenceKind.GIT)],
            encode=_encode,
        )

    if kind == ReferenceKind.OCI:
        registry = ctx.state.registry_info
        username, password = registry.pull_username, registry.pull_password
    else:
        git_server = ctx.state.git_server
        username, password = git_server.pull_username, git_server.pull_password

    data = secret.data
    patches: list[PatchOperation] = [
        *url_patches,
        upsert_patch(data, "username", "/data/username", _encode(username)),
        upsert_patch(data, "password", "/data/password", _encode(password)),
    ]
    if kind == ReferenceKind.OCI and (mtls := ctx.state.registry_info.mtls):
        patches.extend(
            [
                upsert_patch(
                    data,
                    "tlsClientCertData",
                    "/data/tlsClientCertData",
                    _encode(mtls.client_cert),
                ),
                upsert_patch(
                    data,
                    "tlsClientCertKey",
                    "/data/tlsClientCertKey",
                    _encode(mtls.client_key),
                ),
            ]
        )
    patches.append(get_label_patch(request.object))
    return Result(allowed=True, patch_ops=tuple(patches))


def new_application_mutation_hook(provider: StateProvider) -> Hook:
    """Return the hook that mutates ArgoCD Applications."""

    async def mutate(request: AdmissionRequest) -> Result:
        return await mutate_application(provider, request)

    return Hook(create=mutate, update=mutate)


def new_application_set_mutation_hook(provider: StateProvider) -> Hook:
    """Return the hook that mutates ArgoCD ApplicationSets."""

    async def mutate(request: AdmissionRequest) -> Result:
        return await mutate_application_set(provider, request)

    return Hook(create=mutate, update=mutate)


def new_app_project_mutation_hook(provider: StateProvider) -> Hook:
    """Return the hook that mutates ArgoCD AppProjects."""

    async def mutate(request: AdmissionRequest) -> Result:
        return await mutate_app_project(provider, request)

    return Hook(create=mutate, update=mutate)


def new_repository_mutation_hook(provider: StateProvider) -> Hook:
    """Return the hook that mutates ArgoCD repository Secrets."""

    async def mutate(request: AdmissionRequest) -> Result:
        return await mutate_repository(provider, request)

    return Hook(create=mutate, update=mutate)
