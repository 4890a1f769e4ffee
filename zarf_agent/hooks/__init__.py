"""Mutating hooks for each kind of resource the agent rewrites.

Each hook is registered under a path of the admission server, see
`HOOK_FACTORIES` for the mapping of paths to hooks.
"""

from collections.abc import Callable

from zarf_agent.operations import Hook
from zarf_agent.state import StateProvider

from . import argocd, crossplane, flux, pods

__all__ = [
    "HOOK_FACTORIES",
    "new_hooks",
]

HOOK_FACTORIES: dict[str, Callable[[StateProvider], Hook]] = {
    "pods": pods.new_pod_mutation_hook,
    "argocd-apps": argocd.new_application_mutation_hook,
    "argocd-applicationsets": argocd.new_application_set_mutation_hook,
    "argocd-appprojects": argocd.new_app_project_mutation_hook,
    "argocd-repositories": argocd.new_repository_mutation_hook,
    "flux-gitrepository": flux.new_git_repository_mutation_hook,
    "flux-helmrepository": flux.new_helm_repository_mutation_hook,
    "flux-ocirepository": flux.new_oci_repository_mutation_hook,
    "crossplane-packages": crossplane.new_package_mutation_hook,
}
"""Hook factories keyed by the resource name in `/mutate/<resource>`."""


def new_hooks(provider: StateProvider) -> dict[str, Hook]:
    """Return every hook bound to the state provider."""
    return {name: factory(provider) for name, factory in HOOK_FACTORIES.items()}
