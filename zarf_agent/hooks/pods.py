"""Hook that rewrites the container images of Pods onto the internal registry."""

import logging

from zarf_agent import transform
from zarf_agent.exceptions import TransformException
from zarf_agent.manifest import Container, Pod
from zarf_agent.operations import (
    AdmissionRequest,
    Hook,
    PatchOperation,
    Result,
    replace_patch_operation,
)
from zarf_agent.state import StateProvider

from .common import (
    ANNOTATION_PREFIX,
    ANNOTATIONS_PATH,
    ZARF_IMAGE_PULL_SECRET_NAME,
    get_label_patch,
    is_patched,
    upsert_patch,
)

__all__ = [
    "new_pod_mutation_hook",
    "image_annotation_key",
]

_LOGGER = logging.getLogger(__name__)

# Kubernetes limits the name segment of an annotation key to 63 characters.
ANNOTATION_NAME_MAX = 63


def image_annotation_key(container_name: str) -> str:
    """Return the annotation key that records the original image of a container."""
    annotation_name = f"original-image-{container_name}"
    if len(annotation_name) > ANNOTATION_NAME_MAX:
        _LOGGER.debug(
            "Truncating container name %s to fit the annotation name limit",
            container_name,
        )
        annotation_name = annotation_name[:ANNOTATION_NAME_MAX]
    return f"{ANNOTATION_PREFIX}/{annotation_name.rstrip('-')}"


async def mutate_pod(provider: StateProvider, request: AdmissionRequest) -> Result:
    """Rewrite every container image of the Pod."""
    pod = Pod.parse_doc(request.object)
    if is_patched(request.object):
        _LOGGER.debug("Pod %s is already patched", pod.metadata.name)
        return Result(allowed=True)

    state = await provider.load_state()
    registry = state.registry_info.address
    _LOGGER.info(
        "Using the registry %s to mutate the Pod %s", registry, pod.metadata.name
    )

    spec = request.object["spec"]
    patches: list[PatchOperation] = [
        upsert_patch(
            spec,
            "imagePullSecrets",
            "/spec/imagePullSecrets",
            [{"name": ZARF_IMAGE_PULL_SECRET_NAME}],
        )
    ]
    annotations = dict(pod.metadata.annotations or {})

    def mutate_containers(key: str, containers: list[Container]) -> None:
        for idx, container in enumerate(containers):
            try:
                replacement = transform.image_transform_host(registry, container.image)
            except TransformException as err:
                raise TransformException(
                    f"unable to transform the image of container {container.name}: {err}"
                ) from err
            annotations[image_annotation_key(container.name)] = container.image
            patches.append(
                replace_patch_operation(f"/spec/{key}/{idx}/image", replacement)
            )

    mutate_containers("initContainers", pod.init_containers)
    mutate_containers("ephemeralContainers", pod.ephemeral_containers)
    mutate_containers("containers", pod.containers)

    patches.append(get_label_patch(request.object))
    patches.append(
        upsert_patch(
            request.object.get("metadata"), "annotations", ANNOTATIONS_PATH, annotations
        )
    )
    return Result(allowed=True, patch_ops=tuple(patches))


def new_pod_mutation_hook(provider: StateProvider) -> Hook:
    """Return the hook that mutates Pods on create and update."""

    async def mutate(request: AdmissionRequest) -> Result:
        return await mutate_pod(provider, request)

    return Hook(create=mutate, update=mutate)
