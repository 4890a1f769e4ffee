"""Parse container image references and rehost them onto the internal registry.

Reference parsing follows the OCI distribution grammar with the Docker Hub
normalization rules applied (`nginx` is `docker.io/library/nginx:latest`).
"""

from dataclasses import dataclass
import logging
import re

from zarf_agent.exceptions import TransformException

from .url import get_crc_hash

__all__ = [
    "Image",
    "parse_image_ref",
    "image_transform_host",
    "image_transform_host_without_checksum",
]

_LOGGER = logging.getLogger(__name__)

DEFAULT_DOMAIN = "docker.io"
LEGACY_DEFAULT_DOMAIN = "index.docker.io"
OFFICIAL_REPO_PREFIX = "library"
DEFAULT_TAG = "latest"
NAME_TOTAL_LENGTH_MAX = 255

_ALPHANUMERIC = r"[a-z0-9]+"
_SEPARATOR = r"(?:[._]|__|[-]+)"
_PATH_COMPONENT = rf"{_ALPHANUMERIC}(?:{_SEPARATOR}{_ALPHANUMERIC})*"
_DOMAIN_COMPONENT = r"(?:[a-zA-Z0-9]|[a-zA-Z0-9][a-zA-Z0-9-]*[a-zA-Z0-9])"
_DOMAIN_NAME = rf"{_DOMAIN_COMPONENT}(?:\.{_DOMAIN_COMPONENT})*"
_IPV6_ADDRESS = r"\[(?:[a-fA-F0-9:]+)\]"
_DOMAIN_AND_PORT = rf"(?:{_DOMAIN_NAME}|{_IPV6_ADDRESS})(?::[0-9]+)?"
_REMOTE_NAME = rf"{_PATH_COMPONENT}(?:/{_PATH_COMPONENT})*"
_TAG = r"[\w][\w.-]{0,127}"
_DIGEST = r"[A-Za-z][A-Za-z0-9]*(?:[-_+.][A-Za-z][A-Za-z0-9]*)*[:][0-9a-fA-F]{32,}"

REFERENCE_REGEX = re.compile(
    rf"^(?P<name>(?:{_DOMAIN_AND_PORT}/)?{_REMOTE_NAME})"
    rf"(?::(?P<tag>{_TAG}))?(?:@(?P<digest>{_DIGEST}))?$",
    re.ASCII,
)
NAME_REGEX = re.compile(
    rf"^(?:(?P<domain>{_DOMAIN_AND_PORT})/)?(?P<path>{_REMOTE_NAME})$", re.ASCII
)
IDENTIFIER_REGEX = re.compile(r"^[a-f0-9]{64}$")
DIGEST_REGEX = re.compile(rf"^{_DIGEST}$", re.ASCII)


@dataclass(frozen=True)
class Image:
    """A parsed and normalized container image reference."""

    host: str
    """The registry host, e.g. `docker.io` or `127.0.0.1:31999`."""

    name: str
    """The full repository name including the host."""

    path: str
    """The repository path on the registry without the host."""

    tag: str = ""
    """The tag, set to `latest` when neither a tag nor digest was given."""

    digest: str = ""
    """The content digest when the reference is pinned."""

    tag_or_digest: str = ""
    """The suffix to append to the name, either `:tag` or `@digest`."""

    reference: str = ""
    """The fully qualified reference string."""


def _split_docker_domain(name: str) -> tuple[str, str]:
    """Split the registry domain from the repository, applying Docker Hub defaults."""
    domain, sep, remainder = name.partition("/")
    if (
        not sep
        or (
            not any(c in domain for c in ".:")
            and domain != "localhost"
            and domain.lower() == domain
        )
    ):
        domain, remainder = DEFAULT_DOMAIN, name
    if domain == LEGACY_DEFAULT_DOMAIN:
        domain = DEFAULT_DOMAIN
    if domain == DEFAULT_DOMAIN and "/" not in remainder:
        remainder = f"{OFFICIAL_REPO_PREFIX}/{remainder}"
    return domain, remainder


def parse_image_ref(src_reference: str) -> Image:
    """Parse an image reference into its normalized components."""
    if IDENTIFIER_REGEX.match(src_reference) or DIGEST_REGEX.match(src_reference):
        raise TransformException(
            f"unable to parse image name from {src_reference}: "
            "a digest alone is not a repository reference"
        )

    domain, remainder = _split_docker_domain(src_reference)
    remote_name = remainder.partition(":")[0]
    if remote_name.lower() != remote_name:
        raise TransformException(
            f"invalid reference format: repository name ({remote_name}) must be lowercase"
        )

    normalized = f"{domain}/{remainder}"
    if not (match := REFERENCE_REGEX.match(normalized)):
        raise TransformException(
            f"invalid reference format: unable to parse image {src_reference}"
        )
    name = match.group("name")
    if len(name) > NAME_TOTAL_LENGTH_MAX:
        raise TransformException(
            "repository name must not be more than "
            f"{NAME_TOTAL_LENGTH_MAX} characters: {src_reference}"
        )
    if not (name_match := NAME_REGEX.match(name)) or not name_match.group("domain"):
        raise TransformException(f"unable to parse image name from {src_reference}")

    tag = match.group("tag") or ""
    digest = match.group("digest") or ""
    reference = name
    if tag:
        reference += f":{tag}"
    if digest:
        reference += f"@{digest}"

    tag_or_digest = ""
    if tag:
        tag_or_digest = f":{tag}"
    if digest:
        tag_or_digest = f"@{digest}"
    if not tag_or_digest:
        tag = DEFAULT_TAG
        tag_or_digest = f":{DEFAULT_TAG}"
        reference += f":{DEFAULT_TAG}"

    return Image(
        host=name_match.group("domain"),
        name=name,
        path=name_match.group("path"),
        tag=tag,
        digest=digest,
        tag_or_digest=tag_or_digest,
        reference=reference,
    )


def image_transform_host(target_host: str, src_reference: str) -> str:
    """Rehost an image onto the target registry with a checksum tag suffix.

    Images already on the target host are returned unchanged. Images pinned by
    digest keep their digest since it identifies the content exactly.
    """
    image = parse_image_ref(src_reference)
    if target_host.startswith(image.host):
        return src_reference
    if image.digest:
        return f"{target_host}/{image.path}@{image.digest}"
    checksum = get_crc_hash(image.name)
    output = f"{target_host}/{image.path}:{image.tag}-zarf-{checksum}"
    _LOGGER.debug("Transformed image %s to %s", src_reference, output)
    return output


def image_transform_host_without_checksum(target_host: str, src_reference: str) -> str:
    """Rehost an image onto the target registry keeping its tag or digest."""
    image = parse_image_ref(src_reference)
    if target_host.startswith(image.host):
        return src_reference
    return f"{target_host}/{image.path}{image.tag_or_digest}"
