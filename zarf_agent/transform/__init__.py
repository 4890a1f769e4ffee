"""Library for rewriting references to point at the internal airgap mirrors.

Each ecosystem has its own url shape:

- git repositories are rewritten with `git_url`
- container images and OCI artifacts with `image_transform_host`
- npm, pip and generic downloads with the functions in `artifact`

All functions raise `TransformException` for input they cannot rewrite.
"""

from .artifact import (
    NO_TRANSFORM,
    gen_transform_url,
    no_transform_target,
    npm_transform_url,
    pip_transform_url,
)
from .git import (
    git_url,
    git_url_split_ref,
    git_url_to_folder_name,
    git_url_to_repo_name,
    mutate_git_urls_in_text,
)
from .image import (
    Image,
    image_transform_host,
    image_transform_host_without_checksum,
    parse_image_ref,
)
from .url import get_crc_hash, hostname, hostnames_match, parse_url

__all__ = [
    "NO_TRANSFORM",
    "OCI_URL_PREFIX",
    "Image",
    "gen_transform_url",
    "get_crc_hash",
    "git_url",
    "git_url_split_ref",
    "git_url_to_folder_name",
    "git_url_to_repo_name",
    "hostname",
    "hostnames_match",
    "image_transform_host",
    "image_transform_host_without_checksum",
    "mutate_git_urls_in_text",
    "no_transform_target",
    "npm_transform_url",
    "parse_image_ref",
    "parse_url",
    "pip_transform_url",
]

OCI_URL_PREFIX = "oci://"
"""Scheme prefix used by helm, flux and argo for OCI artifact urls."""
