"""Tests for parsing and rehosting image references."""

import pytest

from zarf_agent.exceptions import TransformException
from zarf_agent.transform import (
    Image,
    get_crc_hash,
    image_transform_host,
    image_transform_host_without_checksum,
    parse_image_ref,
)

DIGEST = "sha256:6b86b273ff34fce19d6b804eff5a3f5747ada4eaa22f1d49c01e52ddb7875b4b"


@pytest.mark.parametrize(
    ("reference", "expected"),
    [
        (
            "nginx",
            Image(
                host="docker.io",
                name="docker.io/library/nginx",
                path="library/nginx",
                tag="latest",
                tag_or_digest=":latest",
                reference="docker.io/library/nginx:latest",
            ),
        ),
        (
            "nginx:1.23.3",
            Image(
                host="docker.io",
                name="docker.io/library/nginx",
                path="library/nginx",
                tag="1.23.3",
                tag_or_digest=":1.23.3",
                reference="docker.io/library/nginx:1.23.3",
            ),
        ),
        (
            "index.docker.io/defenseunicorns/zarf-agent:v0.22.1",
            Image(
                host="docker.io",
                name="docker.io/defenseunicorns/zarf-agent",
                path="defenseunicorns/zarf-agent",
                tag="v0.22.1",
                tag_or_digest=":v0.22.1",
                reference="docker.io/defenseunicorns/zarf-agent:v0.22.1",
            ),
        ),
        (
            "ghcr.io/stefanprodan/manifests/podinfo:6.4.0",
            Image(
                host="ghcr.io",
                name="ghcr.io/stefanprodan/manifests/podinfo",
                path="stefanprodan/manifests/podinfo",
                tag="6.4.0",
                tag_or_digest=":6.4.0",
                reference="ghcr.io/stefanprodan/manifests/podinfo:6.4.0",
            ),
        ),
        (
            f"localhost:5000/busybox@{DIGEST}",
            Image(
                host="localhost:5000",
                name="localhost:5000/busybox",
                path="busybox",
                digest=DIGEST,
                tag_or_digest=f"@{DIGEST}",
                reference=f"localhost:5000/busybox@{DIGEST}",
            ),
        ),
        (
            f"nginx:1.23.3@{DIGEST}",
            Image(
                host="docker.io",
                name="docker.io/library/nginx",
                path="library/nginx",
                tag="1.23.3",
                digest=DIGEST,
                tag_or_digest=f"@{DIGEST}",
                reference=f"docker.io/library/nginx:1.23.3@{DIGEST}",
            ),
        ),
    ],
    ids=["short", "tag", "legacy-domain", "nested-path", "digest", "tag-and-digest"],
)
def test_parse_image_ref(reference: str, expected: Image) -> None:
    """Test references are normalized with the Docker Hub defaults."""
    assert parse_image_ref(reference) == expected


@pytest.mark.parametrize(
    "reference",
    [
        "NGINX",
        DIGEST,
        DIGEST.removeprefix("sha256:"),
        "bad://ghcr.io/$",
        "nginx:",
        "ghcr.io/" + "a" * 256,
    ],
    ids=["uppercase", "digest", "identifier", "bad-url", "empty-tag", "too-long"],
)
def test_parse_image_ref_invalid(reference: str) -> None:
    """Test invalid references are rejected."""
    with pytest.raises(TransformException):
        parse_image_ref(reference)


@pytest.mark.parametrize(
    ("target", "reference", "expected"),
    [
        (
            "gitlab.com/project",
            "nginx:1.23.3",
            "gitlab.com/project/library/nginx:1.23.3-zarf-3793515731",
        ),
        (
            "127.0.0.1:31999",
            "nginx",
            "127.0.0.1:31999/library/nginx:latest-zarf-3793515731",
        ),
        (
            "127.0.0.1:31999",
            "busybox",
            "127.0.0.1:31999/library/busybox:latest-zarf-2140033595",
        ),
        (
            "127.0.0.1:31999",
            "alpine",
            "127.0.0.1:31999/library/alpine:latest-zarf-1117969859",
        ),
        (
            "127.0.0.1:31999",
            "ghcr.io/stefanprodan/podinfo:6.9.0",
            "127.0.0.1:31999/stefanprodan/podinfo:6.9.0-zarf-2985051089",
        ),
        (
            "127.0.0.1:31999",
            "ghcr.io/stefanprodan/manifests/podinfo:6.4.0",
            "127.0.0.1:31999/stefanprodan/manifests/podinfo:6.4.0-zarf-2823281104",
        ),
        (
            "127.0.0.1:31999",
            f"nginx@{DIGEST}",
            f"127.0.0.1:31999/library/nginx@{DIGEST}",
        ),
        (
            "127.0.0.1:31999",
            "127.0.0.1:31999/library/nginx:latest-zarf-3793515731",
            "127.0.0.1:31999/library/nginx:latest-zarf-3793515731",
        ),
    ],
    ids=[
        "tag",
        "nginx",
        "busybox",
        "alpine",
        "podinfo",
        "manifests",
        "digest",
        "already-rehosted",
    ],
)
def test_image_transform_host(target: str, reference: str, expected: str) -> None:
    """Test images are rehosted with a checksum tag."""
    assert image_transform_host(target, reference) == expected


def test_image_transform_host_checksum() -> None:
    """Test the checksum covers the full image name."""
    assert image_transform_host("127.0.0.1:31999", "quay.io/org/app:1.0") == (
        f"127.0.0.1:31999/org/app:1.0-zarf-{get_crc_hash('quay.io/org/app')}"
    )


@pytest.mark.parametrize(
    ("target", "reference", "expected"),
    [
        ("gitlab.com/project", "nginx:1.23.3", "gitlab.com/project/library/nginx:1.23.3"),
        ("127.0.0.1:31999", "nginx", "127.0.0.1:31999/library/nginx:latest"),
        (
            "127.0.0.1:31999",
            f"ghcr.io/stefanprodan/podinfo@{DIGEST}",
            f"127.0.0.1:31999/stefanprodan/podinfo@{DIGEST}",
        ),
    ],
)
def test_image_transform_host_without_checksum(
    target: str, reference: str, expected: str
) -> None:
    """Test images are rehosted keeping their tag or digest."""
    assert image_transform_host_without_checksum(target, reference) == expected


def test_image_transform_host_invalid() -> None:
    """Test invalid references are rejected."""
    with pytest.raises(TransformException):
        image_transform_host("127.0.0.1:31999", "NGINX")
