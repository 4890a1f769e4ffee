"""Helpers for parsing and comparing urls the way the mirror servers see them.

The rewritten urls are consumed by git, helm, flux and the OCI tooling, all of
which reject malformed urls that `urllib.parse` would happily accept. The
checks here follow the stricter grammar those clients use so that a bad
server address fails at transform time instead of inside the cluster.
"""

import logging
import re
import string
import zlib
from urllib.parse import SplitResult, urlsplit

from zarf_agent.exceptions import TransformException

__all__ = [
    "get_crc_hash",
    "parse_url",
    "hostname",
    "hostnames_match",
]

_LOGGER = logging.getLogger(__name__)

_SCHEME_CHARS = set(string.ascii_letters + string.digits + "+-.")
_HOST_CHARS = set(string.ascii_letters + string.digits + "-._~!$&'()*+,;=:[]<>\"%")
_PERCENT_ESCAPE = re.compile(r"%(?![0-9a-fA-F]{2})")


def get_crc_hash(text: str) -> int:
    """Return the IEEE CRC32 checksum of the text."""
    return zlib.crc32(text.encode("utf-8"))


def _split_scheme(raw: str) -> tuple[str, str]:
    """Split a leading scheme from the url, returning an empty scheme if absent."""
    for i, char in enumerate(raw):
        if char in string.ascii_letters:
            continue
        if char in _SCHEME_CHARS:
            if i == 0:
                return "", raw
            continue
        if char == ":":
            if i == 0:
                raise TransformException(f"parse {raw!r}: missing protocol scheme")
            return raw[:i], raw[i + 1 :]
        return "", raw
    return "", raw


def _check_port(raw: str, port: str) -> None:
    if not port:
        return
    if not port.startswith(":") or any(c not in string.digits for c in port[1:]):
        raise TransformException(f"parse {raw!r}: invalid port {port!r} after host")


def _check_authority(raw: str, authority: str) -> None:
    host = authority.rpartition("@")[2]
    if host.startswith("["):
        end = host.find("]")
        if end < 0:
            raise TransformException(f"parse {raw!r}: missing ']' in host")
        _check_port(raw, host[end + 1 :])
    elif (i := host.rfind(":")) >= 0:
        _check_port(raw, host[i:])
    if any(char not in _HOST_CHARS and ord(char) < 0x80 for char in host):
        raise TransformException(f"parse {raw!r}: invalid character in host name")
    if _PERCENT_ESCAPE.search(host):
        raise TransformException(f"parse {raw!r}: invalid URL escape in host")


def parse_url(raw: str) -> SplitResult:
    """Parse a url, raising TransformException for urls a strict client rejects."""
    if any(ord(char) < 0x20 or ord(char) == 0x7F for char in raw):
        raise TransformException(f"parse {raw!r}: invalid control character in URL")
    scheme, rest = _split_scheme(raw.partition("#")[0])
    if not scheme and not rest.startswith("/"):
        segment = rest.partition("/")[0]
        if ":" in segment:
            raise TransformException(
                f"parse {raw!r}: first path segment in URL cannot contain colon"
            )
    if scheme and rest.startswith("//"):
        authority = re.split(r"[/?]", rest[2:], maxsplit=1)[0]
        _check_authority(raw, authority)
    try:
        return urlsplit(raw)
    except ValueError as err:
        raise TransformException(f"parse {raw!r}: {err}") from err


def hostname(url: SplitResult) -> str:
    """Return the host of a parsed url without port, brackets or user info."""
    host = url.netloc.rpartition("@")[2]
    if host.startswith("["):
        return host[1 : host.find("]")]
    if (i := host.rfind(":")) >= 0:
        return host[:i]
    return host


def hostnames_match(url1: str, url2: str) -> bool:
    """Return True when both urls point at the same hostname."""
    try:
        parsed1 = parse_url(url1)
        parsed2 = parse_url(url2)
    except TransformException as err:
        raise TransformException(
            f"failed to complete hostname matching: {err}"
        ) from err
    _LOGGER.debug("Comparing hostnames of %s and %s", url1, url2)
    return hostname(parsed1) == hostname(parsed2)
