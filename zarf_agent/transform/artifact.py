"""Rewrite package manager urls onto the internal artifact server.

The artifact server address is the package API base of the internal server,
e.g. `http://gitea:3000/api/packages/zarf-git-user`, and each ecosystem is
served from a sub path of it (`/npm`, `/pypi`, `/generic`).
"""

import logging
import re
from urllib.parse import urlunsplit

from zarf_agent.exceptions import TransformException

from .url import get_crc_hash, parse_url

__all__ = [
    "NO_TRANSFORM",
    "no_transform_target",
    "npm_transform_url",
    "pip_transform_url",
    "gen_transform_url",
]

_LOGGER = logging.getLogger(__name__)

NO_TRANSFORM = "/zarf-3xx-no-transform"
"""Path prefix marking a url that was already rewritten and must pass through."""

# Package paths follow the routes of the gitea package registry API.
NPM_URL_REGEX = re.compile(
    r"^(?P<proto>[a-z]+:\/\/)(?P<hostPath>.+?)"
    r"(?P<npmPath>(\/(@[\w\.\-\~]+(\/|%2[fF]))?[\w\.\-\~]+(\/-\/([\w\.\-\~]+\/)?[\w\.\-\~]+\.[\w]+)?(\/-rev\/.+)?)"
    r"|(\/-\/(npm|v1|user|package)\/.+))$",
    re.ASCII,
)
PIP_URL_REGEX = re.compile(
    r"^(?P<proto>[a-z]+:\/\/)(?P<hostPath>.+?)"
    r"(?P<pipPath>\/((simple|files\/)[\/\w\-\.\?\=&%#]*?)?)?$",
    re.ASCII,
)
GENERIC_URL_REGEX = re.compile(
    r"^(?P<proto>[a-z]+:\/\/)(?P<host>[a-zA-Z0-9\-\.]+)(?P<port>:[0-9]+?)?"
    r"(?P<startPath>\/[\w\-\.+~%]+?\/[\w\-\.+~%]+?)?(?P<midPath>\/.+?)??"
    r"(?P<version>\/[\w\-\.+~%]+?)??(?P<fileName>\/[\w\-\.+~%]*)?"
    r"(?P<query>[\w\-\.\?\=,;+~!$'*&%#()\[\]]*?)?$",
    re.ASCII,
)


def no_transform_target(address: str, path: str) -> str:
    """Point an already rewritten path back at the server address unchanged."""
    target = parse_url(address)
    if path.startswith(NO_TRANSFORM):
        path = path[len(NO_TRANSFORM) :]
    return urlunsplit(target._replace(path=path))


def _transform_registry_path(
    target_base_url: str,
    source_url: str,
    regex: re.Pattern[str],
    path_group: str,
    registry_type: str,
) -> str:
    if not (match := regex.match(source_url)):
        raise TransformException(
            f"unable to extract the {path_group} from the url {source_url}"
        )
    output = f"{target_base_url}/{registry_type}{match.group(path_group) or ''}"
    parse_url(output)
    _LOGGER.debug("Transformed %s url %s to %s", registry_type, source_url, output)
    return output


def npm_transform_url(target_base_url: str, source_url: str) -> str:
    """Rewrite an npm registry url onto the artifact server npm endpoint."""
    return _transform_registry_path(
        target_base_url, source_url, NPM_URL_REGEX, "npmPath", "npm"
    )


def pip_transform_url(target_base_url: str, source_url: str) -> str:
    """Rewrite a python package index url onto the artifact server pypi endpoint."""
    return _transform_registry_path(
        target_base_url, source_url, PIP_URL_REGEX, "pipPath", "pypi"
    )


def gen_transform_url(target_base_url: str, source_url: str) -> str:
    """Rewrite an arbitrary download url into a generic package url.

    The result has the form `<base>/generic/<package>-<crc>/<version>/<file>`.
    The checksum covers the host and leading path but not the protocol, port
    or file name, so files served from the same folder share a package.
    Query strings and fragments are dropped.
    """
    if not (match := GENERIC_URL_REGEX.match(source_url)):
        raise TransformException(
            f"unable to extract the genericPath from the url {source_url}"
        )
    groups = {key: value or "" for key, value in match.groupdict().items()}

    file_name = groups["fileName"].replace("/", "") or groups["host"]
    sanitized = f"{groups['host']}{groups['startPath']}{groups['midPath']}"
    package_name = groups["startPath"].replace("/", "") or file_name
    version = groups["version"].replace("/", "") or file_name

    output = (
        f"{target_base_url}/generic/{package_name}-{get_crc_hash(sanitized)}"
        f"/{version}/{file_name}"
    )
    parsed = parse_url(output)
    output = urlunsplit(parsed._replace(query="", fragment=""))
    _LOGGER.debug("Transformed generic url %s to %s", source_url, output)
    return output
