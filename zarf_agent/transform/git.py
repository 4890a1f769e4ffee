"""Rewrite git repository urls onto the internal git server.

Repositories are mirrored under the push user of the internal git server with
a checksum of the original location appended to the repository name, so two
upstream repositories with the same name never collide.
"""

import logging
import re

from zarf_agent.exceptions import TransformException

from .url import get_crc_hash, parse_url

__all__ = [
    "git_url",
    "git_url_split_ref",
    "git_url_to_repo_name",
    "git_url_to_folder_name",
    "mutate_git_urls_in_text",
]

_LOGGER = logging.getLogger(__name__)

GIT_URL_REGEX = re.compile(
    r"^(?P<proto>[a-z]+:\/\/)(?P<hostPath>.+?)\/(?P<repo>[\w\-\.]+?)?(?P<git>\.git)?(\/)?"
    r"(?P<atRef>@(?P<force>\+)?(?P<ref>[\/\+\w\-\.]+))?"
    r"(?P<gitPath>\/(?P<gitPathId>info\/.*|git-upload-pack|git-receive-pack))?$",
    re.ASCII,
)

# Finds every `<proto>://<host>/<path>.git` occurrence inside a blob of text.
GIT_URL_IN_TEXT_REGEX = re.compile(r"[a-z]+:\/\/[^\/]+\/(.*\.git)")


def _match(source_url: str, action: str) -> dict[str, str]:
    if not (match := GIT_URL_REGEX.match(source_url)):
        raise TransformException(
            f"unable to get extract the {action} from the url {source_url}"
        )
    return {key: value or "" for key, value in match.groupdict().items()}


def git_url_split_ref(source_url: str) -> tuple[str, str]:
    """Split a git url into the url without its `@ref` suffix and the ref."""
    parts = _match(source_url, "source url and ref")
    url = f"{parts['proto']}{parts['hostPath']}/{parts['repo']}{parts['git']}"
    return url, parts["ref"]


def git_url_to_repo_name(source_url: str) -> str:
    """Return the repository name used on the internal git server.

    The protocol and `.git` suffix are excluded from the checksum so that
    `https://host/repo.git` and `http://host/repo` resolve to the same mirror.
    """
    parts = _match(source_url, "repo name")
    sanitized = f"{parts['hostPath']}/{parts['repo']}"
    return f"{parts['repo']}-{get_crc_hash(sanitized)}"


def git_url_to_folder_name(source_url: str) -> str:
    """Return the local folder name for a repository, distinct per ref."""
    parts = _match(source_url, "folder name")
    full_url = (
        f"{parts['proto']}{parts['hostPath']}/{parts['repo']}"
        f"{parts['git']}{parts['atRef']}"
    )
    return f"{parts['repo']}-{get_crc_hash(full_url)}"


def git_url(target_base_url: str, source_url: str, push_user: str) -> str:
    """Rewrite a git url to point at the repository mirror on the target server."""
    repo_name = git_url_to_repo_name(source_url)
    parts = _match(source_url, "airgap target url")
    output = (
        f"{target_base_url}/{push_user}/{repo_name}{parts['git']}{parts['gitPath']}"
    )
    parse_url(output)
    _LOGGER.debug("Transformed git url %s to %s", source_url, output)
    return output


def mutate_git_urls_in_text(target_base_url: str, text: str, push_user: str) -> str:
    """Rewrite every git url found in the text, leaving unparseable ones as-is."""

    def replace(match: re.Match[str]) -> str:
        try:
            return git_url(target_base_url, match.group(0), push_user)
        except TransformException:
            _LOGGER.warning(
                "Unable to transform the git url, using the original url we have: %s",
                match.group(0),
            )
            return match.group(0)

    return GIT_URL_IN_TEXT_REGEX.sub(replace, text)
