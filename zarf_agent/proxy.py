"""Transparent reverse proxy that sends package manager traffic to the mirrors.

Requests are classified by the client `User-Agent`, given the credentials of
the matching internal server and rewritten with the same transforms the
admission hooks use. Responses are patched so that redirects and links in
text bodies point back through the proxy with the no-transform marker, which
makes the follow-up request pass through without being rewritten again.

A url that cannot be rewritten is forwarded unchanged, since failing live git
or package traffic is worse than reaching the original location.
"""

import base64
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
import enum
import logging

import httpx
from fastapi import Request, Response
from fastapi.background import BackgroundTasks
from fastapi.responses import PlainTextResponse, StreamingResponse

from . import transform
from .exceptions import StateException, TransformException
from .state import State, StateProvider

__all__ = [
    "ClientKind",
    "client_kind",
    "new_proxy_handler",
    "rewrite_location",
    "rewrite_body",
]

_LOGGER = logging.getLogger(__name__)


FORWARDED_HOST_HEADER = "x-forwarded-host"
FORWARDED_FOR_HEADER = "x-forwarded-for"

# Headers that apply to a single connection and are never forwarded.
HOP_BY_HOP_HEADERS = frozenset(
    [
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailer",
        "trailers",
        "transfer-encoding",
        "upgrade",
    ]
)
TEXT_CONTENT_TYPES = ("text", "application/json", "application/xml")
BODY_HEADERS = ("content-length", "transfer-encoding")

Endpoint = Callable[[Request], Awaitable[Response]]


class ClientKind(enum.Enum):
    """The ecosystem of the client making a proxied request."""

    GIT = "git"
    PIP = "pip"
    NPM = "npm"
    GENERIC = "generic"


_USER_AGENT_PREFIXES = [
    (("git",), ClientKind.GIT),
    (("pip", "twine"), ClientKind.PIP),
    (("npm", "pnpm", "yarn", "bun"), ClientKind.NPM),
]


def client_kind(user_agent: str) -> ClientKind:
    """Classify a request by the prefix of its User-Agent."""
    for prefixes, kind in _USER_AGENT_PREFIXES:
        if user_agent.startswith(prefixes):
            return kind
    return ClientKind.GENERIC


def _basic_auth(username: str, password: str) -> str:
    token = base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("ascii")
    return f"Basic {token}"


def authorization(kind: ClientKind, state: State) -> str:
    """Return the Authorization header for the server the client is sent to."""
    if kind == ClientKind.GIT:
        git_server = state.git_server
        return _basic_auth(git_server.push_username, git_server.push_password)
    artifact_server = state.artifact_server
    if kind == ClientKind.NPM:
        return f"Bearer {artifact_server.push_token}"
    return _basic_auth(artifact_server.push_username, artifact_server.push_token)


@dataclass(frozen=True)
class IncomingRequest:
    """The parts of a client request used to compute the upstream url."""

    scheme: str
    host: str
    path: str
    """The raw, still percent-encoded, request path."""

    query: str

    @property
    def request_uri(self) -> str:
        if self.query:
            return f"{self.path}?{self.query}"
        return self.path

    @property
    def url(self) -> str:
        return f"{self.scheme}://{self.host}{self.request_uri}"


def target_url(kind: ClientKind, state: State, incoming: IncomingRequest) -> str:
    """Return the upstream url for a request, raising TransformException on failure."""
    if incoming.path.startswith(transform.NO_TRANSFORM):
        address = (
            state.git_server.address
            if kind == ClientKind.GIT
            else state.artifact_server.address
        )
        url = transform.no_transform_target(address, incoming.path)
        if incoming.query:
            url = f"{url}?{incoming.query}"
        return url
    if kind == ClientKind.GIT:
        return transform.git_url(
            state.git_server.address, incoming.url, state.git_server.push_username
        )
    artifact_address = state.artifact_server.address
    if kind == ClientKind.PIP:
        return transform.pip_transform_url(artifact_address, incoming.url)
    if kind == ClientKind.NPM:
        return transform.npm_transform_url(artifact_address, incoming.url)
    return transform.gen_transform_url(artifact_address, incoming.url)


def rewrite_location(location: str, forwarded_host: str) -> str:
    """Send a redirect back through the proxy, marked to skip rewriting."""
    parsed = transform.parse_url(location)
    return parsed._replace(
        netloc=forwarded_host, path=transform.NO_TRANSFORM + parsed.path
    ).geturl()


def rewrite_body(body: bytes, target_prefix: str, forwarded_prefix: str) -> bytes:
    """Replace links to the upstream server with links through the proxy."""
    return body.replace(target_prefix.encode("utf-8"), forwarded_prefix.encode("utf-8"))


def _incoming(request: Request) -> IncomingRequest:
    raw_path = request.scope.get("raw_path")
    # Some servers include the query string in raw_path.
    path = raw_path.decode("latin-1").partition("?")[0] if raw_path else ""
    path = path or request.url.path
    return IncomingRequest(
        scheme=request.url.scheme,
        host=request.headers.get("host", request.url.netloc),
        path=path,
        query=request.url.query,
    )


def _upstream_headers(
    request: Request, forwarded_host: str, auth: str
) -> list[tuple[str, str]]:
    headers = [
        (key, value)
        for key, value in request.headers.items()
        if key not in HOP_BY_HOP_HEADERS
        and key not in ("host", "accept-encoding", "authorization")
    ]
    headers.append((FORWARDED_HOST_HEADER, forwarded_host))
    if request.client is not None:
        headers.append((FORWARDED_FOR_HEADER, request.client.host))
    headers.append(("authorization", auth))
    return headers


def _response_headers(
    upstream: httpx.Response, exclude: tuple[str, ...]
) -> list[tuple[bytes, bytes]]:
    return [
        (key.lower().encode("latin-1"), value.encode("latin-1"))
        for key, value in upstream.headers.multi_items()
        if key.lower() not in HOP_BY_HOP_HEADERS and key.lower() not in exclude
    ]


def new_proxy_handler(provider: StateProvider, client: httpx.AsyncClient) -> Endpoint:
    """Return an endpoint that proxies any request to the matching mirror."""

    async def handle(request: Request) -> Response:
        incoming = _incoming(request)
        forwarded_host = incoming.host
        user_agent = request.headers.get("user-agent", "")
        kind = client_kind(user_agent)
        _LOGGER.debug(
            "Proxying %s %s for %s client", request.method, incoming.url, kind.value
        )

        try:
            state = await provider.load_state()
        except StateException as err:
            _LOGGER.error("Unable to load the state for the proxy: %s", err)
            return PlainTextResponse(str(err), status_code=502)

        try:
            url = target_url(kind, state, incoming)
        except TransformException as err:
            _LOGGER.warning(
                "Unable to transform %s, forwarding the original url: %s",
                incoming.url,
                err,
            )
            url = incoming.url
        _LOGGER.debug("Rewrote %s to %s", incoming.url, url)

        content = None
        if any(key in request.headers for key in BODY_HEADERS):
            content = request.stream()
        upstream_request = client.build_request(
            request.method,
            url,
            headers=_upstream_headers(
                request, forwarded_host, authorization(kind, state)
            ),
            content=content,
        )
        try:
            upstream = await client.send(upstream_request, stream=True)
        except httpx.HTTPError as err:
            _LOGGER.warning("Upstream request to %s failed: %s", url, err)
            return PlainTextResponse(str(err), status_code=502)

        return await modify_response(upstream, incoming.scheme, forwarded_host)

    return handle


async def modify_response(
    upstream: httpx.Response, scheme: str, forwarded_host: str
) -> Response:
    """Rewrite redirects and text bodies of an upstream response for the client."""
    exclude: tuple[str, ...] = ()
    location = None
    if upstream.is_redirect and (location := upstream.headers.get("location")):
        try:
            location = rewrite_location(location, forwarded_host)
            exclude = ("location",)
        except TransformException as err:
            _LOGGER.warning("Unable to rewrite redirect %s: %s", location, err)
            location = None

    content_type = upstream.headers.get("content-type", "")
    if content_type.startswith(TEXT_CONTENT_TYPES):
        try:
            body = await upstream.aread()
        finally:
            await upstream.aclose()
        upstream_url = upstream.request.url
        target_prefix = f"{upstream_url.scheme}://{upstream_url.netloc.decode('ascii')}"
        forwarded_prefix = f"{scheme}://{forwarded_host}{transform.NO_TRANSFORM}"
        body = rewrite_body(body, target_prefix, forwarded_prefix)
        response: Response = Response(content=body, status_code=upstream.status_code)
        exclude += ("content-length", "content-encoding")
    elif upstream.is_stream_consumed:
        response = Response(
            content=upstream.content, status_code=upstream.status_code
        )
        exclude += ("content-length", "content-encoding")
    else:
        background = BackgroundTasks()
        background.add_task(upstream.aclose)
        response = StreamingResponse(
            upstream.aiter_raw(),
            status_code=upstream.status_code,
            background=background,
        )
    response.raw_headers.extend(_response_headers(upstream, exclude))
    if location is not None:
        response.raw_headers.append((b"location", location.encode("latin-1")))
    return response
