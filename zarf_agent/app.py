"""The HTTP application that hosts the admission webhooks and the proxy.

Every hook is served under `/mutate/<resource>`. Any other path is handed
to the reverse proxy, so the catch-all route must be registered last.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
import logging

import httpx
from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

from .admission import serve
from .hooks import new_hooks
from .proxy import new_proxy_handler
from .state import StateProvider

__all__ = [
    "create_app",
]

_LOGGER = logging.getLogger(__name__)


ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def create_app(
    provider: StateProvider, client: httpx.AsyncClient | None = None
) -> FastAPI:
    """Create the application bound to the state provider.

    The proxy sends upstream requests with `client`, which is closed when the
    application shuts down.
    """
    if client is None:
        client = httpx.AsyncClient(timeout=None)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        try:
            yield
        finally:
            await client.aclose()

    app = FastAPI(
        title="zarf-agent",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    @app.get("/healthz", response_class=PlainTextResponse)
    async def healthz() -> str:
        return "ok"

    for name, hook in new_hooks(provider).items():
        _LOGGER.debug("Registering admission hook /mutate/%s", name)
        app.add_api_route(
            f"/mutate/{name}",
            serve(hook),
            methods=ALL_METHODS,
            include_in_schema=False,
        )

    app.add_api_route(
        "/{path:path}",
        new_proxy_handler(provider, client),
        methods=ALL_METHODS,
        include_in_schema=False,
    )
    return app
