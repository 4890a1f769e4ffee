"""HTTP handler that answers Kubernetes AdmissionReview requests with a hook.

The handler always fails closed: a review that cannot be decoded is rejected
with a 4xx and any error raised by the hook is returned as a 500 so the API
server denies the object instead of admitting it unmutated.
"""

import base64
from collections.abc import Awaitable, Callable
import json
import logging
from typing import Any

from fastapi import Request, Response
from fastapi.responses import JSONResponse, PlainTextResponse

from .context import admission_context
from .exceptions import InputException, ZarfAgentException
from .operations import AdmissionRequest, Hook, Result

__all__ = [
    "serve",
]

_LOGGER = logging.getLogger(__name__)


ADMISSION_API_VERSION = "admission.k8s.io/v1"
ADMISSION_KIND = "AdmissionReview"
JSON_CONTENT_TYPE = "application/json"
PATCH_TYPE_JSON_PATCH = "JSONPatch"
STATUS_REASON_INTERNAL_ERROR = "InternalError"

ERR_INVALID_METHOD = "invalid method only POST requests are allowed"
ERR_INVALID_TYPE = "only content type 'application/json' is supported"
ERR_COULD_NOT_DESERIALIZE = "could not deserialize request: {}"
ERR_NIL_REQUEST = "malformed admission review: request is nil"

Endpoint = Callable[[Request], Awaitable[Response]]


def _review(response: dict[str, Any]) -> dict[str, Any]:
    return {
        "apiVersion": ADMISSION_API_VERSION,
        "kind": ADMISSION_KIND,
        "response": response,
    }


def encode_response(uid: str, result: Result) -> dict[str, Any]:
    """Return the AdmissionReview answering a request with the hook result."""
    response: dict[str, Any] = {
        "uid": uid,
        "allowed": result.allowed,
        "status": {"message": result.message},
    }
    if result.patch_ops:
        patch = json.dumps([op.to_json_dict() for op in result.patch_ops])
        response["patch"] = base64.b64encode(patch.encode("utf-8")).decode("ascii")
        response["patchType"] = PATCH_TYPE_JSON_PATCH
    return _review(response)


def encode_error(err: Exception) -> dict[str, Any]:
    """Return the AdmissionReview reporting an internal error."""
    return _review(
        {
            "status": {
                "message": str(err),
                "status": STATUS_REASON_INTERNAL_ERROR,
            }
        }
    )


def serve(hook: Hook) -> Endpoint:
    """Return an endpoint that runs the hook for each AdmissionReview it receives."""

    async def handle(request: Request) -> Response:
        if request.method != "POST":
            return PlainTextResponse(ERR_INVALID_METHOD, status_code=405)
        content_type = request.headers.get("content-type", "")
        if content_type.split(";")[0].strip().lower() != JSON_CONTENT_TYPE:
            return PlainTextResponse(ERR_INVALID_TYPE, status_code=400)

        body = await request.body()
        try:
            review = json.loads(body)
        except ValueError as err:
            return PlainTextResponse(
                ERR_COULD_NOT_DESERIALIZE.format(err), status_code=400
            )
        if not isinstance(review, dict) or review.get("request") is None:
            return PlainTextResponse(ERR_NIL_REQUEST, status_code=400)
        try:
            admission_request = AdmissionRequest.parse_doc(review["request"])
        except InputException as err:
            return PlainTextResponse(
                ERR_COULD_NOT_DESERIALIZE.format(err), status_code=400
            )

        path = request.url.path
        with admission_context(path, admission_request.uid):
            try:
                result = await hook.execute(admission_request)
            except ZarfAgentException as err:
                _LOGGER.error(
                    "Unable to bind the webhook handler for %s: %s", path, err
                )
                return JSONResponse(encode_error(err), status_code=500)
            _LOGGER.info(
                "Webhook execution complete for %s, operation %s, allowed %s",
                path,
                admission_request.operation.value,
                result.allowed,
            )
        return JSONResponse(encode_response(admission_request.uid, result))

    return handle
