"""Test helpers for the resource hooks."""

from typing import Any

from zarf_agent.operations import AdmissionRequest, Operation, Result


def admission_request(
    obj: dict[str, Any], operation: Operation = Operation.CREATE
) -> AdmissionRequest:
    """Wrap an object in an admission request."""
    return AdmissionRequest(uid="test-uid", operation=operation, object=obj)


def patches(result: Result) -> list[dict[str, Any]]:
    """Return the JSON patch of a result as plain dictionaries."""
    return [op.to_json_dict() for op in result.patch_ops]
