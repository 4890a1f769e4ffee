"""Data model shared by the admission server and the resource hooks.

A `Hook` binds an async handler to each admission operation it supports.
Handlers receive an `AdmissionRequest` and return a `Result` with the JSON
patch to apply to the object.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
import enum
import logging
from typing import Any

from mashumaro import DataClassDictMixin, field_options

from .exceptions import InputException, OperationNotRegisteredError

__all__ = [
    "Operation",
    "GroupVersionKind",
    "AdmissionRequest",
    "PatchOperation",
    "Result",
    "Hook",
    "add_patch_operation",
    "replace_patch_operation",
]

_LOGGER = logging.getLogger(__name__)


class Operation(str, enum.Enum):
    """An admission operation performed on a resource."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    CONNECT = "CONNECT"


@dataclass(frozen=True)
class GroupVersionKind(DataClassDictMixin):
    """The fully qualified kind of the object under review."""

    group: str = ""
    version: str = ""
    kind: str = ""


@dataclass(frozen=True)
class AdmissionRequest(DataClassDictMixin):
    """The request portion of an AdmissionReview."""

    uid: str
    """Identifier of the review, echoed back in the response."""

    operation: Operation
    """The operation being performed on the object."""

    kind: GroupVersionKind = field(default_factory=GroupVersionKind)

    name: str = ""

    namespace: str = ""

    object: dict[str, Any] = field(default_factory=dict)
    """The object being admitted."""

    old_object: dict[str, Any] | None = field(
        metadata=field_options(alias="oldObject"), default=None
    )
    """The existing object on update and delete operations."""

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "AdmissionRequest":
        """Parse the request from an AdmissionReview."""
        if not isinstance(doc, dict):
            raise InputException(f"Invalid {cls.__name__} expected a mapping: {doc}")
        if not (uid := doc.get("uid")):
            raise InputException(f"Invalid {cls.__name__} missing uid: {doc}")
        try:
            operation = Operation(doc.get("operation"))
        except ValueError as err:
            raise InputException(
                f"Invalid {cls.__name__} unknown operation: {doc.get('operation')}"
            ) from err
        kind = doc.get("kind") or {}
        if not isinstance(kind, dict):
            raise InputException(f"Invalid {cls.__name__} kind is not a mapping: {doc}")
        obj = doc.get("object") or {}
        if not isinstance(obj, dict):
            raise InputException(
                f"Invalid {cls.__name__} object is not a mapping: {doc}"
            )
        return cls(
            uid=uid,
            operation=operation,
            kind=GroupVersionKind(
                group=kind.get("group", ""),
                version=kind.get("version", ""),
                kind=kind.get("kind", ""),
            ),
            name=doc.get("name", ""),
            namespace=doc.get("namespace", ""),
            object=obj,
            old_object=doc.get("oldObject"),
        )


@dataclass(frozen=True)
class PatchOperation:
    """A single RFC 6902 JSON patch operation."""

    op: str
    """One of add, remove, replace, copy or move."""

    path: str
    """JSON pointer to the target location."""

    value: Any = None

    from_: str | None = None
    """JSON pointer to the source location of copy and move operations."""

    def to_json_dict(self) -> dict[str, Any]:
        """Return the RFC 6902 representation of the operation."""
        data: dict[str, Any] = {"op": self.op, "path": self.path}
        if self.from_ is not None:
            data["from"] = self.from_
        if self.op in ("add", "replace", "test"):
            data["value"] = self.value
        return data


def add_patch_operation(path: str, value: Any) -> PatchOperation:
    """Return an `add` operation for the path."""
    return PatchOperation(op="add", path=path, value=value)


def replace_patch_operation(path: str, value: Any) -> PatchOperation:
    """Return a `replace` operation for the path."""
    return PatchOperation(op="replace", path=path, value=value)


@dataclass(frozen=True)
class Result:
    """The outcome of running a hook against an admission request."""

    allowed: bool = True
    message: str = ""
    patch_ops: tuple[PatchOperation, ...] = ()


HookFunc = Callable[[AdmissionRequest], Awaitable[Result]]


@dataclass(frozen=True, kw_only=True)
class Hook:
    """The handlers registered for one resource kind, keyed by operation."""

    create: HookFunc | None = None
    update: HookFunc | None = None
    delete: HookFunc | None = None
    connect: HookFunc | None = None

    async def execute(self, request: AdmissionRequest) -> Result:
        """Run the handler registered for the request operation."""
        handler = {
            Operation.CREATE: self.create,
            Operation.UPDATE: self.update,
            Operation.DELETE: self.delete,
            Operation.CONNECT: self.connect,
        }.get(request.operation)
        if handler is None:
            raise OperationNotRegisteredError(request.operation.value)
        return await handler(request)
