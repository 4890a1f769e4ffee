"""Exceptions related to zarf-agent."""

__all__ = [
    "ZarfAgentException",
    "InputException",
    "TransformException",
    "OperationNotRegisteredError",
    "StateException",
]


class ZarfAgentException(Exception):
    """Generic base exception used for this library."""


class InputException(ZarfAgentException):
    """Raised when an admission object is not formatted as expected."""


class TransformException(ZarfAgentException):
    """Raised when a url or image reference cannot be rewritten."""


class OperationNotRegisteredError(ZarfAgentException):
    """Raised when a hook has no handler for the requested admission operation."""

    def __init__(self, operation: str) -> None:
        super().__init__(f"invalid operation: {operation}")
        self.operation = operation


class StateException(ZarfAgentException):
    """Raised when the cluster state cannot be loaded."""
