"""Error taxonomy for role administration and privilege resolution."""
from __future__ import annotations


class RBACError(Exception):
    """Base class for every error raised by the access-control layer."""


class ValidationError(RBACError):
    """A role specification or permission payload is malformed.

    ``errors`` holds one ``{"field": ..., "message": ...}`` dict per
    offending field so callers can surface field-level detail.
    """

    def __init__(self, errors: list[dict[str, str]]) -> None:
        self.errors = errors
        summary = "; ".join(f"{e['field']}: {e['message']}" for e in errors)
        super().__init__(summary or "Invalid input")

    @classmethod
    def single(cls, field: str, message: str) -> ValidationError:
        return cls([{"field": field, "message": message}])


class ConflictError(RBACError):
    """The requested change conflicts with current state (in-use role, etc.)."""


class ConfigurationError(RBACError):
    """Stored role data is corrupt, e.g. an inheritance cycle."""


class ForbiddenError(RBACError):
    """The actor may not perform an administrative action.

    The message never exposes the reason.
    """

    def __init__(self) -> None:
        super().__init__("Forbidden")


class NotFoundError(RBACError):
    def __init__(self, resource: str) -> None:
        self.resource = resource
        super().__init__(f"{resource} not found")
