"""Domain errors raised by the access layer and the mutation pipeline.

Each error carries the HTTP status it maps to. API exception handlers
render them as {"error": message, "details": [...]}.
"""

from typing import Any


class AccessError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code: int = 500
    default_message: str = "Internal server error"

    def __init__(self, message: str | None = None, details: list[Any] | None = None) -> None:
        self.message = message or self.default_message
        self.details = details or []
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.message}
        if self.details:
            body["details"] = self.details
        return body


class Unauthenticated(AccessError):
    """No caller identity. Never carries payload state."""

    status_code = 401
    default_message = "Unauthorized"


class PermissionDenied(AccessError):
    """Module/action not granted."""

    status_code = 403
    default_message = "Forbidden"


class FieldPermissionDenied(PermissionDenied):
    """Payload touches fields outside the edit mask."""

    def __init__(self, fields: list[str]) -> None:
        self.fields = fields
        super().__init__(
            f"You don't have permission to edit these fields: {', '.join(fields)}",
            details=fields,
        )


class RecordAccessDenied(PermissionDenied):
    """Record visibility rule denies the caller. Never echoes the record."""

    default_message = "You don't have access to this record"


class NotFound(AccessError):
    status_code = 404
    default_message = "Not found"


class ValidationFailed(AccessError):
    """Schema-level rejection; details enumerate per-field errors."""

    status_code = 400
    default_message = "Validation failed"


class ConflictState(AccessError):
    """Domain invariant violation (duplicate key, dependents, protected role)."""

    status_code = 409
    default_message = "Conflict"

    def __init__(
        self,
        message: str | None = None,
        details: list[Any] | None = None,
        *,
        status_code: int = 409,
    ) -> None:
        super().__init__(message, details)
        self.status_code = status_code
