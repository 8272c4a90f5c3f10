"""Domain error taxonomy.

Services raise these; the HTTP layer turns them into a stable
``{"error": kind, "detail": message}`` body with the matching status code.
"""

from typing import Any, Dict, Optional


class POSError(Exception):
    """Base class for errors surfaced to API callers."""

    kind = "error"
    status_code = 400

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.kind, "detail": self.message}
        if self.context:
            body["context"] = self.context
        return body


class ValidationError(POSError):
    """Malformed or missing input."""

    kind = "validation_error"
    status_code = 422


class NotFound(POSError):
    kind = "not_found"
    status_code = 404

    def __init__(self, entity: str, entity_id: Optional[Any] = None):
        message = f"{entity} not found" if entity_id is None else f"{entity} {entity_id} not found"
        super().__init__(message, entity=entity)


class Conflict(POSError):
    """The request violates a uniqueness rule or the current state."""

    kind = "conflict"
    status_code = 409


class InvalidTransition(Conflict):
    """A state machine transition was attempted out of order."""

    kind = "invalid_transition"

    def __init__(self, entity: str, current: str, target: str):
        super().__init__(
            f"Cannot move {entity} from '{current}' to '{target}'",
            current=current,
            target=target,
        )


class PermissionDenied(POSError):
    kind = "permission_denied"
    status_code = 403


class ApprovalRequired(POSError):
    """The action needs sign-off from a staff member allowed to approve it."""

    kind = "approval_required"
    status_code = 403
