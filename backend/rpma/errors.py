"""Error taxonomy shared by the workflow engine and its collaborators."""

# purpose: give routes one exception hierarchy to translate into HTTP responses
# status: production

from __future__ import annotations

from typing import Any


class WorkflowError(RuntimeError):
    """Base error for intervention workflow operations."""

    status_code = 500
    code = "internal"

    def to_detail(self) -> dict[str, Any]:
        return {"code": self.code, "message": str(self)}


class NotFoundError(WorkflowError):
    """Raised when an intervention or step cannot be located."""

    status_code = 404
    code = "not_found"


class AuthenticationError(WorkflowError):
    """Raised when a session token is missing, unknown, expired or revoked."""

    status_code = 401
    code = "authentication"


class AuthorizationError(WorkflowError):
    """Raised when the caller may not touch the requested intervention."""

    status_code = 403
    code = "authorization"


class WorkflowValidationError(WorkflowError):
    """Raised when a gating rule blocks a transition.

    ``rule`` identifies which check failed and ``step_number``/``field`` point
    at the offending entity so clients can render an actionable message.
    """

    status_code = 400
    code = "validation"

    def __init__(
        self,
        message: str,
        *,
        rule: str,
        step_number: int | None = None,
        field: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.rule = rule
        self.step_number = step_number
        self.field = field
        self.context = context or {}

    def to_detail(self) -> dict[str, Any]:
        detail = super().to_detail()
        detail.update(
            {
                "rule": self.rule,
                "step_number": self.step_number,
                "field": self.field,
                "context": self.context,
            }
        )
        return detail


class ConflictError(WorkflowError):
    """Raised when a concurrent writer updated the same row first."""

    status_code = 409
    code = "conflict"


class PersistenceTimeoutError(WorkflowError):
    """Raised when the database does not answer within the allotted time."""

    status_code = 504
    code = "timeout"


class DatabaseError(WorkflowError):
    """Raised for storage failures not attributable to caller input."""

    status_code = 500
    code = "internal"

    def to_detail(self) -> dict[str, Any]:
        # storage details stay in the logs
        return {"code": self.code, "message": "Internal error"}
