"""Workflow error taxonomy."""

from typing import Any


class WorkflowError(Exception):
    """Base class for errors raised by workflow operations."""

    code = "workflow_error"
    http_status = 400

    def __init__(self, message: str, **extra: Any):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_dict(self) -> dict:
        return {"detail": self.message, "code": self.code, **self.extra}


class NotFound(WorkflowError):
    """Evaluation, assignment or section reference does not exist."""

    code = "not_found"
    http_status = 404


class Unauthorized(WorkflowError):
    """The caller lacks the capability for the requested action."""

    code = "unauthorized"
    http_status = 403


class InvalidTransition(WorkflowError):
    """Transition is not legal from the section's current status."""

    code = "invalid_transition"
    http_status = 409


class ValidationError(WorkflowError):
    """Required input is missing or malformed."""

    code = "validation_error"
    http_status = 422


class AssignmentConflict(ValidationError):
    """Two users would actively hold the same single-owner section."""

    code = "assignment_conflict"
    http_status = 409


class ConflictError(WorkflowError):
    """Concurrent mutation detected on commit (version mismatch)."""

    code = "conflict"
    http_status = 409
