"""
Workflow error taxonomy.

Every error carries the HTTP status code the API layer answers with, so the
same exception can be raised from a Discord callback or an HTTP handler.
"""

from typing import Dict, Optional

from constants import (
    HTTP_BAD_GATEWAY,
    HTTP_BAD_REQUEST,
    HTTP_CONFLICT,
    HTTP_INTERNAL_ERROR,
    HTTP_NOT_FOUND,
    HTTP_UNPROCESSABLE,
)


class WorkflowError(Exception):
    """Base class for errors surfaced to callers of the workflow layer."""

    status_code = HTTP_INTERNAL_ERROR

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        return {"error": self.message}


class ConfigurationError(WorkflowError):
    """Unknown application type or a missing channel mapping."""

    status_code = HTTP_INTERNAL_ERROR


class RemoteServiceError(WorkflowError):
    """The Discord API rejected a request."""

    status_code = HTTP_BAD_GATEWAY

    def __init__(self, message: str, status: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status = status
        self.body = body

    def to_dict(self) -> dict:
        return {"error": self.message, "details": self.body}


class ValidationError(WorkflowError):
    """Form-level validation failure, reported per field."""

    status_code = HTTP_UNPROCESSABLE

    def __init__(self, message: str, field_errors: Optional[Dict[str, str]] = None):
        super().__init__(message)
        self.field_errors = field_errors or {}

    @classmethod
    def from_pydantic(cls, exc, tagged: bool = False) -> "ValidationError":
        """Collect pydantic errors per field. Tagged unions prefix each location with the tag, which is dropped."""
        field_errors = {}
        for error in exc.errors():
            loc = error.get("loc", ())
            if tagged:
                loc = loc[1:]
            # Discriminator errors have no field location beyond the tag itself
            location = ".".join(str(part) for part in loc if not isinstance(part, int))
            field_errors.setdefault(location or "form", error.get("msg", "Invalid value"))
        return cls("Form validation failed", field_errors)

    def to_dict(self) -> dict:
        return {"error": self.message, "fields": self.field_errors}


class NotFoundError(WorkflowError):
    """The ticket or application no longer exists."""

    status_code = HTTP_NOT_FOUND


class SubmissionBlockedError(WorkflowError):
    """The eligibility gate refused a new submission."""

    status_code = HTTP_CONFLICT

    def __init__(self, eligibility):
        super().__init__(eligibility.message or "Submission not allowed")
        self.eligibility = eligibility

    def to_dict(self) -> dict:
        return {"error": self.message, "eligibility": self.eligibility.to_dict()}


def unknown_application_type(application_type: str) -> ConfigurationError:
    return ConfigurationError(f"Unknown application type: {application_type}", HTTP_BAD_REQUEST)
