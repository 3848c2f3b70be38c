"""
Exception hierarchy for the catalog core.

Every error raised by a service carries a machine-readable code and the
HTTP status the request layer should answer with:

    from catalog.exceptions import NotFound

    raise NotFound("Book", book_id)
"""

from typing import Any, Dict, Optional


class LibraryError(Exception):
    """
    Base exception for catalog errors.

    Attributes:
        code: Machine-readable error code (e.g. "NOT_FOUND")
        message: Human-readable error message
        status_code: HTTP status code to return
        details: Additional error details
    """

    code: str = "INTERNAL_ERROR"
    message: str = "An unexpected error occurred"
    status_code: int = 500

    def __init__(
        self,
        message: Optional[str] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        if message:
            self.message = message
        if code:
            self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert the exception to the API error envelope."""
        payload: Dict[str, Any] = {
            "success": False,
            "error": self.message,
            "code": self.code,
        }
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationFailure(LibraryError):
    """Input violates a field constraint."""

    code = "VALIDATION_FAILED"
    message = "Validation failed"
    status_code = 400

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__(
            message=f"{field}: {message}",
            details={"errors": [{"field": field, "message": message}]},
        )


class NotFound(LibraryError):
    """Referenced identifier does not resolve to an existing entity."""

    code = "NOT_FOUND"
    message = "Resource not found"
    status_code = 404

    def __init__(self, resource: str, identifier: Optional[str] = None) -> None:
        self.resource = resource
        self.identifier = identifier
        details = {"resource": resource}
        if identifier is not None:
            details["id"] = str(identifier)
        super().__init__(message=f"{resource} not found", details=details)


class ConflictFailure(LibraryError):
    """A uniqueness or referential constraint would be violated."""

    code = "CONFLICT"
    message = "Resource conflict"
    status_code = 409


class PermissionDenied(LibraryError):
    """The caller is not allowed to perform the operation."""

    code = "FORBIDDEN"
    message = "Not authorized to perform this action"
    status_code = 403


class AggregationFailure(LibraryError):
    """A derived aggregate could not be recomputed."""

    code = "AGGREGATION_FAILED"
    message = "Aggregate recomputation failed"


class BackendUnavailable(LibraryError):
    """The document store cannot be reached."""

    code = "BACKEND_UNAVAILABLE"
    message = "Database not connected"
    status_code = 503
