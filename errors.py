from typing import Any, Optional


class ValidationError(ValueError):
    status_code = 400
    code = "VALIDATION_ERROR"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class NotFoundError(ValueError):
    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message
        self.details = None


class ConflictError(ValueError):
    status_code = 409
    code = "CONFLICT"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message
        self.details = None


class UnauthorizedError(Exception):
    status_code = 401
    code = "UNAUTHORIZED"

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message)
        self.message = message
        self.details = None


INTERNAL_ERROR_CODE = "INTERNAL_ERROR"
INTERNAL_ERROR_MESSAGE = "An unexpected error occurred"


def error_body(
    code: str, message: str, details: Optional[dict[str, Any]] = None
) -> dict[str, object]:
    error: dict[str, object] = {"code": code, "message": message}
    if details:
        error["details"] = details
    return {"error": error}


def field_errors(errors: list[dict[str, Any]]) -> dict[str, list[str]]:
    """Group pydantic error entries by the top-level field they belong to."""
    grouped: dict[str, list[str]] = {}
    for entry in errors:
        loc = [part for part in entry.get("loc", ()) if part not in ("body", "query", "path")]
        field = str(loc[0]) if loc else "_root"
        grouped.setdefault(field, []).append(str(entry.get("msg", "Invalid value")))
    return grouped
