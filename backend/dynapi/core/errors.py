"""
Runtime error taxonomy

Every failure a caller can see carries a stable ``kind`` tag and the HTTP
status it maps to. Handlers render them as
``{"status": "error", "kind": ..., "message": ..., "details": ...}``.
"""
from typing import Any, Dict, Optional

GENERIC_MESSAGE = "An internal error occurred"


class RuntimeFault(Exception):
    """Base class for caller-visible runtime errors."""

    kind: str = "Unknown"
    status_code: int = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self, debug: bool = False) -> Dict[str, Any]:
        if self.kind == "Unknown" and not debug:
            return {"status": "error", "kind": self.kind, "message": GENERIC_MESSAGE}
        body: Dict[str, Any] = {"status": "error", "kind": self.kind, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class NoMatch(RuntimeFault):
    """No active endpoint matches the request."""
    kind = "NoMatch"
    status_code = 404

    def __init__(self, message: str = "Endpoint not found"):
        super().__init__(message)


class Unauthenticated(RuntimeFault):
    kind = "Unauthenticated"
    status_code = 401

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class Forbidden(RuntimeFault):
    kind = "Forbidden"
    status_code = 403

    def __init__(self, message: str = "Forbidden"):
        super().__init__(message)


class NotFoundError(RuntimeFault):
    kind = "NotFound"
    status_code = 404


class ValidationError(RuntimeFault):
    """Request arguments failed binding."""
    kind = "ValidationError"
    status_code = 400


class MissingParameter(ValidationError):
    kind = "MissingParameter"

    def __init__(self, name: str):
        super().__init__(f"Missing required parameter: {name}", {"field": name})
        self.name = name


class TypeMismatch(ValidationError):
    kind = "TypeMismatch"

    def __init__(self, name: str, expected: str):
        super().__init__(
            f"Parameter '{name}' must be a {expected}",
            {"field": name, "expected": expected},
        )
        self.name = name


class DefinitionError(RuntimeFault):
    """An authored endpoint or function definition is invalid."""
    kind = "DefinitionError"
    status_code = 400


class CollisionError(RuntimeFault):
    kind = "Collision"
    status_code = 409


class ExecutionError(RuntimeFault):
    """A statement failed in the database (never retried)."""

    SYNTAX = "SyntaxError"
    CONSTRAINT = "ConstraintViolation"
    PERMISSION = "PermissionDenied"
    NOT_FOUND = "NotFound"
    TIMEOUT = "Timeout"
    UNKNOWN = "Unknown"

    STATUS_BY_KIND = {
        SYNTAX: 400,
        CONSTRAINT: 400,
        PERMISSION: 403,
        NOT_FOUND: 404,
        TIMEOUT: 504,
        UNKNOWN: 500,
    }

    def __init__(self, kind: str, message: str, sqlstate: Optional[str] = None):
        super().__init__(message, {"sqlstate": sqlstate} if sqlstate else None)
        self.kind = kind
        self.status_code = self.STATUS_BY_KIND.get(kind, 500)
        self.sqlstate = sqlstate
