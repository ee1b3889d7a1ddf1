"""
Core Package
"""
from dynapi.core.errors import (
    RuntimeFault, NoMatch, Unauthenticated, Forbidden, NotFoundError,
    ValidationError, MissingParameter, TypeMismatch,
    DefinitionError, CollisionError, ExecutionError
)

__all__ = [
    "RuntimeFault", "NoMatch", "Unauthenticated", "Forbidden", "NotFoundError",
    "ValidationError", "MissingParameter", "TypeMismatch",
    "DefinitionError", "CollisionError", "ExecutionError",
]
