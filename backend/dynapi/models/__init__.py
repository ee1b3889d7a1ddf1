"""
Models Package - Export all SQLAlchemy models
"""
from dynapi.models.user import User, AppUser
from dynapi.models.project import Project
from dynapi.models.endpoint import SysEndpoint
from dynapi.models.function import SysFunction
from dynapi.models.audit import AuditLog, AuditActionType

__all__ = [
    # Identity
    "User",
    "AppUser",
    "Project",

    # Definitions
    "SysEndpoint",
    "SysFunction",

    # Audit
    "AuditLog",
    "AuditActionType",
]
