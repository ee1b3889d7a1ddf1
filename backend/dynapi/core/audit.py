"""
Audit Logging Service
"""
from typing import Optional, Dict, Any
from sqlalchemy.orm import Session
import structlog

from dynapi.models import AuditLog, User

logger = structlog.get_logger()


class AuditLogger:
    """Records authoring actions in the App DB and the structured log."""

    def __init__(self, db: Session):
        self.db = db

    def log(
        self,
        action: str,
        user: Optional[User] = None,
        resource_type: Optional[str] = None,
        resource_id: Optional[Any] = None,
        details: Optional[Dict[str, Any]] = None,
        status: str = "success",
        error_message: Optional[str] = None,
    ) -> AuditLog:
        """Create an audit log entry."""
        audit = AuditLog(
            user_id=user.id if user else None,
            action=action,
            resource_type=resource_type,
            resource_id=str(resource_id) if resource_id is not None else None,
            details=details,
            status=status,
            error_message=error_message,
        )

        self.db.add(audit)
        self.db.commit()

        log_method = logger.info if status == "success" else logger.warning
        log_method(
            "audit_event",
            action=action,
            user_id=user.id if user else None,
            resource_type=resource_type,
            resource_id=resource_id,
            status=status,
        )

        return audit

    def log_failure(
        self,
        action: str,
        error: Exception,
        user: Optional[User] = None,
        resource_type: Optional[str] = None,
        resource_id: Optional[Any] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> AuditLog:
        """Record a rejected or failed authoring action."""
        return self.log(
            action=action,
            user=user,
            resource_type=resource_type,
            resource_id=resource_id,
            details=details,
            status="failure",
            error_message=getattr(error, "message", None) or str(error),
        )
