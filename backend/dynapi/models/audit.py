"""
Audit Log Model
"""
from sqlalchemy import Column, Integer, String, DateTime, Text, JSON
from sqlalchemy.sql import func
import enum

from dynapi.database import Base


class AuditActionType(str, enum.Enum):
    """Types of auditable authoring actions"""
    ENDPOINT_CREATE = "endpoint_create"
    ENDPOINT_UPDATE = "endpoint_update"
    ENDPOINT_DELETE = "endpoint_delete"

    FUNCTION_CREATE = "function_create"
    FUNCTION_DROP = "function_drop"

    STATEMENT_EXECUTE = "statement_execute"


class AuditLog(Base):
    """Audit log for authoring operations."""
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=True, index=True)
    action = Column(String(100), nullable=False, index=True)
    resource_type = Column(String(100))
    resource_id = Column(String(255))
    details = Column(JSON)
    status = Column(String(20), default="success")  # success, failure
    error_message = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
