"""
Endpoint Definition Model
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Text, JSON
from sqlalchemy.sql import func

from dynapi.database import Base


class SysEndpoint(Base):
    """Stored (method, path, SQL, params, access rules) record behind a live route."""
    __tablename__ = "sys_endpoints"

    id = Column(Integer, primary_key=True, index=True)
    method = Column(String(10), nullable=False, index=True)
    path = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)
    sql = Column(Text, nullable=False)

    is_active = Column(Boolean, nullable=False, default=True)
    is_protected = Column(Boolean, nullable=False, default=False)
    allowed_roles = Column(JSON, nullable=True)

    # [{"name": ..., "in": "path|query|body", "type": "string|number|boolean", "required": bool}]
    params = Column(JSON, nullable=True)

    created_by_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
