"""
Function Metadata Model

The database catalog is the source of truth for a function's signature and
body; this row mirrors what the catalog reported at creation time and holds
the protection fields the catalog has no place for.
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Text, JSON, UniqueConstraint
from sqlalchemy.sql import func

from dynapi.database import Base


class SysFunction(Base):
    """Catalog-derived metadata for an installed database function."""
    __tablename__ = "sys_functions"
    __table_args__ = (UniqueConstraint("schema", "name", name="uq_sys_functions_schema_name"),)

    id = Column(Integer, primary_key=True, index=True)
    schema = Column(String(255), nullable=False, default="public")
    name = Column(String(255), nullable=False)
    full_name = Column(String(511), nullable=False, unique=True)
    parameters = Column(Text, nullable=True)
    return_type = Column(Text, nullable=True)
    definition = Column(Text, nullable=True)

    is_protected = Column(Boolean, nullable=False, default=True)
    allowed_roles = Column(JSON, nullable=True)

    created_by_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
