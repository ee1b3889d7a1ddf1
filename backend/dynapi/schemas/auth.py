"""
Credential Schemas
"""
from pydantic import BaseModel
from datetime import datetime


class TokenPayload(BaseModel):
    sub: int
    exp: datetime
    type: str = "access"  # access (builder user) or app (application user)
