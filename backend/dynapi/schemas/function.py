"""
Database Function Schemas
"""
from pydantic import BaseModel, Field
from typing import Optional, List, Any
from datetime import datetime


class FunctionCreate(BaseModel):
    sql: str = Field(..., min_length=1)
    is_protected: bool = True
    allowed_roles: List[str] = []


class FunctionRunRequest(BaseModel):
    args: List[Any] = []


class FunctionResponse(BaseModel):
    schema_name: str = Field(..., alias="schema")
    name: str
    full_name: str
    parameters: str = ""
    return_type: Optional[str] = None
    definition: Optional[str] = None
    is_protected: bool = True
    allowed_roles: List[str] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        populate_by_name = True


class FunctionListResponse(BaseModel):
    status: str = "ok"
    functions: List[FunctionResponse]


class FunctionDetailResponse(BaseModel):
    status: str = "ok"
    definition: FunctionResponse


class FunctionCreateResponse(BaseModel):
    status: str = "ok"
    result: FunctionResponse
    warn_replace: bool = Field(False, serialization_alias="warnReplace")
