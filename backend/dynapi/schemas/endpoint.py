"""
Endpoint Definition Schemas
"""
from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime
from enum import Enum

from dynapi.services.endpoint_registry import EndpointDefinition, ParameterSpec


class ParameterLocation(str, Enum):
    PATH = "path"
    QUERY = "query"
    BODY = "body"


class ParameterType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"


class ParameterSpecSchema(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    location: ParameterLocation = Field(..., alias="in")
    type: ParameterType = ParameterType.STRING
    required: bool = False

    class Config:
        populate_by_name = True


class EndpointBase(BaseModel):
    method: str = Field(..., min_length=1, max_length=10)
    path: str = Field(..., min_length=1, max_length=500)
    sql: str = Field(..., min_length=1)
    description: Optional[str] = None
    is_active: bool = True
    is_protected: bool = False
    allowed_roles: Optional[List[str]] = None
    params: List[ParameterSpecSchema] = []


class EndpointCreate(EndpointBase):
    def to_definition(self) -> EndpointDefinition:
        return EndpointDefinition(
            method=self.method,
            path=self.path,
            sql=self.sql,
            description=self.description,
            is_active=self.is_active,
            is_protected=self.is_protected,
            allowed_roles=tuple(self.allowed_roles or ()),
            params=tuple(
                ParameterSpec(name=p.name, location=p.location.value, type=p.type.value, required=p.required)
                for p in self.params
            ),
        )


class EndpointResponse(EndpointBase):
    id: int
    allowed_roles: List[str] = []
    created_by_id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
        populate_by_name = True

    @classmethod
    def from_definition(cls, definition: EndpointDefinition) -> "EndpointResponse":
        return cls.model_validate(definition.to_dict())


class EndpointListResponse(BaseModel):
    status: str = "ok"
    endpoints: List[EndpointResponse]


class EndpointDetailResponse(BaseModel):
    status: str = "ok"
    endpoint: EndpointResponse
