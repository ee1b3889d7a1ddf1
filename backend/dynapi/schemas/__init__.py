"""
Schemas Package
"""
from dynapi.schemas.auth import TokenPayload
from dynapi.schemas.endpoint import (
    ParameterLocation, ParameterType, ParameterSpecSchema,
    EndpointBase, EndpointCreate, EndpointResponse, EndpointListResponse, EndpointDetailResponse
)
from dynapi.schemas.function import (
    FunctionCreate, FunctionRunRequest, FunctionResponse,
    FunctionListResponse, FunctionDetailResponse, FunctionCreateResponse
)
from dynapi.schemas.sql import (
    StatementRequest, StatementResult, StatementResponse, ExecutionResponse, StatusResponse
)

__all__ = [
    # Auth
    "TokenPayload",
    # Endpoint
    "ParameterLocation", "ParameterType", "ParameterSpecSchema",
    "EndpointBase", "EndpointCreate", "EndpointResponse", "EndpointListResponse", "EndpointDetailResponse",
    # Function
    "FunctionCreate", "FunctionRunRequest", "FunctionResponse",
    "FunctionListResponse", "FunctionDetailResponse", "FunctionCreateResponse",
    # SQL
    "StatementRequest", "StatementResult", "StatementResponse", "ExecutionResponse", "StatusResponse",
]
