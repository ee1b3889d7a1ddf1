"""
Statement Execution Schemas
"""
from pydantic import BaseModel, Field
from typing import Optional, List, Any, Dict


class StatementRequest(BaseModel):
    sql: str = Field(..., min_length=1)


class ExecutionResponse(BaseModel):
    """Body returned by generated endpoints and function invocations."""
    status: str = "success"
    rows: Optional[List[Dict[str, Any]]] = None
    rows_affected: int = 0
    execution_time_ms: float = 0


class StatementResult(BaseModel):
    rows: Optional[List[Dict[str, Any]]] = None
    rows_affected: int = 0
    execution_time_ms: float = 0


class StatementResponse(BaseModel):
    status: str = "ok"
    result: StatementResult
    warn_replace: bool = Field(False, serialization_alias="warnReplace")
    warnings: List[str] = []


class StatusResponse(BaseModel):
    status: str = "ok"
