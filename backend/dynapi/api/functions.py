"""
Database Function API Routes
"""
from typing import Optional
from fastapi import APIRouter, Depends
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from dynapi.core.audit import AuditLogger
from dynapi.core.auth import AuthContext
from dynapi.core.errors import RuntimeFault
from dynapi.core.rbac import get_app_db, get_auth_context, get_current_user, get_runtime
from dynapi.models import AuditActionType, User
from dynapi.runtime import ProjectRuntime
from dynapi.schemas import (
    ExecutionResponse, FunctionCreate, FunctionCreateResponse, FunctionDetailResponse,
    FunctionListResponse, FunctionResponse, FunctionRunRequest, StatusResponse
)
from dynapi.services.dispatcher import success_body

router = APIRouter()


@router.get("", response_model=FunctionListResponse)
def list_functions(
    current_user: User = Depends(get_current_user),
    runtime: ProjectRuntime = Depends(get_runtime),
):
    """List functions installed outside the system schemas."""
    functions = runtime.functions.list()
    return FunctionListResponse(functions=[FunctionResponse.model_validate(f.to_dict()) for f in functions])


@router.post("", response_model=FunctionCreateResponse)
def create_function(
    payload: FunctionCreate,
    current_user: User = Depends(get_current_user),
    runtime: ProjectRuntime = Depends(get_runtime),
    db: Session = Depends(get_app_db),
):
    """Install a CREATE [OR REPLACE] FUNCTION statement."""
    audit = AuditLogger(db)
    try:
        definition, warn_replace = runtime.functions.create(
            payload.sql,
            is_protected=payload.is_protected,
            allowed_roles=payload.allowed_roles,
            created_by_id=current_user.id,
        )
    except RuntimeFault as e:
        audit.log_failure(AuditActionType.FUNCTION_CREATE.value, e, user=current_user,
                          resource_type="function")
        raise

    audit.log(AuditActionType.FUNCTION_CREATE.value, user=current_user,
              resource_type="function", resource_id=definition.full_name,
              details={"warn_replace": warn_replace})
    return FunctionCreateResponse(
        result=FunctionResponse.model_validate(definition.to_dict()),
        warn_replace=warn_replace,
    )


@router.get("/{schema}/{name}", response_model=FunctionDetailResponse)
def get_function(
    schema: str,
    name: str,
    current_user: User = Depends(get_current_user),
    runtime: ProjectRuntime = Depends(get_runtime),
):
    """Catalog metadata for one function."""
    definition = runtime.functions.get(schema, name)
    return FunctionDetailResponse(definition=FunctionResponse.model_validate(definition.to_dict()))


@router.delete("/{schema}/{name}", response_model=StatusResponse)
def drop_function(
    schema: str,
    name: str,
    current_user: User = Depends(get_current_user),
    runtime: ProjectRuntime = Depends(get_runtime),
    db: Session = Depends(get_app_db),
):
    """Drop every overload of a function."""
    audit = AuditLogger(db)
    full_name = f"{schema}.{name}"
    try:
        runtime.functions.drop(schema, name)
    except RuntimeFault as e:
        audit.log_failure(AuditActionType.FUNCTION_DROP.value, e, user=current_user,
                          resource_type="function", resource_id=full_name)
        raise

    audit.log(AuditActionType.FUNCTION_DROP.value, user=current_user,
              resource_type="function", resource_id=full_name)
    return StatusResponse()


@router.post("/{schema}/{name}/run", response_model=ExecutionResponse)
async def run_function(
    schema: str,
    name: str,
    payload: Optional[FunctionRunRequest] = None,
    auth_ctx: AuthContext = Depends(get_auth_context),
    runtime: ProjectRuntime = Depends(get_runtime),
):
    """Invoke a function with positional arguments; its protection fields decide access."""
    result = await run_in_threadpool(
        runtime.dispatcher.invoke_function, schema, name, payload.args if payload else [], auth_ctx
    )
    return ExecutionResponse(**success_body(result))
