"""
Endpoint Authoring API Routes
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from dynapi.core.audit import AuditLogger
from dynapi.core.errors import RuntimeFault
from dynapi.core.rbac import get_app_db, get_current_user, get_runtime, is_project_owner
from dynapi.models import AuditActionType, User
from dynapi.runtime import ProjectRuntime
from dynapi.schemas import EndpointCreate, EndpointDetailResponse, EndpointListResponse, EndpointResponse, StatusResponse
from dynapi.services.endpoint_registry import ensure_can_modify

router = APIRouter()


@router.get("", response_model=EndpointListResponse)
def list_endpoints(
    current_user: User = Depends(get_current_user),
    runtime: ProjectRuntime = Depends(get_runtime),
):
    """List every endpoint definition."""
    return EndpointListResponse(
        endpoints=[EndpointResponse.from_definition(d) for d in runtime.endpoints.list()]
    )


@router.get("/{endpoint_id}", response_model=EndpointDetailResponse)
def get_endpoint(
    endpoint_id: int,
    current_user: User = Depends(get_current_user),
    runtime: ProjectRuntime = Depends(get_runtime),
):
    """Get a single endpoint definition."""
    definition = runtime.endpoints.get(endpoint_id)
    return EndpointDetailResponse(endpoint=EndpointResponse.from_definition(definition))


@router.post("", response_model=EndpointDetailResponse)
def create_endpoint(
    payload: EndpointCreate,
    current_user: User = Depends(get_current_user),
    runtime: ProjectRuntime = Depends(get_runtime),
    db: Session = Depends(get_app_db),
):
    """Create an endpoint; it is live as soon as this returns."""
    audit = AuditLogger(db)
    details = {"method": payload.method, "path": payload.path}
    try:
        definition = runtime.endpoints.register(payload.to_definition(), created_by_id=current_user.id)
    except RuntimeFault as e:
        audit.log_failure(AuditActionType.ENDPOINT_CREATE.value, e, user=current_user,
                          resource_type="endpoint", details=details)
        raise

    audit.log(AuditActionType.ENDPOINT_CREATE.value, user=current_user,
              resource_type="endpoint", resource_id=definition.id, details=details)
    return EndpointDetailResponse(endpoint=EndpointResponse.from_definition(definition))


@router.put("/{endpoint_id}", response_model=EndpointDetailResponse)
def update_endpoint(
    endpoint_id: int,
    payload: EndpointCreate,
    current_user: User = Depends(get_current_user),
    runtime: ProjectRuntime = Depends(get_runtime),
    db: Session = Depends(get_app_db),
):
    """Replace an endpoint definition (creator or project owner only)."""
    audit = AuditLogger(db)
    details = {"method": payload.method, "path": payload.path}
    try:
        current = runtime.endpoints.get(endpoint_id)
        ensure_can_modify(current, current_user.id, is_project_owner(db, current_user))
        definition = runtime.endpoints.update(endpoint_id, payload.to_definition())
    except RuntimeFault as e:
        audit.log_failure(AuditActionType.ENDPOINT_UPDATE.value, e, user=current_user,
                          resource_type="endpoint", resource_id=endpoint_id, details=details)
        raise

    audit.log(AuditActionType.ENDPOINT_UPDATE.value, user=current_user,
              resource_type="endpoint", resource_id=endpoint_id, details=details)
    return EndpointDetailResponse(endpoint=EndpointResponse.from_definition(definition))


@router.delete("/{endpoint_id}", response_model=StatusResponse)
def delete_endpoint(
    endpoint_id: int,
    current_user: User = Depends(get_current_user),
    runtime: ProjectRuntime = Depends(get_runtime),
    db: Session = Depends(get_app_db),
):
    """Remove an endpoint definition (creator or project owner only)."""
    audit = AuditLogger(db)
    try:
        current = runtime.endpoints.get(endpoint_id)
        ensure_can_modify(current, current_user.id, is_project_owner(db, current_user))
        runtime.endpoints.remove(endpoint_id)
    except RuntimeFault as e:
        audit.log_failure(AuditActionType.ENDPOINT_DELETE.value, e, user=current_user,
                          resource_type="endpoint", resource_id=endpoint_id)
        raise

    audit.log(AuditActionType.ENDPOINT_DELETE.value, user=current_user,
              resource_type="endpoint", resource_id=endpoint_id,
              details={"method": current.method, "path": current.path})
    return StatusResponse()
