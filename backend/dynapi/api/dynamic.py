"""
Generated Endpoint Routes

A single catch-all route hands every request that no static route claimed
to the Dispatcher. It must be included after all other routers.
"""
from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from dynapi.core.rbac import get_runtime
from dynapi.runtime import ProjectRuntime
from dynapi.services.endpoint_registry import METHODS

router = APIRouter()


def request_path(request: Request) -> str:
    """Percent-encoded request path with the mount prefix removed."""
    raw_path = request.scope.get("raw_path")
    path = raw_path.decode("latin-1") if raw_path else request.url.path

    prefix = getattr(request.app.state, "dynamic_route_prefix", "") or ""
    prefix = prefix.rstrip("/")
    if prefix and (path == prefix or path.startswith(prefix + "/")):
        path = path[len(prefix):] or "/"
    return path


@router.api_route("/{full_path:path}", methods=list(METHODS), include_in_schema=False)
async def dispatch(
    full_path: str,
    request: Request,
    runtime: ProjectRuntime = Depends(get_runtime),
):
    """Serve a generated endpoint."""
    body = await request.body()
    response = await run_in_threadpool(
        runtime.dispatcher.handle,
        request.method,
        request_path(request),
        dict(request.headers),
        dict(request.query_params),
        body,
    )
    return JSONResponse(status_code=response.status_code, content=jsonable_encoder(response.body))
