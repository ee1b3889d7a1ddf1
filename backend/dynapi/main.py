"""
Dynamic API Runtime - FastAPI Main Application
"""
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from contextlib import asynccontextmanager
import structlog
import time

from dynapi.config import settings
from dynapi.core.errors import GENERIC_MESSAGE, RuntimeFault
from dynapi.runtime import ProjectRuntime

# Configure structured logging
structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.add_log_level,
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    logger_factory=structlog.stdlib.LoggerFactory(),
)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("application_startup", version=settings.APP_VERSION)

    # A runtime placed on app.state before startup is used as-is
    runtime = getattr(app.state, "runtime", None)
    owned = runtime is None
    if owned:
        runtime = ProjectRuntime.from_settings(settings)
        app.state.runtime = runtime

    try:
        runtime.start()
        logger.info("database_initialized")
    except Exception as e:
        logger.warning("database_init_failed", error=str(e))
        logger.info("waiting_for_configuration")

    yield

    if owned:
        runtime.close()
    logger.info("application_shutdown")


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Dynamic API Runtime - SQL-backed endpoints and database functions",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)
app.state.dynamic_route_prefix = settings.DYNAMIC_ROUTE_PREFIX

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request timing middleware
@app.middleware("http")
async def add_process_time_header(request: Request, call_next):
    """Add request timing to response headers."""
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time
    response.headers["X-Process-Time"] = str(process_time)
    return response


# Exception handlers
@app.exception_handler(RuntimeFault)
async def runtime_fault_handler(request: Request, exc: RuntimeFault):
    """Render domain errors with their kind tag."""
    if exc.kind == "Unknown":
        logger.error("request_failed", kind=exc.kind, error=exc.message, path=request.url.path)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(debug=settings.DEBUG))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle validation errors."""
    logger.warning("validation_error", errors=exc.errors(), path=request.url.path)
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "detail": exc.errors(),
            "message": "Validation error"
        }
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle general exceptions."""
    logger.error("unhandled_exception", error=str(exc), path=request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "status": "error",
            "kind": "Unknown",
            "message": str(exc) if settings.DEBUG else GENERIC_MESSAGE
        }
    )


# Health check endpoint
@app.get("/health", tags=["System"])
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "app": settings.APP_NAME
    }


@app.get("/", tags=["System"])
async def root():
    """Root endpoint."""
    return {
        "message": "Dynamic API Runtime",
        "version": settings.APP_VERSION,
        "docs": "/docs"
    }


# Import and include routers
from dynapi.api import endpoints, functions, tables, dynamic

app.include_router(endpoints.router, prefix="/api/endpoints", tags=["Endpoints"])
app.include_router(functions.router, prefix="/api/functions", tags=["Functions"])
app.include_router(tables.router, prefix="/api/tables", tags=["Tables"])

# Generated routes catch everything else, so they go last
app.include_router(dynamic.router, prefix=settings.DYNAMIC_ROUTE_PREFIX.rstrip("/"), tags=["Generated"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "dynapi.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG
    )
