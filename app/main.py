from fastapi import FastAPI, HTTPException
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from slowapi.errors import RateLimitExceeded
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import JSONResponse, Response
from timing_asgi import TimingMiddleware, TimingClient  # type: ignore
from timing_asgi.integrations import StarletteScopeToName  # type: ignore

from app.core import config
from app.core.database.engine import init_db
from app.core.rate_limit import limiter
from app.features.organizations.routes import router as organization_router
from app.features.permissions.routes import router as permission_router
from app.features.permissions.exceptions import (
    AccessControlError,
    CrossTenantViolationError,
    DuplicateRoleError,
    EntityNotFoundError,
    PermissionDeniedError,
)
from app.utils import get_logger, setup_logging


setup_logging(config.LOG_LEVEL)
log = get_logger(__name__)
log.info("Initializing server")
app = FastAPI(
    title="Access Control Service",
    description="Multi-tenant role-based authorization",
    version="0.1.0",
    docs_url="/docs" if config.ENABLE_DOCS else None,
    redoc_url="/redoc" if config.ENABLE_DOCS else None,
    openapi_url="/openapi.json" if config.ENABLE_DOCS else None
)
app.state.limiter = limiter


class PrintTimings(TimingClient):
    def timing(self, metric_name, timing, tags):
        log.debug(dict(route=metric_name.removeprefix("main.app.features."), timing=timing, tags=tags))


app.add_middleware(TimingMiddleware, client=PrintTimings(), metric_namer=StarletteScopeToName("main", app))

if config.ENABLE_DOCS:
    log.warning("Docs enabled")
if config.ALLOW_ORIGIN:
    log.warning("Setting allow origin to %s", config.ALLOW_ORIGIN)
    origins = [config.ALLOW_ORIGIN]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(_request: Request, exc: RequestValidationError):
    errors = dict()
    for error in exc.errors():
        if "loc" not in error or "msg" not in error:
            continue
        key = error["loc"][-1]
        if key == "__root__":
            key = "root"
        errors[key] = error["msg"]
    log.info("Request validation error %s", errors)
    return JSONResponse(status_code=400, content=jsonable_encoder(errors))


@app.exception_handler(RateLimitExceeded)
def rate_limit_exceeded_handler(_request: Request, _exc: RateLimitExceeded) -> Response:
    return JSONResponse({"error": "You are going too fast"}, status_code=429)


@app.exception_handler(PermissionDeniedError)
async def permission_denied_handler(_request: Request, _exc: PermissionDeniedError) -> Response:
    # Same body for every denial reason
    return JSONResponse({"error": "Forbidden"}, status_code=403)


def _error_response(exc: AccessControlError, status_code: int) -> Response:
    return JSONResponse({"error": exc.code, "message": exc.message}, status_code=status_code)


@app.exception_handler(DuplicateRoleError)
async def duplicate_role_handler(_request: Request, exc: DuplicateRoleError) -> Response:
    return _error_response(exc, 409)


@app.exception_handler(CrossTenantViolationError)
async def cross_tenant_handler(_request: Request, exc: CrossTenantViolationError) -> Response:
    log.warning(
        f"Cross-tenant write rejected: expected org={exc.expected_organization_id} "
        f"actual org={exc.actual_organization_id}"
    )
    return _error_response(exc, 422)


@app.exception_handler(EntityNotFoundError)
async def not_found_handler(_request: Request, exc: EntityNotFoundError) -> Response:
    return _error_response(exc, 404)


@app.on_event("startup")
async def startup():
    """Initialize database on application startup."""
    log.info("Initializing database...")
    await init_db()
    log.info("Database initialized successfully")


@app.get("/")
async def root():
    """Root endpoint - API health check."""
    return {
        "message": "Access Control Service",
        "version": "0.1.0",
        "status": "online",
        "docs": "/docs" if config.ENABLE_DOCS else None,
        "authentication": {
            "info": "Protected endpoints require Bearer token in Authorization header",
            "protected_endpoints": ["/organizations/*", "/permissions/*"],
            "public_endpoints": ["/", "/health"]
        },
        "features": {
            "permissions": "Organization-scoped roles and permission checks",
            "organizations": "Tenant and membership administration",
        }
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


@app.get("/metrics")
async def metrics() -> Response:
    if not config.ENABLE_METRICS:
        raise HTTPException(status_code=404, detail="metrics disabled")
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


# Organization routes
app.include_router(organization_router, prefix="/organizations", tags=["organizations"])

# Permission routes (RBAC)
app.include_router(permission_router, prefix="/permissions", tags=["permissions"])
