"""FastAPI application entry point."""
import logging

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

from tenant_admin.core.config import settings
from tenant_admin.core.deps import get_db
from tenant_admin.core.errors import ErrorKind, TenantAdminError
from tenant_admin.core.structured_logging import build_log_context, configure_logging
from tenant_admin.routers import organizations_router, platform_router

configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

# ============================================================================
# Error kind -> HTTP status
# ============================================================================

ERROR_STATUS: dict[ErrorKind, int] = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.SLUG_CONFLICT: 409,
    ErrorKind.EMAIL_CONFLICT: 409,
    ErrorKind.MEMBER_ALREADY_EXISTS: 409,
    ErrorKind.INVITATION_ALREADY_PENDING: 409,
    ErrorKind.ALREADY_PENDING_DELETION: 409,
    ErrorKind.NOT_PENDING_DELETION: 409,
    ErrorKind.ALREADY_BANNED: 409,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.INTERNAL: 500,
}
DEFAULT_ERROR_STATUS = 400


def status_for(kind: ErrorKind) -> int:
    return ERROR_STATUS.get(kind, DEFAULT_ERROR_STATUS)


# ============================================================================
# FastAPI App
# ============================================================================

app = FastAPI(
    title="Tenant Admin API",
    description="Multi-tenant organization lifecycle and RBAC administration",
    version=settings.VERSION,
    docs_url="/docs" if settings.ENV == "dev" else None,
    redoc_url="/redoc" if settings.ENV == "dev" else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "X-Actor-Id", "X-Impersonator-Id"],
)


@app.exception_handler(TenantAdminError)
async def tenant_admin_error_handler(request: Request, exc: TenantAdminError):
    status_code = status_for(exc.kind)
    detail = exc.message
    if exc.is_internal:
        logger.error(
            "Internal error",
            exc_info=exc,
            extra=build_log_context(route=request.url.path, method=request.method),
        )
        detail = "Internal error"
    return JSONResponse(
        status_code=status_code,
        content={"detail": detail, "error_code": exc.kind.value},
    )


# ============================================================================
# Routers
# ============================================================================

app.include_router(platform_router, prefix="/platform", tags=["platform"])
app.include_router(organizations_router, prefix="/organizations", tags=["organizations"])


@app.get("/health")
def health(db: Session = Depends(get_db)):
    """
    Health check endpoint.

    Verifies database connectivity and returns environment info.
    """
    db.execute(text("SELECT 1"))
    return {"status": "ok", "env": settings.ENV, "version": settings.VERSION}
