"""
HRMS Core - FastAPI Application Entry Point

This is the main entry point for the FastAPI application.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from hrms import __version__
from hrms.config import settings
from hrms.database import close_db, init_db
from hrms.dependencies import get_optional_claims
from hrms.middleware.security import setup_security_middleware
from hrms.routers import auth, permissions, reconciliation, roles
from hrms.services.cache_service import close_cache_service, get_cache_service
from hrms.utils.error_handling import setup_exception_handlers
from hrms.utils.security import TokenClaims

logging.basicConfig(
    level=logging.INFO if not settings.debug else logging.DEBUG,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for FastAPI.
    Handles startup and shutdown events.
    """
    logger.info(f"Starting {settings.app_name}...")
    logger.info(f"Environment: {settings.app_env}")
    logger.info(f"Permission cache backend: {settings.permission_cache_backend}")

    if settings.is_development:
        await init_db()
        logger.info("Database tables initialized")

    yield

    logger.info(f"Shutting down {settings.app_name}...")
    await close_cache_service()
    await close_db()
    logger.info("Database connections closed")


app = FastAPI(
    title=settings.app_name,
    description="Multi-tenant HR and payroll API: role-based access control and payroll payment reconciliation",
    version=__version__,
    docs_url="/api/docs" if settings.is_development else None,
    redoc_url="/api/redoc" if settings.is_development else None,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

setup_security_middleware(
    app=app,
    development_mode=settings.is_development,
    rate_limiting_enabled=settings.rate_limit_enabled,
)

setup_exception_handlers(app)


@app.get("/health")
async def health_check(claims: Optional[TokenClaims] = Depends(get_optional_claims)):
    """
    Health check endpoint.

    Anonymous callers get the status only; authenticated callers also see
    the environment, and super admins the cache backend health.
    """
    payload = {"status": "healthy", "version": __version__}
    if claims is not None:
        payload["environment"] = settings.app_env
        payload["authenticated_as"] = claims.email
        if claims.is_super_admin and settings.permission_cache_backend == "redis":
            payload["cache"] = await get_cache_service().health_check()
    return payload


# Authentication
app.include_router(auth.router, prefix="/api/v1/auth", tags=["Authentication"])

# Roles & Permissions (RBAC)
app.include_router(permissions.router, prefix="/api/v1/permissions", tags=["Permissions"])
app.include_router(roles.router, prefix="/api/v1/roles", tags=["Roles"])

# Payment Reconciliation
app.include_router(reconciliation.router, prefix="/api/v1/reconciliation", tags=["Reconciliation"])


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.is_development,
    )
