"""
Main FastAPI application entry point.

This module builds the RBAC service application with its configuration,
logging, error handling and routing.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from quicklink_rbac.api.v1.router import api_router
from quicklink_rbac.config import RBACConfig, get_config
from quicklink_rbac.config.jwt_config import get_jwt_settings, validate_jwt_config
from quicklink_rbac.config.logging import setup_logging
from quicklink_rbac.core import errors
from quicklink_rbac.core.service import RBACService
from quicklink_rbac.middleware.auth import JWTAuthenticator

logger = logging.getLogger(__name__)

VERSION = "0.1.0"

# Most specific class first; lookup walks the exception's MRO.
ERROR_STATUS = {
    errors.NotFound: 404,
    errors.DuplicateId: 409,
    errors.RoleInUse: 409,
    errors.QuotaExceeded: 409,
    errors.SystemRoleImmutable: 403,
    errors.HierarchyViolation: 403,
    errors.CapabilityDenied: 403,
    errors.CycleDetected: 422,
    errors.InvalidRoleDefinition: 422,
    errors.InvalidPrincipalDraft: 422,
    errors.StoreUnavailable: 503,
    errors.StoreTimeout: 504,
}


def status_for(exc: errors.RBACError) -> int:
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS:
            return ERROR_STATUS[cls]
    return 500


async def rbac_error_handler(request: Request, exc: errors.RBACError) -> JSONResponse:
    code = status_for(exc)
    if code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.kind}: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.kind}")
    headers = {"Retry-After": "1"} if exc.retryable else None
    return JSONResponse(status_code=code, content=exc.to_dict(), headers=headers)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    config: RBACConfig = app.state.config

    if app.state.configure_logging:
        setup_logging(
            log_level=config.logging.level,
            log_format=config.logging.format,
            log_file=config.logging.file,
            enable_access_log=config.logging.access_log,
        )

    for issue in validate_jwt_config(app.state.authenticator.settings):
        logger.warning(f"JWT configuration: {issue}")

    service: RBACService = app.state.rbac
    if config.store.seed_system_roles:
        result = await service.roles.seed_system_roles()
        logger.info(f"System roles: {result.message} ({result.count})")

    yield

    service.cache.invalidate()


def create_app(
    config: Optional[RBACConfig] = None,
    service: Optional[RBACService] = None,
    authenticator: Optional[JWTAuthenticator] = None,
    configure_logging: bool = True,
) -> FastAPI:
    """Build the application; each call gets its own RBAC service."""
    config = config or get_config()

    app = FastAPI(
        title="QuickLink Pay RBAC",
        description="Hierarchical role-based access control for the QuickLink Pay admin dashboard",
        version=VERSION,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc"
    )
    app.state.config = config
    app.state.configure_logging = configure_logging
    app.state.rbac = service or RBACService.from_config(config)
    app.state.authenticator = authenticator or JWTAuthenticator(get_jwt_settings())

    app.add_exception_handler(errors.RBACError, rbac_error_handler)
    app.include_router(api_router)

    @app.get("/")
    async def read_root():
        return {"message": "QuickLink Pay RBAC service", "version": VERSION}

    return app
