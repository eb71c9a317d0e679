"""
Health check endpoints for the RBAC service.

Liveness, readiness and a basic status report including the number of seeded
system roles.
"""

import time
from datetime import datetime, timezone
from typing import Dict, Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel

from quicklink_rbac.core.service import RBACService
from quicklink_rbac.core.system_roles import SYSTEM_ROLE_IDS
from quicklink_rbac.middleware.auth import get_rbac_service


class HealthStatus(BaseModel):
    """Health status response model."""
    status: str
    timestamp: datetime
    version: str
    uptime_seconds: float
    environment: str
    dependencies: Dict[str, Dict[str, Any]]


# Track service start time for uptime calculation
_start_time = time.time()

router = APIRouter(prefix="/health", tags=["health"])


@router.get(
    "/",
    response_model=HealthStatus,
    summary="Basic health check",
    description="Returns basic health status of the RBAC service"
)
async def health_check(request: Request, service: RBACService = Depends(get_rbac_service)) -> HealthStatus:
    store = _check_store(service)
    return HealthStatus(
        status="healthy" if store["status"] == "healthy" else "degraded",
        timestamp=datetime.now(timezone.utc),
        version=request.app.version,
        uptime_seconds=time.time() - _start_time,
        environment=request.app.state.config.environment,
        dependencies={"store": store},
    )


@router.get(
    "/ready",
    summary="Readiness check",
    description="Returns 200 once the system roles are seeded"
)
async def readiness_check(service: RBACService = Depends(get_rbac_service)) -> Dict[str, str]:
    """
    Readiness check endpoint.

    Raises:
        HTTPException: 503 if the system roles are not all present.
    """
    if _check_store(service)["status"] != "healthy":
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not ready - system roles not seeded"
        )
    return {"status": "ready"}


@router.get(
    "/live",
    summary="Liveness check",
    description="Returns 200 if service is alive"
)
async def liveness_check() -> Dict[str, str]:
    return {"status": "alive"}


def _check_store(service: RBACService) -> Dict[str, Any]:
    seeded = {role.role_id for role in service.roles.verify_system_roles()}
    missing = sorted(SYSTEM_ROLE_IDS - seeded)
    if missing:
        return {"status": "unhealthy", "missing_system_roles": missing}
    return {"status": "healthy", "system_roles": len(seeded)}
