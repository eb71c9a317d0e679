"""
API v1 Router Configuration.

Organizes the v1 endpoints:
- Health checks
- Role and principal management
- Access checks
"""

from fastapi import APIRouter

from quicklink_rbac.api.v1.endpoints import health, rbac

# Create main v1 router
api_router = APIRouter(prefix="/api/v1")

api_router.include_router(
    health.router,
    tags=["Health"]
)

api_router.include_router(
    rbac.router,
    tags=["RBAC Management"]
)
