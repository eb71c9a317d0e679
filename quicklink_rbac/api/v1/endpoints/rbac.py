"""
RBAC Management API Endpoints.

REST endpoints for the admin dashboard:
- Role management (create, update, deactivate, list roles)
- Principal management (subordinates, manager and role reassignment)
- Access checks for the calling principal

Every mutation is authorized by the enforcement adapter against freshly read
store state. Domain errors propagate as ``RBACError`` and are rendered by the
application's exception handler.
"""

from typing import List, Optional, Dict, Any

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field, field_validator

from quicklink_rbac.config.logging import app_logger
from quicklink_rbac.core.errors import HierarchyViolation
from quicklink_rbac.core.models import AuthContext, Principal, PrincipalDraft, Role, RoleDefinition, RoleFilter
from quicklink_rbac.core.service import RBACService
from quicklink_rbac.core.types import AccessLevel, Action, PrincipalStatus, ResourceModule
from quicklink_rbac.middleware.auth import (
    RequirePermission,
    get_auth_context,
    get_current_principal_id,
    get_rbac_service,
)

router = APIRouter(prefix="/rbac", tags=["RBAC Management"])

ROLES = ResourceModule.ROLE_MANAGEMENT.value
USERS = ResourceModule.USER_MANAGEMENT.value


# Request/Response Models

class CreateRoleRequest(BaseModel):
    """Request model for creating a custom role."""
    role_id: str = Field(..., min_length=1, max_length=64, description="Unique role id")
    name: str = Field(..., min_length=1, max_length=64)
    display_name: str = Field(..., min_length=1, max_length=100)
    description: str = Field("", max_length=500)
    level: int = Field(..., description="1..100, lower is more authority")
    permissions: Dict[str, Dict[str, bool]] = Field(..., description="Full module/action matrix")
    parent_role_id: Optional[str] = None
    can_create_sub_roles: bool = False
    can_manage_users: bool = False
    max_sub_users: Optional[int] = None

    @field_validator("role_id")
    @classmethod
    def validate_role_id(cls, v):
        """Validate role id format."""
        if not v.replace('_', '').replace('-', '').isalnum():
            raise ValueError("Role id must contain only alphanumeric characters, hyphens, and underscores")
        return v


class UpdateRoleRequest(BaseModel):
    """Request model for patching a custom role."""
    name: Optional[str] = Field(None, min_length=1, max_length=64)
    display_name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    level: Optional[int] = None
    permissions: Optional[Dict[str, Dict[str, bool]]] = None
    parent_role_id: Optional[str] = None
    can_create_sub_roles: Optional[bool] = None
    can_manage_users: Optional[bool] = None
    max_sub_users: Optional[int] = None


class RoleResponse(BaseModel):
    """Response model for role information."""
    role_id: str
    name: str
    display_name: str
    description: str
    level: int
    permissions: Dict[str, Dict[str, bool]]
    is_system_role: bool
    is_custom_role: bool
    parent_role_id: Optional[str]
    can_create_sub_roles: bool
    can_manage_users: bool
    max_sub_users: Optional[int]
    assigned_users_count: int
    is_active: bool
    created_at: str
    updated_at: str


class CreatePrincipalRequest(BaseModel):
    """Request model for creating a subordinate principal."""
    principal_id: str = Field(..., min_length=1, max_length=128)
    email: str = Field(..., min_length=3, max_length=254)
    display_name: str = Field(..., min_length=1, max_length=100)
    role_id: str
    can_create_sub_users: bool = False
    max_sub_users: Optional[int] = Field(None, ge=0)


class ReassignManagerRequest(BaseModel):
    manager_id: str


class AssignRoleRequest(BaseModel):
    role_id: str


class DeactivateRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class PrincipalResponse(BaseModel):
    """Response model for principal information."""
    principal_id: str
    email: str
    display_name: str
    role_id: str
    access_level: AccessLevel
    manager_id: Optional[str]
    can_create_sub_users: bool
    max_sub_users: int
    created_sub_users_count: int
    status: PrincipalStatus
    status_reason: Optional[str]


class ProfileResponse(BaseModel):
    """The caller's own principal, role and effective permissions."""
    principal: PrincipalResponse
    role: RoleResponse
    permissions: Dict[str, List[str]]
    can_manage_users: bool
    can_manage_roles: bool


class ReconcileResponse(BaseModel):
    principal_id: str
    recorded: int
    actual: int
    consistent: bool


class AccessCheckRequest(BaseModel):
    """Request model for access checking."""
    resource: str = Field(..., description="Module name or document path")
    action: str = Field(..., description="Action being performed")
    target_id: Optional[str] = None


class AccessCheckResponse(BaseModel):
    """Response model for access check result."""
    granted: bool
    reason: str
    rule: Optional[str]


def role_response(role: Role) -> RoleResponse:
    return RoleResponse(
        role_id=role.role_id,
        name=role.name,
        display_name=role.display_name,
        description=role.description,
        level=role.level,
        permissions=role.permission_map(),
        is_system_role=role.is_system_role,
        is_custom_role=role.is_custom_role,
        parent_role_id=role.parent_role_id,
        can_create_sub_roles=role.can_create_sub_roles,
        can_manage_users=role.can_manage_users,
        max_sub_users=role.max_sub_users,
        assigned_users_count=role.usage_stats.assigned_users_count,
        is_active=role.is_active,
        created_at=role.created_at.isoformat(),
        updated_at=role.updated_at.isoformat(),
    )


def principal_response(principal: Principal) -> PrincipalResponse:
    return PrincipalResponse(
        principal_id=principal.principal_id,
        email=principal.email,
        display_name=principal.display_name,
        role_id=principal.role_id,
        access_level=principal.access_level,
        manager_id=principal.manager_id,
        can_create_sub_users=principal.can_create_sub_users,
        max_sub_users=principal.max_sub_users,
        created_sub_users_count=principal.created_sub_users_count,
        status=principal.status,
        status_reason=principal.status_reason,
    )


def _require_outranks(service: RBACService, actor_id: str, level: int) -> None:
    ctx = service.load_context(actor_id)
    actor_level = ctx.role.level if ctx is not None else None
    if not service.hierarchy.can_manage(actor_level, level):
        raise HierarchyViolation(f"Level {actor_level} cannot manage roles at level {level}")


# Role Management Endpoints

@router.get("/roles", response_model=List[RoleResponse])
async def list_roles(
    is_system_role: Optional[bool] = None,
    is_active: Optional[bool] = None,
    min_level: Optional[int] = None,
    max_level: Optional[int] = None,
    principal_id: str = Depends(RequirePermission(ROLES, Action.READ.value)),
    service: RBACService = Depends(get_rbac_service),
):
    """List roles ordered by level."""
    role_filter = RoleFilter(is_system_role, is_active, min_level, max_level)
    return [role_response(r) for r in service.roles.list_roles(role_filter)]


@router.get("/roles/{role_id}", response_model=RoleResponse)
async def get_role(
    role_id: str,
    principal_id: str = Depends(RequirePermission(ROLES, Action.READ.value)),
    service: RBACService = Depends(get_rbac_service),
):
    return role_response(service.roles.get_role(role_id))


@router.get("/roles/{role_id}/lineage", response_model=List[RoleResponse])
async def get_role_lineage(
    role_id: str,
    principal_id: str = Depends(RequirePermission(ROLES, Action.READ.value)),
    service: RBACService = Depends(get_rbac_service),
):
    """The role and its parent chain, nearest first."""
    return [role_response(r) for r in service.roles.role_lineage(role_id)]


@router.post("/roles", response_model=RoleResponse, status_code=status.HTTP_201_CREATED)
async def create_role(
    request: CreateRoleRequest,
    principal_id: str = Depends(RequirePermission(ROLES, Action.CREATE.value)),
    service: RBACService = Depends(get_rbac_service),
):
    """Create a custom role strictly below the caller's level."""
    _require_outranks(service, principal_id, request.level)
    role = await service.roles.create_role(RoleDefinition(**request.model_dump()), actor_id=principal_id)
    app_logger.log_mutation(principal_id, "role.create", f"roles/{role.role_id}", True)
    return role_response(role)


@router.patch("/roles/{role_id}", response_model=RoleResponse)
async def update_role(
    role_id: str,
    request: UpdateRoleRequest,
    principal_id: str = Depends(RequirePermission(ROLES, Action.UPDATE.value, target_param="role_id")),
    service: RBACService = Depends(get_rbac_service),
):
    """Patch a custom role; system roles are immutable."""
    patch: Dict[str, Any] = request.model_dump(exclude_unset=True)
    _require_outranks(service, principal_id, service.roles.get_role(role_id).level)
    if "level" in patch:
        _require_outranks(service, principal_id, patch["level"])
    role = await service.roles.update_role(role_id, patch, actor_id=principal_id)
    app_logger.log_mutation(principal_id, "role.update", f"roles/{role_id}", True, fields=sorted(patch))
    return role_response(role)


@router.delete("/roles/{role_id}")
async def delete_role(
    role_id: str,
    principal_id: str = Depends(RequirePermission(ROLES, Action.DELETE.value, target_param="role_id")),
    service: RBACService = Depends(get_rbac_service),
):
    """Deactivate a custom role with no assigned principals."""
    _require_outranks(service, principal_id, service.roles.get_role(role_id).level)
    await service.roles.delete_role(role_id, actor_id=principal_id)
    app_logger.log_mutation(principal_id, "role.delete", f"roles/{role_id}", True)
    return {"message": f"Role '{role_id}' deactivated"}


# Principal Endpoints

@router.get("/principals/me", response_model=ProfileResponse)
async def get_profile(
    ctx: AuthContext = Depends(get_auth_context),
    service: RBACService = Depends(get_rbac_service),
):
    """The caller's profile with its effective permissions."""
    evaluator = service.evaluator
    return ProfileResponse(
        principal=principal_response(ctx.principal),
        role=role_response(ctx.role),
        permissions=evaluator.effective_permissions(ctx),
        can_manage_users=evaluator.can_manage_users(ctx),
        can_manage_roles=evaluator.can_manage_roles(ctx),
    )


@router.get("/principals", response_model=List[PrincipalResponse])
async def list_principals(
    transitive: Optional[bool] = Query(None, description="Include the whole report tree"),
    principal_id: str = Depends(get_current_principal_id),
    service: RBACService = Depends(get_rbac_service),
):
    """Principals managed by the caller."""
    return [principal_response(p) for p in service.subordinates.list_managed(principal_id, transitive)]


@router.post("/principals", response_model=PrincipalResponse, status_code=status.HTTP_201_CREATED)
async def create_principal(
    request: CreatePrincipalRequest,
    principal_id: str = Depends(get_current_principal_id),
    service: RBACService = Depends(get_rbac_service),
):
    """Create a subordinate of the caller."""
    principal = await service.subordinates.create_subordinate(principal_id, PrincipalDraft(**request.model_dump()))
    app_logger.log_mutation(principal_id, "principal.create", f"admins/{principal.principal_id}", True)
    return principal_response(principal)


@router.put("/principals/{target_id}/manager", response_model=PrincipalResponse)
async def reassign_manager(
    target_id: str,
    request: ReassignManagerRequest,
    principal_id: str = Depends(RequirePermission(USERS, Action.UPDATE.value, target_param="target_id")),
    service: RBACService = Depends(get_rbac_service),
):
    principal = await service.subordinates.reassign_manager(target_id, request.manager_id, actor_id=principal_id)
    app_logger.log_mutation(principal_id, "principal.reassign_manager", f"admins/{target_id}", True)
    return principal_response(principal)


@router.put("/principals/{target_id}/role", response_model=PrincipalResponse)
async def assign_role(
    target_id: str,
    request: AssignRoleRequest,
    principal_id: str = Depends(RequirePermission(USERS, Action.ASSIGN_ROLES.value)),
    service: RBACService = Depends(get_rbac_service),
):
    principal = await service.subordinates.assign_role(target_id, request.role_id, actor_id=principal_id)
    app_logger.log_mutation(principal_id, "principal.assign_role", f"admins/{target_id}", True)
    return principal_response(principal)


@router.post("/principals/{target_id}/deactivate", response_model=PrincipalResponse)
async def deactivate_principal(
    target_id: str,
    request: DeactivateRequest,
    principal_id: str = Depends(RequirePermission(USERS, Action.UPDATE.value, target_param="target_id")),
    service: RBACService = Depends(get_rbac_service),
):
    principal = await service.subordinates.deactivate(target_id, actor_id=principal_id, reason=request.reason)
    app_logger.log_mutation(principal_id, "principal.deactivate", f"admins/{target_id}", True)
    return principal_response(principal)


@router.get("/principals/{target_id}/reconcile", response_model=ReconcileResponse)
async def reconcile_principal(
    target_id: str,
    principal_id: str = Depends(RequirePermission(USERS, Action.READ.value, target_param="target_id")),
    service: RBACService = Depends(get_rbac_service),
):
    report = service.subordinates.reconcile(target_id)
    return ReconcileResponse(
        principal_id=report.principal_id,
        recorded=report.recorded,
        actual=report.actual,
        consistent=report.consistent,
    )


# Access Control Endpoints

@router.post("/access/check", response_model=AccessCheckResponse)
async def check_access(
    request: AccessCheckRequest,
    principal_id: str = Depends(get_current_principal_id),
    service: RBACService = Depends(get_rbac_service),
):
    """Authoritative decision for the caller; never raises on denial."""
    decision = service.enforcement.authorize(principal_id, request.resource, request.action, request.target_id)
    app_logger.log_access_decision(
        principal_id, request.resource, request.action, decision.granted, rule=decision.rule, reason=decision.reason
    )
    return AccessCheckResponse(granted=decision.granted, reason=decision.reason, rule=decision.rule)
