"""Test fixtures for RBAC engine tests."""

import asyncio
from typing import Dict

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from quicklink_rbac.config import RBACConfig, StoreConfig
from quicklink_rbac.config.jwt_config import JWTSettings
from quicklink_rbac.core.audit import InMemoryAuditSink
from quicklink_rbac.core.models import PrincipalDraft, RoleDefinition
from quicklink_rbac.core.service import RBACService
from quicklink_rbac.core.store import InMemoryStore
from quicklink_rbac.core.system_roles import grant
from quicklink_rbac.main import create_app
from quicklink_rbac.middleware.auth import JWTAuthenticator

# Principals of the standard test organisation
ROOT = "root-admin"
OPS = "ops-1"
LEAD = "lead-1"
AGENT = "agent-1"
AUDITOR = "auditor-1"
SUPPORT = "support-1"

TEST_SECRET = "quicklink-rbac-test-secret-key-0123456789"


def draft(principal_id: str, role_id: str, **kwargs) -> PrincipalDraft:
    """Principal draft with a derived email and display name."""
    return PrincipalDraft(
        principal_id=principal_id,
        email=f"{principal_id}@quicklink.example",
        display_name=principal_id.replace("-", " ").title(),
        role_id=role_id,
        **kwargs,
    )


def custom_role(role_id: str, level: int, allowed=None, **kwargs) -> RoleDefinition:
    """Custom role definition with only ``allowed`` granted."""
    return RoleDefinition(
        role_id=role_id,
        name=role_id,
        display_name=role_id.replace("_", " ").title(),
        level=level,
        permissions=grant(allowed or {}),
        **kwargs,
    )


async def build_org(service: RBACService) -> RBACService:
    """Seed the system roles and create the standard organisation.

    root-admin (super_admin)
    ├── ops-1 (ops_admin, quota 2)
    │   └── lead-1 (merchant_support_lead, quota 5)
    │       └── agent-1 (merchant_support_agent)
    ├── auditor-1 (audit_admin)
    └── support-1 (support_admin)
    """
    await service.roles.seed_system_roles()
    subs = service.subordinates
    await subs.bootstrap_root(draft(ROOT, "super_admin"))
    await subs.create_subordinate(ROOT, draft(OPS, "ops_admin", can_create_sub_users=True, max_sub_users=2))
    await subs.create_subordinate(OPS, draft(LEAD, "merchant_support_lead", can_create_sub_users=True, max_sub_users=5))
    await subs.create_subordinate(LEAD, draft(AGENT, "merchant_support_agent"))
    await subs.create_subordinate(ROOT, draft(AUDITOR, "audit_admin"))
    await subs.create_subordinate(ROOT, draft(SUPPORT, "support_admin"))
    return service


@pytest.fixture
def audit_sink():
    return InMemoryAuditSink()


@pytest.fixture
def store(audit_sink):
    return InMemoryStore(audit_sink=audit_sink, default_timeout=1.0)


@pytest.fixture
def rbac_service(audit_sink):
    """Unseeded service recording audit events in memory."""
    return RBACService(audit_sink=audit_sink, operation_timeout=1.0, root_max_sub_users=10)


@pytest_asyncio.fixture
async def seeded_service(rbac_service):
    await rbac_service.roles.seed_system_roles()
    return rbac_service


@pytest_asyncio.fixture
async def org_service(rbac_service):
    return await build_org(rbac_service)


@pytest.fixture
def test_config():
    return RBACConfig(environment="test", store=StoreConfig(operation_timeout_seconds=1.0))


@pytest.fixture
def authenticator():
    return JWTAuthenticator(JWTSettings(secret_key=TEST_SECRET))


@pytest.fixture
def api_service(test_config, audit_sink):
    """Service with the standard organisation, built outside any running loop."""
    service = RBACService(audit_sink=audit_sink, operation_timeout=1.0, root_max_sub_users=10)
    asyncio.run(build_org(service))
    return service


@pytest.fixture
def test_client(test_config, api_service, authenticator):
    """Create a test client for the FastAPI app."""
    app = create_app(
        config=test_config,
        service=api_service,
        authenticator=authenticator,
        configure_logging=False,
    )
    with TestClient(app) as client:
        yield client


@pytest.fixture
def auth_headers(authenticator):
    """Build bearer headers for a principal id."""
    def _headers(principal_id: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {authenticator.create_access_token(principal_id)}"}
    return _headers
