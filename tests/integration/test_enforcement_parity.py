"""
Conformance suite for the two permission gates.

The client-side evaluator and the server-side enforcement adapter share no
code. For module-level requests they must reach the same decision for every
principal, resource and action.
"""

import pytest
import pytest_asyncio

from quicklink_rbac.core.enforcement import AccessRule, EnforcementAdapter, RuleEffect
from quicklink_rbac.core.system_roles import grant
from quicklink_rbac.core.types import Action, ResourceModule
from tests.fixtures import AGENT, LEAD, OPS, ROOT, custom_role, draft

EXTRA_RESOURCES = ["billing", "", "roles", "ROLEMANAGEMENT"]
EXTRA_ACTIONS = ["approve", "", "READ"]


@pytest_asyncio.fixture
async def role_holders(seeded_service):
    """One active principal per role, all created by the root."""
    service = seeded_service
    await service.subordinates.bootstrap_root(draft(ROOT, "super_admin", max_sub_users=20))
    await service.roles.create_role(custom_role("pricing_reader", 75, {"pricing": ["read"], "payouts": ["read"]}))
    await service.roles.create_role(custom_role("nothing", 100))

    holders = {"super_admin": ROOT}
    for role in service.roles.list_roles():
        if role.level == 0:
            continue
        principal_id = f"holder-{role.role_id}"
        await service.subordinates.create_subordinate(ROOT, draft(principal_id, role.role_id))
        holders[role.role_id] = principal_id
    return service, holders


def triples():
    resources = [m.value for m in ResourceModule] + EXTRA_RESOURCES
    actions = [a.value for a in Action] + EXTRA_ACTIONS
    for resource in resources:
        for action in actions:
            yield resource, action


def assert_parity(service, principal_id):
    ctx = service.load_context(principal_id)
    mismatches = []
    for resource, action in triples():
        client = service.evaluator.can(ctx, resource, action)
        server = service.enforcement.authorize(principal_id, resource, action).granted
        if client != server:
            mismatches.append((principal_id, resource, action, client, server))
    assert mismatches == []


class TestEvaluatorEnforcementParity:
    """Both gates agree on module-level decisions."""

    @pytest.mark.asyncio
    async def test_every_role_agrees(self, role_holders):
        service, holders = role_holders
        assert len(holders) == 11

        for principal_id in holders.values():
            assert_parity(service, principal_id)

    @pytest.mark.asyncio
    async def test_inactive_principals_agree(self, role_holders):
        service, holders = role_holders
        for role_id in ("ops_admin", "pricing_reader", "viewer"):
            await service.subordinates.deactivate(holders[role_id], actor_id=ROOT)
            assert_parity(service, holders[role_id])
            assert service.enforcement.authorize(holders[role_id], "pricing", "read").granted is False

    @pytest.mark.asyncio
    async def test_suspended_super_admin_agrees(self, role_holders):
        service, _ = role_holders
        await service.subordinates.set_status(ROOT, "suspended", actor_id="system")

        assert_parity(service, ROOT)
        assert service.enforcement.authorize(ROOT, "pricing", "read").granted is False

    @pytest.mark.asyncio
    async def test_role_update_agrees(self, role_holders):
        service, holders = role_holders
        await service.roles.update_role("pricing_reader", {"level": 85})
        await service.roles.update_role("pricing_reader", {"permissions": grant({"compliance": ["export"]})})

        assert_parity(service, holders["pricing_reader"])
        assert service.enforcement.authorize(holders["pricing_reader"], "compliance", "export").granted

    @pytest.mark.asyncio
    async def test_unknown_principal_denied(self, role_holders):
        service, _ = role_holders
        decision = service.enforcement.authorize("ghost", "pricing", "read")

        assert decision.granted is False
        assert decision.rule == "deny_unknown_principal"
        assert service.evaluator.can(service.load_context("ghost"), "pricing", "read") is False

    @pytest.mark.asyncio
    async def test_known_decisions(self, role_holders):
        service, holders = role_holders
        authorize = service.enforcement.authorize

        assert authorize(holders["ops_admin"], "merchantManagement", "suspend").granted
        assert not authorize(holders["ops_admin"], "merchantManagement", "terminate").granted
        assert authorize(holders["audit_admin"], "auditLogs", "export").granted
        assert not authorize(holders["support_admin"], "userManagement", "create").granted
        assert authorize(holders["pricing_reader"], "payouts", "read").granted
        assert not authorize(holders["nothing"], "pricing", "read").granted
        assert authorize(ROOT, "billing", "approve").granted


class TestDocumentRules:
    """Rules that only the enforcement adapter evaluates."""

    @pytest.mark.asyncio
    async def test_system_roles_immutable_even_for_super_admin(self, role_holders):
        service, _ = role_holders
        authorize = service.enforcement.authorize

        for action in ("update", "delete", "write"):
            decision = authorize(ROOT, "roles/ops_admin", action)
            assert decision.granted is False
            assert decision.rule == "deny_system_role_write"
        assert authorize(ROOT, "roles/ops_admin", "read").granted
        assert authorize(ROOT, "roles/pricing_reader", "update").granted

    @pytest.mark.asyncio
    async def test_target_id_resolves_to_document(self, role_holders):
        service, _ = role_holders
        decision = service.enforcement.authorize(ROOT, "roleManagement", "delete", target_id="super_admin")

        assert decision.granted is False

    @pytest.mark.asyncio
    async def test_self_and_direct_report_documents(self, org_service):
        authorize = org_service.enforcement.authorize

        assert authorize(AGENT, f"admins/{AGENT}", "read").rule == "allow_self_document"
        assert authorize(LEAD, f"admins/{AGENT}", "read").granted
        assert not authorize(AGENT, f"admins/{LEAD}", "read").granted
        assert not authorize(AGENT, f"admins/{AGENT}", "delete").granted
        assert authorize(OPS, f"admins/{AGENT}", "update").rule == "allow_role_grant"

    @pytest.mark.asyncio
    async def test_role_claims_are_ignored(self, org_service):
        """Only the store decides; a stale snapshot does not grant access."""
        stale = org_service.build_context(AGENT)
        await org_service.subordinates.deactivate(AGENT, actor_id=LEAD)

        assert stale.principal.is_active
        assert org_service.enforcement.authorize(AGENT, "pricing", "read").granted is False


class TestRuleTable:

    def test_rules_ordered_by_priority(self, store):
        rules = EnforcementAdapter(store).list_rules()
        priorities = [r.priority for r in rules]

        assert priorities == sorted(priorities, reverse=True)
        assert rules[-1].priority == 50

    def test_duplicate_rule_rejected(self, store):
        adapter = EnforcementAdapter(store)
        with pytest.raises(ValueError):
            adapter.add_rule(AccessRule("allow_super_admin", "dup", RuleEffect.ALLOW, ["*"], ["*"]))

    @pytest.mark.asyncio
    async def test_custom_deny_rule_wins(self, org_service):
        org_service.enforcement.add_rule(AccessRule(
            id="freeze_payouts",
            name="Payout freeze",
            effect=RuleEffect.DENY,
            resources=["payouts"],
            actions=["write"],
            priority=10,
        ))

        decision = org_service.enforcement.authorize(OPS, "payouts", "write")
        assert decision.granted is False
        assert decision.rule == "freeze_payouts"

    def test_condition_operators(self):
        rule = AccessRule("r", "r", RuleEffect.ALLOW, ["*"], ["*"], conditions={
            "status": {"$in": ["active", "locked"]},
            "name": {"$regex": r"^ops-"},
        })

        assert rule.matches_request("x", "read", {"status": "active", "name": "ops-1"})
        assert not rule.matches_request("x", "read", {"status": "inactive", "name": "ops-1"})
        assert not rule.matches_request("x", "read", {"status": "active", "name": "lead-1"})
        assert not rule.matches_request("x", "read", {"status": "active"})

    def test_disabled_rule_never_matches(self):
        rule = AccessRule("r", "r", RuleEffect.ALLOW, ["*"], ["*"], enabled=False)
        assert not rule.matches_request("pricing", "read", {})
