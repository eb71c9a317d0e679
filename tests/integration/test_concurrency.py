"""Integration tests for concurrent mutations against the shared store."""

import asyncio

import pytest

from quicklink_rbac.core.errors import QuotaExceeded, StoreTimeout
from tests.fixtures import LEAD, OPS, ROOT, custom_role, draft


class TestConcurrentMutations:
    """Races between mutations that share a counter or a record."""

    @pytest.mark.asyncio
    async def test_concurrent_creates_respect_quota(self, org_service):
        """Two creates against the last free slot: exactly one commits."""
        results = await asyncio.gather(
            org_service.subordinates.create_subordinate(OPS, draft("agent-a", "merchant_support_agent")),
            org_service.subordinates.create_subordinate(OPS, draft("agent-b", "merchant_support_agent")),
            return_exceptions=True,
        )

        created = [r for r in results if not isinstance(r, Exception)]
        failed = [r for r in results if isinstance(r, Exception)]
        assert len(created) == 1
        assert len(failed) == 1 and isinstance(failed[0], QuotaExceeded)

        ops = org_service.store.get_principal(OPS)
        assert ops.created_sub_users_count == 2
        assert org_service.subordinates.reconcile(OPS).consistent

    @pytest.mark.asyncio
    async def test_concurrent_race_many_creators(self, org_service):
        """A burst of creates never overshoots the quota."""
        await org_service.subordinates.create_subordinate(
            ROOT, draft("ops-2", "ops_admin", can_create_sub_users=True, max_sub_users=5)
        )

        results = await asyncio.gather(*[
            org_service.subordinates.create_subordinate("ops-2", draft(f"burst-{i}", "merchant_support_agent"))
            for i in range(12)
        ], return_exceptions=True)

        created = [r for r in results if not isinstance(r, Exception)]
        assert len(created) == 5
        assert all(isinstance(r, QuotaExceeded) for r in results if isinstance(r, Exception))
        assert org_service.store.get_principal("ops-2").created_sub_users_count == 5
        assert len(org_service.subordinates.list_managed("ops-2")) == 5

    @pytest.mark.asyncio
    async def test_concurrent_role_updates_are_linearizable(self, org_service):
        await org_service.roles.create_role(custom_role("analyst", 80))

        await asyncio.gather(*[
            org_service.roles.update_role("analyst", {"description": f"rev {i}", "max_sub_users": i})
            for i in range(10)
        ])

        role = org_service.roles.get_role("analyst")
        assert role.description == f"rev {role.max_sub_users}"

    @pytest.mark.asyncio
    async def test_concurrent_usage_counts(self, org_service):
        """Assignments racing on the same role counter are all counted."""
        await asyncio.gather(*[
            org_service.subordinates.create_subordinate(ROOT, draft(f"viewer-{i}", "viewer"))
            for i in range(5)
        ])

        role = org_service.roles.get_role("viewer")
        assert role.usage_stats.assigned_users_count == 5

    @pytest.mark.asyncio
    async def test_timeout_under_contention(self, org_service):
        """A mutation that cannot start in time leaves no effect."""
        locked = asyncio.Event()

        async def hold_lock():
            async with org_service.store.transaction(timeout=2.0):
                locked.set()
                await asyncio.sleep(0.2)

        holder = asyncio.create_task(hold_lock())
        await locked.wait()

        with pytest.raises(StoreTimeout):
            await org_service.subordinates.create_subordinate(
                LEAD, draft("agent-late", "merchant_support_agent"), timeout=0.05
            )
        await holder

        assert org_service.store.get_principal("agent-late") is None
        assert org_service.store.get_principal(LEAD).created_sub_users_count == 1
