"""Tests for access scope resolution."""

import pytest

from automara_core.exceptions import AccessDeniedError, ForbiddenError
from automara_core.tenancy import CallerIdentity, ScopeFilter, ScopeResolver, normalize_role


class TestNormalizeRole:
    """Tests for role normalization."""

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("admin", "global_admin"),
            ("ADMIN", "global_admin"),
            ("global_admin", "global_admin"),
            (" msp_admin ", "msp_admin"),
            ("", "user"),
            (None, "user"),
            ("viewer", "viewer"),
        ],
    )
    def test_normalize(self, raw, expected):
        assert normalize_role(raw) == expected

    def test_caller_identity_normalizes(self):
        caller = CallerIdentity(role="admin")
        assert caller.role == "global_admin"
        assert caller.is_global_admin


class TestScopeFilter:
    """Tests for ScopeFilter."""

    def test_unrestricted(self):
        scope = ScopeFilter.unrestricted()
        assert scope.is_unrestricted
        assert scope.allows(1)
        assert scope.allows(None)
        assert scope.sql("tenant_id") == ("1 = 1", {})

    def test_restricted(self):
        scope = ScopeFilter.of(3, 1)
        assert scope.allows(1)
        assert not scope.allows(2)
        assert not scope.allows(None)

        predicate, params = scope.sql("tenant_id")
        assert predicate == "tenant_id IN (:scope_0, :scope_1)"
        assert params == {"scope_0": 1, "scope_1": 3}

    def test_empty_matches_nothing(self):
        assert ScopeFilter(tenant_ids=frozenset()).sql("id") == ("1 = 0", {})


class TestResolveScope:
    """Tests for ScopeResolver.resolve_scope."""

    async def test_global_admin_unrestricted(self, resolver):
        scope = await resolver.resolve_scope("global_admin", None)
        assert scope.is_unrestricted

    async def test_legacy_admin_is_global(self, resolver):
        scope = await resolver.resolve_scope("admin", None)
        assert scope.is_unrestricted

    async def test_msp_admin_sees_own_and_sub_tenants(self, resolver, msp_tree):
        """MSP 1 with sub-tenants 2 and 3 resolves to {1, 2, 3}."""
        msp = msp_tree["msp"]
        scope = await resolver.resolve_scope("msp_admin", msp.id)

        assert scope.tenant_ids == {msp.id, msp_tree["child_a"].id, msp_tree["child_b"].id}
        assert not scope.allows(msp_tree["other"].id)

    async def test_client_admin_of_leaf_sees_only_itself(self, resolver, msp_tree):
        child = msp_tree["child_a"]
        scope = await resolver.resolve_scope("client_admin", child.id)
        assert scope.tenant_ids == {child.id}

    async def test_plain_user_sees_own_tenant_without_query(self, resolver, msp_tree):
        msp = msp_tree["msp"]
        scope = await resolver.resolve_scope("user", msp.id)
        assert scope.tenant_ids == {msp.id}

    @pytest.mark.parametrize("role", ["client_admin", "msp_admin", "user", ""])
    async def test_missing_tenant_denied(self, resolver, role):
        with pytest.raises(AccessDeniedError):
            await resolver.resolve_scope(role, None)

    async def test_admin_of_unknown_tenant_denied(self, resolver):
        with pytest.raises(AccessDeniedError, match="does not exist"):
            await resolver.resolve_scope("msp_admin", 9999)

    async def test_evaluated_fresh_each_call(self, resolver, msp_tree, tenant_store):
        msp = msp_tree["msp"]
        before = await resolver.resolve_scope("msp_admin", msp.id)

        new_child = await tenant_store.create(
            name="Initech", domain="initech.example", parent_tenant_id=msp.id
        )
        after = await resolver.resolve_scope("msp_admin", msp.id)

        assert new_child.id not in before.tenant_ids
        assert new_child.id in after.tenant_ids

    async def test_resolve_uses_caller_identity(self, resolver, acme):
        scope = await resolver.resolve(CallerIdentity(role="client_admin", tenant_id=acme.id))
        assert scope.tenant_ids == {acme.id}


class TestAuthorizeTenant:
    """Tests for ScopeResolver.authorize_tenant."""

    def test_global_admin_allowed_anywhere(self):
        ScopeResolver.authorize_tenant(CallerIdentity(role="global_admin"), 7)

    def test_member_allowed(self):
        ScopeResolver.authorize_tenant(CallerIdentity(role="user", tenant_id=7), 7)

    @pytest.mark.parametrize("tenant_id", [8, None])
    def test_non_member_forbidden(self, tenant_id):
        with pytest.raises(ForbiddenError):
            ScopeResolver.authorize_tenant(CallerIdentity(role="msp_admin", tenant_id=tenant_id), 7)
