"""Permission matrix, role inheritance and bank isolation."""
import dataclasses

import pytest
from hypothesis import given, strategies as st

from covenant_monitor import authorization as authz
from covenant_monitor.exceptions import AuthorizationError
from covenant_monitor.models import Action, AuthUser, Resource, UserRole

roles = st.sampled_from(list(UserRole))
bank_ids = st.text(min_size=1, max_size=12)
pairs = st.tuples(st.sampled_from(list(Resource)), st.sampled_from(list(Action)))


def user(role, bank_id="bank_a"):
    return AuthUser(id=f"u_{role.value}", role=role, bank_id=bank_id)


class TestInheritance:
    @given(pair=pairs)
    def test_each_role_inherits_lower_roles(self, pair):
        resource, action = pair
        if authz.has_permission(user(UserRole.VIEWER), resource, action):
            assert authz.has_permission(user(UserRole.ANALYST), resource, action)
        if authz.has_permission(user(UserRole.ANALYST), resource, action):
            assert authz.has_permission(user(UserRole.ADMIN), resource, action)

    def test_strict_supersets(self):
        assert authz.VIEWER_PERMISSIONS < authz.ANALYST_PERMISSIONS < authz.ADMIN_PERMISSIONS

    def test_role_hierarchy(self):
        assert authz.is_role_higher_or_equal(UserRole.ADMIN, UserRole.ANALYST)
        assert authz.is_role_higher_or_equal(UserRole.ANALYST, UserRole.ANALYST)
        assert not authz.is_role_higher_or_equal(UserRole.VIEWER, UserRole.ANALYST)


class TestMatrixIsImmutable:
    def test_role_table(self):
        with pytest.raises(TypeError):
            authz.PERMISSIONS[UserRole.VIEWER] = authz.ADMIN_PERMISSIONS

    def test_permission_sets(self):
        with pytest.raises(AttributeError):
            authz.VIEWER_PERMISSIONS.add(authz.Permission(Resource.USERS, Action.DELETE))

    def test_permission_records(self):
        perm = next(iter(authz.VIEWER_PERMISSIONS))
        with pytest.raises(dataclasses.FrozenInstanceError):
            perm.action = Action.DELETE


class TestHasPermission:
    def test_absent_user(self):
        assert not authz.has_permission(None, Resource.CONTRACTS, Action.READ)
        assert not authz.has_any_permission(None, [(Resource.CONTRACTS, Action.READ)])

    @pytest.mark.parametrize("role,resource,action,expected", [
        (UserRole.VIEWER, Resource.ALERTS, Action.READ, True),
        (UserRole.VIEWER, Resource.ALERTS, Action.ACKNOWLEDGE, False),
        (UserRole.ANALYST, Resource.ALERTS, Action.ACKNOWLEDGE, True),
        (UserRole.ANALYST, Resource.ALERTS, Action.RESOLVE, False),
        (UserRole.ADMIN, Resource.ALERTS, Action.RESOLVE, True),
        (UserRole.ANALYST, Resource.USERS, Action.READ, False),
        (UserRole.ADMIN, Resource.AUDIT_LOGS, Action.READ, True),
    ])
    def test_matrix(self, role, resource, action, expected):
        assert authz.has_permission(user(role), resource, action) is expected

    def test_string_names_accepted(self):
        assert authz.has_permission(user(UserRole.VIEWER), "contracts", "read")
        assert not authz.has_permission(user(UserRole.ADMIN), "spaceships", "read")

    def test_any_and_all(self):
        analyst = user(UserRole.ANALYST)
        wanted = [(Resource.ALERTS, Action.ACKNOWLEDGE), (Resource.ALERTS, Action.RESOLVE)]
        assert authz.has_any_permission(analyst, wanted)
        assert not authz.has_all_permissions(analyst, wanted)
        assert authz.has_all_permissions(user(UserRole.ADMIN), wanted)

    def test_conditional_permission(self):
        perm = authz.Permission(Resource.REPORTS, Action.READ, condition=lambda u, ctx: ctx == u.bank_id)
        assert perm.matches(user(UserRole.VIEWER), Resource.REPORTS, Action.READ, "bank_a")
        assert not perm.matches(user(UserRole.VIEWER), Resource.REPORTS, Action.READ, "bank_b")


class TestBankIsolation:
    @given(bank=bank_ids, other=bank_ids, role=roles)
    def test_own_bank_only(self, bank, other, role):
        u = user(role, bank)
        assert authz.can_access_bank_resource(u, bank)
        if other != bank:
            assert not authz.can_access_bank_resource(u, other)

    def test_absent_user(self):
        assert not authz.can_access_bank_resource(None, "bank_a")

    def test_helpers_need_both_checks(self):
        analyst = user(UserRole.ANALYST)
        viewer = user(UserRole.VIEWER)
        assert authz.can_acknowledge_alert(analyst, "bank_a")
        assert not authz.can_acknowledge_alert(analyst, "bank_b")
        assert not authz.can_acknowledge_alert(viewer, "bank_a")
        assert authz.can_update_covenant(analyst, "bank_a")
        assert not authz.can_delete_covenant(analyst, "bank_a")
        assert authz.can_view_bank_audit_logs(user(UserRole.ADMIN), "bank_a")
        assert not authz.can_view_bank_audit_logs(user(UserRole.ADMIN), "bank_b")

    def test_helper_without_bank_checks_permission_only(self):
        assert authz.can_view_contract(user(UserRole.VIEWER))
        assert not authz.can_create_contract(user(UserRole.VIEWER))


class TestRequirePermission:
    def test_returns_user(self):
        analyst = user(UserRole.ANALYST)
        assert authz.require_permission(analyst, Resource.COVENANTS, Action.UPDATE, "bank_a") is analyst

    def test_raises_with_context(self):
        with pytest.raises(AuthorizationError) as exc:
            authz.require_permission(user(UserRole.VIEWER), Resource.COVENANTS, Action.UPDATE, "bank_a")
        assert exc.value.resource == "covenants"
        assert exc.value.action == "update"

    def test_foreign_bank(self):
        with pytest.raises(AuthorizationError):
            authz.require_permission(user(UserRole.ADMIN), Resource.ALERTS, Action.READ, "bank_b")


def test_permissions_for_role_rows():
    rows = authz.permissions_for_role(UserRole.VIEWER)
    assert len(rows) == len(authz.VIEWER_PERMISSIONS)
    assert {"resource": "alerts", "action": "read", "description": "View alerts"} in rows
    assert authz.get_permission_description("dashboard", "read") == "read dashboard"
