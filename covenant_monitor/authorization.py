"""
Role-based access control and bank isolation.

The permission matrix is built once at import time and cannot be changed
afterwards. Every check here is a pure predicate returning a decision;
``require_*`` helpers turn a negative decision into AuthorizationError.

Usage:
    from covenant_monitor.authorization import can_acknowledge_alert, require_permission

    if can_acknowledge_alert(user, alert.bank_id):
        ...
    require_permission(user, Resource.COVENANTS, Action.UPDATE, bank_id=covenant.bank_id)
"""
import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple, Union

from covenant_monitor.exceptions import AuthorizationError
from covenant_monitor.models import Action, AuthUser, Resource, UserRole

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Permission:
    resource: Resource
    action: Action
    condition: Optional[Callable[[AuthUser, Any], bool]] = None

    def matches(self, user: AuthUser, resource: Resource, action: Action, context: Any = None) -> bool:
        if self.resource is not resource or self.action is not action:
            return False
        return self.condition is None or bool(self.condition(user, context))


def _perms(*pairs: Tuple[Resource, Action]) -> FrozenSet[Permission]:
    return frozenset(Permission(resource, action) for resource, action in pairs)


# ── Permission Matrix ─────────────────────────────────────────────────

VIEWER_PERMISSIONS: FrozenSet[Permission] = _perms(
    (Resource.CONTRACTS, Action.READ),
    (Resource.COVENANTS, Action.READ),
    (Resource.ALERTS, Action.READ),
    (Resource.REPORTS, Action.READ),
    (Resource.DASHBOARD, Action.READ),
    (Resource.BORROWERS, Action.READ),
    (Resource.FINANCIAL_METRICS, Action.READ),
)

ANALYST_PERMISSIONS: FrozenSet[Permission] = VIEWER_PERMISSIONS | _perms(
    (Resource.CONTRACTS, Action.CREATE),
    (Resource.CONTRACTS, Action.UPDATE),
    (Resource.COVENANTS, Action.CREATE),
    (Resource.COVENANTS, Action.UPDATE),
    (Resource.ALERTS, Action.ACKNOWLEDGE),
    (Resource.ALERTS, Action.ESCALATE),
    (Resource.REPORTS, Action.CREATE),
    (Resource.FINANCIAL_METRICS, Action.CREATE),
    (Resource.FINANCIAL_METRICS, Action.UPDATE),
    (Resource.BORROWERS, Action.CREATE),
    (Resource.BORROWERS, Action.UPDATE),
)

ADMIN_PERMISSIONS: FrozenSet[Permission] = ANALYST_PERMISSIONS | _perms(
    (Resource.CONTRACTS, Action.DELETE),
    (Resource.COVENANTS, Action.DELETE),
    (Resource.ALERTS, Action.RESOLVE),
    (Resource.ALERTS, Action.DELETE),
    (Resource.REPORTS, Action.UPDATE),
    (Resource.REPORTS, Action.DELETE),
    (Resource.FINANCIAL_METRICS, Action.DELETE),
    (Resource.BORROWERS, Action.DELETE),
    (Resource.USERS, Action.READ),
    (Resource.USERS, Action.CREATE),
    (Resource.USERS, Action.UPDATE),
    (Resource.USERS, Action.DELETE),
    (Resource.AUDIT_LOGS, Action.READ),
    (Resource.SYSTEM_SETTINGS, Action.READ),
    (Resource.SYSTEM_SETTINGS, Action.UPDATE),
)

PERMISSIONS: Mapping[UserRole, FrozenSet[Permission]] = MappingProxyType({
    UserRole.VIEWER: VIEWER_PERMISSIONS,
    UserRole.ANALYST: ANALYST_PERMISSIONS,
    UserRole.ADMIN: ADMIN_PERMISSIONS,
})

ROLE_HIERARCHY: Mapping[UserRole, int] = MappingProxyType({
    UserRole.VIEWER: 1,
    UserRole.ANALYST: 2,
    UserRole.ADMIN: 3,
})

PERMISSION_DESCRIPTIONS: Mapping[Tuple[Resource, Action], str] = MappingProxyType({
    (Resource.CONTRACTS, Action.READ): "View contracts",
    (Resource.CONTRACTS, Action.CREATE): "Create new contracts",
    (Resource.CONTRACTS, Action.UPDATE): "Edit contracts",
    (Resource.CONTRACTS, Action.DELETE): "Delete contracts",
    (Resource.COVENANTS, Action.READ): "View covenants",
    (Resource.COVENANTS, Action.CREATE): "Create new covenants",
    (Resource.COVENANTS, Action.UPDATE): "Edit covenants",
    (Resource.COVENANTS, Action.DELETE): "Delete covenants",
    (Resource.ALERTS, Action.READ): "View alerts",
    (Resource.ALERTS, Action.ACKNOWLEDGE): "Acknowledge alerts",
    (Resource.ALERTS, Action.ESCALATE): "Escalate alerts",
    (Resource.ALERTS, Action.RESOLVE): "Resolve alerts",
    (Resource.ALERTS, Action.DELETE): "Delete alerts",
    (Resource.USERS, Action.READ): "View users",
    (Resource.USERS, Action.CREATE): "Create new users",
    (Resource.USERS, Action.UPDATE): "Edit users",
    (Resource.USERS, Action.DELETE): "Delete users",
})


def _coerce(resource: Union[Resource, str], action: Union[Action, str]):
    try:
        return Resource(resource), Action(action)
    except ValueError:
        return None, None


# ── Core Predicates ───────────────────────────────────────────────────

def get_role_permissions(role: UserRole) -> FrozenSet[Permission]:
    return PERMISSIONS.get(role, frozenset())


def has_permission(
    user: Optional[AuthUser],
    resource: Union[Resource, str],
    action: Union[Action, str],
    context: Any = None,
) -> bool:
    """True iff the user's role grants ``action`` on ``resource``.

    Unknown resource or action names are never granted.
    """
    if user is None:
        return False
    res, act = _coerce(resource, action)
    if res is None:
        return False
    return any(p.matches(user, res, act, context) for p in get_role_permissions(user.role))


def has_any_permission(user: Optional[AuthUser], pairs: Iterable[Tuple[Resource, Action]]) -> bool:
    if user is None:
        return False
    return any(has_permission(user, r, a) for r, a in pairs)


def has_all_permissions(user: Optional[AuthUser], pairs: Iterable[Tuple[Resource, Action]]) -> bool:
    if user is None:
        return False
    return all(has_permission(user, r, a) for r, a in pairs)


def can_access_bank_resource(user: Optional[AuthUser], resource_bank_id: Optional[str]) -> bool:
    """Bank isolation: the user's bank must equal the resource's bank."""
    if user is None:
        return False
    return user.bank_id == resource_bank_id


def is_role_higher_or_equal(user_role: UserRole, required_role: UserRole) -> bool:
    return ROLE_HIERARCHY[user_role] >= ROLE_HIERARCHY[required_role]


def get_permission_description(resource: Union[Resource, str], action: Union[Action, str]) -> str:
    res, act = _coerce(resource, action)
    if res is not None and (res, act) in PERMISSION_DESCRIPTIONS:
        return PERMISSION_DESCRIPTIONS[(res, act)]
    return f"{getattr(action, 'value', action)} {getattr(resource, 'value', resource)}"


def permissions_for_role(role: UserRole) -> List[Dict[str, str]]:
    """Role permissions as display rows, sorted by resource then action."""
    rows = [
        {
            "resource": p.resource.value,
            "action": p.action.value,
            "description": get_permission_description(p.resource, p.action),
        }
        for p in get_role_permissions(role)
    ]
    return sorted(rows, key=lambda r: (r["resource"], r["action"]))


# ── Resource-Specific Helpers ─────────────────────────────────────────

def _allowed(
    user: Optional[AuthUser], resource: Resource, action: Action, bank_id: Optional[str],
) -> bool:
    # A missing bank id on the record means the caller has nothing to isolate on
    return has_permission(user, resource, action) and (
        bank_id is None or can_access_bank_resource(user, bank_id)
    )


def can_view_contract(user, contract_bank_id: Optional[str] = None) -> bool:
    return _allowed(user, Resource.CONTRACTS, Action.READ, contract_bank_id)


def can_create_contract(user) -> bool:
    return has_permission(user, Resource.CONTRACTS, Action.CREATE)


def can_update_contract(user, contract_bank_id: Optional[str] = None) -> bool:
    return _allowed(user, Resource.CONTRACTS, Action.UPDATE, contract_bank_id)


def can_delete_contract(user, contract_bank_id: Optional[str] = None) -> bool:
    return _allowed(user, Resource.CONTRACTS, Action.DELETE, contract_bank_id)


def can_view_covenant(user, covenant_bank_id: Optional[str] = None) -> bool:
    return _allowed(user, Resource.COVENANTS, Action.READ, covenant_bank_id)


def can_create_covenant(user) -> bool:
    return has_permission(user, Resource.COVENANTS, Action.CREATE)


def can_update_covenant(user, covenant_bank_id: Optional[str] = None) -> bool:
    return _allowed(user, Resource.COVENANTS, Action.UPDATE, covenant_bank_id)


def can_delete_covenant(user, covenant_bank_id: Optional[str] = None) -> bool:
    return _allowed(user, Resource.COVENANTS, Action.DELETE, covenant_bank_id)


def can_view_alert(user, alert_bank_id: Optional[str] = None) -> bool:
    return _allowed(user, Resource.ALERTS, Action.READ, alert_bank_id)


def can_acknowledge_alert(user, alert_bank_id: Optional[str] = None) -> bool:
    return _allowed(user, Resource.ALERTS, Action.ACKNOWLEDGE, alert_bank_id)


def can_resolve_alert(user, alert_bank_id: Optional[str] = None) -> bool:
    return _allowed(user, Resource.ALERTS, Action.RESOLVE, alert_bank_id)


def can_escalate_alert(user, alert_bank_id: Optional[str] = None) -> bool:
    return _allowed(user, Resource.ALERTS, Action.ESCALATE, alert_bank_id)


def can_view_report(user, report_bank_id: Optional[str] = None) -> bool:
    return _allowed(user, Resource.REPORTS, Action.READ, report_bank_id)


def can_create_report(user) -> bool:
    return has_permission(user, Resource.REPORTS, Action.CREATE)


def can_view_users(user) -> bool:
    return has_permission(user, Resource.USERS, Action.READ)


def can_create_users(user) -> bool:
    return has_permission(user, Resource.USERS, Action.CREATE)


def can_update_user(user, target_user_bank_id: Optional[str] = None) -> bool:
    return _allowed(user, Resource.USERS, Action.UPDATE, target_user_bank_id)


def can_delete_user(user, target_user_bank_id: Optional[str] = None) -> bool:
    return _allowed(user, Resource.USERS, Action.DELETE, target_user_bank_id)


def can_view_audit_logs(user) -> bool:
    return has_permission(user, Resource.AUDIT_LOGS, Action.READ)


def can_view_bank_audit_logs(user, bank_id: str) -> bool:
    return has_permission(user, Resource.AUDIT_LOGS, Action.READ) and can_access_bank_resource(user, bank_id)


# ── Enforcement ───────────────────────────────────────────────────────

def require_permission(
    user: Optional[AuthUser],
    resource: Resource,
    action: Action,
    bank_id: Optional[str] = None,
) -> AuthUser:
    """Return ``user`` if allowed, else raise AuthorizationError."""
    if not _allowed(user, resource, action, bank_id):
        user_id = user.id if user is not None else None
        logger.warning(
            "Access denied: user=%s resource=%s action=%s bank=%s",
            user_id, resource.value, action.value, bank_id,
        )
        raise AuthorizationError(user_id, resource.value, action.value, bank_id)
    return user
