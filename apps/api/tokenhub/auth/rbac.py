"""RBAC permission matrix and checker.

Roles inherit cumulatively: viewer < analyst < manager < admin.
Permissions are (action, resource_type) tuples in a set for O(1) lookup.
"""

from tokenhub.models.enums import UserRole


# ── Actions ───────────────────────────────────────────────────────────────


class Action:
    VIEW = "view"
    CREATE = "create"
    EDIT = "edit"
    APPROVE = "approve"
    CANCEL = "cancel"
    DELEGATE = "delegate"
    ESCALATE = "escalate"
    MANAGE_SETTINGS = "manage_settings"


# ── Resource Types ────────────────────────────────────────────────────────


class Resource:
    REDEMPTION = "redemption"
    DISTRIBUTION = "distribution"
    APPROVAL = "approval"
    AUDIT_LOG = "audit_log"


# ── Role hierarchy (higher = more privilege) ──────────────────────────────

ROLE_HIERARCHY: dict[UserRole, int] = {
    UserRole.VIEWER: 0,
    UserRole.ANALYST: 1,
    UserRole.MANAGER: 2,
    UserRole.ADMIN: 3,
}

# ── Per-role permission sets ──────────────────────────────────────────────

_VIEWER_PERMS: set[tuple[str, str]] = {
    (Action.VIEW, Resource.REDEMPTION),
    (Action.VIEW, Resource.DISTRIBUTION),
    (Action.VIEW, Resource.APPROVAL),
}

_ANALYST_EXTRA: set[tuple[str, str]] = {
    (Action.CREATE, Resource.REDEMPTION),
}

_MANAGER_EXTRA: set[tuple[str, str]] = {
    (Action.EDIT, Resource.REDEMPTION),
    (Action.CANCEL, Resource.REDEMPTION),
    (Action.EDIT, Resource.DISTRIBUTION),
    (Action.CREATE, Resource.APPROVAL),
    (Action.APPROVE, Resource.APPROVAL),
    (Action.DELEGATE, Resource.APPROVAL),
    (Action.ESCALATE, Resource.APPROVAL),
}

_ADMIN_EXTRA: set[tuple[str, str]] = {
    (Action.MANAGE_SETTINGS, Resource.APPROVAL),
    (Action.VIEW, Resource.AUDIT_LOG),
}

# ── Cumulative permission matrix ──────────────────────────────────────────

PERMISSION_MATRIX: dict[UserRole, set[tuple[str, str]]] = {
    UserRole.VIEWER: _VIEWER_PERMS,
    UserRole.ANALYST: _VIEWER_PERMS | _ANALYST_EXTRA,
    UserRole.MANAGER: _VIEWER_PERMS | _ANALYST_EXTRA | _MANAGER_EXTRA,
    UserRole.ADMIN: _VIEWER_PERMS | _ANALYST_EXTRA | _MANAGER_EXTRA | _ADMIN_EXTRA,
}


# ── Public API ────────────────────────────────────────────────────────────


def check_permission(role: UserRole, action: str, resource_type: str) -> bool:
    """Check if a role has permission for an action on a resource type."""
    perms = PERMISSION_MATRIX.get(role)
    if perms is None:
        return False
    return (action, resource_type) in perms


def has_role_at_least(role: UserRole, minimum: UserRole) -> bool:
    return ROLE_HIERARCHY.get(role, -1) >= ROLE_HIERARCHY[minimum]


def get_permissions_for_role(role: UserRole) -> dict[str, list[str]]:
    """Return permissions grouped by resource type (for API responses)."""
    perms = PERMISSION_MATRIX.get(role, set())
    result: dict[str, list[str]] = {}
    for action, resource in sorted(perms):
        result.setdefault(resource, []).append(action)
    return result
