"""
tracker/authz.py

Authorization resolver: the single source of truth for project-scoped access.

Every route that touches a project asks resolve_permission() (or its raising
wrapper require_permission()) instead of checking roles inline, so the
two-level model cannot drift between endpoints:

1. The project must exist, otherwise NotFound (for every principal alike)
2. System Admins are granted every action on every project
3. Everyone else needs a project_members row; no row means AccessDenied
4. The membership role is checked against tracker.rbac.ROLE_ACTIONS

The resolver is a pure function of store state at call time. Nothing is
cached, so membership changes are visible to the very next check.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Set, Union

from tracker.db import Queryable
from tracker.errors import AccessDeniedError, ProjectNotFound
from tracker.models import Principal, Role
from tracker.rbac import ALL_ACTIONS, Action, actions_for, role_allows


# ============================================================================
# Results
# ============================================================================

@dataclass(frozen=True)
class Granted:
    project_id: int
    action: Action
    # "system_admin" or "membership"
    via: str
    role: Optional[Role] = None

    def __bool__(self) -> bool:
        return True


@dataclass(frozen=True)
class AccessDenied:
    project_id: int
    action: Action
    reason: str

    def __bool__(self) -> bool:
        return False


@dataclass(frozen=True)
class NotFound:
    project_id: int

    def __bool__(self) -> bool:
        return False


PermissionResult = Union[Granted, AccessDenied, NotFound]


# ============================================================================
# Lookups
# ============================================================================

def _project_exists(db: Queryable, project_id: int) -> bool:
    return db.fetch_one("SELECT id FROM projects WHERE id = ?", (project_id,)) is not None


def get_membership_role(db: Queryable, project_id: int, user_id: int) -> Optional[Role]:
    """Membership role of user_id on project_id, or None if not a member."""
    row = db.fetch_one(
        "SELECT role FROM project_members WHERE project_id = ? AND user_id = ?",
        (project_id, user_id),
    )
    if not row:
        return None
    return Role.parse(row["role"])


# ============================================================================
# Resolver
# ============================================================================

def resolve_permission(
    db: Queryable,
    principal: Principal,
    project_id: int,
    action: Union[Action, str],
) -> PermissionResult:
    """
    Decide whether principal may perform action on project_id.

    Args:
        db: Store or open transaction to read from
        principal: Authenticated caller (id + system_role)
        project_id: Target project
        action: Action enum member or its string value

    Returns:
        Granted, AccessDenied(reason) or NotFound(project_id)

    Raises:
        ValueError: If action is not a known action
    """
    action = Action.parse(action) if not isinstance(action, Action) else action

    if not _project_exists(db, project_id):
        return NotFound(project_id=project_id)

    if principal.system_role == Role.admin:
        return Granted(project_id=project_id, action=action, via="system_admin")

    role = get_membership_role(db, project_id, principal.id)
    if role is None:
        return AccessDenied(
            project_id=project_id,
            action=action,
            reason="not a member of this project",
        )

    if not role_allows(role, action):
        return AccessDenied(
            project_id=project_id,
            action=action,
            reason=f"project role {role.value} cannot {action.value}",
        )

    return Granted(project_id=project_id, action=action, via="membership", role=role)


def require_permission(
    db: Queryable,
    principal: Principal,
    project_id: int,
    action: Union[Action, str],
) -> Granted:
    """
    Raising wrapper around resolve_permission().

    Raises:
        ProjectNotFound: If the project does not exist
        AccessDeniedError: If the principal lacks the required role
    """
    result = resolve_permission(db, principal, project_id, action)
    if isinstance(result, NotFound):
        raise ProjectNotFound(project_id)
    if isinstance(result, AccessDenied):
        raise AccessDeniedError(result.reason)
    return result


def effective_actions(
    db: Queryable,
    principal: Principal,
    project_id: int,
) -> Set[Action]:
    """
    Every action principal may perform on project_id.

    Raises:
        ProjectNotFound: If the project does not exist
    """
    if not _project_exists(db, project_id):
        raise ProjectNotFound(project_id)
    if principal.system_role == Role.admin:
        return set(ALL_ACTIONS)
    return actions_for(get_membership_role(db, project_id, principal.id))


def require_system_admin(principal: Principal) -> None:
    """
    Gate for system-wide operations (user administration).

    Raises:
        AccessDeniedError: If principal is not a system Admin
    """
    if principal.system_role != Role.admin:
        raise AccessDeniedError("system Admin role required")
