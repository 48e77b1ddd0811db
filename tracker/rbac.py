"""
tracker/rbac.py

Role -> action table for project-scoped authorization.

Pure Python logic - no FastAPI imports, no database access. The resolver in
tracker/authz.py is the only caller that should combine this table with
store state.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet, Optional, Set

from tracker.models import Role


# ============================================================================
# Actions
# ============================================================================

class Action(str, Enum):
    """Everything a principal can attempt against a project."""
    VIEW = "view"
    COMMENT = "comment"
    CREATE_TASK = "create_task"
    UPDATE_TASK = "update_task"
    DELETE_TASK = "delete_task"
    MANAGE_MEMBERS = "manage_members"
    UPDATE_PROJECT = "update_project"
    DELETE_PROJECT = "delete_project"

    @classmethod
    def parse(cls, value: str) -> "Action":
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown action: {value}")


ALL_ACTIONS: FrozenSet[Action] = frozenset(Action)


# ============================================================================
# Membership Role to Actions Mapping
# ============================================================================

ROLE_ACTIONS: Dict[Role, FrozenSet[Action]] = {
    # Project admin: everything, scoped to this project
    Role.admin: ALL_ACTIONS,
    Role.member: frozenset({
        Action.VIEW,
        Action.COMMENT,
        Action.CREATE_TASK,
        Action.UPDATE_TASK,
    }),
    # Readers can look and discuss, nothing else
    Role.reader: frozenset({
        Action.VIEW,
        Action.COMMENT,
    }),
}


def role_allows(role: Optional[Role], action: Action) -> bool:
    """
    Check whether a membership role permits an action.

    Returns False for a missing role (no membership row).
    """
    if role is None:
        return False
    return action in ROLE_ACTIONS.get(role, frozenset())


def actions_for(role: Optional[Role]) -> Set[Action]:
    """All actions a membership role grants (empty for no membership)."""
    if role is None:
        return set()
    return set(ROLE_ACTIONS.get(role, frozenset()))


# ============================================================================
# System Role Helpers
# ============================================================================

ROLE_HIERARCHY = {
    Role.admin: 3,
    Role.member: 2,
    Role.reader: 1,
}


def role_level(role: Optional[Role]) -> int:
    """Numeric level for a role (higher = more privileged), 0 if missing."""
    return ROLE_HIERARCHY.get(role, 0) if role is not None else 0


def role_at_least(user_role: Optional[Role], required_role: Role) -> bool:
    """
    Check if user_role meets or exceeds required_role in hierarchy.

    Example:
        role_at_least(Role.admin, Role.member) -> True
        role_at_least(Role.reader, Role.member) -> False
    """
    return role_level(user_role) >= role_level(required_role)
