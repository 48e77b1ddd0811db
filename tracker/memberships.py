"""
tracker/memberships.py

Membership store and the rules that guard membership mutations.

These functions enforce data rules only (owner protection, uniqueness).
Whether the caller is allowed to touch membership at all is decided by the
resolver's manage_members action before any of them is called.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from tracker.db import Queryable, Store, Transaction
from tracker.errors import (
    AlreadyMember,
    CannotDemoteOwner,
    CannotRemoveOwner,
    MembershipNotFound,
    UniqueViolation,
)
from tracker.models import Membership, Role, User, now_iso
from tracker.projects import get_project
from tracker.users import get_user


def get_membership(db: Queryable, project_id: int, user_id: int) -> Optional[Membership]:
    row = db.fetch_one(
        """
        SELECT id, project_id, user_id, role, created_at
        FROM project_members
        WHERE project_id = ? AND user_id = ?
        """,
        (project_id, user_id),
    )
    return Membership(**row) if row else None


def list_members(db: Queryable, project_id: int) -> List[Dict[str, Any]]:
    """
    Members of a project joined with their user profile.

    Raises:
        ProjectNotFound: If the project does not exist
    """
    get_project(db, project_id)
    return db.fetch_all(
        """
        SELECT pm.id, pm.project_id, pm.user_id, pm.role, pm.created_at,
               u.email, u.display_name
        FROM project_members pm
        JOIN users u ON u.id = pm.user_id
        WHERE pm.project_id = ?
        ORDER BY pm.created_at ASC, pm.id ASC
        """,
        (project_id,),
    )


def list_assignable_users(db: Queryable, project_id: int) -> List[User]:
    """
    Users a task in project_id may be assigned to: its members, any role.

    Raises:
        ProjectNotFound: If the project does not exist
    """
    get_project(db, project_id)
    rows = db.fetch_all(
        """
        SELECT u.id, u.email, u.password_hash, u.display_name, u.system_role,
               u.created_at, u.updated_at
        FROM project_members pm
        JOIN users u ON u.id = pm.user_id
        WHERE pm.project_id = ?
        ORDER BY u.display_name ASC, u.id ASC
        """,
        (project_id,),
    )
    return [User(**row) for row in rows]


def add_member(store: Store, project_id: int, user_id: int, role: Role = Role.member) -> Membership:
    """
    Add user_id to project_id with the given membership role.

    Raises:
        ProjectNotFound: If the project does not exist
        UserNotFound: If the user does not exist
        AlreadyMember: If a membership row already exists
    """
    def _add(tx: Transaction) -> Membership:
        get_project(tx, project_id)
        get_user(tx, user_id)
        if get_membership(tx, project_id, user_id) is not None:
            raise AlreadyMember(project_id, user_id)
        tx.execute(
            "INSERT INTO project_members (project_id, user_id, role, created_at) VALUES (?, ?, ?, ?)",
            (project_id, user_id, role.value, now_iso()),
        )
        return get_membership(tx, project_id, user_id)

    try:
        return store.run_in_transaction(_add)
    except UniqueViolation as e:
        # Lost a race with a concurrent add of the same pair
        raise AlreadyMember(project_id, user_id) from e


def remove_member(store: Store, project_id: int, user_id: int) -> None:
    """
    Remove a membership. The project owner can never be removed, whoever asks.
    Tasks in the project assigned to the removed user become unassigned.

    Raises:
        ProjectNotFound: If the project does not exist
        CannotRemoveOwner: If user_id owns the project
        MembershipNotFound: If there is no such membership
    """
    def _remove(tx: Transaction) -> None:
        project = get_project(tx, project_id)
        if project.owner_id == user_id:
            raise CannotRemoveOwner(project_id, user_id)
        result = tx.execute(
            "DELETE FROM project_members WHERE project_id = ? AND user_id = ?",
            (project_id, user_id),
        )
        if result.affected_count == 0:
            raise MembershipNotFound(f"project {project_id}, user {user_id}")
        # Only members can be assignees
        tx.execute(
            "UPDATE tasks SET assignee_id = NULL, updated_at = ? WHERE project_id = ? AND assignee_id = ?",
            (now_iso(), project_id, user_id),
        )

    store.run_in_transaction(_remove)


def change_member_role(store: Store, project_id: int, user_id: int, new_role: Role) -> Membership:
    """
    Change a member's project role.

    Raises:
        ProjectNotFound: If the project does not exist
        CannotDemoteOwner: If the owner would lose the Admin role
        MembershipNotFound: If there is no such membership
    """
    def _change(tx: Transaction) -> Membership:
        project = get_project(tx, project_id)
        if project.owner_id == user_id and new_role != Role.admin:
            raise CannotDemoteOwner(project_id, user_id)
        result = tx.execute(
            "UPDATE project_members SET role = ? WHERE project_id = ? AND user_id = ?",
            (new_role.value, project_id, user_id),
        )
        if result.affected_count == 0:
            raise MembershipNotFound(f"project {project_id}, user {user_id}")
        return get_membership(tx, project_id, user_id)

    return store.run_in_transaction(_change)


def is_member(db: Queryable, project_id: int, user_id: int) -> bool:
    return get_membership(db, project_id, user_id) is not None
