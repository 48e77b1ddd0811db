"""
tracker/projects.py

Project store. A project's key is normalized to upper case on create and is
immutable afterwards, because every task key is derived from it.
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional

from tracker.db import Queryable, Store, Transaction
from tracker.errors import AccessDeniedError, ProjectKeyTaken, ProjectNotFound, UniqueViolation
from tracker.models import Principal, Project, Role, TaskPriority, TaskStatus, TaskType, now_iso
from tracker.rbac import role_at_least

PROJECT_KEY_RE = re.compile(r"^[A-Z]{2,10}$")

PROJECT_COLUMNS = "id, name, description, key, owner_id, last_task_number, created_at, updated_at"


def normalize_project_key(key: str) -> str:
    """
    Upper-case and validate a project key.

    Raises:
        ValueError: If the key is not 2-10 ASCII letters
    """
    normalized = (key or "").strip().upper()
    if not PROJECT_KEY_RE.match(normalized):
        raise ValueError("Project key must be 2-10 letters (A-Z)")
    return normalized


def get_project(db: Queryable, project_id: int) -> Project:
    row = db.fetch_one(f"SELECT {PROJECT_COLUMNS} FROM projects WHERE id = ?", (project_id,))
    if not row:
        raise ProjectNotFound(project_id)
    return Project(**row)


def get_project_by_key(db: Queryable, key: str) -> Project:
    row = db.fetch_one(f"SELECT {PROJECT_COLUMNS} FROM projects WHERE key = ?", ((key or "").strip().upper(),))
    if not row:
        raise ProjectNotFound(key)
    return Project(**row)


def list_projects_for(db: Queryable, principal: Principal) -> List[Project]:
    """System Admins see every project; everyone else sees their memberships."""
    if principal.system_role == Role.admin:
        rows = db.fetch_all(f"SELECT {PROJECT_COLUMNS} FROM projects ORDER BY created_at DESC, id DESC")
    else:
        rows = db.fetch_all(
            """
            SELECT p.id, p.name, p.description, p.key, p.owner_id, p.last_task_number,
                   p.created_at, p.updated_at
            FROM projects p
            JOIN project_members pm ON pm.project_id = p.id
            WHERE pm.user_id = ?
            ORDER BY p.created_at DESC, p.id DESC
            """,
            (principal.id,),
        )
    return [Project(**row) for row in rows]


def create_project(
    store: Store,
    principal: Principal,
    name: str,
    key: str,
    description: Optional[str] = None,
) -> Project:
    """
    Create a project owned by principal.

    The owner's Admin membership is written in the same transaction, so a
    project never exists without its owner as a member.

    Raises:
        AccessDeniedError: If principal is a system Reader
        ValueError: If the key is malformed
        ProjectKeyTaken: If another project already uses the key
    """
    if not role_at_least(principal.system_role, Role.member):
        raise AccessDeniedError("system Admin or Member role required to create projects")
    key = normalize_project_key(key)

    def _create(tx: Transaction) -> Project:
        if tx.fetch_one("SELECT id FROM projects WHERE key = ?", (key,)):
            raise ProjectKeyTaken(key)
        now = now_iso()
        result = tx.execute(
            """
            INSERT INTO projects (name, description, key, owner_id, last_task_number, created_at, updated_at)
            VALUES (?, ?, ?, ?, 0, ?, ?)
            """,
            (name.strip(), description, key, principal.id, now, now),
        )
        project_id = result.last_insert_id
        tx.execute(
            "INSERT INTO project_members (project_id, user_id, role, created_at) VALUES (?, ?, ?, ?)",
            (project_id, principal.id, Role.admin.value, now),
        )
        return get_project(tx, project_id)

    try:
        return store.run_in_transaction(_create)
    except UniqueViolation as e:
        raise ProjectKeyTaken(key) from e


def update_project(
    store: Store,
    project_id: int,
    name: Optional[str] = None,
    description: Optional[str] = None,
) -> Project:
    """Update name and/or description. The key is never changed."""
    def _update(tx: Transaction) -> Project:
        project = get_project(tx, project_id)
        tx.execute(
            "UPDATE projects SET name = ?, description = ?, updated_at = ? WHERE id = ?",
            (
                name.strip() if name is not None else project.name,
                description if description is not None else project.description,
                now_iso(),
                project_id,
            ),
        )
        return get_project(tx, project_id)

    return store.run_in_transaction(_update)


def delete_project(store: Store, project_id: int) -> None:
    """Delete a project; members, tasks and comments go with it."""
    def _delete(tx: Transaction) -> None:
        result = tx.execute("DELETE FROM projects WHERE id = ?", (project_id,))
        if result.affected_count == 0:
            raise ProjectNotFound(project_id)

    store.run_in_transaction(_delete)


def project_stats(store: Store, project_id: int) -> Dict[str, Any]:
    """Task counts by status, priority and type, plus the member count."""
    def _stats(tx: Transaction) -> Dict[str, Any]:
        get_project(tx, project_id)
        stats: Dict[str, Any] = {
            "by_status": {s.value: 0 for s in TaskStatus},
            "by_priority": {p.value: 0 for p in TaskPriority},
            "by_type": {t.value: 0 for t in TaskType},
        }
        for column, bucket in (("status", "by_status"), ("priority", "by_priority"), ("type", "by_type")):
            rows = tx.fetch_all(
                f"SELECT {column} AS value, COUNT(*) AS n FROM tasks WHERE project_id = ? GROUP BY {column}",
                (project_id,),
            )
            for row in rows:
                stats[bucket][row["value"]] = int(row["n"])
        stats["total_tasks"] = sum(stats["by_status"].values())
        stats["member_count"] = int(
            tx.execute("SELECT COUNT(*) AS n FROM project_members WHERE project_id = ?", (project_id,)).scalar() or 0
        )
        return stats

    return store.run_in_transaction(_stats, readonly=True)
