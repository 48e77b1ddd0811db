"""
tracker/tasks.py

Task data access. New tasks are created only through
tracker.allocator.allocate_and_insert, which owns sequence numbering; nothing
here ever writes sequence_number or projects.last_task_number.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from tracker.db import Queryable, Store, Transaction
from tracker.errors import InvalidAssignee, TaskNotFound
from tracker.memberships import is_member
from tracker.models import Task, TaskPriority, TaskStatus, TaskType, now_iso, to_db_datetime

TASK_KEY_RE = re.compile(r"^([A-Za-z]{2,10})-(\d+)$")

TASK_SELECT = """
    SELECT t.id, t.project_id, p.key AS project_key, t.sequence_number, t.title,
           t.description, t.type, t.status, t.priority, t.assignee_id, t.reporter_id,
           t.due_date, t.created_at, t.updated_at
    FROM tasks t
    JOIN projects p ON p.id = t.project_id
"""

UPDATABLE_FIELDS = ("title", "description", "type", "status", "priority", "assignee_id", "due_date")
NULLABLE_FIELDS = ("description", "assignee_id", "due_date")


def format_task_key(project_key: str, sequence_number: int) -> str:
    return f"{project_key}-{sequence_number}"


def parse_task_key(task_key: str) -> Tuple[str, int]:
    """
    Split "ACME-12" into ("ACME", 12).

    Raises:
        ValueError: If task_key is not PROJECTKEY-N
    """
    match = TASK_KEY_RE.match((task_key or "").strip())
    if not match:
        raise ValueError(f"Invalid task key: {task_key}")
    return match.group(1).upper(), int(match.group(2))


def get_task(db: Queryable, task_id: int) -> Task:
    row = db.fetch_one(TASK_SELECT + " WHERE t.id = ?", (task_id,))
    if not row:
        raise TaskNotFound(task_id)
    return Task(**row)


def get_task_by_sequence(db: Queryable, project_id: int, sequence_number: int) -> Task:
    row = db.fetch_one(
        TASK_SELECT + " WHERE t.project_id = ? AND t.sequence_number = ?",
        (project_id, sequence_number),
    )
    if not row:
        raise TaskNotFound(f"project {project_id} #{sequence_number}")
    return Task(**row)


def get_task_by_key(db: Queryable, task_key: str) -> Task:
    """
    Look up a task by its display key.

    Raises:
        ValueError: If the key is malformed
        TaskNotFound: If no task carries that key
    """
    project_key, sequence_number = parse_task_key(task_key)
    row = db.fetch_one(
        TASK_SELECT + " WHERE p.key = ? AND t.sequence_number = ?",
        (project_key, sequence_number),
    )
    if not row:
        raise TaskNotFound(task_key)
    return Task(**row)


def list_tasks(
    db: Queryable,
    project_id: int,
    status: Optional[TaskStatus] = None,
    assignee_id: Optional[int] = None,
    priority: Optional[TaskPriority] = None,
    task_type: Optional[TaskType] = None,
) -> List[Task]:
    """Tasks of a project in sequence order, optionally filtered."""
    clauses = ["t.project_id = ?"]
    params: List[Any] = [project_id]
    if status is not None:
        clauses.append("t.status = ?")
        params.append(status.value)
    if assignee_id is not None:
        clauses.append("t.assignee_id = ?")
        params.append(assignee_id)
    if priority is not None:
        clauses.append("t.priority = ?")
        params.append(priority.value)
    if task_type is not None:
        clauses.append("t.type = ?")
        params.append(task_type.value)

    rows = db.fetch_all(
        TASK_SELECT + " WHERE " + " AND ".join(clauses) + " ORDER BY t.sequence_number ASC",
        params,
    )
    return [Task(**row) for row in rows]


def _db_value(field: str, value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if field == "due_date":
        return to_db_datetime(value)
    if field == "title" and value is not None:
        return value.strip()
    return value


def update_task(store: Store, task_id: int, changes: Dict[str, Any]) -> Task:
    """
    Apply a partial update. Keys absent from changes are left alone; an
    explicit None for assignee_id unassigns the task.

    Raises:
        TaskNotFound: If the task does not exist
        InvalidAssignee: If the new assignee is not a project member
        ValueError: If changes names a field that cannot be updated
    """
    unknown = set(changes) - set(UPDATABLE_FIELDS)
    if unknown:
        raise ValueError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")
    cleared = [f for f, v in changes.items() if v is None and f not in NULLABLE_FIELDS]
    if cleared:
        raise ValueError(f"Fields cannot be null: {', '.join(sorted(cleared))}")

    def _update(tx: Transaction) -> Task:
        task = get_task(tx, task_id)
        if not changes:
            return task
        assignee_id = changes.get("assignee_id")
        if assignee_id is not None and not is_member(tx, task.project_id, assignee_id):
            raise InvalidAssignee(task.project_id, assignee_id)

        fields = [f for f in UPDATABLE_FIELDS if f in changes]
        assignments = ", ".join(f"{f} = ?" for f in fields)
        params = [_db_value(f, changes[f]) for f in fields]
        tx.execute(
            f"UPDATE tasks SET {assignments}, updated_at = ? WHERE id = ?",
            params + [now_iso(), task_id],
        )
        return get_task(tx, task_id)

    return store.run_in_transaction(_update)


def delete_task(store: Store, task_id: int) -> None:
    """Delete a task. Its sequence number stays retired."""
    def _delete(tx: Transaction) -> None:
        result = tx.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
        if result.affected_count == 0:
            raise TaskNotFound(task_id)

    store.run_in_transaction(_delete)
