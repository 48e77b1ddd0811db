"""
tracker/allocator.py

Task sequence allocator.

Every task gets the next integer N in its project and is addressed as
KEY-N. The read of the current high-water mark and the insert of N+1 happen
in one transaction; the UNIQUE(project_id, sequence_number) constraint is the
final arbiter when two writers race. The loser's transaction is rolled back
and the whole read-insert cycle is retried.

The high-water mark is max(MAX(sequence_number), projects.last_task_number),
so deleting the highest-numbered task never frees its number for reuse.
"""

from __future__ import annotations

import random
import time
from typing import Optional

from tracker import config
from tracker.db import Store, Transaction
from tracker.errors import ConcurrentAllocationFailure, InvalidAssignee, ProjectNotFound, UniqueViolation
from tracker.memberships import is_member
from tracker.models import Task, TaskFields, now_iso, to_db_datetime
from tracker.tasks import get_task

MIN_ATTEMPTS = 3

# Back-off before retry n is uniform in [0, BACKOFF_BASE * 2**n) seconds
BACKOFF_BASE = 0.01
BACKOFF_CAP = 0.25


def _backoff(attempt: int) -> None:
    time.sleep(random.uniform(0, min(BACKOFF_CAP, BACKOFF_BASE * (2 ** attempt))))


def next_sequence_number(tx: Transaction, project_id: int) -> int:
    """
    Number the next task in project_id would receive.

    Raises:
        ProjectNotFound: If the project does not exist
    """
    project = tx.fetch_one("SELECT last_task_number FROM projects WHERE id = ?", (project_id,))
    if not project:
        raise ProjectNotFound(project_id)
    current_max = tx.execute(
        "SELECT COALESCE(MAX(sequence_number), 0) AS n FROM tasks WHERE project_id = ?",
        (project_id,),
    ).scalar()
    return max(int(current_max or 0), int(project["last_task_number"] or 0)) + 1


def _insert_next(tx: Transaction, project_id: int, fields: TaskFields) -> Task:
    sequence_number = next_sequence_number(tx, project_id)
    if fields.assignee_id is not None and not is_member(tx, project_id, fields.assignee_id):
        raise InvalidAssignee(project_id, fields.assignee_id)

    now = now_iso()
    result = tx.execute(
        """
        INSERT INTO tasks (
            project_id, sequence_number, title, description, type, status, priority,
            assignee_id, reporter_id, due_date, created_at, updated_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            project_id,
            sequence_number,
            fields.title.strip(),
            fields.description,
            fields.type.value,
            fields.status.value,
            fields.priority.value,
            fields.assignee_id,
            fields.reporter_id,
            to_db_datetime(fields.due_date),
            now,
            now,
        ),
    )
    tx.execute(
        "UPDATE projects SET last_task_number = ? WHERE id = ? AND last_task_number < ?",
        (sequence_number, project_id, sequence_number),
    )
    return get_task(tx, result.last_insert_id)


def allocate_and_insert(
    store: Store,
    project_id: int,
    task_fields: TaskFields,
    max_attempts: Optional[int] = None,
) -> Task:
    """
    Insert a task carrying the next sequence number of its project.

    Args:
        store: Persistence adapter
        project_id: Target project
        task_fields: Caller-supplied task data (never a sequence number)
        max_attempts: Retry budget on unique conflicts, at least 3
            (defaults to TASK_ALLOCATION_MAX_ATTEMPTS)

    Returns:
        The persisted Task, with id and sequence_number populated

    Raises:
        ProjectNotFound: If the project does not exist
        InvalidAssignee: If the assignee is not a project member
        ConcurrentAllocationFailure: If every attempt lost a race
        StoreUnavailable: If the backend cannot be reached
    """
    attempts = max(MIN_ATTEMPTS, max_attempts or config.TASK_ALLOCATION_MAX_ATTEMPTS)

    for attempt in range(attempts):
        try:
            return store.run_in_transaction(lambda tx: _insert_next(tx, project_id, task_fields))
        except UniqueViolation:
            if attempt + 1 < attempts:
                _backoff(attempt)

    raise ConcurrentAllocationFailure(project_id, attempts)
