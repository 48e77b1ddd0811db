"""Task comments. Permission to comment is checked by the caller (Action.COMMENT)."""

from __future__ import annotations

from typing import Any, Dict, List

from tracker.db import Queryable, Store, Transaction
from tracker.models import Comment, now_iso
from tracker.tasks import get_task


def add_comment(store: Store, task_id: int, author_id: int, content: str) -> Comment:
    content = (content or "").strip()
    if not content:
        raise ValueError("Comment content cannot be empty")

    def _add(tx: Transaction) -> Comment:
        get_task(tx, task_id)
        now = now_iso()
        result = tx.execute(
            "INSERT INTO comments (task_id, author_id, content, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
            (task_id, author_id, content, now, now),
        )
        row = tx.fetch_one(
            "SELECT id, task_id, author_id, content, created_at, updated_at FROM comments WHERE id = ?",
            (result.last_insert_id,),
        )
        return Comment(**row)

    return store.run_in_transaction(_add)


def list_comments(db: Queryable, task_id: int) -> List[Dict[str, Any]]:
    """Comments oldest first, each with the author's display name."""
    get_task(db, task_id)
    return db.fetch_all(
        """
        SELECT c.id, c.task_id, c.author_id, c.content, c.created_at, c.updated_at,
               u.display_name AS author_name
        FROM comments c
        JOIN users u ON u.id = c.author_id
        WHERE c.task_id = ?
        ORDER BY c.created_at ASC, c.id ASC
        """,
        (task_id,),
    )
