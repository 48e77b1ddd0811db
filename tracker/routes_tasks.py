"""
tracker/routes_tasks.py

Task and comment endpoints. Tasks are addressed by their display key
(ACME-12) once created; creation goes through the sequence allocator.
"""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query

from tracker import comments, tasks
from tracker.allocator import allocate_and_insert
from tracker.auth_context import AuthContext, get_store, require_auth_context
from tracker.config import IS_DEV
from tracker.db import Store
from tracker.dependencies import require_project_permission, require_task_permission
from tracker.models import Task, TaskFields, TaskPriority, TaskStatus, TaskType
from tracker.rbac import Action
from tracker.schemas import (
    CommentCreateRequest,
    CommentResponse,
    TaskCreateRequest,
    TaskResponse,
    TaskUpdateRequest,
)


router = APIRouter(tags=["tasks"])


@router.get("/projects/{project_id}/tasks", response_model=List[TaskResponse])
def list_tasks(
    project_id: int = Path(..., ge=1),
    status: Optional[TaskStatus] = Query(None),
    assignee_id: Optional[int] = Query(None),
    priority: Optional[TaskPriority] = Query(None),
    type: Optional[TaskType] = Query(None),
    ctx: AuthContext = Depends(require_project_permission(Action.VIEW)),
    store: Store = Depends(get_store),
):
    rows = tasks.list_tasks(
        store,
        project_id,
        status=status,
        assignee_id=assignee_id,
        priority=priority,
        task_type=type,
    )
    return [TaskResponse.from_task(t) for t in rows]


@router.post("/projects/{project_id}/tasks", response_model=TaskResponse, status_code=201)
def create_task(
    request: TaskCreateRequest,
    project_id: int = Path(..., ge=1),
    ctx: AuthContext = Depends(require_project_permission(Action.CREATE_TASK)),
    store: Store = Depends(get_store),
):
    """
    Create a task with the next KEY-N of the project.

    Raises:
        HTTPException(400): Assignee is not a project member
        HTTPException(409): Allocation kept losing to concurrent writers
    """
    fields = TaskFields(reporter_id=ctx.user_id, **request.model_dump())
    task = allocate_and_insert(store, project_id, fields)
    if IS_DEV:
        print(f"[TASKS] Created {task.key} (task_id={task.id}) by user_id={ctx.user_id}")
    return TaskResponse.from_task(task)


@router.get("/tasks/{task_key}", response_model=TaskResponse)
def get_task(task: Task = Depends(require_task_permission(Action.VIEW))):
    return TaskResponse.from_task(task)


@router.put("/tasks/{task_key}", response_model=TaskResponse)
def update_task(
    request: TaskUpdateRequest,
    task: Task = Depends(require_task_permission(Action.UPDATE_TASK)),
    store: Store = Depends(get_store),
):
    # Only fields the client actually sent; an explicit null assignee unassigns
    changes = request.model_dump(exclude_unset=True)
    updated = tasks.update_task(store, task.id, changes)
    return TaskResponse.from_task(updated)


@router.delete("/tasks/{task_key}", status_code=204)
def delete_task(
    task: Task = Depends(require_task_permission(Action.DELETE_TASK)),
    store: Store = Depends(get_store),
):
    tasks.delete_task(store, task.id)
    if IS_DEV:
        print(f"[TASKS] Deleted {task.key} (task_id={task.id})")


# ---------------------------------------------------------
# Comments
# ---------------------------------------------------------
@router.get("/tasks/{task_key}/comments", response_model=List[CommentResponse])
def list_comments(
    task: Task = Depends(require_task_permission(Action.VIEW)),
    store: Store = Depends(get_store),
):
    return comments.list_comments(store, task.id)


@router.post("/tasks/{task_key}/comments", response_model=CommentResponse, status_code=201)
def add_comment(
    request: CommentCreateRequest,
    task: Task = Depends(require_task_permission(Action.COMMENT)),
    ctx: AuthContext = Depends(require_auth_context),
    store: Store = Depends(get_store),
):
    comment = comments.add_comment(store, task.id, ctx.user_id, request.content)
    return {**comment.model_dump(), "author_name": ctx.display_name}
