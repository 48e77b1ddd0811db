"""
tracker/dependencies.py

Reusable FastAPI dependencies for project-scoped authorization.

Routes never check roles inline. They declare the action they need and the
dependency asks the resolver (tracker.authz) for a decision.
"""

from __future__ import annotations

from typing import Callable

from fastapi import Depends, HTTPException, Path

from tracker.auth_context import AuthContext, get_store, require_auth_context
from tracker.authz import AccessDenied, NotFound, resolve_permission
from tracker.config import IS_DEV
from tracker.db import Store
from tracker.models import Task
from tracker.rbac import Action
from tracker.tasks import get_task_by_key


def _enforce(store: Store, ctx: AuthContext, project_id: int, action: Action) -> None:
    result = resolve_permission(store, ctx.principal, project_id, action)

    if isinstance(result, NotFound):
        if IS_DEV:
            print(f"[AUTHZ] Project not found: project_id={project_id}, action={action.value}")
        raise HTTPException(status_code=404, detail="Project not found")

    if isinstance(result, AccessDenied):
        if IS_DEV:
            print(f"[AUTHZ] Denied: user_id={ctx.user_id}, project_id={project_id}, "
                  f"action={action.value}, reason={result.reason}")
        raise HTTPException(status_code=403, detail=f"Insufficient permissions: {result.reason}")

    if IS_DEV:
        print(f"[AUTHZ] Granted: user_id={ctx.user_id}, project_id={project_id}, "
              f"action={action.value}, via={result.via}")


def require_project_permission(action: Action) -> Callable:
    """
    FastAPI dependency factory for project-scoped actions.

    Usage in routes:
        @router.delete("/{project_id}")
        def delete(project_id: int, ctx: AuthContext = Depends(require_project_permission(Action.DELETE_PROJECT))):
            ...

    Raises:
        HTTPException(404): If the project does not exist
        HTTPException(403): If the caller's roles do not allow the action
    """
    def _check_permission(
        project_id: int = Path(..., ge=1),
        ctx: AuthContext = Depends(require_auth_context),
        store: Store = Depends(get_store),
    ) -> AuthContext:
        _enforce(store, ctx, project_id, action)
        return ctx

    return _check_permission


def require_task_permission(action: Action) -> Callable:
    """
    Like require_project_permission, for routes addressed by task key.
    Returns the resolved Task.
    """
    def _check_permission(
        task_key: str = Path(...),
        ctx: AuthContext = Depends(require_auth_context),
        store: Store = Depends(get_store),
    ) -> Task:
        try:
            task = get_task_by_key(store, task_key)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        _enforce(store, ctx, task.project_id, action)
        return task

    return _check_permission
