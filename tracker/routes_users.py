"""
tracker/routes_users.py

User directory and system-role administration.

Any authenticated user may list users (needed to pick members); changing a
system role or deleting an account requires the system Admin role, which is
enforced inside tracker.users.
"""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query

from tracker import users
from tracker.auth_context import AuthContext, get_store, require_auth_context
from tracker.config import IS_DEV
from tracker.db import Store
from tracker.models import Role
from tracker.schemas import ProfileUpdateRequest, RoleRequest, UserResponse


router = APIRouter(
    prefix="/users",
    tags=["users"],
)


@router.get("", response_model=List[UserResponse])
def list_users(
    role: Optional[str] = Query(None, description="Filter by system role"),
    ctx: AuthContext = Depends(require_auth_context),
    store: Store = Depends(get_store),
):
    system_role = Role.parse(role) if role else None
    return [u.model_dump() for u in users.list_users(store, system_role)]


@router.get("/me", response_model=UserResponse)
def get_me(
    ctx: AuthContext = Depends(require_auth_context),
    store: Store = Depends(get_store),
):
    return users.get_user(store, ctx.user_id).model_dump()


@router.put("/me", response_model=UserResponse)
def update_me(
    request: ProfileUpdateRequest,
    ctx: AuthContext = Depends(require_auth_context),
    store: Store = Depends(get_store),
):
    user = users.update_profile(store, ctx.user_id, display_name=request.display_name, email=request.email)
    return user.model_dump()


@router.get("/{user_id}", response_model=UserResponse)
def get_user(
    user_id: int = Path(..., ge=1),
    ctx: AuthContext = Depends(require_auth_context),
    store: Store = Depends(get_store),
):
    return users.get_user(store, user_id).model_dump()


@router.put("/{user_id}/role", response_model=UserResponse)
def change_system_role(
    request: RoleRequest,
    user_id: int = Path(..., ge=1),
    ctx: AuthContext = Depends(require_auth_context),
    store: Store = Depends(get_store),
):
    """
    Raises:
        HTTPException(403): Caller is not a system Admin
        HTTPException(400): Admin demoting themselves
    """
    user = users.change_system_role(store, ctx.principal, user_id, request.role)
    if IS_DEV:
        print(f"[AUTHZ] System role of user_id={user_id} set to {user.system_role.value} by user_id={ctx.user_id}")
    return user.model_dump()


@router.delete("/{user_id}", status_code=204)
def delete_user(
    user_id: int = Path(..., ge=1),
    ctx: AuthContext = Depends(require_auth_context),
    store: Store = Depends(get_store),
):
    users.delete_user(store, ctx.principal, user_id)
