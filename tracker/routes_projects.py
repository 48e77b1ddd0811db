"""
tracker/routes_projects.py

Project and membership endpoints.

Every project-scoped route declares its action through
require_project_permission; the resolver is the only place roles are checked.
"""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Path

from tracker import memberships, projects
from tracker.auth_context import AuthContext, get_store, require_auth_context
from tracker.authz import effective_actions
from tracker.config import IS_DEV
from tracker.db import Store
from tracker.dependencies import require_project_permission
from tracker.rbac import Action
from tracker.schemas import (
    MemberAddRequest,
    MemberResponse,
    ProjectCreateRequest,
    ProjectDetailResponse,
    ProjectResponse,
    ProjectStatsResponse,
    ProjectUpdateRequest,
    RoleRequest,
    UserResponse,
)


router = APIRouter(
    prefix="/projects",
    tags=["projects"],
)


@router.get("", response_model=List[ProjectResponse])
def list_projects(
    ctx: AuthContext = Depends(require_auth_context),
    store: Store = Depends(get_store),
):
    """System Admins see every project, everyone else only their own memberships."""
    return [p.model_dump() for p in projects.list_projects_for(store, ctx.principal)]


@router.post("", response_model=ProjectResponse, status_code=201)
def create_project(
    request: ProjectCreateRequest,
    ctx: AuthContext = Depends(require_auth_context),
    store: Store = Depends(get_store),
):
    """
    Create a project; the caller becomes its owner and project Admin.

    Raises:
        HTTPException(403): System Readers cannot create projects
        HTTPException(409): Key already in use
    """
    project = projects.create_project(
        store,
        ctx.principal,
        name=request.name,
        key=request.key,
        description=request.description,
    )
    if IS_DEV:
        print(f"[PROJECTS] Created project_id={project.id}, key={project.key}, owner_id={ctx.user_id}")
    return project.model_dump()


@router.get("/{project_id}", response_model=ProjectDetailResponse)
def get_project(
    project_id: int = Path(..., ge=1),
    ctx: AuthContext = Depends(require_project_permission(Action.VIEW)),
    store: Store = Depends(get_store),
):
    project = projects.get_project(store, project_id)
    actions = sorted(a.value for a in effective_actions(store, ctx.principal, project_id))
    return {**project.model_dump(), "permissions": actions}


@router.put("/{project_id}", response_model=ProjectResponse)
def update_project(
    request: ProjectUpdateRequest,
    project_id: int = Path(..., ge=1),
    ctx: AuthContext = Depends(require_project_permission(Action.UPDATE_PROJECT)),
    store: Store = Depends(get_store),
):
    project = projects.update_project(store, project_id, name=request.name, description=request.description)
    return project.model_dump()


@router.delete("/{project_id}", status_code=204)
def delete_project(
    project_id: int = Path(..., ge=1),
    ctx: AuthContext = Depends(require_project_permission(Action.DELETE_PROJECT)),
    store: Store = Depends(get_store),
):
    projects.delete_project(store, project_id)
    if IS_DEV:
        print(f"[PROJECTS] Deleted project_id={project_id} by user_id={ctx.user_id}")


@router.get("/{project_id}/stats", response_model=ProjectStatsResponse)
def project_stats(
    project_id: int = Path(..., ge=1),
    ctx: AuthContext = Depends(require_project_permission(Action.VIEW)),
    store: Store = Depends(get_store),
):
    return projects.project_stats(store, project_id)


# ---------------------------------------------------------
# Members
# ---------------------------------------------------------
@router.get("/{project_id}/members", response_model=List[MemberResponse])
def list_members(
    project_id: int = Path(..., ge=1),
    ctx: AuthContext = Depends(require_project_permission(Action.VIEW)),
    store: Store = Depends(get_store),
):
    return memberships.list_members(store, project_id)


@router.get("/{project_id}/assignable", response_model=List[UserResponse])
def list_assignable_users(
    project_id: int = Path(..., ge=1),
    ctx: AuthContext = Depends(require_project_permission(Action.VIEW)),
    store: Store = Depends(get_store),
):
    """Project members, the only valid task assignees."""
    return [u.model_dump() for u in memberships.list_assignable_users(store, project_id)]


@router.post("/{project_id}/members", response_model=MemberResponse, status_code=201)
def add_member(
    request: MemberAddRequest,
    project_id: int = Path(..., ge=1),
    ctx: AuthContext = Depends(require_project_permission(Action.MANAGE_MEMBERS)),
    store: Store = Depends(get_store),
):
    """
    Raises:
        HTTPException(404): Unknown user
        HTTPException(409): Already a member
    """
    membership = memberships.add_member(store, project_id, request.user_id, request.role)
    return membership.model_dump()


@router.put("/{project_id}/members/{user_id}", response_model=MemberResponse)
def change_member_role(
    request: RoleRequest,
    project_id: int = Path(..., ge=1),
    user_id: int = Path(..., ge=1),
    ctx: AuthContext = Depends(require_project_permission(Action.MANAGE_MEMBERS)),
    store: Store = Depends(get_store),
):
    membership = memberships.change_member_role(store, project_id, user_id, request.role)
    return membership.model_dump()


@router.delete("/{project_id}/members/{user_id}", status_code=204)
def remove_member(
    project_id: int = Path(..., ge=1),
    user_id: int = Path(..., ge=1),
    ctx: AuthContext = Depends(require_project_permission(Action.MANAGE_MEMBERS)),
    store: Store = Depends(get_store),
):
    """The owner can never be removed (400), whoever asks."""
    memberships.remove_member(store, project_id, user_id)
