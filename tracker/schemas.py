"""
tracker/schemas.py

Pydantic request/response schemas for the HTTP layer.
Request models trim and validate input; response models never expose
password hashes.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from tracker.models import Role, Task, TaskPriority, TaskStatus, TaskType

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _strip(v):
    if isinstance(v, str):
        return v.strip()
    return v


def _parse_role(v):
    if isinstance(v, str):
        return Role.parse(v)
    return v


# ========================================================================
# AUTH / USERS
# ========================================================================

class RegisterRequest(BaseModel):
    email: str = Field(..., max_length=254)
    password: str = Field(..., min_length=6, max_length=128)
    display_name: str = Field(..., min_length=1, max_length=100)

    @field_validator("email", "display_name", mode="before")
    @classmethod
    def trim(cls, v):
        return _strip(v)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v):
        if not EMAIL_RE.match(v):
            raise ValueError("email must be a valid address")
        return v.lower()


class LoginRequest(BaseModel):
    email: str
    password: str


class UserResponse(BaseModel):
    id: int
    email: str
    display_name: str
    system_role: Role
    created_at: datetime
    updated_at: datetime


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserResponse


class ProfileUpdateRequest(BaseModel):
    display_name: Optional[str] = Field(None, min_length=1, max_length=100)
    email: Optional[str] = Field(None, max_length=254)

    @field_validator("email", "display_name", mode="before")
    @classmethod
    def trim(cls, v):
        return _strip(v)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v):
        if v is not None and not EMAIL_RE.match(v):
            raise ValueError("email must be a valid address")
        return v


class PasswordChangeRequest(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=6, max_length=128)


class RoleRequest(BaseModel):
    """Accepts any casing ("admin", "ADMIN") and stores the canonical role."""
    role: Role

    @field_validator("role", mode="before")
    @classmethod
    def parse_role(cls, v):
        return _parse_role(v)


# ========================================================================
# PROJECTS / MEMBERS
# ========================================================================

class ProjectCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    key: str = Field(..., min_length=2, max_length=10)
    description: Optional[str] = Field(None, max_length=5000)

    @field_validator("name", "key", mode="before")
    @classmethod
    def trim(cls, v):
        return _strip(v)

    @field_validator("key")
    @classmethod
    def validate_key(cls, v):
        v = v.upper()
        if not re.match(r"^[A-Z]{2,10}$", v):
            raise ValueError("key must be 2-10 letters (A-Z)")
        return v


class ProjectUpdateRequest(BaseModel):
    """The project key is intentionally absent: it can never change."""
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=5000)

    @field_validator("name", mode="before")
    @classmethod
    def trim(cls, v):
        return _strip(v)


class ProjectResponse(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    key: str
    owner_id: int
    created_at: datetime
    updated_at: datetime


class ProjectDetailResponse(ProjectResponse):
    # Actions the caller may perform on this project
    permissions: List[str] = Field(default_factory=list)


class ProjectStatsResponse(BaseModel):
    total_tasks: int
    member_count: int
    by_status: Dict[str, int]
    by_priority: Dict[str, int]
    by_type: Dict[str, int]


class MemberAddRequest(BaseModel):
    user_id: int
    role: Role = Role.member

    @field_validator("role", mode="before")
    @classmethod
    def parse_role(cls, v):
        return _parse_role(v)


class MemberResponse(BaseModel):
    id: int
    project_id: int
    user_id: int
    role: Role
    created_at: datetime
    email: Optional[str] = None
    display_name: Optional[str] = None


# ========================================================================
# TASKS / COMMENTS
# ========================================================================

class TaskCreateRequest(BaseModel):
    """sequence_number is never accepted from clients."""
    title: str = Field(..., min_length=1, max_length=500)
    description: Optional[str] = None
    type: TaskType = TaskType.task
    status: TaskStatus = TaskStatus.todo
    priority: TaskPriority = TaskPriority.medium
    assignee_id: Optional[int] = None
    due_date: Optional[datetime] = None

    @field_validator("title", mode="before")
    @classmethod
    def trim(cls, v):
        return _strip(v)


class TaskUpdateRequest(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=500)
    description: Optional[str] = None
    type: Optional[TaskType] = None
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    assignee_id: Optional[int] = None
    due_date: Optional[datetime] = None

    @field_validator("title", mode="before")
    @classmethod
    def trim(cls, v):
        return _strip(v)


class TaskResponse(BaseModel):
    id: int
    key: str
    project_id: int
    sequence_number: int
    title: str
    description: Optional[str] = None
    type: TaskType
    status: TaskStatus
    priority: TaskPriority
    assignee_id: Optional[int] = None
    reporter_id: Optional[int] = None
    due_date: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_task(cls, task: Task) -> "TaskResponse":
        return cls(key=task.key, **task.model_dump(exclude={"project_key"}))


class CommentCreateRequest(BaseModel):
    content: str = Field(..., min_length=1, max_length=10000)

    @field_validator("content", mode="before")
    @classmethod
    def trim(cls, v):
        return _strip(v)


class CommentResponse(BaseModel):
    id: int
    task_id: int
    author_id: int
    content: str
    author_name: Optional[str] = None
    created_at: datetime
    updated_at: datetime
