from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime, timezone
from enum import Enum


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def now_iso() -> str:
    return utcnow().isoformat()


def to_db_datetime(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


# Enums
class Role(str, Enum):
    """Shared by system roles and project membership roles."""
    admin = "Admin"
    member = "Member"
    reader = "Reader"

    @classmethod
    def parse(cls, value: str) -> "Role":
        """Accept any casing ("admin", "ADMIN") and return the canonical member."""
        for role in cls:
            if role.value.lower() == str(value).strip().lower():
                return role
        raise ValueError(f"Invalid role: {value}")


class TaskStatus(str, Enum):
    todo = "TODO"
    in_progress = "IN_PROGRESS"
    done = "DONE"


class TaskType(str, Enum):
    task = "task"
    bug = "bug"


class TaskPriority(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"


# Models
class Principal(BaseModel):
    """Already-authenticated caller, passed into the core as plain data."""
    id: int
    system_role: Role


class User(BaseModel):
    id: int
    email: str
    password_hash: str = Field(repr=False)
    display_name: str
    system_role: Role = Role.member
    created_at: datetime
    updated_at: datetime

    def as_principal(self) -> Principal:
        return Principal(id=self.id, system_role=self.system_role)


class Project(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    key: str
    owner_id: int
    last_task_number: int = 0
    created_at: datetime
    updated_at: datetime


class Membership(BaseModel):
    id: Optional[int] = None
    project_id: int
    user_id: int
    role: Role = Role.member
    created_at: datetime


class Task(BaseModel):
    id: int
    project_id: int
    project_key: str
    sequence_number: int
    title: str
    description: Optional[str] = None
    type: TaskType = TaskType.task
    status: TaskStatus = TaskStatus.todo
    priority: TaskPriority = TaskPriority.medium
    assignee_id: Optional[int] = None
    reporter_id: Optional[int] = None
    due_date: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    @property
    def key(self) -> str:
        return f"{self.project_key}-{self.sequence_number}"


class TaskFields(BaseModel):
    """Caller-supplied fields for a new task. Sequence number is never accepted."""
    title: str
    reporter_id: int
    description: Optional[str] = None
    type: TaskType = TaskType.task
    status: TaskStatus = TaskStatus.todo
    priority: TaskPriority = TaskPriority.medium
    assignee_id: Optional[int] = None
    due_date: Optional[datetime] = None


class Comment(BaseModel):
    id: int
    task_id: int
    author_id: int
    content: str
    created_at: datetime
    updated_at: datetime
