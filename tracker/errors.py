"""
tracker/errors.py

Typed error taxonomy for the tracker core.

The core never formats transport responses. It raises these exceptions (or
returns the resolver's result objects) and the HTTP layer maps them to status
codes in one place (see tracker/main.py).
"""

from __future__ import annotations

from typing import Any, Optional


class TrackerError(Exception):
    """Base class for every error raised by the tracker core."""
    pass


# ============================================================================
# Store Errors
# ============================================================================

class StoreError(TrackerError):
    """Raised when the persistence adapter fails."""
    pass


class StoreUnavailable(StoreError):
    """The backend cannot be reached. Fatal for the current request."""
    pass


class UniqueViolation(StoreError):
    """A uniqueness constraint rejected a write."""

    def __init__(self, message: str, constraint: Optional[str] = None):
        super().__init__(message)
        self.constraint = constraint


# ============================================================================
# Missing Entities
# ============================================================================

class NotFoundError(TrackerError):
    """A referenced entity does not exist."""

    entity = "resource"

    def __init__(self, ref: Any):
        super().__init__(f"{self.entity} not found: {ref}")
        self.ref = ref


class ProjectNotFound(NotFoundError):
    entity = "project"


class UserNotFound(NotFoundError):
    entity = "user"


class TaskNotFound(NotFoundError):
    entity = "task"


class MembershipNotFound(NotFoundError):
    entity = "membership"


# ============================================================================
# Authorization
# ============================================================================

class AccessDeniedError(TrackerError):
    """The principal lacks the role required for an action."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


# ============================================================================
# Domain Rules (never retried)
# ============================================================================

class DomainRuleViolation(TrackerError):
    """A request conflicts with a business rule."""
    pass


class AlreadyMember(DomainRuleViolation):
    def __init__(self, project_id: int, user_id: int):
        super().__init__(f"user {user_id} is already a member of project {project_id}")
        self.project_id = project_id
        self.user_id = user_id


class CannotRemoveOwner(DomainRuleViolation):
    def __init__(self, project_id: int, user_id: int):
        super().__init__(f"user {user_id} owns project {project_id} and cannot be removed")
        self.project_id = project_id
        self.user_id = user_id


class CannotDemoteOwner(DomainRuleViolation):
    def __init__(self, project_id: int, user_id: int):
        super().__init__(f"owner {user_id} of project {project_id} must keep the Admin role")
        self.project_id = project_id
        self.user_id = user_id


class CannotSelfDemoteFromAdmin(DomainRuleViolation):
    def __init__(self, user_id: int):
        super().__init__(f"user {user_id} cannot remove their own Admin role")
        self.user_id = user_id


class CannotDeleteSelf(DomainRuleViolation):
    def __init__(self, user_id: int):
        super().__init__(f"user {user_id} cannot delete their own account")
        self.user_id = user_id


class InvalidCurrentPassword(DomainRuleViolation):
    def __init__(self, user_id: int):
        super().__init__("current password is incorrect")
        self.user_id = user_id


class UserOwnsProjects(DomainRuleViolation):
    def __init__(self, user_id: int, project_count: int):
        super().__init__(f"user {user_id} still owns {project_count} project(s)")
        self.user_id = user_id
        self.project_count = project_count


class ProjectKeyTaken(DomainRuleViolation):
    def __init__(self, key: str):
        super().__init__(f"project key already exists: {key}")
        self.key = key


class EmailAlreadyRegistered(DomainRuleViolation):
    def __init__(self, email: str):
        super().__init__(f"email already registered: {email}")
        self.email = email


class InvalidAssignee(DomainRuleViolation):
    def __init__(self, project_id: int, user_id: int):
        super().__init__(f"assignee {user_id} is not a member of project {project_id}")
        self.project_id = project_id
        self.user_id = user_id


# ============================================================================
# Allocation
# ============================================================================

class ConcurrentAllocationFailure(TrackerError):
    """Every attempt to claim the next task number lost to a concurrent writer."""

    def __init__(self, project_id: int, attempts: int):
        super().__init__(
            f"could not allocate a task number for project {project_id} after {attempts} attempts"
        )
        self.project_id = project_id
        self.attempts = attempts
