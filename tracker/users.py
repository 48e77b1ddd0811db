"""
tracker/users.py

Identity & role store: users and their single system-wide role.

Passwords are stored as Argon2 hashes. Emails are normalized to lower case
before every lookup and insert so uniqueness is case-insensitive.
"""

from __future__ import annotations

from typing import List, Optional

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError

from tracker.authz import require_system_admin
from tracker.db import Queryable, Store, Transaction
from tracker.errors import (
    CannotDeleteSelf,
    CannotSelfDemoteFromAdmin,
    EmailAlreadyRegistered,
    InvalidCurrentPassword,
    UniqueViolation,
    UserNotFound,
    UserOwnsProjects,
)
from tracker.models import Principal, Role, User, now_iso

_hasher = PasswordHasher()

USER_COLUMNS = "id, email, password_hash, display_name, system_role, created_at, updated_at"
MIN_PASSWORD_LENGTH = 6


# ---------------------------------------------------------
# Password hashing
# ---------------------------------------------------------
def hash_password(password: str) -> str:
    return _hasher.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return _hasher.verify(password_hash, password)
    except (VerificationError, InvalidHashError):
        return False


def normalize_email(email: str) -> str:
    return email.strip().lower()


# ---------------------------------------------------------
# Reads
# ---------------------------------------------------------
def get_user(db: Queryable, user_id: int) -> User:
    """
    Fetch a user by id.

    Raises:
        UserNotFound: If no such user exists
    """
    row = db.fetch_one(f"SELECT {USER_COLUMNS} FROM users WHERE id = ?", (user_id,))
    if not row:
        raise UserNotFound(user_id)
    return User(**row)


def find_user_by_email(db: Queryable, email: str) -> Optional[User]:
    row = db.fetch_one(f"SELECT {USER_COLUMNS} FROM users WHERE email = ?", (normalize_email(email),))
    return User(**row) if row else None


def list_users(db: Queryable, system_role: Optional[Role] = None) -> List[User]:
    if system_role is not None:
        rows = db.fetch_all(
            f"SELECT {USER_COLUMNS} FROM users WHERE system_role = ? ORDER BY created_at DESC, id DESC",
            (system_role.value,),
        )
    else:
        rows = db.fetch_all(f"SELECT {USER_COLUMNS} FROM users ORDER BY created_at DESC, id DESC")
    return [User(**row) for row in rows]


def authenticate(db: Queryable, email: str, password: str) -> Optional[User]:
    """Return the user when email and password match, otherwise None."""
    user = find_user_by_email(db, email)
    if user is None or not verify_password(password, user.password_hash):
        return None
    return user


# ---------------------------------------------------------
# Writes
# ---------------------------------------------------------
def create_user(
    store: Store,
    email: str,
    password: str,
    display_name: str,
    system_role: Role = Role.member,
) -> User:
    """
    Register a new user.

    Raises:
        EmailAlreadyRegistered: If the (normalized) email is taken
    """
    email_norm = normalize_email(email)
    password_hash = hash_password(password)

    def _insert(tx: Transaction) -> User:
        if tx.fetch_one("SELECT id FROM users WHERE email = ?", (email_norm,)):
            raise EmailAlreadyRegistered(email_norm)
        now = now_iso()
        result = tx.execute(
            """
            INSERT INTO users (email, password_hash, display_name, system_role, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (email_norm, password_hash, display_name.strip(), system_role.value, now, now),
        )
        return get_user(tx, result.last_insert_id)

    try:
        return store.run_in_transaction(_insert)
    except UniqueViolation as e:
        raise EmailAlreadyRegistered(email_norm) from e


def update_profile(
    store: Store,
    user_id: int,
    display_name: Optional[str] = None,
    email: Optional[str] = None,
) -> User:
    """
    Update mutable profile fields. The system role is not touched here.

    Raises:
        UserNotFound: If no such user exists
        EmailAlreadyRegistered: If the new email belongs to someone else
    """
    def _update(tx: Transaction) -> User:
        user = get_user(tx, user_id)
        new_email = normalize_email(email) if email is not None else user.email
        new_name = display_name.strip() if display_name is not None else user.display_name
        if new_email != user.email and tx.fetch_one("SELECT id FROM users WHERE email = ?", (new_email,)):
            raise EmailAlreadyRegistered(new_email)
        tx.execute(
            "UPDATE users SET email = ?, display_name = ?, updated_at = ? WHERE id = ?",
            (new_email, new_name, now_iso(), user_id),
        )
        return get_user(tx, user_id)

    try:
        return store.run_in_transaction(_update)
    except UniqueViolation as e:
        raise EmailAlreadyRegistered(normalize_email(email or "")) from e


def change_password(store: Store, user_id: int, current_password: str, new_password: str) -> None:
    """
    Replace a user's password after checking the current one.

    Raises:
        ValueError: If the new password is shorter than MIN_PASSWORD_LENGTH
        UserNotFound: If no such user exists
        InvalidCurrentPassword: If current_password does not match
    """
    if len(new_password) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"new password must be at least {MIN_PASSWORD_LENGTH} characters")
    new_hash = hash_password(new_password)

    def _update(tx: Transaction) -> None:
        user = get_user(tx, user_id)
        if not verify_password(current_password, user.password_hash):
            raise InvalidCurrentPassword(user_id)
        tx.execute(
            "UPDATE users SET password_hash = ?, updated_at = ? WHERE id = ?",
            (new_hash, now_iso(), user_id),
        )

    store.run_in_transaction(_update)


def change_system_role(store: Store, actor: Principal, user_id: int, new_role: Role) -> User:
    """
    Change a user's system-wide role. Only system Admins may do this.

    Raises:
        AccessDeniedError: If actor is not a system Admin
        CannotSelfDemoteFromAdmin: If an Admin tries to drop their own Admin role
        UserNotFound: If no such user exists
    """
    require_system_admin(actor)
    if actor.id == user_id and actor.system_role == Role.admin and new_role != Role.admin:
        raise CannotSelfDemoteFromAdmin(user_id)

    def _update(tx: Transaction) -> User:
        get_user(tx, user_id)
        tx.execute(
            "UPDATE users SET system_role = ?, updated_at = ? WHERE id = ?",
            (new_role.value, now_iso(), user_id),
        )
        return get_user(tx, user_id)

    return store.run_in_transaction(_update)


def delete_user(store: Store, actor: Principal, user_id: int) -> None:
    """
    Hard-delete a user. Refused while the user still owns projects.

    Raises:
        AccessDeniedError: If actor is not a system Admin
        CannotDeleteSelf: If actor targets their own account
        UserOwnsProjects: If the user owns at least one project
        UserNotFound: If no such user exists
    """
    require_system_admin(actor)
    if actor.id == user_id:
        raise CannotDeleteSelf(user_id)

    def _delete(tx: Transaction) -> None:
        get_user(tx, user_id)
        owned = tx.execute("SELECT COUNT(*) AS n FROM projects WHERE owner_id = ?", (user_id,)).scalar()
        if owned:
            raise UserOwnsProjects(user_id, int(owned))
        # Memberships and comments cascade; assignee/reporter are set to NULL
        tx.execute("DELETE FROM users WHERE id = ?", (user_id,))

    store.run_in_transaction(_delete)
