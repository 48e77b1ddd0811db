"""
tracker/auth_context.py

Shared authentication primitives for FastAPI dependency injection.
This module breaks the circular import between main.py and dependencies.py.

Contains:
- AuthContext: Authenticated caller, re-read from the store on every request
- require_auth_context: FastAPI dependency for auth enforcement
- get_store: The Store created at startup (app.state.store)
- create_access_token / verify_token: JWT helpers

This module MUST NOT import tracker.main to avoid circular dependencies.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from tracker.config import ACCESS_TOKEN_MINUTES, ALGORITHM, IS_DEV, SECRET_KEY
from tracker.db import Store
from tracker.errors import StoreUnavailable, UserNotFound
from tracker.models import Principal, Role, utcnow
from tracker.users import get_user

# Security scheme for HTTPBearer
security = HTTPBearer()


# ---------------------------------------------------------
# Store Helper
# ---------------------------------------------------------
def get_store(request: Request) -> Store:
    """
    Return the Store the app created at startup.

    Raises:
        StoreUnavailable: If startup never attached a store
    """
    store: Optional[Store] = getattr(request.app.state, "store", None)
    if store is None:
        raise StoreUnavailable("store has not been initialized")
    return store


# ---------------------------------------------------------
# JWT Tokens
# ---------------------------------------------------------
def create_access_token(user_id: int, expires_minutes: Optional[int] = None) -> str:
    expire = utcnow() + timedelta(minutes=expires_minutes or ACCESS_TOKEN_MINUTES)
    payload = {"sub": str(user_id), "exp": expire}
    return jwt.encode(payload, SECRET_KEY, algorithm=ALGORITHM)


def verify_token(token: str) -> dict:
    """
    Verify JWT access token and return decoded payload.

    Raises:
        HTTPException(401): If token is expired or invalid
    """
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        return payload
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")


# ---------------------------------------------------------
# AuthContext
# ---------------------------------------------------------
class AuthContext(BaseModel):
    """
    Authenticated caller derived from the JWT and the users table.

    The system role is always read from the store, never from the token, so
    a role change takes effect on the caller's next request.
    """
    user_id: int
    email: str
    display_name: str
    system_role: Role

    @property
    def principal(self) -> Principal:
        return Principal(id=self.user_id, system_role=self.system_role)


def require_auth_context(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    store: Store = Depends(get_store),
) -> AuthContext:
    """
    Auth dependency for every protected route.

    Raises:
        HTTPException(401): If the token is invalid, expired, or the user is gone
    """
    payload = verify_token(credentials.credentials)
    sub = payload.get("sub")

    if not sub or not str(sub).isdigit():
        print("[AUTH] Missing user id in token payload")
        raise HTTPException(status_code=401, detail="Invalid token payload")

    try:
        user = get_user(store, int(sub))
    except UserNotFound:
        print(f"[AUTH] User not found: user_id={sub}")
        raise HTTPException(status_code=401, detail="User not found")

    ctx = AuthContext(
        user_id=user.id,
        email=user.email,
        display_name=user.display_name,
        system_role=user.system_role,
    )

    if IS_DEV:
        print(f"[AUTH] Authenticated: user_id={ctx.user_id}, system_role={ctx.system_role.value}")

    return ctx
