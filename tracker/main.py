# ---------------------------------------------------------
# tracker/main.py
# Project Tracker - HTTP layer over the tracker core
#
# Run: uvicorn tracker.main:app --reload (from repo root)
#
# - FastAPI + SQLite (dev) / PostgreSQL (DATABASE_URL)
# - /auth/register, /auth/login, /auth/password : JWT bearer tokens
# - /users    : directory + system-role administration
# - /projects : projects, members, stats
# - /projects/{id}/tasks, /tasks/{KEY-N} : tasks and comments
#
# The core raises typed errors; this module maps them to status codes in
# one place (register_exception_handlers).
# ---------------------------------------------------------

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Dict, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tracker import users
from tracker.auth_context import AuthContext, create_access_token, get_store, require_auth_context
from tracker.config import CORS_ORIGINS, IS_DEV, IS_PROD
from tracker.db import Store, create_store_from_config
from tracker.errors import (
    AccessDeniedError,
    AlreadyMember,
    ConcurrentAllocationFailure,
    DomainRuleViolation,
    EmailAlreadyRegistered,
    NotFoundError,
    ProjectKeyTaken,
    StoreError,
    StoreUnavailable,
)
from tracker.migrate import init_store
from tracker.routes_projects import router as projects_router
from tracker.routes_tasks import router as tasks_router
from tracker.routes_users import router as users_router
from tracker.schemas import LoginRequest, PasswordChangeRequest, RegisterRequest, TokenResponse

# Domain rules that describe a clash with existing state rather than a bad request
CONFLICT_ERRORS = (AlreadyMember, ProjectKeyTaken, EmailAlreadyRegistered)


# ---------------------------------------------------------
# Error mapping
# ---------------------------------------------------------
def _error(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(NotFoundError)
    def not_found(request: Request, exc: NotFoundError):
        return _error(404, exc)

    @app.exception_handler(AccessDeniedError)
    def access_denied(request: Request, exc: AccessDeniedError):
        if IS_DEV:
            print(f"[AUTHZ] Denied {request.method} {request.url.path}: {exc.reason}")
        return _error(403, exc)

    @app.exception_handler(DomainRuleViolation)
    def domain_rule(request: Request, exc: DomainRuleViolation):
        return _error(409 if isinstance(exc, CONFLICT_ERRORS) else 400, exc)

    @app.exception_handler(ConcurrentAllocationFailure)
    def allocation_failed(request: Request, exc: ConcurrentAllocationFailure):
        print(f"[TASKS] {exc}")
        return _error(409, exc)

    @app.exception_handler(StoreUnavailable)
    def store_unavailable(request: Request, exc: StoreUnavailable):
        print(f"[DB] Unavailable during {request.method} {request.url.path}: {exc}")
        return JSONResponse(status_code=503, content={"detail": "Database unavailable"})

    @app.exception_handler(StoreError)
    def store_error(request: Request, exc: StoreError):
        print(f"[DB] Error during {request.method} {request.url.path}: {exc}")
        return JSONResponse(status_code=500, content={"detail": "Database error"})

    @app.exception_handler(ValueError)
    def bad_value(request: Request, exc: ValueError):
        return _error(400, exc)


# ---------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------
def create_app(store: Optional[Store] = None) -> FastAPI:
    """
    Build the application.

    With no store, one is created from tracker.config at startup and its
    schema initialized. Tests pass a ready store instead.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = getattr(app.state, "store", None) is None
        if owned:
            created = create_store_from_config()
            # An unreachable store is kept; every request then answers 503
            app.state.store = init_store(created) if created.available else created
        yield
        if owned:
            app.state.store.close()

    app = FastAPI(title="Project Tracker", version="0.1", lifespan=lifespan)

    # CORS configuration from config module
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS if IS_PROD else ["*"],  # Restrict origins in production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if store is not None:
        app.state.store = init_store(store) if store.available else store

    register_exception_handlers(app)
    _register_core_routes(app)
    app.include_router(users_router)
    app.include_router(projects_router)
    app.include_router(tasks_router)
    return app


def _register_core_routes(app: FastAPI) -> None:
    @app.get("/health")
    def health(request: Request) -> Dict[str, str]:
        store: Optional[Store] = getattr(request.app.state, "store", None)
        if store is None or not store.available:
            return {"status": "degraded", "database": "unavailable"}
        return {"status": "ok", "database": store.backend}

    @app.post("/auth/register", response_model=TokenResponse, status_code=201)
    def register(req: RegisterRequest, request: Request):
        store = get_store(request)
        user = users.create_user(store, req.email, req.password, req.display_name)
        if IS_DEV:
            print(f"[AUTH] Registered user_id={user.id}")
        return {"access_token": create_access_token(user.id), "user": user.model_dump()}

    @app.post("/auth/login", response_model=TokenResponse)
    def login(req: LoginRequest, request: Request):
        store = get_store(request)
        user = users.authenticate(store, req.email, req.password)
        if user is None:
            print("[AUTH] Login failed")
            raise HTTPException(status_code=401, detail="Invalid credentials")
        if IS_DEV:
            print(f"[AUTH] Login user_id={user.id}")
        return {"access_token": create_access_token(user.id), "user": user.model_dump()}

    @app.put("/auth/password")
    def change_password(
        req: PasswordChangeRequest,
        ctx: AuthContext = Depends(require_auth_context),
        store: Store = Depends(get_store),
    ) -> Dict[str, str]:
        """
        Raises:
            HTTPException(400): Current password is incorrect
        """
        users.change_password(store, ctx.user_id, req.current_password, req.new_password)
        if IS_DEV:
            print(f"[AUTH] Password changed for user_id={ctx.user_id}")
        return {"message": "Password updated"}


app = create_app()
