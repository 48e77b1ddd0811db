# tracker/config.py
# Environment-aware configuration for the project tracker

import os
from typing import Literal

# Environment detection
ENV: Literal["dev", "staging", "prod"] = os.environ.get("ENV", "dev")  # type: ignore
IS_DEV = (ENV == "dev")
IS_STAGING = (ENV == "staging")
IS_PROD = (ENV == "prod")

# JWT configuration
SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-change-me")
ALGORITHM = "HS256"
ACCESS_TOKEN_MINUTES = int(os.environ.get("ACCESS_TOKEN_MINUTES", "60"))

# Database configuration
# DATABASE_URL takes precedence (networked PostgreSQL)
# Falls back to an embedded SQLite file for local development
DATABASE_URL = os.environ.get("DATABASE_URL", "").strip()
DATABASE_PATH = os.environ.get("DATABASE_PATH", "tracker.db")

# Connection pool bounds (shared by both backends)
DB_POOL_SIZE = int(os.environ.get("DB_POOL_SIZE", "5"))
DB_MAX_OVERFLOW = int(os.environ.get("DB_MAX_OVERFLOW", "10"))
DB_POOL_TIMEOUT = float(os.environ.get("DB_POOL_TIMEOUT", "30"))
SQLITE_BUSY_TIMEOUT = float(os.environ.get("SQLITE_BUSY_TIMEOUT", "10"))

# Task key allocation retries (never fewer than 3)
TASK_ALLOCATION_MAX_ATTEMPTS = max(3, int(os.environ.get("TASK_ALLOCATION_MAX_ATTEMPTS", "5")))

# CORS origins (expand for staging/prod)
CORS_ORIGINS = [
    "http://localhost:5173",  # Vite dev server
    "http://127.0.0.1:5173",
]

if IS_STAGING or IS_PROD:
    extra_origins = os.environ.get("CORS_ORIGINS", "")
    if extra_origins:
        CORS_ORIGINS.extend(o.strip() for o in extra_origins.split(",") if o.strip())

if IS_DEV:
    print(f"[CONFIG] Environment: {ENV}")
    print(f"[CONFIG] DATABASE_URL: {'set' if DATABASE_URL else 'not set, using ' + DATABASE_PATH}")
    print(f"[CONFIG] Pool: size={DB_POOL_SIZE}, overflow={DB_MAX_OVERFLOW}")
