# tracker/migrate.py
# Idempotent schema creation for PostgreSQL and SQLite
# Run: python -m tracker.migrate

from tracker.db import Store, Transaction, create_store_from_config


def init_store(store: Store) -> Store:
    """
    Bring the schema up to date once per store.

    Safe to call repeatedly and safe against an already-initialized
    database: only missing tables, columns and indexes are created.
    """
    if store.initialized:
        return store
    run_migrations(store)
    store.initialized = True
    return store


def run_migrations(store: Store) -> None:
    """
    Run all database migrations (idempotent).
    Creates tables, adds columns, and creates indexes if missing.
    """
    print(f"[MIGRATE] Starting {store.backend} migrations...")

    if store.backend == "postgres":
        store.run_in_transaction(_run_postgres_migrations)
    else:
        store.run_in_transaction(_run_sqlite_migrations)

    print("[MIGRATE] All migrations complete!")


def _run_postgres_migrations(tx: Transaction) -> None:
    """PostgreSQL-specific DDL."""
    tx.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id SERIAL PRIMARY KEY,
            email TEXT UNIQUE NOT NULL,
            password_hash TEXT NOT NULL,
            display_name TEXT NOT NULL,
            system_role TEXT NOT NULL DEFAULT 'Member'
                CHECK (system_role IN ('Admin', 'Member', 'Reader')),
            created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
    """)

    tx.execute("""
        CREATE TABLE IF NOT EXISTS projects (
            id SERIAL PRIMARY KEY,
            name TEXT NOT NULL,
            description TEXT,
            key TEXT UNIQUE NOT NULL,
            owner_id INTEGER NOT NULL REFERENCES users(id),
            last_task_number INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
    """)
    tx.execute("ALTER TABLE projects ADD COLUMN IF NOT EXISTS last_task_number INTEGER NOT NULL DEFAULT 0")
    tx.execute("CREATE INDEX IF NOT EXISTS idx_projects_owner_id ON projects(owner_id)")

    tx.execute("""
        CREATE TABLE IF NOT EXISTS project_members (
            id SERIAL PRIMARY KEY,
            project_id INTEGER NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
            user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            role TEXT NOT NULL DEFAULT 'Member'
                CHECK (role IN ('Admin', 'Member', 'Reader')),
            created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
            UNIQUE(project_id, user_id)
        )
    """)
    tx.execute("CREATE INDEX IF NOT EXISTS idx_project_members_user_id ON project_members(user_id)")

    tx.execute("""
        CREATE TABLE IF NOT EXISTS tasks (
            id SERIAL PRIMARY KEY,
            project_id INTEGER NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
            sequence_number INTEGER NOT NULL,
            title TEXT NOT NULL,
            description TEXT,
            type TEXT NOT NULL DEFAULT 'task' CHECK (type IN ('task', 'bug')),
            status TEXT NOT NULL DEFAULT 'TODO' CHECK (status IN ('TODO', 'IN_PROGRESS', 'DONE')),
            priority TEXT NOT NULL DEFAULT 'medium' CHECK (priority IN ('low', 'medium', 'high')),
            assignee_id INTEGER REFERENCES users(id) ON DELETE SET NULL,
            reporter_id INTEGER REFERENCES users(id) ON DELETE SET NULL,
            due_date TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
            CONSTRAINT uq_tasks_project_sequence UNIQUE (project_id, sequence_number)
        )
    """)
    tx.execute("CREATE INDEX IF NOT EXISTS idx_tasks_assignee_id ON tasks(assignee_id)")
    tx.execute("CREATE INDEX IF NOT EXISTS idx_tasks_project_status ON tasks(project_id, status)")

    tx.execute("""
        CREATE TABLE IF NOT EXISTS comments (
            id SERIAL PRIMARY KEY,
            task_id INTEGER NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
            author_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            content TEXT NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
    """)
    tx.execute("CREATE INDEX IF NOT EXISTS idx_comments_task_id ON comments(task_id)")

    print("[MIGRATE] PostgreSQL migrations complete")


def _run_sqlite_migrations(tx: Transaction) -> None:
    """SQLite-specific DDL."""
    tx.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            email TEXT UNIQUE NOT NULL,
            password_hash TEXT NOT NULL,
            display_name TEXT NOT NULL,
            system_role TEXT NOT NULL DEFAULT 'Member'
                CHECK (system_role IN ('Admin', 'Member', 'Reader')),
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
    """)

    tx.execute("""
        CREATE TABLE IF NOT EXISTS projects (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            description TEXT,
            key TEXT UNIQUE NOT NULL,
            owner_id INTEGER NOT NULL,
            last_task_number INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (owner_id) REFERENCES users (id)
        )
    """)
    _ensure_sqlite_column(tx, "projects", "last_task_number", "INTEGER NOT NULL DEFAULT 0")
    tx.execute("CREATE INDEX IF NOT EXISTS idx_projects_owner_id ON projects(owner_id)")

    tx.execute("""
        CREATE TABLE IF NOT EXISTS project_members (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            project_id INTEGER NOT NULL,
            user_id INTEGER NOT NULL,
            role TEXT NOT NULL DEFAULT 'Member'
                CHECK (role IN ('Admin', 'Member', 'Reader')),
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (project_id) REFERENCES projects (id) ON DELETE CASCADE,
            FOREIGN KEY (user_id) REFERENCES users (id) ON DELETE CASCADE,
            UNIQUE(project_id, user_id)
        )
    """)
    tx.execute("CREATE INDEX IF NOT EXISTS idx_project_members_user_id ON project_members(user_id)")

    tx.execute("""
        CREATE TABLE IF NOT EXISTS tasks (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            project_id INTEGER NOT NULL,
            sequence_number INTEGER NOT NULL,
            title TEXT NOT NULL,
            description TEXT,
            type TEXT NOT NULL DEFAULT 'task' CHECK (type IN ('task', 'bug')),
            status TEXT NOT NULL DEFAULT 'TODO' CHECK (status IN ('TODO', 'IN_PROGRESS', 'DONE')),
            priority TEXT NOT NULL DEFAULT 'medium' CHECK (priority IN ('low', 'medium', 'high')),
            assignee_id INTEGER,
            reporter_id INTEGER,
            due_date TEXT,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (project_id) REFERENCES projects (id) ON DELETE CASCADE,
            FOREIGN KEY (assignee_id) REFERENCES users (id) ON DELETE SET NULL,
            FOREIGN KEY (reporter_id) REFERENCES users (id) ON DELETE SET NULL,
            UNIQUE(project_id, sequence_number)
        )
    """)
    tx.execute("CREATE INDEX IF NOT EXISTS idx_tasks_assignee_id ON tasks(assignee_id)")
    tx.execute("CREATE INDEX IF NOT EXISTS idx_tasks_project_status ON tasks(project_id, status)")

    tx.execute("""
        CREATE TABLE IF NOT EXISTS comments (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            task_id INTEGER NOT NULL,
            author_id INTEGER NOT NULL,
            content TEXT NOT NULL,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (task_id) REFERENCES tasks (id) ON DELETE CASCADE,
            FOREIGN KEY (author_id) REFERENCES users (id) ON DELETE CASCADE
        )
    """)
    tx.execute("CREATE INDEX IF NOT EXISTS idx_comments_task_id ON comments(task_id)")

    print("[MIGRATE] SQLite migrations complete")


def _ensure_sqlite_column(tx: Transaction, table: str, column: str, ddl: str) -> bool:
    """Add column to SQLite table if missing (idempotent)."""
    columns = {row["name"] for row in tx.fetch_all(f"PRAGMA table_info({table})")}
    if column in columns:
        return False
    tx.execute(f"ALTER TABLE {table} ADD COLUMN {column} {ddl}")
    print(f"[MIGRATE] Added column {table}.{column}")
    return True


if __name__ == "__main__":
    init_store(create_store_from_config())
