# tracker/db.py
# Persistence adapter: one interface over PostgreSQL (production) and SQLite (dev)
#
# Call sites never branch on the backend. create_store() picks a strategy once
# at startup and everything else talks to the Store interface:
#
#   store.execute(sql, params)          -> ExecuteResult
#   store.run_in_transaction(fn)        -> whatever fn(tx) returns
#
# SQL is always written with "?" positional placeholders. The PostgreSQL
# strategy rewrites them to SQLAlchemy named binds and appends RETURNING id to
# INSERT statements; the SQLite strategy uses them natively and reads the
# generated id from cursor.lastrowid.

from __future__ import annotations

import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, ContextManager, Dict, Generator, List, Optional, Sequence, Tuple, TypeVar, Union
from urllib.parse import urlparse

from sqlalchemy import create_engine, pool, text
from sqlalchemy import exc as sa_exc
from sqlalchemy.engine import Connection, Engine

from tracker.errors import StoreError, StoreUnavailable, UniqueViolation

T = TypeVar("T")

Params = Optional[Sequence[Any]]

# PostgreSQL SQLSTATE for unique_violation
PG_UNIQUE_VIOLATION = "23505"


# ---------------------------------------------------------
# Result type
# ---------------------------------------------------------
@dataclass
class ExecuteResult:
    """Uniform result of a single statement, whatever the backend."""
    rows: List[Dict[str, Any]] = field(default_factory=list)
    affected_count: int = 0
    last_insert_id: Optional[int] = None

    def first(self) -> Optional[Dict[str, Any]]:
        return self.rows[0] if self.rows else None

    def scalar(self) -> Any:
        """First column of the first row, or None."""
        row = self.first()
        if not row:
            return None
        return next(iter(row.values()))


# ---------------------------------------------------------
# Placeholder translation
# ---------------------------------------------------------
def to_named_params(statement: str, params: Params) -> Tuple[str, Dict[str, Any]]:
    """
    Rewrite "?" placeholders to SQLAlchemy named binds (:p1, :p2, ...).

    Question marks inside single-quoted literals or double-quoted identifiers
    are left untouched.

    Raises:
        ValueError: If the placeholder count does not match len(params)
    """
    values = list(params or ())
    out: List[str] = []
    bound: Dict[str, Any] = {}
    quote: Optional[str] = None
    index = 0

    for ch in statement:
        if quote:
            out.append(ch)
            if ch == quote:
                quote = None
            continue
        if ch in ("'", '"'):
            quote = ch
            out.append(ch)
            continue
        if ch == "?":
            index += 1
            name = f"p{index}"
            out.append(f":{name}")
            if index <= len(values):
                bound[name] = values[index - 1]
            continue
        out.append(ch)

    if index != len(values):
        raise ValueError(
            f"Statement has {index} placeholder(s) but {len(values)} parameter(s) were given"
        )
    return "".join(out), bound


def _is_insert(statement: str) -> bool:
    return statement.lstrip().upper().startswith("INSERT")


def _is_read(statement: str) -> bool:
    head = statement.lstrip().upper()
    return head.startswith("SELECT") or head.startswith("WITH") or head.startswith("PRAGMA")


def _with_returning_id(statement: str) -> Tuple[str, bool]:
    """Append RETURNING id to an INSERT that does not already return something."""
    if not _is_insert(statement) or " RETURNING " in f" {statement.upper()} ":
        return statement, False
    return statement.rstrip().rstrip(";") + " RETURNING id", True


# ---------------------------------------------------------
# Transaction handles
# ---------------------------------------------------------
class Transaction(ABC):
    """A connection with an open transaction, handed to run_in_transaction callbacks."""

    backend: str = ""

    @abstractmethod
    def execute(self, statement: str, params: Params = None) -> ExecuteResult:
        ...

    def fetch_one(self, statement: str, params: Params = None) -> Optional[Dict[str, Any]]:
        return self.execute(statement, params).first()

    def fetch_all(self, statement: str, params: Params = None) -> List[Dict[str, Any]]:
        return self.execute(statement, params).rows


class SQLiteTransaction(Transaction):
    backend = "sqlite"

    def __init__(self, conn: sqlite3.Connection):
        self._conn = conn

    def execute(self, statement: str, params: Params = None) -> ExecuteResult:
        try:
            cur = self._conn.execute(statement, tuple(params or ()))
        except sqlite3.IntegrityError as e:
            if "unique" in str(e).lower():
                raise UniqueViolation(str(e), constraint=_sqlite_constraint(str(e))) from e
            raise StoreError(str(e)) from e
        except sqlite3.OperationalError as e:
            if "unable to open" in str(e).lower():
                raise StoreUnavailable(str(e)) from e
            raise StoreError(str(e)) from e
        except sqlite3.Error as e:
            raise StoreError(str(e)) from e

        rows = [dict(r) for r in cur.fetchall()] if cur.description else []
        last_id = cur.lastrowid if _is_insert(statement) else None
        return ExecuteResult(rows=rows, affected_count=max(cur.rowcount, 0), last_insert_id=last_id)


class PostgresTransaction(Transaction):
    backend = "postgres"

    def __init__(self, conn: Connection):
        self._conn = conn

    def execute(self, statement: str, params: Params = None) -> ExecuteResult:
        statement, added_returning = _with_returning_id(statement)
        sql, bound = to_named_params(statement, params)
        try:
            result = self._conn.execute(text(sql), bound)
        except sa_exc.IntegrityError as e:
            if getattr(e.orig, "pgcode", None) == PG_UNIQUE_VIOLATION:
                diag = getattr(e.orig, "diag", None)
                raise UniqueViolation(str(e.orig), constraint=getattr(diag, "constraint_name", None)) from e
            raise StoreError(str(e.orig)) from e
        except (sa_exc.OperationalError, sa_exc.InterfaceError) as e:
            if e.connection_invalidated:
                raise StoreUnavailable(str(e.orig)) from e
            raise StoreError(str(e.orig)) from e
        except sa_exc.DBAPIError as e:
            raise StoreError(str(e.orig)) from e

        rows = [dict(r._mapping) for r in result] if result.returns_rows else []
        last_id = None
        if added_returning:
            last_id = rows[0]["id"] if rows else None
            rows = []
        return ExecuteResult(rows=rows, affected_count=max(result.rowcount, 0), last_insert_id=last_id)


def _sqlite_constraint(message: str) -> Optional[str]:
    # "UNIQUE constraint failed: tasks.project_id, tasks.sequence_number"
    if ":" in message:
        return message.split(":", 1)[1].strip()
    return None


# ---------------------------------------------------------
# Store interface
# ---------------------------------------------------------
class Store(ABC):
    """
    Backend-neutral persistence adapter.

    Lifecycle state lives on the instance: `initialized` flips once the
    schema has been created (see tracker.migrate.init_store), and a store
    whose first connection attempt failed stays unavailable for its lifetime.
    """

    backend: str = ""

    def __init__(self) -> None:
        self.initialized = False
        self._failure: Optional[StoreUnavailable] = None

    # -- lifecycle -------------------------------------------------------

    def connect(self) -> "Store":
        """Check the backend once. A failure here poisons the store."""
        try:
            self._ping()
        except StoreUnavailable as e:
            self._failure = e
            print(f"[DB] {self.backend} unavailable: {e}")
        return self

    @property
    def available(self) -> bool:
        return self._failure is None

    def _ensure_available(self) -> None:
        if self._failure is not None:
            raise StoreUnavailable(f"{self.backend} store is unavailable: {self._failure}")

    @abstractmethod
    def _ping(self) -> None:
        ...

    @abstractmethod
    def close(self) -> None:
        ...

    # -- transactions ----------------------------------------------------

    @abstractmethod
    def _transaction(self, readonly: bool) -> ContextManager[Transaction]:
        ...

    def run_in_transaction(self, fn: Callable[[Transaction], T], readonly: bool = False) -> T:
        """
        Run fn(tx) inside one transaction.

        Commits when fn returns, rolls back and re-raises on any exception.
        The connection is always released back to the pool.
        """
        self._ensure_available()
        with self._transaction(readonly) as tx:
            return fn(tx)

    # -- single statements ----------------------------------------------

    def execute(self, statement: str, params: Params = None) -> ExecuteResult:
        """Execute one statement in its own transaction."""
        return self.run_in_transaction(
            lambda tx: tx.execute(statement, params),
            readonly=_is_read(statement),
        )

    def fetch_one(self, statement: str, params: Params = None) -> Optional[Dict[str, Any]]:
        return self.execute(statement, params).first()

    def fetch_all(self, statement: str, params: Params = None) -> List[Dict[str, Any]]:
        return self.execute(statement, params).rows


class SQLiteStore(Store):
    """
    Embedded single-file engine.

    Write transactions start with BEGIN IMMEDIATE so that two writers never
    both read and then race for the write lock; the loser waits up to
    busy_timeout seconds instead. Concurrent checkouts are bounded by a
    semaphore, mirroring the PostgreSQL pool bound.
    """

    backend = "sqlite"

    def __init__(
        self,
        path: str,
        busy_timeout: float = 10.0,
        max_connections: int = 15,
        pool_timeout: float = 30.0,
    ):
        super().__init__()
        if path == ":memory:":
            raise ValueError("SQLiteStore needs a file path; :memory: databases are per-connection")
        self.path = str(path)
        self.busy_timeout = busy_timeout
        self.pool_timeout = pool_timeout
        self._slots = threading.BoundedSemaphore(max_connections)

    def _open(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(
                self.path,
                timeout=self.busy_timeout,
                isolation_level=None,  # explicit BEGIN/COMMIT below
                check_same_thread=False,
            )
        except sqlite3.Error as e:
            raise StoreUnavailable(f"cannot open {self.path}: {e}") from e
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _ping(self) -> None:
        conn = self._open()
        try:
            conn.execute("SELECT 1")
        except sqlite3.Error as e:
            raise StoreUnavailable(f"cannot query {self.path}: {e}") from e
        finally:
            conn.close()

    @contextmanager
    def _transaction(self, readonly: bool) -> Generator[Transaction, None, None]:
        if not self._slots.acquire(timeout=self.pool_timeout):
            raise StoreUnavailable("timed out waiting for a free SQLite connection")
        try:
            conn = self._open()
            try:
                try:
                    conn.execute("BEGIN" if readonly else "BEGIN IMMEDIATE")
                except sqlite3.OperationalError as e:
                    raise StoreError(f"could not begin transaction: {e}") from e
                try:
                    yield SQLiteTransaction(conn)
                except BaseException:
                    if conn.in_transaction:
                        conn.execute("ROLLBACK")
                    raise
                try:
                    conn.execute("COMMIT")
                except sqlite3.IntegrityError as e:
                    conn.execute("ROLLBACK")
                    if "unique" in str(e).lower():
                        raise UniqueViolation(str(e), constraint=_sqlite_constraint(str(e))) from e
                    raise StoreError(str(e)) from e
                except sqlite3.Error as e:
                    if conn.in_transaction:
                        conn.execute("ROLLBACK")
                    raise StoreError(f"commit failed: {e}") from e
            finally:
                conn.close()
        finally:
            self._slots.release()

    def close(self) -> None:
        # Connections are per-transaction; nothing is held between calls
        pass


class PostgresStore(Store):
    """Networked server via a bounded SQLAlchemy QueuePool."""

    backend = "postgres"

    def __init__(
        self,
        url: str,
        pool_size: int = 5,
        max_overflow: int = 10,
        pool_timeout: float = 30.0,
    ):
        super().__init__()
        parsed = urlparse(url)
        if not parsed.scheme or not parsed.netloc:
            raise ValueError(f"Invalid DATABASE_URL: {url[:20]}...")
        self.host = parsed.hostname
        self.engine: Optional[Engine] = None
        try:
            self.engine = create_engine(
                normalize_postgres_url(url),
                poolclass=pool.QueuePool,
                pool_size=pool_size,
                max_overflow=max_overflow,
                pool_timeout=pool_timeout,
                pool_pre_ping=True,  # Verify connections before use
                echo=False,
            )
        except (ImportError, sa_exc.ArgumentError) as e:
            # Missing DBAPI driver or unusable URL: poisoned, like a failed connect()
            self._failure = StoreUnavailable(f"cannot create engine for {self.host}: {e}")

    def _checkout(self) -> Connection:
        if self.engine is None:
            raise self._failure or StoreUnavailable(f"no engine for {self.host}")
        try:
            return self.engine.connect()
        except sa_exc.TimeoutError as e:
            raise StoreUnavailable("timed out waiting for a pooled connection") from e
        except (sa_exc.OperationalError, sa_exc.InterfaceError) as e:
            raise StoreUnavailable(f"cannot connect to {self.host}: {e.orig}") from e

    def _ping(self) -> None:
        with self._checkout() as conn:
            conn.execute(text("SELECT 1"))

    @contextmanager
    def _transaction(self, readonly: bool) -> Generator[Transaction, None, None]:
        with self._checkout() as conn:
            try:
                trans = conn.begin()
            except (sa_exc.OperationalError, sa_exc.InterfaceError) as e:
                raise StoreUnavailable(f"cannot begin transaction on {self.host}: {e.orig}") from e
            try:
                yield PostgresTransaction(conn)
            except BaseException:
                if trans.is_active:
                    trans.rollback()
                raise
            try:
                trans.commit()
            except sa_exc.IntegrityError as e:
                if getattr(e.orig, "pgcode", None) == PG_UNIQUE_VIOLATION:
                    raise UniqueViolation(str(e.orig)) from e
                raise StoreError(str(e.orig)) from e
            except (sa_exc.OperationalError, sa_exc.InterfaceError) as e:
                raise StoreUnavailable(f"commit failed on {self.host}: {e.orig}") from e

    def close(self) -> None:
        if self.engine is not None:
            self.engine.dispose()


# Anything that can run a statement: a store (own transaction per call) or
# an open transaction inside run_in_transaction
Queryable = Union[Store, Transaction]


def normalize_postgres_url(url: str) -> str:
    """
    Pin the psycopg2 driver unless the URL names one.

    SQLAlchemy no longer accepts the postgres:// alias, and newer releases
    default plain postgresql:// to a driver that is not installed.
    """
    for prefix in ("postgres://", "postgresql://"):
        if url.startswith(prefix):
            return "postgresql+psycopg2://" + url[len(prefix):]
    return url


# ---------------------------------------------------------
# Factory
# ---------------------------------------------------------
def create_store(
    database_url: str = "",
    database_path: str = "tracker.db",
    *,
    pool_size: int = 5,
    max_overflow: int = 10,
    pool_timeout: float = 30.0,
    busy_timeout: float = 10.0,
) -> Store:
    """
    Pick the backend strategy once and check that it answers.

    A postgres:// or postgresql[+driver]:// URL selects PostgreSQL; anything else
    falls back to the SQLite file at database_path.
    """
    database_url = (database_url or "").strip()
    if database_url.startswith(("postgres://", "postgresql://", "postgresql+")):
        store: Store = PostgresStore(
            database_url,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_timeout=pool_timeout,
        )
        print(f"[DB] Using PostgreSQL ({store.host})")
    else:
        store = SQLiteStore(
            str(Path(database_path)),
            busy_timeout=busy_timeout,
            max_connections=pool_size + max_overflow,
            pool_timeout=pool_timeout,
        )
        print(f"[DB] Using SQLite ({database_path})")
    return store.connect()


def create_store_from_config() -> Store:
    """Build the store from tracker.config (environment variables)."""
    from tracker import config

    return create_store(
        config.DATABASE_URL,
        config.DATABASE_PATH,
        pool_size=config.DB_POOL_SIZE,
        max_overflow=config.DB_MAX_OVERFLOW,
        pool_timeout=config.DB_POOL_TIMEOUT,
        busy_timeout=config.SQLITE_BUSY_TIMEOUT,
    )
