"""
Database Connection Manager
Thread-safe SQLite connection pooling with explicit lifecycle, nested
transactions via savepoints, transaction timeouts and multi-statement
script execution.
"""

import logging
import re
import sqlite3
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager, suppress
from dataclasses import dataclass, field
from pathlib import Path
from queue import Empty, Queue
from typing import Any
from uuid import uuid4

from ..exceptions import DatabaseConnectionError, DatabaseError, TransactionError

logger = logging.getLogger(__name__)

_LINE_COMMENT = re.compile(r"--[^\n]*")
_BLOCK_COMMENT = re.compile(r"/\*.*?\*/", re.DOTALL)


def _has_sql(fragment: str) -> bool:
    """Check whether a fragment contains anything besides comments and separators."""
    stripped = _BLOCK_COMMENT.sub("", _LINE_COMMENT.sub("", fragment))
    return bool(stripped.replace(";", "").strip())


def split_sql_statements(script: str) -> list[str]:
    """
    Split a SQL script into individually executable statements.

    Uses sqlite3.complete_statement so semicolons inside string literals,
    comments and trigger bodies do not end a statement. Comment-only
    fragments are dropped; a trailing statement without a semicolon is kept.
    """
    statements: list[str] = []
    buffer = ""
    for part in script.split(";"):
        buffer += part + ";"
        if sqlite3.complete_statement(buffer):
            if _has_sql(buffer):
                statements.append(buffer.strip())
            buffer = ""

    # The split appends one semicolon too many to the final fragment
    remainder = buffer[:-1]
    if _has_sql(remainder):
        statements.append(remainder.strip())
    return statements


@dataclass
class ConnectionInfo:
    """Information about a pooled database connection."""

    connection: sqlite3.Connection
    thread_id: int
    created_at: float
    last_used: float
    in_use: bool = False
    transaction_level: int = 0
    connection_id: str = field(default_factory=lambda: str(uuid4()))
    transaction_start_time: float | None = None
    savepoints: list[str] = field(default_factory=list)

    def mark_activity(self) -> None:
        self.last_used = time.time()


class ConnectionPool:
    """Bounded pool of SQLite connections shared across threads."""

    def __init__(
        self,
        database: str,
        max_connections: int = 10,
        connection_timeout: float = 30.0,
        uri: bool = False,
        is_memory: bool = False,
    ) -> None:
        self.database = database
        self.max_connections = max_connections
        self.connection_timeout = connection_timeout
        self.uri = uri
        self.is_memory = is_memory

        self._available: Queue[ConnectionInfo] = Queue()
        self._all_connections: list[ConnectionInfo] = []
        self._lock = threading.Lock()
        self._closed = False
        self._stats = {"created": 0, "reused": 0, "errors": 0}

    def _create_connection(self) -> sqlite3.Connection:
        """Create a new SQLite connection in autocommit mode."""
        try:
            conn = sqlite3.connect(
                self.database,
                check_same_thread=False,
                timeout=self.connection_timeout,
                isolation_level=None,  # Autocommit mode for manual transaction control
                uri=self.uri,
            )
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            if not self.is_memory:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            conn.execute(f"PRAGMA busy_timeout = {int(self.connection_timeout * 1000)}")
            self._stats["created"] += 1
            logger.debug(f"Created connection (total: {self._stats['created']})")
            return conn
        except sqlite3.Error as e:
            self._stats["errors"] += 1
            logger.error(f"Failed to create database connection: {e}")
            raise DatabaseConnectionError(
                f"Connection creation failed: {e}", database=self.database
            ) from e

    def get_connection(self) -> ConnectionInfo:
        """Check out a connection, creating one while under the pool limit."""
        if self._closed:
            raise DatabaseConnectionError("Connection pool is closed", database=self.database)

        try:
            conn_info = self._available.get_nowait()
            self._stats["reused"] += 1
        except Empty:
            with self._lock:
                can_create = len(self._all_connections) < self.max_connections
                if can_create:
                    now = time.time()
                    conn_info = ConnectionInfo(
                        connection=self._create_connection(),
                        thread_id=threading.get_ident(),
                        created_at=now,
                        last_used=now,
                    )
                    self._all_connections.append(conn_info)
            if not can_create:
                try:
                    conn_info = self._available.get(timeout=self.connection_timeout)
                except Empty as e:
                    raise DatabaseConnectionError(
                        f"Connection pool exhausted ({self.max_connections} connections)",
                        database=self.database,
                    ) from e

        conn_info.in_use = True
        conn_info.thread_id = threading.get_ident()
        conn_info.mark_activity()
        return conn_info

    def return_connection(self, conn_info: ConnectionInfo) -> None:
        """Return a connection to the pool, rolling back any open transaction."""
        if conn_info.transaction_level > 0:
            logger.warning(
                f"Connection {conn_info.connection_id} returned with open transaction; rolling back"
            )
            with suppress(sqlite3.Error):
                conn_info.connection.execute("ROLLBACK")
            conn_info.transaction_level = 0
            conn_info.savepoints.clear()
            conn_info.transaction_start_time = None

        conn_info.in_use = False
        if not self._closed:
            self._available.put(conn_info)

    def close_all(self) -> None:
        """Close every connection created by this pool."""
        with self._lock:
            self._closed = True
            for conn_info in self._all_connections:
                with suppress(sqlite3.Error):
                    conn_info.connection.close()
            closed = len(self._all_connections)
            self._all_connections.clear()
        while not self._available.empty():
            with suppress(Empty):
                self._available.get_nowait()
        logger.debug(f"Closed {closed} pooled connections. Stats: {self._stats}")

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            total = len(self._all_connections)
            active = sum(1 for c in self._all_connections if c.in_use)
        return {
            "max_connections": self.max_connections,
            "total_connections": total,
            "active_connections": active,
            **self._stats,
        }


class DatabaseConnection:
    """
    Thread-safe SQLite connection manager for the ledger and target stores.

    Owned by the composition root: nothing is opened until ``connect()``
    and everything is closed by ``close()``. Each thread works on its own
    pooled connection, so transactions never interleave across threads.
    """

    SLOW_QUERY_THRESHOLD_MS = 100

    @staticmethod
    def _is_memory_database_url(db_path: str) -> bool:
        normalized_path = db_path.strip().lower()
        return normalized_path in {":memory:", "sqlite:///:memory:", "sqlite://:memory:"}

    def __init__(
        self,
        db_path: str,
        max_connections: int = 10,
        connection_timeout: float = 30.0,
    ) -> None:
        """
        Configure a connection manager without opening connections.

        Args:
            db_path: SQLite file path, ``sqlite:///`` URL or ``:memory:``
            max_connections: Maximum number of pooled connections
            connection_timeout: Busy and pool checkout timeout in seconds

        Raises:
            DatabaseConnectionError: If the path is empty
        """
        if not db_path or not str(db_path).strip():
            raise DatabaseConnectionError("Database path cannot be empty")

        self.is_memory_db = self._is_memory_database_url(str(db_path))
        if self.is_memory_db:
            # Shared-cache URI so every pooled connection sees the same database
            self.db_path = None
            self.db_path_str = f"file:dbvc_{uuid4().hex}?mode=memory&cache=shared"
        else:
            clean_path = str(db_path)
            if clean_path.startswith("sqlite:///"):
                clean_path = clean_path[len("sqlite:///"):]
            self.db_path = Path(clean_path)
            self.db_path_str = str(self.db_path)

        self.max_connections = max_connections
        self.connection_timeout = connection_timeout
        self._pool: ConnectionPool | None = None
        self._local = threading.local()
        self._keepalive: sqlite3.Connection | None = None

    def __repr__(self) -> str:
        return f"DatabaseConnection({self.db_path_str!r})"

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        return self._pool is not None

    def connect(self) -> "DatabaseConnection":
        """Open the connection pool and verify the database is reachable."""
        if self._pool is not None:
            return self

        if not self.is_memory_db and self.db_path is not None:
            try:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise DatabaseConnectionError(
                    f"Cannot access database path: {e}", database=self.db_path_str
                ) from e

        pool = ConnectionPool(
            self.db_path_str,
            self.max_connections,
            self.connection_timeout,
            uri=self.is_memory_db,
            is_memory=self.is_memory_db,
        )
        try:
            conn_info = pool.get_connection()
            conn_info.connection.execute("SELECT 1").fetchone()
            pool.return_connection(conn_info)
        except Exception as e:
            pool.close_all()
            logger.error(f"Failed to establish database connection: {e}")
            raise DatabaseConnectionError(
                f"Cannot connect to database: {e}", database=self.db_path_str
            ) from e

        if self.is_memory_db:
            # A shared in-memory database lives only while a connection holds it
            self._keepalive = sqlite3.connect(self.db_path_str, uri=True, check_same_thread=False)

        self._pool = pool
        self._local = threading.local()
        logger.info(f"Database connection established: {self.db_path_str}")
        return self

    def close(self) -> None:
        """Close all pooled connections."""
        if self._pool is None:
            return
        self._pool.close_all()
        self._pool = None
        self._local = threading.local()
        if self._keepalive is not None:
            self._keepalive.close()
            self._keepalive = None
        logger.info(f"Database connection closed: {self.db_path_str}")

    def __enter__(self) -> "DatabaseConnection":
        return self.connect()

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def _require_pool(self) -> ConnectionPool:
        if self._pool is None:
            raise DatabaseConnectionError(
                "Database not connected. Call connect() first.",
                database=self.db_path_str,
            )
        return self._pool

    def _get_current_connection(self) -> ConnectionInfo:
        """Get or check out the connection bound to the current thread."""
        pool = self._require_pool()
        conn_info = getattr(self._local, "connection_info", None)
        if conn_info is None:
            conn_info = pool.get_connection()
            self._local.connection_info = conn_info
        conn_info.mark_activity()
        return conn_info

    def release_thread_connection(self) -> None:
        """Return the current thread's connection to the pool."""
        conn_info = getattr(self._local, "connection_info", None)
        if conn_info is not None and self._pool is not None:
            self._pool.return_connection(conn_info)
        self._local.connection_info = None

    def get_connection(self) -> sqlite3.Connection:
        return self._get_current_connection().connection

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @property
    def in_transaction(self) -> bool:
        conn_info = getattr(self._local, "connection_info", None)
        return bool(conn_info and conn_info.transaction_level > 0)

    @contextmanager
    def transaction(
        self, savepoint_name: str | None = None, timeout: float | None = None
    ) -> Iterator[sqlite3.Connection]:
        """
        Context manager for database transactions.

        The outermost level issues BEGIN IMMEDIATE, which takes the database
        write lock up front, so read-then-write sequences inside it are atomic
        with respect to other connections. Nested levels use savepoints.

        Args:
            savepoint_name: Optional savepoint name for nested transactions
            timeout: Optional limit in seconds; statements still running past
                it are interrupted and the transaction is rolled back

        Raises:
            TransactionError: If the body raises; the work has been rolled back
        """
        conn_info = self._get_current_connection()
        conn = conn_info.connection
        is_nested = conn_info.transaction_level > 0
        savepoint_name = savepoint_name or f"sp_{conn_info.transaction_level}_{uuid4().hex[:8]}"

        if is_nested:
            conn.execute(f"SAVEPOINT {savepoint_name}")
            conn_info.transaction_level += 1
            conn_info.savepoints.append(savepoint_name)
            logger.debug(f"Started savepoint: {savepoint_name} (L{conn_info.transaction_level})")
            try:
                yield conn
            except Exception as e:
                try:
                    conn.execute(f"ROLLBACK TO SAVEPOINT {savepoint_name}")
                    conn.execute(f"RELEASE SAVEPOINT {savepoint_name}")
                except sqlite3.Error as rollback_error:
                    logger.error(f"Failed rollback savepoint {savepoint_name}: {rollback_error}")
                logger.error(f"Transaction rolled back to savepoint {savepoint_name}: {e}")
                raise TransactionError(f"Nested transaction failed: {e}") from e
            else:
                conn.execute(f"RELEASE SAVEPOINT {savepoint_name}")
                logger.debug(f"Released savepoint: {savepoint_name}")
            finally:
                if savepoint_name in conn_info.savepoints:
                    conn_info.savepoints.remove(savepoint_name)
                conn_info.transaction_level -= 1
            return

        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as e:
            raise TransactionError(f"Could not begin transaction: {e}") from e

        conn_info.transaction_level = 1
        conn_info.transaction_start_time = time.time()
        if timeout is not None:
            deadline = time.monotonic() + timeout
            conn.set_progress_handler(lambda: 1 if time.monotonic() > deadline else 0, 1000)
        logger.debug("Started new transaction")

        try:
            yield conn
            conn.execute("COMMIT")
            logger.debug("Transaction committed successfully")
        except Exception as e:
            try:
                conn.execute("ROLLBACK")
                logger.debug("Transaction rolled back successfully")
            except sqlite3.Error as rollback_error:
                logger.error(f"Failed to rollback transaction: {rollback_error}")
            if timeout is not None and "interrupted" in str(e).lower():
                raise TransactionError(
                    f"Transaction exceeded timeout of {timeout}s and was rolled back"
                ) from e
            logger.error(f"Transaction failed and rolled back: {e}")
            raise TransactionError(f"Transaction failed: {e}") from e
        finally:
            if timeout is not None:
                conn.set_progress_handler(None, 0)
            conn_info.transaction_level = 0
            conn_info.transaction_start_time = None
            conn_info.savepoints.clear()

    # ------------------------------------------------------------------
    # Statement execution
    # ------------------------------------------------------------------

    def _handle_operational_error(
        self, e: sqlite3.OperationalError, query: str, attempt: int, max_retries: int
    ) -> bool:
        """Handle operational errors with retry logic. Returns True if should retry."""
        error_msg = str(e).lower()
        in_txn = self.in_transaction
        if ("database is locked" in error_msg or "database is busy" in error_msg) and not in_txn:
            if attempt < max_retries:
                wait_time = 0.1 * (2**attempt)
                logger.warning(f"DB busy, retrying in {wait_time}s (attempt {attempt + 1})")
                time.sleep(wait_time)
                return True
            raise DatabaseConnectionError(
                f"Database locked after retries: {e}", database=self.db_path_str
            ) from e
        if "no such table" in error_msg or "no such column" in error_msg:
            raise DatabaseError(f"Schema error: {e}", query=query) from e
        raise DatabaseError(f"Query execution failed: {e}", query=query) from e

    def execute(
        self, query: str, params: tuple[Any, ...] | None = None, max_retries: int = 3
    ) -> sqlite3.Cursor:
        """
        Execute a single SQL statement with parameters.

        Raises:
            DatabaseError: If query execution fails
        """
        conn = self.get_connection()
        start_time = time.time()

        for attempt in range(max_retries + 1):
            try:
                cursor = conn.execute(query, params) if params else conn.execute(query)
                execution_time = (time.time() - start_time) * 1000
                if execution_time > self.SLOW_QUERY_THRESHOLD_MS:
                    logger.warning(f"Slow query ({execution_time:.2f}ms): {query[:100]}...")
                else:
                    logger.debug(f"Executed query ({execution_time:.2f}ms): {query[:100]}...")
                return cursor
            except sqlite3.OperationalError as e:
                if self._handle_operational_error(e, query, attempt, max_retries):
                    continue
            except sqlite3.IntegrityError as e:
                raise DatabaseError(
                    f"Integrity constraint violation: {e}", query=query, constraint=str(e)
                ) from e
            except sqlite3.Error as e:
                raise DatabaseError(f"Database error: {e}", query=query) from e

        raise DatabaseError("Maximum retries exceeded", query=query)

    def execute_script(self, script: str) -> int:
        """
        Execute a multi-statement SQL script statement by statement.

        Unlike sqlite3's executescript this never issues an implicit COMMIT,
        so the script runs inside the caller's transaction.

        Returns:
            Number of statements executed
        """
        statements = split_sql_statements(script)
        for statement in statements:
            self.execute(statement, max_retries=0)
        return len(statements)

    def fetch_one(self, query: str, params: tuple[Any, ...] | None = None) -> sqlite3.Row | None:
        return self.execute(query, params).fetchone()

    def fetch_all(self, query: str, params: tuple[Any, ...] | None = None) -> list[sqlite3.Row]:
        return self.execute(query, params).fetchall()

    def get_last_change_count(self) -> int:
        """Number of rows affected by the last INSERT, UPDATE, or DELETE."""
        result = self.fetch_one("SELECT changes() as count")
        return int(result["count"]) if result else 0

    def get_pool_stats(self) -> dict[str, Any]:
        return self._require_pool().get_stats()

    def get_database_info(self) -> dict[str, Any]:
        """Get database metadata for health reporting."""
        info: dict[str, Any] = {
            "database_path": self.db_path_str,
            "database_type": "memory" if self.is_memory_db else "file",
            "connected": self.is_connected,
        }
        if not self.is_memory_db and self.db_path is not None:
            info["database_exists"] = self.db_path.exists()
            info["database_size"] = self.db_path.stat().st_size if self.db_path.exists() else 0
        return info
