"""
Shared SQLite database for the Lending Server.

This module owns the single SQLite file that backs the identity store,
the catalog store and the loan ledger, and the transaction boundary every
write goes through.

Invariants:
    - One connection per operation, closed when the operation ends
    - Writes run inside transaction(), which commits or rolls back fully
    - BEGIN IMMEDIATE takes the database write lock before the first read,
      so a check-then-write sequence is serializable against other writers
    - A transaction that waits past busy_timeout_ms surfaces as
      StorageConflictError(LOCK_TIMEOUT), never as a partial write

How to change safely:
    - Schema changes must be additive (CREATE ... IF NOT EXISTS)
    - Bump SCHEMA_VERSION and record it in schema_version
    - Never open a write transaction with plain BEGIN when the operation
      reads before it writes

Table schema:
    authors:
        - id INTEGER PRIMARY KEY
        - name TEXT
        - date_of_birth TEXT (ISO date)

    members:
        - id INTEGER PRIMARY KEY
        - username TEXT UNIQUE
        - email TEXT UNIQUE
        - address TEXT
        - phone_number TEXT

    books:
        - id INTEGER PRIMARY KEY
        - title TEXT
        - genre TEXT
        - price TEXT (decimal string)
        - author_id INTEGER -> authors.id
        - version INTEGER
        - UNIQUE (title, author_id)

    loans:
        - id INTEGER PRIMARY KEY
        - member_id INTEGER -> members.id
        - book_id INTEGER -> books.id
        - lend_date TEXT (ISO date)
        - return_date TEXT (ISO date, NULL while active)
        - UNIQUE (book_id) WHERE return_date IS NULL
"""

from __future__ import annotations

import logging
import re
import sqlite3
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from ..errors import ConflictKind, StorageConflictError

logger = logging.getLogger(__name__)

_UNIQUE_FAILED = re.compile(r"UNIQUE constraint failed: (.+)$")


def unique_violation_columns(exc: sqlite3.IntegrityError) -> tuple[str, ...]:
    """Columns named by a UNIQUE constraint failure.

    Args:
        exc: IntegrityError raised by SQLite

    Returns:
        Tuple like ("books.title", "books.author_id"), empty if the error
        is not a unique constraint failure
    """
    match = _UNIQUE_FAILED.search(str(exc))
    if not match:
        return ()
    return tuple(col.strip() for col in match.group(1).split(","))


def is_foreign_key_violation(exc: sqlite3.IntegrityError) -> bool:
    """Check whether an IntegrityError comes from a foreign key."""
    return "FOREIGN KEY constraint failed" in str(exc)


def _is_lock_error(exc: sqlite3.OperationalError) -> bool:
    message = str(exc).lower()
    return "locked" in message or "busy" in message


class LibraryDatabase:
    """SQLite database shared by all library stores.

    Thread safety:
        Each operation opens its own connection in the calling thread.
        SQLite serializes writers through its database lock; WAL mode lets
        readers proceed while a writer holds it.

    Example:
        >>> db = LibraryDatabase("/var/lib/library/library.db")
        >>> db.initialize()
        >>> with db.transaction() as conn:
        ...     conn.execute("SELECT COUNT(*) FROM loans").fetchone()
    """

    SCHEMA_VERSION = 1

    def __init__(
        self,
        db_path: str,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
        cache_size_pages: int = -16000,
    ) -> None:
        """Initialize the database handle.

        Args:
            db_path: SQLite database file
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: How long to wait for the write lock
            cache_size_pages: SQLite cache size (negative = KB)
        """
        self.db_path = Path(db_path)
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self.cache_size_pages = cache_size_pages

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Open a configured connection in autocommit mode.

        Every statement outside an explicit BEGIN sees its own committed
        snapshot; use transaction() for anything that must be atomic.

        Yields:
            SQLite connection
        """
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            str(self.db_path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )
        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            conn.execute(f"PRAGMA cache_size = {self.cache_size_pages}")
            conn.execute("PRAGMA synchronous = NORMAL")
            conn.execute("PRAGMA foreign_keys = ON")

            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self, immediate: bool = True) -> Iterator[sqlite3.Connection]:
        """Run a block inside a single transaction.

        Args:
            immediate: Take the write lock up front (BEGIN IMMEDIATE). Only
                pass False for read-only blocks that need one snapshot.

        Yields:
            SQLite connection with an open transaction

        Raises:
            StorageConflictError: If the write lock could not be acquired or
                held within busy_timeout_ms
        """
        with self.connection() as conn:
            try:
                conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN DEFERRED")
                yield conn
                conn.execute("COMMIT")
            except Exception as e:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                if isinstance(e, sqlite3.OperationalError) and _is_lock_error(e):
                    logger.warning(
                        "Transaction timed out waiting for the database lock",
                        extra={"db_path": str(self.db_path), "error": str(e)},
                    )
                    raise StorageConflictError(
                        ConflictKind.LOCK_TIMEOUT,
                        message="Timed out waiting for a concurrent write to finish",
                    ) from e
                raise

    def initialize(self) -> None:
        """Create the database file and schema if they don't exist."""
        with self.connection() as conn:
            if self.wal_mode:
                # journal_mode is persistent in the file
                conn.execute("PRAGMA journal_mode = WAL")
            self._create_schema(conn)

        logger.info(
            "Initialized library database",
            extra={"db_path": str(self.db_path), "schema_version": self.SCHEMA_VERSION},
        )

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS authors (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                date_of_birth TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS members (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                username TEXT NOT NULL UNIQUE,
                email TEXT NOT NULL UNIQUE,
                address TEXT NOT NULL,
                phone_number TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS books (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                title TEXT NOT NULL,
                genre TEXT NOT NULL,
                price TEXT NOT NULL CHECK (CAST(price AS REAL) > 0),
                author_id INTEGER NOT NULL REFERENCES authors(id),
                version INTEGER NOT NULL DEFAULT 0,
                CONSTRAINT uk_book_title_author UNIQUE (title, author_id)
            );

            CREATE INDEX IF NOT EXISTS idx_books_author ON books(author_id);

            CREATE TABLE IF NOT EXISTS loans (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                member_id INTEGER NOT NULL REFERENCES members(id),
                book_id INTEGER NOT NULL REFERENCES books(id),
                lend_date TEXT NOT NULL,
                return_date TEXT
            );

            -- At most one active loan per book
            CREATE UNIQUE INDEX IF NOT EXISTS ux_loans_active_book
                ON loans(book_id) WHERE return_date IS NULL;

            CREATE INDEX IF NOT EXISTS idx_loans_member_active
                ON loans(member_id) WHERE return_date IS NULL;
            CREATE INDEX IF NOT EXISTS idx_loans_book ON loans(book_id);
        """)
        conn.execute(
            "INSERT OR IGNORE INTO schema_version (version, applied_at) VALUES (?, ?)",
            (self.SCHEMA_VERSION, int(time.time() * 1000)),
        )

    def ping(self) -> bool:
        """Check that the database answers a trivial query."""
        try:
            with self.connection() as conn:
                conn.execute("SELECT 1").fetchone()
            return True
        except sqlite3.Error as e:
            logger.error(f"Database health check failed: {e}")
            return False

    def get_stats(self) -> dict[str, int]:
        """Row counts per table, plus the number of active loans."""
        with self.connection() as conn:
            stats = {}
            for table in ("authors", "members", "books", "loans"):
                stats[table] = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
            stats["active_loans"] = conn.execute(
                "SELECT COUNT(*) FROM loans WHERE return_date IS NULL"
            ).fetchone()[0]
            return stats
