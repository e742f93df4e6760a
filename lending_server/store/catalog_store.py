"""
Catalog store: books.

Every book is a single, non-fungible copy owned by one author. The pair
(title, author_id) is unique through the uk_book_title_author constraint, so
two racing inserts resolve to one row and one DuplicateError.

Updates use optimistic concurrency: the caller presents the version it last
read, and the UPDATE only matches while that version is still current.

Invariants:
    - price is a finite Decimal greater than zero, checked before the write
      and again by the CHECK constraint
    - version starts at 0 and grows by exactly 1 per successful update
    - A stale version never overwrites a newer row
    - A book has no "is loaned" column; availability lives in the loan ledger
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from decimal import Decimal

from ..errors import (
    ConflictKind,
    DuplicateError,
    NotFoundError,
    ResourceKind,
    RuleViolation,
    RuleViolationError,
    StorageConflictError,
)
from .database import LibraryDatabase, is_foreign_key_violation, unique_violation_columns
from .identity_store import IdentityStore

logger = logging.getLogger(__name__)

_TITLE_AUTHOR_COLUMNS = ("books.title", "books.author_id")


@dataclass
class Book:
    """A catalog entry.

    Attributes:
        id: Surrogate identifier
        title: Book title
        genre: Genre label
        price: Positive decimal price
        author_id: Owning author
        version: Optimistic concurrency counter
    """

    id: int
    title: str
    genre: str
    price: Decimal
    author_id: int
    version: int = 0


def _row_to_book(row: sqlite3.Row) -> Book:
    return Book(
        id=row["id"],
        title=row["title"],
        genre=row["genre"],
        price=Decimal(row["price"]),
        author_id=row["author_id"],
        version=row["version"],
    )


def _positive_price(price: Decimal) -> Decimal:
    amount = Decimal(str(price))
    if not amount.is_finite() or amount <= 0:
        raise RuleViolationError(RuleViolation.NON_POSITIVE_PRICE, price=str(price))
    return amount


def _translate_integrity_error(exc: sqlite3.IntegrityError, author_id: int) -> Exception | None:
    if unique_violation_columns(exc) == _TITLE_AUTHOR_COLUMNS:
        return DuplicateError("title_author")
    if "CHECK constraint failed" in str(exc):
        return RuleViolationError(RuleViolation.NON_POSITIVE_PRICE)
    if is_foreign_key_violation(exc):
        return NotFoundError(ResourceKind.AUTHOR, author_id)
    return None


class CatalogStore:
    """Book records with (title, author) uniqueness and versioned updates.

    Example:
        >>> catalog = CatalogStore(db)
        >>> book = catalog.create_book("Dune", "SF", Decimal("9.99"), author.id)
        >>> catalog.update_book(book.id, "Dune", "SF", Decimal("12.50"), author.id,
        ...                     expected_version=book.version).version
        1
    """

    def __init__(self, db: LibraryDatabase, identity: IdentityStore | None = None) -> None:
        self.db = db
        self.identity = identity or IdentityStore(db)

    def create_book(self, title: str, genre: str, price: Decimal, author_id: int) -> Book:
        """Create a new book for an existing author.

        Args:
            title: Book title
            genre: Genre label
            price: Positive price
            author_id: Owning author

        Returns:
            Created Book with version 0

        Raises:
            NotFoundError: If the author does not exist
            RuleViolationError: If the price is not positive
            DuplicateError: If the author already has a book with this title
        """
        price = _positive_price(price)
        with self.db.transaction() as conn:
            if self.identity.fetch_author(conn, author_id) is None:
                raise NotFoundError(ResourceKind.AUTHOR, author_id)
            try:
                cursor = conn.execute(
                    """
                    INSERT INTO books (title, genre, price, author_id, version)
                    VALUES (?, ?, ?, ?, 0)
                    """,
                    (title, genre, str(price), author_id),
                )
            except sqlite3.IntegrityError as e:
                translated = _translate_integrity_error(e, author_id)
                if translated is None:
                    raise
                raise translated from e
            book_id = cursor.lastrowid

        logger.info("Created book", extra={"book_id": book_id, "author_id": author_id})
        return Book(
            id=book_id,
            title=title,
            genre=genre,
            price=price,
            author_id=author_id,
            version=0,
        )

    def fetch_book(self, conn: sqlite3.Connection, book_id: int) -> Book | None:
        """Read a book on an existing connection."""
        row = conn.execute("SELECT * FROM books WHERE id = ?", (book_id,)).fetchone()
        return _row_to_book(row) if row else None

    def get_book(self, book_id: int) -> Book:
        """Get a book by ID.

        Raises:
            NotFoundError: If the book does not exist
        """
        with self.db.connection() as conn:
            book = self.fetch_book(conn, book_id)
        if book is None:
            raise NotFoundError(ResourceKind.BOOK, book_id)
        return book

    def list_books(self) -> list[Book]:
        with self.db.connection() as conn:
            rows = conn.execute("SELECT * FROM books ORDER BY id").fetchall()
        return [_row_to_book(row) for row in rows]

    def update_book(
        self,
        book_id: int,
        title: str,
        genre: str,
        price: Decimal,
        author_id: int,
        expected_version: int,
    ) -> Book:
        """Replace a book's fields if nobody else updated it first.

        Args:
            book_id: Book to update
            title: New title
            genre: New genre
            price: New positive price
            author_id: New owning author
            expected_version: Version the caller last read

        Returns:
            Updated Book with version expected_version + 1

        Raises:
            NotFoundError: If the book or the new author does not exist
            RuleViolationError: If the price is not positive
            DuplicateError: If the new (title, author) pair is taken
            StorageConflictError: If the book's version moved on (VERSION_MISMATCH)
        """
        price = _positive_price(price)
        with self.db.transaction() as conn:
            if self.fetch_book(conn, book_id) is None:
                raise NotFoundError(ResourceKind.BOOK, book_id)
            if self.identity.fetch_author(conn, author_id) is None:
                raise NotFoundError(ResourceKind.AUTHOR, author_id)
            try:
                cursor = conn.execute(
                    """
                    UPDATE books
                    SET title = ?, genre = ?, price = ?, author_id = ?, version = version + 1
                    WHERE id = ? AND version = ?
                    """,
                    (title, genre, str(price), author_id, book_id, expected_version),
                )
            except sqlite3.IntegrityError as e:
                translated = _translate_integrity_error(e, author_id)
                if translated is None:
                    raise
                raise translated from e

            if cursor.rowcount == 0:
                current = self.fetch_book(conn, book_id)
                logger.info(
                    "Rejected stale book update",
                    extra={
                        "book_id": book_id,
                        "expected_version": expected_version,
                        "current_version": current.version,
                    },
                )
                raise StorageConflictError(
                    ConflictKind.VERSION_MISMATCH,
                    message="Book was modified by another request",
                    details={
                        "book_id": book_id,
                        "expected_version": expected_version,
                        "current_version": current.version,
                    },
                )

        return Book(
            id=book_id,
            title=title,
            genre=genre,
            price=price,
            author_id=author_id,
            version=expected_version + 1,
        )

    def delete_book(self, book_id: int) -> None:
        """Delete a book that has never been loaned.

        Raises:
            NotFoundError: If the book does not exist
            RuleViolationError: If loans reference the book
        """
        with self.db.transaction() as conn:
            try:
                cursor = conn.execute("DELETE FROM books WHERE id = ?", (book_id,))
            except sqlite3.IntegrityError as e:
                if is_foreign_key_violation(e):
                    raise RuleViolationError(RuleViolation.RECORD_IN_USE) from e
                raise
            if cursor.rowcount == 0:
                raise NotFoundError(ResourceKind.BOOK, book_id)

        logger.info("Deleted book", extra={"book_id": book_id})
