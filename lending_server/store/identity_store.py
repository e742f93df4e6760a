"""
Identity store: authors and members.

Owns uniqueness of member username and member email. A value already held
by another member is a RuleViolationError naming the field (USERNAME_TAKEN,
EMAIL_TAKEN); retrying cannot help. The UNIQUE constraints in the schema
stay the final arbiter, and a write rejected by them surfaces as
DuplicateError, a storage conflict.

Invariants:
    - Member writes run inside one BEGIN IMMEDIATE transaction
    - Updating a member with its own unchanged username/email never conflicts
    - Records referenced by books or loans cannot be deleted
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import date

from ..errors import (
    DuplicateError,
    NotFoundError,
    ResourceKind,
    RuleViolation,
    RuleViolationError,
)
from .database import LibraryDatabase, is_foreign_key_violation, unique_violation_columns

logger = logging.getLogger(__name__)

_MEMBER_UNIQUE_FIELDS = {
    "members.username": "username",
    "members.email": "email",
}

_TAKEN_REASONS = {
    "username": RuleViolation.USERNAME_TAKEN,
    "email": RuleViolation.EMAIL_TAKEN,
}


@dataclass
class Author:
    """An author of one or more books.

    Attributes:
        id: Surrogate identifier
        name: Display name
        date_of_birth: Date of birth (always in the past)
    """

    id: int
    name: str
    date_of_birth: date


@dataclass
class Member:
    """A library member.

    Attributes:
        id: Surrogate identifier
        username: Globally unique login name
        email: Globally unique email address
        address: Postal address
        phone_number: Contact phone number
    """

    id: int
    username: str
    email: str
    address: str
    phone_number: str


def _row_to_author(row: sqlite3.Row) -> Author:
    return Author(
        id=row["id"],
        name=row["name"],
        date_of_birth=date.fromisoformat(row["date_of_birth"]),
    )


def _row_to_member(row: sqlite3.Row) -> Member:
    return Member(
        id=row["id"],
        username=row["username"],
        email=row["email"],
        address=row["address"],
        phone_number=row["phone_number"],
    )


def _duplicate_from_integrity_error(exc: sqlite3.IntegrityError) -> DuplicateError | None:
    for column in unique_violation_columns(exc):
        if column in _MEMBER_UNIQUE_FIELDS:
            return DuplicateError(_MEMBER_UNIQUE_FIELDS[column])
    return None


class IdentityStore:
    """Author and Member records.

    Example:
        >>> store = IdentityStore(db)
        >>> member = store.create_member("alice", "alice@example.com", "1 Main St", "555-0100")
        >>> store.get_member(member.id).username
        'alice'
    """

    def __init__(self, db: LibraryDatabase) -> None:
        self.db = db

    # --- Authors ---

    def create_author(self, name: str, date_of_birth: date) -> Author:
        """Create a new author.

        Args:
            name: Author name
            date_of_birth: Date of birth

        Returns:
            Created Author
        """
        with self.db.transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO authors (name, date_of_birth) VALUES (?, ?)",
                (name, date_of_birth.isoformat()),
            )
            author_id = cursor.lastrowid

        logger.debug("Created author", extra={"author_id": author_id})
        return Author(id=author_id, name=name, date_of_birth=date_of_birth)

    def fetch_author(self, conn: sqlite3.Connection, author_id: int) -> Author | None:
        """Read an author on an existing connection."""
        row = conn.execute("SELECT * FROM authors WHERE id = ?", (author_id,)).fetchone()
        return _row_to_author(row) if row else None

    def get_author(self, author_id: int) -> Author:
        """Get an author by ID.

        Raises:
            NotFoundError: If the author does not exist
        """
        with self.db.connection() as conn:
            author = self.fetch_author(conn, author_id)
        if author is None:
            raise NotFoundError(ResourceKind.AUTHOR, author_id)
        return author

    def list_authors(self) -> list[Author]:
        with self.db.connection() as conn:
            rows = conn.execute("SELECT * FROM authors ORDER BY id").fetchall()
        return [_row_to_author(row) for row in rows]

    def update_author(self, author_id: int, name: str, date_of_birth: date) -> Author:
        """Replace an author's name and date of birth.

        Raises:
            NotFoundError: If the author does not exist
        """
        with self.db.transaction() as conn:
            cursor = conn.execute(
                "UPDATE authors SET name = ?, date_of_birth = ? WHERE id = ?",
                (name, date_of_birth.isoformat(), author_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(ResourceKind.AUTHOR, author_id)

        return Author(id=author_id, name=name, date_of_birth=date_of_birth)

    def delete_author(self, author_id: int) -> None:
        """Delete an author that has no books.

        Raises:
            NotFoundError: If the author does not exist
            RuleViolationError: If books still reference the author
        """
        with self.db.transaction() as conn:
            try:
                cursor = conn.execute("DELETE FROM authors WHERE id = ?", (author_id,))
            except sqlite3.IntegrityError as e:
                if is_foreign_key_violation(e):
                    raise RuleViolationError(RuleViolation.RECORD_IN_USE) from e
                raise
            if cursor.rowcount == 0:
                raise NotFoundError(ResourceKind.AUTHOR, author_id)

        logger.debug("Deleted author", extra={"author_id": author_id})

    # --- Members ---

    def _check_unique(
        self,
        conn: sqlite3.Connection,
        column: str,
        value: str,
        exclude_id: int | None = None,
    ) -> None:
        row = conn.execute(
            f"SELECT id FROM members WHERE {column} = ?",
            (value,),
        ).fetchone()
        if row is not None and row["id"] != exclude_id:
            raise RuleViolationError(_TAKEN_REASONS[column], field=column)

    def create_member(
        self,
        username: str,
        email: str,
        address: str,
        phone_number: str,
    ) -> Member:
        """Create a member with a unique username and email.

        Args:
            username: Login name
            email: Email address
            address: Postal address
            phone_number: Contact phone number

        Returns:
            Created Member

        Raises:
            RuleViolationError: If the username or email is already taken
            DuplicateError: If a concurrent insert took the username or email first
        """
        with self.db.transaction() as conn:
            self._check_unique(conn, "username", username)
            self._check_unique(conn, "email", email)
            try:
                cursor = conn.execute(
                    """
                    INSERT INTO members (username, email, address, phone_number)
                    VALUES (?, ?, ?, ?)
                    """,
                    (username, email, address, phone_number),
                )
            except sqlite3.IntegrityError as e:
                duplicate = _duplicate_from_integrity_error(e)
                if duplicate is None:
                    raise
                raise duplicate from e
            member_id = cursor.lastrowid

        logger.info("Created member", extra={"member_id": member_id})
        return Member(
            id=member_id,
            username=username,
            email=email,
            address=address,
            phone_number=phone_number,
        )

    def fetch_member(self, conn: sqlite3.Connection, member_id: int) -> Member | None:
        """Read a member on an existing connection."""
        row = conn.execute("SELECT * FROM members WHERE id = ?", (member_id,)).fetchone()
        return _row_to_member(row) if row else None

    def get_member(self, member_id: int) -> Member:
        """Get a member by ID.

        Raises:
            NotFoundError: If the member does not exist
        """
        with self.db.connection() as conn:
            member = self.fetch_member(conn, member_id)
        if member is None:
            raise NotFoundError(ResourceKind.MEMBER, member_id)
        return member

    def list_members(self) -> list[Member]:
        with self.db.connection() as conn:
            rows = conn.execute("SELECT * FROM members ORDER BY id").fetchall()
        return [_row_to_member(row) for row in rows]

    def update_member(
        self,
        member_id: int,
        username: str,
        email: str,
        address: str,
        phone_number: str,
    ) -> Member:
        """Replace a member's fields.

        Uniqueness is only re-checked for a field whose value changes.

        Raises:
            NotFoundError: If the member does not exist
            RuleViolationError: If the new username or email belongs to another member
            DuplicateError: If a concurrent write took it first
        """
        with self.db.transaction() as conn:
            current = self.fetch_member(conn, member_id)
            if current is None:
                raise NotFoundError(ResourceKind.MEMBER, member_id)

            if current.username != username:
                self._check_unique(conn, "username", username, exclude_id=member_id)
            if current.email != email:
                self._check_unique(conn, "email", email, exclude_id=member_id)

            try:
                conn.execute(
                    """
                    UPDATE members SET username = ?, email = ?, address = ?, phone_number = ?
                    WHERE id = ?
                    """,
                    (username, email, address, phone_number, member_id),
                )
            except sqlite3.IntegrityError as e:
                duplicate = _duplicate_from_integrity_error(e)
                if duplicate is None:
                    raise
                raise duplicate from e

        return Member(
            id=member_id,
            username=username,
            email=email,
            address=address,
            phone_number=phone_number,
        )

    def delete_member(self, member_id: int) -> None:
        """Delete a member with no loan history.

        Raises:
            NotFoundError: If the member does not exist
            RuleViolationError: If loans reference the member
        """
        with self.db.transaction() as conn:
            try:
                cursor = conn.execute("DELETE FROM members WHERE id = ?", (member_id,))
            except sqlite3.IntegrityError as e:
                if is_foreign_key_violation(e):
                    raise RuleViolationError(RuleViolation.RECORD_IN_USE) from e
                raise
            if cursor.rowcount == 0:
                raise NotFoundError(ResourceKind.MEMBER, member_id)

        logger.info("Deleted member", extra={"member_id": member_id})
