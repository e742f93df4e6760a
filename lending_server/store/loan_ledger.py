"""
Loan ledger: loan rows and the queries the lending rules are built on.

A loan is active while its return_date is NULL. It is created once, closed
once, and never deleted or reopened.

The ledger works on a connection handed in by the caller. Its write methods
refuse to run outside an open transaction, and the only caller that opens
one around them is LendingService.

Invariants:
    - At most one row per book_id with return_date NULL (ux_loans_active_book)
    - close() only matches rows whose return_date is still NULL
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from datetime import date


@dataclass
class LoanRecord:
    """A loan of one book to one member.

    Attributes:
        id: Surrogate identifier
        member_id: Borrowing member
        book_id: Loaned book
        lend_date: Date the loan was created
        return_date: Date the book came back, None while the loan is active
    """

    id: int
    member_id: int
    book_id: int
    lend_date: date
    return_date: date | None = None

    @property
    def is_active(self) -> bool:
        return self.return_date is None


def _row_to_loan(row: sqlite3.Row) -> LoanRecord:
    return LoanRecord(
        id=row["id"],
        member_id=row["member_id"],
        book_id=row["book_id"],
        lend_date=date.fromisoformat(row["lend_date"]),
        return_date=date.fromisoformat(row["return_date"]) if row["return_date"] else None,
    )


def _require_transaction(conn: sqlite3.Connection) -> None:
    if not conn.in_transaction:
        raise RuntimeError("Loan writes must run inside an open transaction")


class LoanLedger:
    """Reads and writes of loan rows."""

    def get(self, conn: sqlite3.Connection, loan_id: int) -> LoanRecord | None:
        row = conn.execute("SELECT * FROM loans WHERE id = ?", (loan_id,)).fetchone()
        return _row_to_loan(row) if row else None

    def has_active_loan_for_book(self, conn: sqlite3.Connection, book_id: int) -> bool:
        cursor = conn.execute(
            "SELECT 1 FROM loans WHERE book_id = ? AND return_date IS NULL",
            (book_id,),
        )
        return cursor.fetchone() is not None

    def count_active_for_member(self, conn: sqlite3.Connection, member_id: int) -> int:
        cursor = conn.execute(
            "SELECT COUNT(*) FROM loans WHERE member_id = ? AND return_date IS NULL",
            (member_id,),
        )
        return cursor.fetchone()[0]

    def list_active_for_member(self, conn: sqlite3.Connection, member_id: int) -> list[LoanRecord]:
        cursor = conn.execute(
            "SELECT * FROM loans WHERE member_id = ? AND return_date IS NULL ORDER BY id",
            (member_id,),
        )
        return [_row_to_loan(row) for row in cursor.fetchall()]

    def list_loans(
        self,
        conn: sqlite3.Connection,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[LoanRecord]:
        """List loans ordered by id.

        Args:
            conn: Database connection
            limit: Maximum loans to return (None = all)
            offset: Pagination offset
        """
        cursor = conn.execute(
            "SELECT * FROM loans ORDER BY id LIMIT ? OFFSET ?",
            (-1 if limit is None else limit, offset),
        )
        return [_row_to_loan(row) for row in cursor.fetchall()]

    def insert(
        self,
        conn: sqlite3.Connection,
        member_id: int,
        book_id: int,
        lend_date: date,
    ) -> LoanRecord:
        """Insert an active loan.

        Raises:
            RuntimeError: If conn has no open transaction
            sqlite3.IntegrityError: If the book already has an active loan
        """
        _require_transaction(conn)
        cursor = conn.execute(
            "INSERT INTO loans (member_id, book_id, lend_date, return_date) VALUES (?, ?, ?, NULL)",
            (member_id, book_id, lend_date.isoformat()),
        )
        return LoanRecord(
            id=cursor.lastrowid,
            member_id=member_id,
            book_id=book_id,
            lend_date=lend_date,
            return_date=None,
        )

    def close(self, conn: sqlite3.Connection, loan_id: int, return_date: date) -> bool:
        """Set the return date of an active loan.

        Returns:
            True if the loan was active and is now closed, False otherwise

        Raises:
            RuntimeError: If conn has no open transaction
        """
        _require_transaction(conn)
        cursor = conn.execute(
            "UPDATE loans SET return_date = ? WHERE id = ? AND return_date IS NULL",
            (return_date.isoformat(), loan_id),
        )
        return cursor.rowcount == 1
