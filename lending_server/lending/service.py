"""
Lending rules: the only path that creates or closes a loan.

LendingService runs each loan operation as one BEGIN IMMEDIATE transaction.
SQLite grants the write lock before the first read, so the existence checks,
the active-loan checks and the write all see one state that no other writer
can change until COMMIT. Two requests for the same book, or a burst of
requests from one member, are therefore applied one after another and the
later ones observe the earlier loans.

Create-loan checks, in order:
    1. member exists            -> NotFoundError(member)
    2. book exists              -> NotFoundError(book)
    3. book has no active loan  -> RuleViolationError(BOOK_ALREADY_LOANED)
    4. member active loans < N  -> RuleViolationError(MEMBER_LOAN_LIMIT_REACHED)

Invariants:
    - A book never has two loans with a NULL return date
    - A member never has more than max_active_loans active loans
    - A loan is closed at most once
    - Every call ends in exactly one result or one LendingError, with no
      partial commit

How to change safely:
    - Keep reads and writes of one operation inside the same transaction()
    - Run tests/integration/test_lending_concurrency.py after any change
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable
from datetime import date

from ..errors import NotFoundError, ResourceKind, RuleViolation, RuleViolationError
from ..store.catalog_store import CatalogStore
from ..store.database import LibraryDatabase, unique_violation_columns
from ..store.identity_store import IdentityStore
from ..store.loan_ledger import LoanLedger, LoanRecord

logger = logging.getLogger(__name__)

DEFAULT_MAX_ACTIVE_LOANS = 5


class LendingService:
    """Create, close and read loans.

    Attributes:
        db: Shared library database
        identity: Member lookups
        catalog: Book lookups
        ledger: Loan rows
        max_active_loans: Per-member active loan limit

    Example:
        >>> lending = LendingService(db)
        >>> loan = lending.create_loan(member_id=1, book_id=7)
        >>> lending.return_loan(loan.id).return_date is not None
        True
    """

    def __init__(
        self,
        db: LibraryDatabase,
        identity: IdentityStore | None = None,
        catalog: CatalogStore | None = None,
        ledger: LoanLedger | None = None,
        max_active_loans: int = DEFAULT_MAX_ACTIVE_LOANS,
        today: Callable[[], date] = date.today,
    ) -> None:
        """Initialize the service.

        Args:
            db: Shared library database
            identity: Identity store (created on db if not provided)
            catalog: Catalog store (created on db if not provided)
            ledger: Loan ledger (created if not provided)
            max_active_loans: Per-member active loan limit
            today: Clock returning the current date
        """
        self.db = db
        self.identity = identity or IdentityStore(db)
        self.catalog = catalog or CatalogStore(db, self.identity)
        self.ledger = ledger or LoanLedger()
        self.max_active_loans = max_active_loans
        self._today = today

    def create_loan(self, member_id: int, book_id: int) -> LoanRecord:
        """Lend a book to a member.

        Args:
            member_id: Borrowing member
            book_id: Book to lend

        Returns:
            The new active loan, lent today

        Raises:
            NotFoundError: If the member or the book does not exist
            RuleViolationError: If the book is already loaned or the member
                is at the loan limit
            StorageConflictError: If the write lock could not be acquired in time
        """
        try:
            with self.db.transaction() as conn:
                if self.identity.fetch_member(conn, member_id) is None:
                    raise NotFoundError(ResourceKind.MEMBER, member_id)

                if self.catalog.fetch_book(conn, book_id) is None:
                    raise NotFoundError(ResourceKind.BOOK, book_id)

                if self.ledger.has_active_loan_for_book(conn, book_id):
                    raise RuleViolationError(RuleViolation.BOOK_ALREADY_LOANED)

                active = self.ledger.count_active_for_member(conn, member_id)
                if active >= self.max_active_loans:
                    raise RuleViolationError(
                        RuleViolation.MEMBER_LOAN_LIMIT_REACHED,
                        limit=self.max_active_loans,
                    )

                try:
                    loan = self.ledger.insert(conn, member_id, book_id, self._today())
                except sqlite3.IntegrityError as e:
                    # ux_loans_active_book backs up check 3
                    if unique_violation_columns(e) == ("loans.book_id",):
                        raise RuleViolationError(RuleViolation.BOOK_ALREADY_LOANED) from e
                    raise
        except RuleViolationError as e:
            logger.info(
                "Loan request rejected",
                extra={"member_id": member_id, "book_id": book_id, "reason": e.reason.value},
            )
            raise

        logger.info(
            "Created loan",
            extra={"loan_id": loan.id, "member_id": member_id, "book_id": book_id},
        )
        return loan

    def return_loan(self, loan_id: int) -> LoanRecord:
        """Close an active loan with today's date.

        Args:
            loan_id: Loan to close

        Returns:
            The closed loan

        Raises:
            NotFoundError: If the loan does not exist
            RuleViolationError: If the loan was already returned
            StorageConflictError: If the write lock could not be acquired in time
        """
        with self.db.transaction() as conn:
            loan = self.ledger.get(conn, loan_id)
            if loan is None:
                raise NotFoundError(ResourceKind.LOAN, loan_id)
            if loan.return_date is not None:
                raise RuleViolationError(RuleViolation.ALREADY_RETURNED)

            return_date = self._today()
            if not self.ledger.close(conn, loan_id, return_date):
                raise RuleViolationError(RuleViolation.ALREADY_RETURNED)

        logger.info(
            "Returned loan",
            extra={"loan_id": loan_id, "member_id": loan.member_id, "book_id": loan.book_id},
        )
        loan.return_date = return_date
        return loan

    def get_loan(self, loan_id: int) -> LoanRecord:
        """Get a loan by ID.

        Raises:
            NotFoundError: If the loan does not exist
        """
        with self.db.connection() as conn:
            loan = self.ledger.get(conn, loan_id)
        if loan is None:
            raise NotFoundError(ResourceKind.LOAN, loan_id)
        return loan

    def list_loans(self, limit: int | None = None, offset: int = 0) -> list[LoanRecord]:
        """List active and closed loans ordered by id."""
        with self.db.connection() as conn:
            return self.ledger.list_loans(conn, limit=limit, offset=offset)

    def list_active_loans(self, member_id: int) -> list[LoanRecord]:
        """List a member's active loans.

        Raises:
            NotFoundError: If the member does not exist
        """
        with self.db.transaction(immediate=False) as conn:
            if self.identity.fetch_member(conn, member_id) is None:
                raise NotFoundError(ResourceKind.MEMBER, member_id)
            return self.ledger.list_active_for_member(conn, member_id)

    def is_book_available(self, book_id: int) -> bool:
        """Check whether a book has no active loan.

        Raises:
            NotFoundError: If the book does not exist
        """
        with self.db.transaction(immediate=False) as conn:
            if self.catalog.fetch_book(conn, book_id) is None:
                raise NotFoundError(ResourceKind.BOOK, book_id)
            return not self.ledger.has_active_loan_for_book(conn, book_id)
