"""
Unit tests for LendingService.

Tests cover:
- Loan creation and the order of its checks
- Per-book and per-member limits
- Returning a loan once
- Read operations
"""

from datetime import date

import pytest

from lending_server.errors import (
    NotFoundError,
    ResourceKind,
    RuleViolation,
    RuleViolationError,
)
from lending_server.lending import DEFAULT_MAX_ACTIVE_LOANS, LendingService


class TestCreateLoan:
    """Tests for create_loan."""

    def test_create_loan(self, lending, make_member, make_book):
        member = make_member()
        book = make_book()

        loan = lending.create_loan(member.id, book.id)

        assert loan.member_id == member.id
        assert loan.book_id == book.id
        assert loan.lend_date == date(2024, 3, 15)
        assert loan.return_date is None
        assert lending.get_loan(loan.id) == loan

    def test_unknown_member_checked_first(self, lending):
        """Member lookup runs before book lookup."""
        with pytest.raises(NotFoundError) as exc_info:
            lending.create_loan(member_id=1, book_id=1)

        assert exc_info.value.resource_kind == ResourceKind.MEMBER

    def test_unknown_book(self, lending, make_member):
        with pytest.raises(NotFoundError) as exc_info:
            lending.create_loan(make_member().id, 77)

        assert exc_info.value.resource_kind == ResourceKind.BOOK
        assert exc_info.value.message == "Book not found with id: 77"

    def test_book_already_loaned(self, lending, make_member, make_book):
        """Second member asking for the same book is refused."""
        m1 = make_member("m1")
        m2 = make_member("m2")
        b1 = make_book()

        lending.create_loan(m1.id, b1.id)

        with pytest.raises(RuleViolationError) as exc_info:
            lending.create_loan(m2.id, b1.id)

        assert exc_info.value.reason == RuleViolation.BOOK_ALREADY_LOANED
        assert exc_info.value.message == "Book is already loaned"
        assert lending.list_active_loans(m2.id) == []

    def test_book_check_runs_before_limit_check(self, lending, make_member, make_book):
        """A member at the limit asking for a loaned book hears about the book."""
        member = make_member()
        books = [make_book() for _ in range(DEFAULT_MAX_ACTIVE_LOANS)]
        for book in books:
            lending.create_loan(member.id, book.id)

        with pytest.raises(RuleViolationError) as exc_info:
            lending.create_loan(member.id, books[0].id)

        assert exc_info.value.reason == RuleViolation.BOOK_ALREADY_LOANED

    def test_member_limit(self, lending, make_member, make_book):
        """The sixth active loan is refused."""
        member = make_member()
        for _ in range(DEFAULT_MAX_ACTIVE_LOANS):
            lending.create_loan(member.id, make_book().id)

        with pytest.raises(RuleViolationError) as exc_info:
            lending.create_loan(member.id, make_book().id)

        assert exc_info.value.reason == RuleViolation.MEMBER_LOAN_LIMIT_REACHED
        assert exc_info.value.message == "Member has reached the maximum limit of 5 books"
        assert exc_info.value.details["limit"] == 5
        assert len(lending.list_active_loans(member.id)) == DEFAULT_MAX_ACTIVE_LOANS

    def test_returned_loans_free_a_slot(self, lending, make_member, make_book):
        member = make_member()
        loans = [
            lending.create_loan(member.id, make_book().id)
            for _ in range(DEFAULT_MAX_ACTIVE_LOANS)
        ]

        lending.return_loan(loans[0].id)

        loan = lending.create_loan(member.id, make_book().id)
        assert loan.is_active

    def test_returned_book_can_be_loaned_again(self, lending, make_member, make_book):
        m1 = make_member("m1")
        m2 = make_member("m2")
        b1 = make_book()

        first = lending.create_loan(m1.id, b1.id)
        lending.return_loan(first.id)

        second = lending.create_loan(m2.id, b1.id)
        assert second.member_id == m2.id

    def test_custom_limit(self, database, make_member, make_book):
        lending = LendingService(database, max_active_loans=1)
        member = make_member()
        lending.create_loan(member.id, make_book().id)

        with pytest.raises(RuleViolationError) as exc_info:
            lending.create_loan(member.id, make_book().id)

        assert exc_info.value.message == "Member has reached the maximum limit of 1 books"


class TestReturnLoan:
    """Tests for return_loan."""

    def test_return_loan(self, database, make_member, make_book):
        days = iter([date(2024, 3, 1), date(2024, 3, 10)])
        lending = LendingService(database, today=lambda: next(days))
        loan = lending.create_loan(make_member().id, make_book().id)

        returned = lending.return_loan(loan.id)

        assert returned.lend_date == date(2024, 3, 1)
        assert returned.return_date == date(2024, 3, 10)
        assert lending.get_loan(loan.id).return_date == date(2024, 3, 10)

    def test_return_twice(self, lending, make_member, make_book):
        loan = lending.create_loan(make_member().id, make_book().id)
        lending.return_loan(loan.id)

        with pytest.raises(RuleViolationError) as exc_info:
            lending.return_loan(loan.id)

        assert exc_info.value.reason == RuleViolation.ALREADY_RETURNED
        assert exc_info.value.message == "Book already returned"

    def test_return_unknown_loan(self, lending):
        with pytest.raises(NotFoundError) as exc_info:
            lending.return_loan(404)

        assert exc_info.value.resource_kind == ResourceKind.LOAN


class TestReads:
    """Tests for read operations."""

    def test_get_unknown_loan(self, lending):
        with pytest.raises(NotFoundError):
            lending.get_loan(1)

    def test_list_loans_includes_closed(self, lending, make_member, make_book):
        member = make_member()
        first = lending.create_loan(member.id, make_book().id)
        second = lending.create_loan(member.id, make_book().id)
        lending.return_loan(first.id)

        loans = lending.list_loans()

        assert [loan.id for loan in loans] == [first.id, second.id]
        assert loans[0].return_date is not None

    def test_list_active_loans_unknown_member(self, lending):
        with pytest.raises(NotFoundError):
            lending.list_active_loans(9)

    def test_is_book_available(self, lending, make_member, make_book):
        book = make_book()
        assert lending.is_book_available(book.id) is True

        loan = lending.create_loan(make_member().id, book.id)
        assert lending.is_book_available(book.id) is False

        lending.return_loan(loan.id)
        assert lending.is_book_available(book.id) is True

    def test_is_book_available_unknown_book(self, lending):
        with pytest.raises(NotFoundError):
            lending.is_book_available(5)
