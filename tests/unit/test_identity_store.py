"""
Unit tests for the identity store.

Tests cover:
- Author CRUD and delete restrictions
- Member CRUD
- Username and email uniqueness on create and update
"""

from datetime import date

import pytest

from lending_server.errors import (
    ConflictKind,
    DuplicateError,
    NotFoundError,
    ResourceKind,
    RuleViolation,
    RuleViolationError,
)


class TestAuthors:
    """Tests for author records."""

    def test_create_and_get_author(self, identity):
        author = identity.create_author("Ursula K. Le Guin", date(1929, 10, 21))

        fetched = identity.get_author(author.id)
        assert fetched == author
        assert fetched.date_of_birth == date(1929, 10, 21)

    def test_get_missing_author(self, identity):
        with pytest.raises(NotFoundError) as exc_info:
            identity.get_author(42)

        assert exc_info.value.resource_kind == ResourceKind.AUTHOR
        assert exc_info.value.message == "Author not found with id: 42"

    def test_list_authors_ordered_by_id(self, identity):
        first = identity.create_author("A", date(1900, 1, 1))
        second = identity.create_author("B", date(1901, 1, 1))

        assert [a.id for a in identity.list_authors()] == [first.id, second.id]

    def test_update_author(self, identity, author):
        updated = identity.update_author(author.id, "F. Herbert", date(1920, 10, 9))

        assert updated.name == "F. Herbert"
        assert identity.get_author(author.id).date_of_birth == date(1920, 10, 9)

    def test_update_missing_author(self, identity):
        with pytest.raises(NotFoundError):
            identity.update_author(7, "Nobody", date(1900, 1, 1))

    def test_delete_author(self, identity, author):
        identity.delete_author(author.id)

        with pytest.raises(NotFoundError):
            identity.get_author(author.id)

    def test_delete_missing_author(self, identity):
        with pytest.raises(NotFoundError):
            identity.delete_author(7)

    def test_delete_author_with_books_refused(self, identity, author, make_book):
        """An author with books stays put."""
        make_book()

        with pytest.raises(RuleViolationError) as exc_info:
            identity.delete_author(author.id)

        assert exc_info.value.reason == RuleViolation.RECORD_IN_USE
        assert identity.get_author(author.id) == author


class TestMembers:
    """Tests for member records."""

    def test_create_and_get_member(self, identity):
        member = identity.create_member("alice", "alice@example.com", "1 Main St", "555-0100")

        fetched = identity.get_member(member.id)
        assert fetched.username == "alice"
        assert fetched.email == "alice@example.com"

    def test_duplicate_username(self, identity):
        """A taken username is a rule violation naming the field."""
        identity.create_member("alice", "alice@example.com", "1 Main St", "555-0100")

        with pytest.raises(RuleViolationError) as exc_info:
            identity.create_member("alice", "other@example.com", "2 Main St", "555-0101")

        assert exc_info.value.reason == RuleViolation.USERNAME_TAKEN
        assert exc_info.value.details["field"] == "username"
        assert exc_info.value.message == "Username already exists"
        assert len(identity.list_members()) == 1

    def test_duplicate_email(self, identity):
        identity.create_member("alice", "alice@example.com", "1 Main St", "555-0100")

        with pytest.raises(RuleViolationError) as exc_info:
            identity.create_member("bob", "alice@example.com", "2 Main St", "555-0101")

        assert exc_info.value.reason == RuleViolation.EMAIL_TAKEN
        assert exc_info.value.details["field"] == "email"
        assert exc_info.value.message == "Email already exists"

    def test_unique_constraint_reports_storage_conflict(self, identity, monkeypatch):
        """A write that slips past the field check is stopped by the constraint."""
        identity.create_member("alice", "alice@example.com", "1 Main St", "555-0100")
        monkeypatch.setattr(identity, "_check_unique", lambda *args, **kwargs: None)

        with pytest.raises(DuplicateError) as exc_info:
            identity.create_member("alice", "other@example.com", "2 Main St", "555-0101")

        assert exc_info.value.field == "username"
        assert exc_info.value.kind == ConflictKind.UNIQUE_CONSTRAINT
        assert len(identity.list_members()) == 1

    def test_update_member_keeping_own_username_and_email(self, identity):
        """Re-submitting unchanged unique fields is not a conflict."""
        member = identity.create_member("alice", "alice@example.com", "1 Main St", "555-0100")

        updated = identity.update_member(
            member.id, "alice", "alice@example.com", "9 Elm St", "555-0199"
        )

        assert updated.address == "9 Elm St"
        assert identity.get_member(member.id).phone_number == "555-0199"

    def test_update_member_to_taken_email(self, identity):
        identity.create_member("alice", "alice@example.com", "1 Main St", "555-0100")
        bob = identity.create_member("bob", "bob@example.com", "2 Main St", "555-0101")

        with pytest.raises(RuleViolationError) as exc_info:
            identity.update_member(bob.id, "bob", "alice@example.com", "2 Main St", "555-0101")

        assert exc_info.value.reason == RuleViolation.EMAIL_TAKEN
        assert identity.get_member(bob.id).email == "bob@example.com"

    def test_update_member_to_taken_username(self, identity):
        identity.create_member("alice", "alice@example.com", "1 Main St", "555-0100")
        bob = identity.create_member("bob", "bob@example.com", "2 Main St", "555-0101")

        with pytest.raises(RuleViolationError) as exc_info:
            identity.update_member(bob.id, "alice", "bob@example.com", "2 Main St", "555-0101")

        assert exc_info.value.reason == RuleViolation.USERNAME_TAKEN
        assert identity.get_member(bob.id).username == "bob"

    def test_update_missing_member(self, identity):
        with pytest.raises(NotFoundError) as exc_info:
            identity.update_member(5, "x", "x@example.com", "a", "p")

        assert exc_info.value.resource_kind == ResourceKind.MEMBER

    def test_delete_member(self, identity, make_member):
        member = make_member()
        identity.delete_member(member.id)

        assert identity.list_members() == []

    def test_delete_member_with_loans_refused(self, identity, lending, make_member, make_book):
        member = make_member()
        lending.create_loan(member.id, make_book().id)

        with pytest.raises(RuleViolationError) as exc_info:
            identity.delete_member(member.id)

        assert exc_info.value.reason == RuleViolation.RECORD_IN_USE
