"""
Error types for the Lending Server.

Three failure kinds leave the stores and the enforcement layer:
- NotFoundError: a referenced record does not exist
- RuleViolationError: a named business invariant would be broken
- StorageConflictError: a concurrent write won a race (unique constraint,
  optimistic version mismatch, lock wait timeout)

Invariants:
    - All errors inherit from LendingError
    - Errors carry a stable code and a details dict for the boundary layer
    - No other exception type escapes a store or LendingService call
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ResourceKind(Enum):
    """Record kinds that can be reported as missing."""

    AUTHOR = "author"
    BOOK = "book"
    MEMBER = "member"
    LOAN = "loan"


class RuleViolation(Enum):
    """Named business rules."""

    BOOK_ALREADY_LOANED = "book_already_loaned"
    MEMBER_LOAN_LIMIT_REACHED = "member_loan_limit_reached"
    ALREADY_RETURNED = "already_returned"
    RECORD_IN_USE = "record_in_use"
    USERNAME_TAKEN = "username_taken"
    EMAIL_TAKEN = "email_taken"
    NON_POSITIVE_PRICE = "non_positive_price"


class ConflictKind(Enum):
    """Ways a concurrent write can lose a race."""

    UNIQUE_CONSTRAINT = "unique_constraint"
    VERSION_MISMATCH = "version_mismatch"
    LOCK_TIMEOUT = "lock_timeout"


_RULE_MESSAGES = {
    RuleViolation.BOOK_ALREADY_LOANED: "Book is already loaned",
    RuleViolation.MEMBER_LOAN_LIMIT_REACHED: "Member has reached the maximum limit of {limit} books",
    RuleViolation.ALREADY_RETURNED: "Book already returned",
    RuleViolation.RECORD_IN_USE: "Record is referenced by other records",
    RuleViolation.USERNAME_TAKEN: "Username already exists",
    RuleViolation.EMAIL_TAKEN: "Email already exists",
    RuleViolation.NON_POSITIVE_PRICE: "Price must be greater than zero",
}

_DUPLICATE_MESSAGES = {
    "username": "Username already exists",
    "email": "Email already exists",
    "title_author": "A book with this title already exists for this author",
}


class LendingError(Exception):
    """Base exception for all Lending Server errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "LENDING_ERROR"
        self.details = details or {}


class NotFoundError(LendingError):
    """A referenced record does not exist.

    Always recoverable by the caller supplying a valid id.
    """

    def __init__(self, resource_kind: ResourceKind, resource_id: Any) -> None:
        name = resource_kind.value.capitalize()
        super().__init__(
            f"{name} not found with id: {resource_id}",
            code="NOT_FOUND",
            details={"resource": resource_kind.value, "id": resource_id},
        )
        self.resource_kind = resource_kind
        self.resource_id = resource_id


class RuleViolationError(LendingError):
    """A business invariant would be broken.

    This is a well-formed negative outcome; callers surface it verbatim and
    never retry it automatically.
    """

    def __init__(self, reason: RuleViolation, **context: Any) -> None:
        message = _RULE_MESSAGES[reason].format(**context) if context else _RULE_MESSAGES[reason]
        super().__init__(
            message,
            code="RULE_VIOLATION",
            details={"reason": reason.value, **context},
        )
        self.reason = reason


class StorageConflictError(LendingError):
    """A concurrent write invalidated the assumptions of this operation.

    The whole operation may be retried from scratch.
    """

    def __init__(
        self,
        kind: ConflictKind,
        message: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message or f"Storage conflict: {kind.value}",
            code="STORAGE_CONFLICT",
            details={"kind": kind.value, **(details or {})},
        )
        self.kind = kind


class DuplicateError(StorageConflictError):
    """A unique constraint rejected the write.

    Attributes:
        field: Which unique field collided (username, email, title_author)
    """

    def __init__(self, field: str) -> None:
        super().__init__(
            ConflictKind.UNIQUE_CONSTRAINT,
            message=_DUPLICATE_MESSAGES.get(field, "Database constraint violation"),
            details={"field": field},
        )
        self.field = field
