"""
Store module for the Lending Server - SQLite-backed records.

This module handles:
- The shared SQLite database and its transaction boundary
- Identity store (authors, members)
- Catalog store (books, optimistic versions)
- Loan ledger (loan rows and active-loan queries)

Invariants:
    - Uniqueness rules are enforced by schema constraints, not only by reads
    - Every multi-statement write runs in one BEGIN IMMEDIATE transaction
"""

from .catalog_store import Book, CatalogStore
from .database import LibraryDatabase
from .identity_store import Author, IdentityStore, Member
from .loan_ledger import LoanLedger, LoanRecord

__all__ = [
    "LibraryDatabase",
    "IdentityStore",
    "Author",
    "Member",
    "CatalogStore",
    "Book",
    "LoanLedger",
    "LoanRecord",
]
