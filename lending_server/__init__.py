"""
Lending Server - book catalog, membership roster and lending for a library.

This package implements a small transactional service built on:
- SQLite as the shared relational store
- An invariant enforcement layer that owns every loan state transition
- A thin FastAPI boundary that maps outcomes to HTTP responses

Architecture:
    ┌─────────────┐     ┌─────────────┐     ┌─────────────────────┐
    │   Client    │────▶│  FastAPI    │────▶│   LendingService    │
    │   (HTTP)    │     │  boundary   │     │ (create/return loan)│
    └─────────────┘     └──────┬──────┘     └──────────┬──────────┘
                               │                       │
                ┌──────────────┼───────────┐           │
                ▼              ▼           ▼           ▼
          ┌──────────┐   ┌──────────┐   ┌──────────────────┐
          │ Identity │   │ Catalog  │   │   Loan Ledger    │
          │  Store   │   │  Store   │   │                  │
          └────┬─────┘   └────┬─────┘   └────────┬─────────┘
               └──────────────┴──────────────────┘
                                  │
                                  ▼
                            ┌──────────┐
                            │  SQLite  │
                            └──────────┘

Invariants:
    - A book has at most one active (unreturned) loan at any instant
    - A member has at most five active loans at any instant
    - (title, author) is unique across books
    - Member username and email are each unique
    - Only LendingService creates loans or sets a return date

How to change safely:
    - Keep every loan transition inside a single BEGIN IMMEDIATE transaction
    - Add new failure kinds to errors.py and map them in api/app.py
    - Run the concurrency tests in tests/integration after touching lending/
"""

from ._version import __version__

__all__ = ["__version__"]
