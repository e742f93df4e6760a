"""
Shared fixtures for Lending Server tests.

Every test gets its own SQLite file in a temporary directory, so tests never
share state and can run in any order.
"""

import tempfile
from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

from lending_server.lending import LendingService
from lending_server.store import CatalogStore, IdentityStore, LibraryDatabase


@pytest.fixture
def data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def database(data_dir):
    """Initialized database with WAL enabled, as in production."""
    db = LibraryDatabase(str(Path(data_dir) / "library.db"), wal_mode=True)
    db.initialize()
    return db


@pytest.fixture
def identity(database):
    return IdentityStore(database)


@pytest.fixture
def catalog(database, identity):
    return CatalogStore(database, identity)


@pytest.fixture
def lending(database, identity, catalog):
    """Lending service with a fixed clock."""
    return LendingService(
        database,
        identity=identity,
        catalog=catalog,
        today=lambda: date(2024, 3, 15),
    )


@pytest.fixture
def author(identity):
    return identity.create_author("Frank Herbert", date(1920, 10, 8))


@pytest.fixture
def make_member(identity):
    """Factory creating members with unique usernames and emails."""
    counter = {"n": 0}

    def _make(username=None):
        counter["n"] += 1
        name = username or f"member{counter['n']}"
        return identity.create_member(name, f"{name}@example.com", "1 Main St", "555-0100")

    return _make


@pytest.fixture
def make_book(catalog, author):
    """Factory creating books by the default author."""
    counter = {"n": 0}

    def _make(title=None):
        counter["n"] += 1
        return catalog.create_book(
            title or f"Book {counter['n']}", "Science Fiction", Decimal("9.99"), author.id
        )

    return _make
