"""
Lending Server Test Suite.

This package contains:
- unit/: Unit tests (temporary SQLite file per test)
- integration/: Integration tests (concurrent threads, HTTP through TestClient)
"""
