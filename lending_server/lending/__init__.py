"""
Lending module - the invariant enforcement layer.

LendingService is the sole writer of loan state: it creates loans and sets
return dates, each inside one serialized transaction.
"""

from .service import DEFAULT_MAX_ACTIVE_LOANS, LendingService

__all__ = ["LendingService", "DEFAULT_MAX_ACTIVE_LOANS"]
