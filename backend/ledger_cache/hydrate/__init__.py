"""Read-through hydration components."""

from .engine import HydrationEngine
from .readers import read_account, read_ledger, read_transaction, read_trustlines
from .singleflight import SingleFlight

__all__ = [
    "HydrationEngine",
    "SingleFlight",
    "read_account",
    "read_ledger",
    "read_transaction",
    "read_trustlines",
]
