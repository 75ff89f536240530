"""The upstream fetch capability consumed by the cache engine.

Implementations return domain records, raise
:class:`~ledger_cache.core.errors.NotFoundUpstream` for keys upstream has
never seen, and :class:`~ledger_cache.core.errors.TransientUpstream` for
anything that might succeed on a later attempt.
"""

from __future__ import annotations

from typing import Iterator, Protocol

from ledger_cache.models.entities import (
    AccountSnapshot,
    LedgerRecord,
    TransactionPage,
    TransactionRecord,
)


class LedgerSource(Protocol):
    def fetch_account(self, account_id: str) -> AccountSnapshot: ...

    def fetch_ledger(self, sequence: int) -> LedgerRecord: ...

    def fetch_transaction(self, tx_hash: str) -> TransactionRecord: ...

    def fetch_ledger_transactions(self, sequence: int) -> list[TransactionRecord]:
        """Every transaction of one ledger, in application order."""
        ...

    def fetch_transactions_page(
        self,
        account_id: str,
        cursor: str = "now",
        limit: int = 200,
    ) -> TransactionPage:
        """One page of an account's transactions, newest first."""
        ...

    def stream_ledgers(self, cursor: str = "now") -> Iterator[LedgerRecord]:
        """Closed ledgers in increasing sequence order, until the connection drops."""
        ...


__all__ = ["LedgerSource"]
