"""Error taxonomy shared by the cache engine and the HTTP layer."""

from __future__ import annotations


class LedgerCacheError(Exception):
    """Base class for every error the cache raises on purpose."""

    status_code = 500


class InvalidKey(LedgerCacheError):
    """A requested account id, hash or ledger sequence is malformed."""

    status_code = 400


class NotFound(LedgerCacheError):
    status_code = 404


class NotFoundUpstream(NotFound):
    """Upstream says the record never existed. Terminal: never hydrated, never retried."""


class NothingCommitted(NotFound):
    """No ledger has been fully committed yet, so there is no latest pointer."""


class TransientUpstream(LedgerCacheError):
    """Network failure, timeout or rate limit talking to upstream.

    Only the caller's next request retries; the engine has no retry loop.
    """

    status_code = 502


class StoreCommitAborted(LedgerCacheError):
    """The atomic unit rolled back and none of its writes are visible."""


class ConsistencyViolation(LedgerCacheError):
    """An invariant between the indices was found broken."""


class BackfillUnavailable(LedgerCacheError):
    """Backfill is disabled, or a walk for the account is already running."""

    status_code = 409


class AuthenticationError(LedgerCacheError):
    status_code = 401

    def __init__(self, message: str, status_code: int = 401) -> None:
        super().__init__(message)
        self.status_code = status_code


__all__ = [
    "LedgerCacheError",
    "InvalidKey",
    "NotFound",
    "NotFoundUpstream",
    "NothingCommitted",
    "TransientUpstream",
    "StoreCommitAborted",
    "ConsistencyViolation",
    "BackfillUnavailable",
    "AuthenticationError",
]
