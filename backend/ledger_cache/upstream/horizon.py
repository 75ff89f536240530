"""Horizon REST and event-stream client."""

from __future__ import annotations

from typing import Any, Callable, Iterable, Iterator, TypeVar

import orjson
import requests

from ledger_cache.core.errors import InvalidKey, NotFoundUpstream, TransientUpstream
from ledger_cache.core.logging import get_logger
from ledger_cache.core.metrics import UPSTREAM_FETCHES
from ledger_cache.models.entities import (
    AccountSnapshot,
    LedgerRecord,
    TransactionPage,
    TransactionRecord,
    Trustline,
)
from ledger_cache.utils.amounts import lumens_to_stroops
from ledger_cache.utils.time import iso_to_unix

logger = get_logger(__name__)

MAX_PAGE_LIMIT = 200

T = TypeVar("T")

# Raised by the converters below when a record lacks a field or carries an unparsable value.
MALFORMED_RECORD_ERRORS = (KeyError, TypeError, ValueError, AttributeError)


class HorizonClient:
    """Implements :class:`~ledger_cache.upstream.base.LedgerSource` against a Horizon server.

    One ``requests.Session`` is shared by every caller; it is safe for the
    concurrent read-only GETs made here.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        page_limit: int = MAX_PAGE_LIMIT,
        stream_read_timeout: float = 120.0,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.page_limit = min(page_limit, MAX_PAGE_LIMIT)
        self.stream_read_timeout = stream_read_timeout
        self.session = session or requests.Session()

    def close(self) -> None:
        self.session.close()

    # Single records ---------------------------------------------------

    def fetch_account(self, account_id: str) -> AccountSnapshot:
        return _normalise("account", account_from_json, self._get("account", f"/accounts/{account_id}"))

    def fetch_ledger(self, sequence: int) -> LedgerRecord:
        return _normalise("ledger", ledger_from_json, self._get("ledger", f"/ledgers/{sequence}"))

    def fetch_transaction(self, tx_hash: str) -> TransactionRecord:
        return _normalise("transaction", transaction_from_json, self._get("transaction", f"/transactions/{tx_hash}"))

    # Collections ------------------------------------------------------

    def fetch_ledger_transactions(self, sequence: int) -> list[TransactionRecord]:
        transactions: list[TransactionRecord] = []
        cursor: str | None = None
        while True:
            params: dict[str, Any] = {"order": "asc", "limit": self.page_limit, "include_failed": "true"}
            if cursor:
                params["cursor"] = cursor
            payload = self._get("ledger_transactions", f"/ledgers/{sequence}/transactions", params)
            page = _normalise("ledger_transactions", _transactions_from_page, payload)
            transactions.extend(page)
            if len(page) < self.page_limit:
                return transactions
            cursor = page[-1].paging_token

    def fetch_transactions_page(
        self,
        account_id: str,
        cursor: str = "now",
        limit: int = MAX_PAGE_LIMIT,
    ) -> TransactionPage:
        params: dict[str, Any] = {
            "order": "desc",
            "limit": min(limit, MAX_PAGE_LIMIT),
            "include_failed": "true",
        }
        # Descending order with no cursor starts at the newest transaction.
        if cursor and cursor != "now":
            params["cursor"] = cursor
        payload = self._get("account_transactions", f"/accounts/{account_id}/transactions", params)
        records = _normalise("account_transactions", _transactions_from_page, payload)
        next_cursor = records[-1].paging_token if records else None
        return TransactionPage(records=records, next_cursor=next_cursor)

    def stream_ledgers(self, cursor: str = "now") -> Iterator[LedgerRecord]:
        url = f"{self.base_url}/ledgers"
        try:
            response = self.session.get(
                url,
                params={"cursor": cursor},
                headers={"Accept": "text/event-stream"},
                stream=True,
                timeout=(self.timeout, self.stream_read_timeout),
            )
        except requests.RequestException as exc:
            UPSTREAM_FETCHES.labels(kind="stream", outcome="error").inc()
            raise TransientUpstream(f"Horizon stream failed to open: {exc}") from exc

        with response:
            _raise_for_status("stream", response)
            logger.info("Ledger stream opened at cursor %s", cursor)
            try:
                for _event_id, data in iter_sse_events(response.iter_lines(decode_unicode=True)):
                    payload = orjson.loads(data)
                    if not isinstance(payload, dict):
                        continue
                    try:
                        ledger = ledger_from_json(payload)
                    except MALFORMED_RECORD_ERRORS as exc:
                        logger.warning("Skipping malformed ledger event %s: %r", _event_id, exc)
                        continue
                    yield ledger
            except requests.RequestException as exc:
                UPSTREAM_FETCHES.labels(kind="stream", outcome="error").inc()
                raise TransientUpstream(f"Horizon stream dropped: {exc}") from exc
            except orjson.JSONDecodeError as exc:
                raise TransientUpstream(f"Horizon stream sent malformed data: {exc}") from exc

    # Internal helpers -------------------------------------------------

    def _get(self, kind: str, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.get(
                url,
                params=params,
                headers={"Accept": "application/hal+json"},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            UPSTREAM_FETCHES.labels(kind=kind, outcome="error").inc()
            raise TransientUpstream(f"Horizon request failed: {exc}") from exc
        _raise_for_status(kind, response)
        try:
            payload = orjson.loads(response.content)
        except orjson.JSONDecodeError as exc:
            UPSTREAM_FETCHES.labels(kind=kind, outcome="error").inc()
            raise TransientUpstream(f"Horizon returned invalid JSON for {path}") from exc
        UPSTREAM_FETCHES.labels(kind=kind, outcome="ok").inc()
        return payload


def _raise_for_status(kind: str, response: requests.Response) -> None:
    status = response.status_code
    if status < 400:
        return
    detail = _problem_detail(response)
    if status == 404:
        UPSTREAM_FETCHES.labels(kind=kind, outcome="not_found").inc()
        raise NotFoundUpstream(f"{kind.replace('_', ' ')} not found upstream")
    UPSTREAM_FETCHES.labels(kind=kind, outcome="error").inc()
    if status == 400:
        raise InvalidKey(f"Horizon rejected request: {detail}")
    raise TransientUpstream(f"Horizon error ({status}): {detail}")


def _problem_detail(response: requests.Response) -> str:
    try:
        problem = orjson.loads(response.content)
    except orjson.JSONDecodeError:
        return response.text[:200]
    if isinstance(problem, dict):
        return str(problem.get("detail") or problem.get("title") or problem)
    return str(problem)


def _records(payload: dict[str, Any]) -> list[dict[str, Any]]:
    return list(payload.get("_embedded", {}).get("records", []))


def _transactions_from_page(payload: dict[str, Any]) -> list[TransactionRecord]:
    return [transaction_from_json(record) for record in _records(payload)]


def _normalise(kind: str, convert: Callable[[dict[str, Any]], T], payload: dict[str, Any]) -> T:
    try:
        return convert(payload)
    except MALFORMED_RECORD_ERRORS as exc:
        UPSTREAM_FETCHES.labels(kind=kind, outcome="malformed").inc()
        raise TransientUpstream(f"Horizon returned a malformed {kind.replace('_', ' ')} record: {exc!r}") from exc


def iter_sse_events(lines: Iterable[str]) -> Iterator[tuple[str | None, str]]:
    """Group server-sent-event lines into ``(id, data)`` pairs."""
    event_id: str | None = None
    data: list[str] = []
    for line in lines:
        if line is None:
            continue
        if line == "":
            if data:
                yield event_id, "\n".join(data)
                data = []
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "data":
            data.append(value)
        elif field == "id":
            event_id = value
    if data:
        yield event_id, "\n".join(data)


# Normalisation --------------------------------------------------------


def account_from_json(payload: dict[str, Any]) -> AccountSnapshot:
    balance = "0"
    trustlines: list[Trustline] = []
    for entry in payload.get("balances", []):
        asset_type = entry.get("asset_type", "")
        if asset_type == "native":
            balance = lumens_to_stroops(entry.get("balance", "0"))
            continue
        trustlines.append(
            Trustline(
                asset_code=entry.get("asset_code") or asset_type,
                issuer=entry.get("asset_issuer") or entry.get("liquidity_pool_id") or "none",
                balance=entry.get("balance", "0"),
                limit=entry.get("limit", ""),
            )
        )
    return AccountSnapshot(
        account_id=payload.get("account_id") or payload["id"],
        balance=balance,
        sequence_number=int(payload.get("sequence", 0)),
        last_modified=iso_to_unix(payload.get("last_modified_time")),
        trustlines=trustlines,
    )


def ledger_from_json(payload: dict[str, Any]) -> LedgerRecord:
    successful = int(payload.get("successful_transaction_count") or 0)
    failed = int(payload.get("failed_transaction_count") or 0)
    return LedgerRecord(
        sequence=int(payload["sequence"]),
        closed_at=str(payload["closed_at"]),
        total_tx_count=successful + failed,
        paging_token=payload.get("paging_token"),
    )


def transaction_from_json(payload: dict[str, Any]) -> TransactionRecord:
    return TransactionRecord(
        hash=payload["hash"],
        ledger_sequence=int(payload["ledger"]),
        envelope=payload.get("envelope_xdr", ""),
        source_account=payload.get("source_account"),
        paging_token=payload.get("paging_token"),
    )


__all__ = [
    "HorizonClient",
    "account_from_json",
    "ledger_from_json",
    "transaction_from_json",
    "iter_sse_events",
]
