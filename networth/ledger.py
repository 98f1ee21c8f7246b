from __future__ import annotations

from bisect import bisect_right
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable, Optional

from networth.currency_conversion import coerce_amount

ZERO = Decimal("0")
TRANSACTION_TYPES = ("income", "expense", "transfer", "taxation")
DEBIT_TYPES = {"expense", "taxation"}


@dataclass(frozen=True)
class Balance:
    id: Any
    account_id: Any
    ticker: str
    category: str = "currency"
    current_balance: Decimal = ZERO


@dataclass(frozen=True)
class LedgerTransaction:
    id: Any
    type: str
    amount: Decimal
    date: Any
    account_balance_id: Any
    to_account_balance_id: Any = None
    to_amount: Optional[Decimal] = None
    ticker: Optional[str] = None
    to_ticker: Optional[str] = None


def normalize_transaction_type(value: str) -> str:
    normalized = value.strip().lower()
    if normalized not in TRANSACTION_TYPES:
        raise ValueError("Invalid transaction type.")
    return normalized


def coerce_date(value: Any) -> date | None:
    """Return a calendar date, or None when the value cannot be parsed."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return date.fromisoformat(text[:10])
        except ValueError:
            return None
    return None


def transaction_delta(txn: LedgerTransaction, balance_id: Any) -> Decimal:
    """Signed effect of one transaction on one balance."""
    txn_type = (txn.type or "").strip().lower()
    if txn_type == "income":
        return coerce_amount(txn.amount) if txn.account_balance_id == balance_id else ZERO
    if txn_type in DEBIT_TYPES:
        return -coerce_amount(txn.amount) if txn.account_balance_id == balance_id else ZERO
    if txn_type == "transfer":
        delta = ZERO
        if txn.to_account_balance_id == balance_id:
            delta += coerce_amount(txn.to_amount) if txn.to_amount is not None else ZERO
        if txn.account_balance_id == balance_id:
            delta -= coerce_amount(txn.amount)
        return delta
    return ZERO


def balance_deltas(txn: LedgerTransaction) -> dict[Any, Decimal]:
    """Running-total deltas implied by a transaction, keyed by balance id."""
    touched = [txn.account_balance_id]
    if (txn.type or "").strip().lower() == "transfer" and txn.to_account_balance_id is not None:
        touched.append(txn.to_account_balance_id)
    deltas: dict[Any, Decimal] = {}
    for balance_id in touched:
        if balance_id is None or balance_id in deltas:
            continue
        deltas[balance_id] = transaction_delta(txn, balance_id)
    return deltas


def transactions_touching(
    balance_id: Any, transactions: Iterable[LedgerTransaction]
) -> list[LedgerTransaction]:
    return [
        txn
        for txn in transactions
        if txn.account_balance_id == balance_id or txn.to_account_balance_id == balance_id
    ]


def value_of_balance_at_date(
    balance: Balance,
    transactions: Iterable[LedgerTransaction],
    target_date: date,
) -> Decimal:
    """Replay every transaction dated on or before ``target_date`` from zero.

    The stored ``current_balance`` is ignored. Transactions with unparseable
    dates are skipped.
    """
    cutoff = coerce_date(target_date)
    if cutoff is None:
        raise ValueError("target_date must be a date.")
    total = ZERO
    for txn in transactions:
        txn_date = coerce_date(txn.date)
        if txn_date is None or txn_date > cutoff:
            continue
        total += transaction_delta(txn, balance.id)
    return total


class BalanceTimeline:
    """Sorted prefix sums of one balance's deltas for repeated lookups."""

    def __init__(self, balance: Balance, transactions: Iterable[LedgerTransaction]) -> None:
        self.balance = balance
        dated: list[tuple[date, Decimal]] = []
        for txn in transactions:
            txn_date = coerce_date(txn.date)
            if txn_date is None:
                continue
            dated.append((txn_date, transaction_delta(txn, balance.id)))
        dated.sort(key=lambda item: item[0])

        self._dates: list[date] = []
        self._totals: list[Decimal] = []
        running = ZERO
        for txn_date, delta in dated:
            running += delta
            self._dates.append(txn_date)
            self._totals.append(running)

    @property
    def first_date(self) -> date | None:
        return self._dates[0] if self._dates else None

    def value_at(self, target_date: date) -> Decimal:
        index = bisect_right(self._dates, target_date)
        if index == 0:
            return ZERO
        return self._totals[index - 1]


def earliest_transaction_date(transactions: Iterable[LedgerTransaction]) -> date | None:
    dates = [d for d in (coerce_date(txn.date) for txn in transactions) if d is not None]
    return min(dates) if dates else None
