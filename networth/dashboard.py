from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Iterable, Optional

from networth.currency_conversion import RateTable, convert_amount, price_to_rate
from networth.holdings_history import AccountHoldings
from networth.ledger import (
    ZERO,
    BalanceTimeline,
    LedgerTransaction,
    coerce_date,
    transactions_touching,
)
from networth.rate_gateway import HistoricalPrice

HUNDRED = Decimal("100")
ALLOCATION_GROUPS = ("ticker", "category")
ALLOCATION_MAX_SLICES = 5
OTHERS_LABEL = "Others"


@dataclass(frozen=True)
class AccountTotal:
    account_id: Any
    name: str
    total: Decimal


@dataclass(frozen=True)
class AllocationSlice:
    name: str
    value: Decimal
    percentage: Decimal
    # Held units; only set when the slice is a single ticker.
    held: Optional[Decimal] = None


@dataclass(frozen=True)
class DashboardSummary:
    reporting_currency: str
    total_balance: Decimal
    total_income: Decimal
    total_expenses: Decimal
    previous_income: Decimal
    previous_expenses: Decimal
    previous_balance: Optional[Decimal]
    income_change_pct: Optional[Decimal]
    expenses_change_pct: Optional[Decimal]
    balance_change_pct: Optional[Decimal]
    account_totals: tuple[AccountTotal, ...] = ()
    asset_allocation: tuple[AllocationSlice, ...] = ()
    category_allocation: tuple[AllocationSlice, ...] = ()


def month_bounds(day: date) -> tuple[date, date]:
    start = day.replace(day=1)
    next_month = (start + timedelta(days=32)).replace(day=1)
    return start, next_month - timedelta(days=1)


def previous_month_bounds(day: date) -> tuple[date, date]:
    current_start, _ = month_bounds(day)
    return month_bounds(current_start - timedelta(days=1))


def account_total(account: AccountHoldings, rates: RateTable) -> Decimal:
    total = ZERO
    for balance in account.balances:
        total += convert_amount(
            balance.current_balance,
            balance.ticker,
            rates.reporting_currency,
            rates,
        )
    return total


def account_totals(
    accounts: Iterable[AccountHoldings], rates: RateTable
) -> list[AccountTotal]:
    return [
        AccountTotal(account_id=account.id, name=account.name, total=account_total(account, rates))
        for account in accounts
    ]


def total_balance(accounts: Iterable[AccountHoldings], rates: RateTable) -> Decimal:
    return sum((account_total(account, rates) for account in accounts), ZERO)


def asset_allocation(
    accounts: Iterable[AccountHoldings],
    rates: RateTable,
    group_by: str = "ticker",
) -> list[AllocationSlice]:
    """Split the positive current holdings by ticker or by asset category.

    Slices are ordered by converted value, largest first. When there are more
    than ``ALLOCATION_MAX_SLICES`` groups, everything after the top four is
    folded into a single "Others" slice. Percentages are of the positive total.
    """
    if group_by not in ALLOCATION_GROUPS:
        raise ValueError("Unsupported allocation grouping.")

    values: dict[str, Decimal] = {}
    held: dict[str, Decimal] = {}
    for account in accounts:
        for balance in account.balances:
            if balance.current_balance <= ZERO:
                continue
            key = balance.ticker if group_by == "ticker" else balance.category
            converted = convert_amount(
                balance.current_balance, balance.ticker, rates.reporting_currency, rates
            )
            values[key] = values.get(key, ZERO) + converted
            held[key] = held.get(key, ZERO) + balance.current_balance

    groups = sorted(
        ((name, value) for name, value in values.items() if value > ZERO),
        key=lambda item: (-item[1], item[0]),
    )
    if len(groups) > ALLOCATION_MAX_SLICES:
        top = ALLOCATION_MAX_SLICES - 1
        others = sum((value for _, value in groups[top:]), ZERO)
        groups = groups[:top] + [(OTHERS_LABEL, others)]

    total = sum((value for _, value in groups), ZERO)
    return [
        AllocationSlice(
            name=name,
            value=value,
            percentage=value / total * HUNDRED,
            held=held.get(name) if group_by == "ticker" else None,
        )
        for name, value in groups
    ]


def sum_transactions(
    transactions: Iterable[LedgerTransaction],
    txn_type: str,
    start_date: date,
    end_date: date,
    rates: RateTable,
) -> Decimal:
    if start_date > end_date:
        raise ValueError("start_date must be on or before end_date.")
    total = ZERO
    for txn in transactions:
        if (txn.type or "").strip().lower() != txn_type:
            continue
        txn_date = coerce_date(txn.date)
        if txn_date is None or not start_date <= txn_date <= end_date:
            continue
        total += convert_amount(
            txn.amount,
            txn.ticker or rates.reporting_currency,
            rates.reporting_currency,
            rates,
        )
    return total


def rates_as_of(
    samples: Iterable[HistoricalPrice], cutoff: date, current: RateTable
) -> RateTable:
    """Latest sampled rate per ticker on or before ``cutoff``.

    Tickers without a qualifying sample keep their current rate.
    """
    latest: dict[str, HistoricalPrice] = {}
    for sample in samples:
        if sample.timestamp.date() > cutoff:
            continue
        known = latest.get(sample.ticker)
        if known is None or sample.timestamp > known.timestamp:
            latest[sample.ticker] = sample

    overrides: dict[str, Decimal] = {}
    for ticker, sample in latest.items():
        rate = price_to_rate(sample.price)
        if rate is not None:
            overrides[ticker] = rate
    return current.with_rates(overrides)


def balance_at(
    accounts: Iterable[AccountHoldings],
    transactions: list[LedgerTransaction],
    day: date,
    rates: RateTable,
) -> Decimal:
    total = ZERO
    for account in accounts:
        for balance in account.balances:
            timeline = BalanceTimeline(balance, transactions_touching(balance.id, transactions))
            held = timeline.value_at(day)
            if held:
                total += convert_amount(held, balance.ticker, rates.reporting_currency, rates)
    return total


def percentage_change(current: Decimal, previous: Optional[Decimal]) -> Optional[Decimal]:
    if previous is None or previous <= ZERO:
        return None
    return (current - previous) / previous * HUNDRED


def build_dashboard_summary(
    accounts: Iterable[AccountHoldings],
    transactions: Iterable[LedgerTransaction],
    current_rates: RateTable,
    samples: Iterable[HistoricalPrice],
    today: date,
) -> DashboardSummary:
    accounts = list(accounts)
    transactions = list(transactions)

    month_start, month_end = month_bounds(today)
    previous_start, previous_end = previous_month_bounds(today)

    totals = account_totals(accounts, current_rates)
    current_total = sum((entry.total for entry in totals), ZERO)
    income = sum_transactions(transactions, "income", month_start, month_end, current_rates)
    expenses = sum_transactions(transactions, "expense", month_start, month_end, current_rates)
    previous_income = sum_transactions(
        transactions, "income", previous_start, previous_end, current_rates
    )
    previous_expenses = sum_transactions(
        transactions, "expense", previous_start, previous_end, current_rates
    )

    previous_balance: Optional[Decimal] = None
    if transactions:
        month_end_rates = rates_as_of(samples, previous_end, current_rates)
        previous_balance = balance_at(accounts, transactions, previous_end, month_end_rates)

    return DashboardSummary(
        reporting_currency=current_rates.reporting_currency,
        total_balance=current_total,
        total_income=income,
        total_expenses=expenses,
        previous_income=previous_income,
        previous_expenses=previous_expenses,
        previous_balance=previous_balance,
        income_change_pct=percentage_change(income, previous_income),
        expenses_change_pct=percentage_change(expenses, previous_expenses),
        balance_change_pct=percentage_change(current_total, previous_balance),
        account_totals=tuple(totals),
        asset_allocation=tuple(asset_allocation(accounts, current_rates)),
        category_allocation=tuple(asset_allocation(accounts, current_rates, group_by="category")),
    )
