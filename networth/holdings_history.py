"""
Historical portfolio valuation.

Reconstructs the value of every (account, balance) pair for each calendar day
of a requested window by replaying the ledger and converting with the rates
that applied on that day.

Two strategies are used:

- historical pricing: rate samples from the price provider are bucketed by
  timestamp and each day uses the latest bucket at or before it;
- current pricing: when the provider returns too few samples, today's rates
  are applied to every day of the window.
"""

from __future__ import annotations

from bisect import bisect_right
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
import logging
from typing import Any, Iterable, Sequence

from networth.currency_conversion import ONE, RateSource, RateTable, convert_amount, price_to_rate
from networth.ledger import (
    ZERO,
    Balance,
    BalanceTimeline,
    LedgerTransaction,
    earliest_transaction_date,
    transactions_touching,
)
from networth.rate_gateway import HistoricalPrice, RateGateway, validate_interval, validate_period

logger = logging.getLogger(__name__)

HISTORY_SPARSITY_THRESHOLD = 3
PERIOD_DAYS = {"30d": 30, "180d": 180, "1y": 365, "5y": 1825}
UPSTREAM_PERIODS = (("30d", 30), ("180d", 180), ("1y", 365), ("5y", 1825))


class PricingPath(str, Enum):
    HISTORICAL = "historical"
    CURRENT = "current"


@dataclass(frozen=True)
class AccountHoldings:
    id: Any
    name: str
    balances: Sequence[Balance] = ()


@dataclass(frozen=True)
class HistoryOptions:
    period: str = "30d"
    interval: str = "1d"
    reporting_currency: str = "USD"
    as_of: date | None = None


@dataclass(frozen=True)
class FetchWindow:
    start: date
    end: date
    upstream_period: str

    def days(self) -> list[date]:
        span = (self.end - self.start).days
        return [self.start + timedelta(days=offset) for offset in range(span + 1)]


@dataclass(frozen=True)
class HistoryPoint:
    date: date
    total_value: Decimal
    breakdown: dict[str, Decimal] = field(default_factory=dict)
    pricing: PricingPath = PricingPath.CURRENT


class RateSnapshots:
    """Per-timestamp rate tables built from historical samples.

    Every snapshot starts as a copy of the current table so a ticker missing
    from a sample still converts.
    """

    def __init__(self, samples: Iterable[HistoricalPrice], current: RateTable) -> None:
        self.current = current
        buckets: dict[datetime, dict[str, Decimal]] = {}
        for sample in samples:
            rate = price_to_rate(sample.price)
            if rate is None:
                continue
            buckets.setdefault(sample.timestamp, {})[sample.ticker] = rate

        self._timestamps = sorted(buckets)
        self._dates = [stamp.date() for stamp in self._timestamps]
        self._tables = [
            current.with_rates(buckets[stamp], source=RateSource.LIVE)
            for stamp in self._timestamps
        ]

    @property
    def distinct_timestamps(self) -> int:
        return len(self._timestamps)

    def rates_for(self, day: date) -> RateTable:
        index = bisect_right(self._dates, day)
        if index == 0:
            return self.current
        return self._tables[index - 1]


def resolve_fetch_window(period: str, earliest: date | None, today: date) -> FetchWindow:
    """Work out the days to chart and the upstream period covering them."""
    normalized = validate_period(period)
    if normalized == "all":
        start = earliest if earliest is not None and earliest < today else today
        span = (today - start).days + 1
        upstream = next(
            (name for name, days in UPSTREAM_PERIODS if days >= span),
            "all",
        )
        return FetchWindow(start=start, end=today, upstream_period=upstream)

    if normalized == "ytd":
        start = date(today.year, 1, 1)
    else:
        start = today - timedelta(days=PERIOD_DAYS[normalized] - 1)
    if earliest is not None and earliest > start:
        start = min(earliest, today)
    return FetchWindow(start=start, end=today, upstream_period=normalized)


def calculate_historical_holdings(
    accounts: Iterable[AccountHoldings],
    transactions: Iterable[LedgerTransaction],
    options: HistoryOptions,
    gateway: RateGateway,
) -> list[HistoryPoint]:
    accounts = list(accounts)
    transactions = list(transactions)
    reporting = options.reporting_currency.strip().upper()
    interval = validate_interval(options.interval)

    tickers = {
        balance.ticker.strip().upper()
        for account in accounts
        for balance in account.balances
    }
    if not tickers:
        return []

    current_rates = gateway.get_current_rates(tickers, reporting)
    missing = sorted(ticker for ticker in tickers if ticker not in current_rates)
    if missing:
        logger.warning("No current rate for %s; valuing 1:1", ", ".join(missing))
        current_rates = current_rates.with_rates({ticker: ONE for ticker in missing})

    today = options.as_of or date.today()
    window = resolve_fetch_window(
        options.period, earliest_transaction_date(transactions), today
    )
    samples = gateway.get_historical_rates(
        tickers, reporting, window.upstream_period, interval
    )
    snapshots = RateSnapshots(samples, current_rates)

    timelines = [
        (account, BalanceTimeline(balance, transactions_touching(balance.id, transactions)))
        for account in accounts
        for balance in account.balances
    ]

    if snapshots.distinct_timestamps < HISTORY_SPARSITY_THRESHOLD:
        logger.info(
            "Only %d historical rate timestamps for %s; valuing with current rates",
            snapshots.distinct_timestamps,
            reporting,
        )
        points = [
            _value_day(day, timelines, current_rates, reporting, PricingPath.CURRENT)
            for day in window.days()
        ]
    else:
        points = [
            _value_day(day, timelines, snapshots.rates_for(day), reporting, PricingPath.HISTORICAL)
            for day in window.days()
        ]
    return trim_leading_zero_points(points)


def trim_leading_zero_points(points: list[HistoryPoint]) -> list[HistoryPoint]:
    index = 0
    while index < len(points) and points[index].total_value == ZERO:
        index += 1
    return points[index:]


def _value_day(
    day: date,
    timelines: list[tuple[AccountHoldings, BalanceTimeline]],
    rates: RateTable,
    reporting: str,
    pricing: PricingPath,
) -> HistoryPoint:
    total = ZERO
    breakdown: dict[str, Decimal] = {}
    for account, timeline in timelines:
        balance = timeline.balance
        held = timeline.value_at(day)
        value = convert_amount(held, balance.ticker, reporting, rates) if held else ZERO
        key = f"{account.name}_{balance.ticker}"
        breakdown[key] = breakdown.get(key, ZERO) + value
        total += value
    return HistoryPoint(date=day, total_value=total, breakdown=breakdown, pricing=pricing)
