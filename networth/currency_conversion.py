from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
import logging
from typing import Iterable, Mapping

logger = logging.getLogger(__name__)

DEFAULT_REPORTING_CURRENCY = "USD"
ONE = Decimal("1")
ZERO = Decimal("0")


class RateSource(str, Enum):
    LIVE = "live"
    CACHE = "cache"
    STALE_CACHE = "stale_cache"
    PARITY = "parity"


class RateResolution(str, Enum):
    IDENTITY = "identity"
    DIRECT = "direct"
    CROSS = "cross"
    PARITY = "parity"


@dataclass(frozen=True)
class RateTable:
    """Snapshot of rates anchored at the reporting currency.

    Rates are expressed as units of the ticker per 1 unit of the reporting
    currency, so the reporting currency itself is always exactly 1.
    """

    reporting_currency: str
    rates: Mapping[str, Decimal] = field(default_factory=dict)
    source: RateSource = RateSource.LIVE

    def __post_init__(self) -> None:
        normalized = {
            ticker.strip().upper(): coerce_amount(value)
            for ticker, value in dict(self.rates).items()
        }
        reporting = self.reporting_currency.strip().upper()
        normalized[reporting] = ONE
        object.__setattr__(self, "reporting_currency", reporting)
        object.__setattr__(self, "rates", normalized)

    def get(self, ticker: str) -> Decimal | None:
        return self.rates.get(ticker.strip().upper())

    def __contains__(self, ticker: str) -> bool:
        return ticker.strip().upper() in self.rates

    def with_rates(self, overrides: Mapping[str, Decimal], source: RateSource | None = None) -> "RateTable":
        merged = dict(self.rates)
        merged.update(overrides)
        return RateTable(
            reporting_currency=self.reporting_currency,
            rates=merged,
            source=source or self.source,
        )


@dataclass(frozen=True)
class ConversionResult:
    amount: Decimal
    resolution: RateResolution


def parity_table(tickers: Iterable[str], reporting_currency: str) -> RateTable:
    return RateTable(
        reporting_currency=reporting_currency,
        rates={ticker: ONE for ticker in tickers},
        source=RateSource.PARITY,
    )


def price_to_rate(price: Decimal | int | float | str) -> Decimal | None:
    """Invert a provider price (reporting currency per 1 unit of asset)."""
    try:
        value = coerce_amount(price)
    except (InvalidOperation, ValueError):
        return None
    if not value.is_finite() or value <= ZERO:
        return None
    return ONE / value


def resolve_conversion(
    amount: Decimal | int | float | str,
    from_ticker: str,
    to_ticker: str,
    rates: RateTable | Mapping[str, Decimal | int | float],
) -> ConversionResult:
    coerced_amount = coerce_amount(amount)
    source = from_ticker.strip().upper()
    target = to_ticker.strip().upper()
    if source == target:
        return ConversionResult(coerced_amount, RateResolution.IDENTITY)

    base, table = _base_and_rates(rates)
    source_rate = table.get(source)
    target_rate = table.get(target)

    if source == base and _usable(target_rate):
        return ConversionResult(coerced_amount * target_rate, RateResolution.DIRECT)
    if target == base and _usable(source_rate):
        return ConversionResult(coerced_amount / source_rate, RateResolution.DIRECT)
    if source != base and target != base and _usable(source_rate) and _usable(target_rate):
        amount_in_base = coerced_amount / source_rate
        return ConversionResult(amount_in_base * target_rate, RateResolution.CROSS)

    logger.warning("No exchange rate found for %s to %s; using 1:1", source, target)
    return ConversionResult(coerced_amount, RateResolution.PARITY)


def convert_amount(
    amount: Decimal | int | float | str,
    from_ticker: str,
    to_ticker: str,
    rates: RateTable | Mapping[str, Decimal | int | float],
) -> Decimal:
    """Convert an amount between two tickers using a rate table."""
    return resolve_conversion(amount, from_ticker, to_ticker, rates).amount


def normalize_currency(value: str) -> str:
    normalized = value.strip().upper()
    if len(normalized) != 3 or not normalized.isalpha():
        raise ValueError("Currency must be a 3-letter ISO 4217 code.")
    return normalized


def coerce_amount(amount: Decimal | int | float | str) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))


def _usable(rate: Decimal | None) -> bool:
    return rate is not None and rate.is_finite() and rate > ZERO


def _base_and_rates(
    rates: RateTable | Mapping[str, Decimal | int | float],
) -> tuple[str, dict[str, Decimal]]:
    if isinstance(rates, RateTable):
        return rates.reporting_currency, dict(rates.rates)
    table: dict[str, Decimal] = {}
    for ticker, value in rates.items():
        try:
            table[ticker.strip().upper()] = coerce_amount(value)
        except (InvalidOperation, ValueError):
            continue
    base = next(
        (ticker for ticker, value in table.items() if value == ONE),
        DEFAULT_REPORTING_CURRENCY,
    )
    return base, table
