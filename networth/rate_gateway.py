from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time as dt_time, timezone
from decimal import Decimal, InvalidOperation
import http.client
import json
import logging
import time
from typing import Any, Callable, Iterable, Mapping, Protocol
from urllib.parse import urlencode
from urllib.request import urlopen

from networth.assets import ASSET_CATEGORIES, category_of
from networth.currency_conversion import (
    RateSource,
    RateTable,
    coerce_amount,
    parity_table,
    price_to_rate,
)

logger = logging.getLogger(__name__)

SUPPORTED_PERIODS = ("30d", "180d", "ytd", "1y", "5y", "all")
SUPPORTED_INTERVALS = ("1h", "4h", "1d")
DEFAULT_CACHE_TTL_SECONDS = 24 * 60 * 60


class PriceProviderUnavailable(RuntimeError):
    """Raised when the price provider cannot return prices."""


@dataclass(frozen=True)
class TickerCodec:
    """Translate between asset tickers and the provider's symbols."""

    prefix: str = ""
    suffix: str = ""

    def encode(self, ticker: str) -> str:
        return f"{self.prefix}{ticker}{self.suffix}"

    def decode(self, symbol: str) -> str:
        decoded = symbol
        if self.suffix and decoded.endswith(self.suffix):
            decoded = decoded[: -len(self.suffix)]
        if self.prefix and decoded.startswith(self.prefix):
            decoded = decoded[len(self.prefix):]
        return decoded


TICKER_CODECS: dict[str, TickerCodec] = {
    "currency": TickerCodec(suffix="USD=X"),
    "stock": TickerCodec(),
    "etf": TickerCodec(),
    "crypto": TickerCodec(suffix="-USD"),
}


@dataclass(frozen=True)
class HistoricalPrice:
    ticker: str
    timestamp: datetime
    price: Decimal


class PriceProvider(Protocol):
    def get_current(self, symbols: list[str], currency: str) -> list[Mapping[str, Any]]:
        ...

    def get_historical(
        self, symbols: list[str], currency: str, period: str, interval: str
    ) -> list[Mapping[str, Any]]:
        ...


@dataclass
class PriceApiClient:
    base_url: str
    timeout: float = 8

    def get_current(self, symbols: list[str], currency: str) -> list[Mapping[str, Any]]:
        params = [("tickers", symbol) for symbol in symbols]
        params.append(("currency", currency))
        return self._get_json("/prices/current", params)

    def get_historical(
        self, symbols: list[str], currency: str, period: str, interval: str
    ) -> list[Mapping[str, Any]]:
        params = [("tickers", symbol) for symbol in symbols]
        params.extend(
            [("currency", currency), ("period", period), ("interval", interval)]
        )
        return self._get_json("/prices/historical", params)

    def _get_json(self, path: str, params: list[tuple[str, str]]) -> list[Mapping[str, Any]]:
        url = f"{self.base_url.rstrip('/')}{path}?{urlencode(params)}"
        # urllib and socket failures are OSError; bad URLs and bodies are ValueError.
        try:
            with urlopen(url, timeout=self.timeout) as response:
                payload = json.load(response)
        except (OSError, http.client.HTTPException, ValueError) as exc:
            raise PriceProviderUnavailable(f"Price API unavailable: {path}") from exc

        if not isinstance(payload, list):
            raise PriceProviderUnavailable("Price API returned an unexpected payload")
        return payload


@dataclass
class StaticPriceProvider:
    """Deterministic, in-memory prices keyed by asset ticker.

    Prices are expressed in the requested currency per 1 unit of the asset.
    """

    prices: Mapping[str, Decimal] = field(default_factory=dict)
    history: Mapping[str, list[tuple[str, Decimal]]] = field(default_factory=dict)

    def get_current(self, symbols: list[str], currency: str) -> list[Mapping[str, Any]]:
        rows = []
        for symbol in symbols:
            ticker = _decode_any(symbol)
            if ticker in self.prices:
                rows.append(
                    {
                        "ticker": symbol,
                        "price": self.prices[ticker],
                        "currency": currency,
                        "timestamp": datetime.now(timezone.utc).isoformat(),
                    }
                )
        return rows

    def get_historical(
        self, symbols: list[str], currency: str, period: str, interval: str
    ) -> list[Mapping[str, Any]]:
        rows = []
        for symbol in symbols:
            for stamp, price in self.history.get(_decode_any(symbol), []):
                rows.append({"ticker": symbol, "date": stamp, "close": price})
        return rows


@dataclass(frozen=True)
class CachedRates:
    table: RateTable
    stored_at: float
    expires_at: float


class RatesCache:
    """Process-local cache of current rate tables.

    Entries are keyed by reporting currency and the sorted ticker set; a
    request for a different ticker set is a miss.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[tuple[str, tuple[str, ...]], CachedRates] = {}

    @staticmethod
    def key_for(tickers: Iterable[str], reporting_currency: str) -> tuple[str, tuple[str, ...]]:
        return reporting_currency.upper(), tuple(sorted({t.upper() for t in tickers}))

    def get_fresh(self, key: tuple[str, tuple[str, ...]]) -> RateTable | None:
        cached = self._entries.get(key)
        if cached and cached.expires_at > self._clock():
            return cached.table
        return None

    def latest_for(self, reporting_currency: str) -> RateTable | None:
        candidates = [
            cached
            for (currency, _), cached in self._entries.items()
            if currency == reporting_currency.upper()
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda cached: cached.stored_at).table

    def put(self, key: tuple[str, tuple[str, ...]], table: RateTable) -> None:
        now = self._clock()
        self._entries[key] = CachedRates(
            table=table, stored_at=now, expires_at=now + self.ttl_seconds
        )

    def clear(self) -> None:
        self._entries.clear()


@dataclass
class RateGateway:
    provider: PriceProvider
    cache: RatesCache = field(default_factory=RatesCache)

    def get_current_rates(self, tickers: Iterable[str], reporting_currency: str) -> RateTable:
        reporting = reporting_currency.strip().upper()
        requested = {ticker.strip().upper() for ticker in tickers if ticker and ticker.strip()}
        key = RatesCache.key_for(requested, reporting)

        cached = self.cache.get_fresh(key)
        if cached is not None:
            return RateTable(reporting, cached.rates, source=RateSource.CACHE)

        to_fetch = requested - {reporting}
        if not to_fetch:
            return RateTable(reporting, {}, source=RateSource.LIVE)

        rates: dict[str, Decimal] = {}
        failures = 0
        partitions = partition_by_category(to_fetch)
        for category, members in partitions.items():
            codec = TICKER_CODECS[category]
            symbols = {codec.encode(ticker): ticker for ticker in sorted(members)}
            try:
                rows = self.provider.get_current(list(symbols), reporting)
            except PriceProviderUnavailable as exc:
                failures += 1
                logger.warning("Current %s prices unavailable: %s", category, exc)
                continue
            for row in rows:
                parsed = _parse_current_row(row, symbols, codec)
                if parsed is None:
                    logger.debug("Skipping malformed price row: %r", row)
                    continue
                ticker, rate = parsed
                if ticker != reporting:
                    rates[ticker] = rate

        if failures == len(partitions):
            return self._fallback(requested, reporting)

        table = RateTable(reporting, rates, source=RateSource.LIVE)
        if failures == 0:
            self.cache.put(key, table)
        return table

    def get_historical_rates(
        self,
        tickers: Iterable[str],
        reporting_currency: str,
        period: str,
        interval: str,
    ) -> list[HistoricalPrice]:
        reporting = reporting_currency.strip().upper()
        to_fetch = {ticker.strip().upper() for ticker in tickers if ticker and ticker.strip()}
        to_fetch.discard(reporting)

        samples: list[HistoricalPrice] = []
        for category, members in partition_by_category(to_fetch).items():
            codec = TICKER_CODECS[category]
            symbols = {codec.encode(ticker): ticker for ticker in sorted(members)}
            try:
                rows = self.provider.get_historical(list(symbols), reporting, period, interval)
            except PriceProviderUnavailable as exc:
                logger.warning("Historical %s prices unavailable: %s", category, exc)
                continue
            for row in rows:
                sample = _parse_historical_row(row, symbols, codec)
                if sample is None:
                    logger.debug("Skipping malformed historical row: %r", row)
                    continue
                samples.append(sample)

        samples.sort(key=lambda sample: (sample.timestamp, sample.ticker))
        return samples

    def _fallback(self, requested: set[str], reporting: str) -> RateTable:
        stale = self.cache.latest_for(reporting)
        if stale is not None:
            logger.warning("Using stale %s rates after price fetch failure", reporting)
            return RateTable(reporting, stale.rates, source=RateSource.STALE_CACHE)
        logger.warning("No %s rates available; using 1:1 parity", reporting)
        return parity_table(requested, reporting)


def partition_by_category(tickers: Iterable[str]) -> dict[str, set[str]]:
    partitions: dict[str, set[str]] = {}
    for ticker in tickers:
        partitions.setdefault(category_of(ticker), set()).add(ticker)
    return {category: partitions[category] for category in ASSET_CATEGORIES if category in partitions}


def validate_period(value: str) -> str:
    normalized = value.strip().lower()
    if normalized not in SUPPORTED_PERIODS:
        raise ValueError("Unsupported period.")
    return normalized


def validate_interval(value: str) -> str:
    normalized = value.strip().lower()
    if normalized not in SUPPORTED_INTERVALS:
        raise ValueError("Unsupported interval.")
    return normalized


def parse_timestamp(value: Any) -> datetime | None:
    """Parse a provider date/timestamp into a naive UTC datetime."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, dt_time.min)
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = f"{text[:-1]}+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _decode_any(symbol: str) -> str:
    for codec in TICKER_CODECS.values():
        decoded = codec.decode(symbol)
        if decoded != symbol:
            return decoded
    return symbol


def _resolve_ticker(raw: Any, symbols: Mapping[str, str], codec: TickerCodec) -> str | None:
    if not isinstance(raw, str) or not raw.strip():
        return None
    symbol = raw.strip()
    if symbol in symbols:
        return symbols[symbol]
    return codec.decode(symbol).upper()


def _parse_price(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return coerce_amount(value)
    except (InvalidOperation, ValueError, TypeError):
        return None


def _parse_current_row(
    row: Any, symbols: Mapping[str, str], codec: TickerCodec
) -> tuple[str, Decimal] | None:
    if not isinstance(row, Mapping):
        return None
    ticker = _resolve_ticker(row.get("ticker"), symbols, codec)
    price = _parse_price(row.get("price"))
    if ticker is None or price is None:
        return None
    rate = price_to_rate(price)
    if rate is None:
        return None
    return ticker, rate


def _parse_historical_row(
    row: Any, symbols: Mapping[str, str], codec: TickerCodec
) -> HistoricalPrice | None:
    if not isinstance(row, Mapping):
        return None
    ticker = _resolve_ticker(row.get("ticker"), symbols, codec)
    timestamp = parse_timestamp(row.get("date") or row.get("timestamp"))
    raw_price = row.get("close")
    if raw_price is None:
        raw_price = row.get("price")
    price = _parse_price(raw_price)
    if ticker is None or timestamp is None or price is None:
        return None
    if not price.is_finite() or price <= 0:
        return None
    return HistoricalPrice(ticker=ticker, timestamp=timestamp, price=price)
