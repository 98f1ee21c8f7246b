from __future__ import annotations

from dataclasses import dataclass

ASSET_CATEGORIES = ("currency", "stock", "etf", "crypto")
DEFAULT_CATEGORY = "currency"


@dataclass(frozen=True)
class AssetItem:
    ticker: str
    name: str
    symbol: str | None = None


ASSETS: dict[str, list[AssetItem]] = {
    "currency": [
        AssetItem("USD", "US Dollar", "$"),
        AssetItem("EUR", "Euro", "€"),
        AssetItem("GBP", "British Pound", "£"),
        AssetItem("JPY", "Japanese Yen", "¥"),
        AssetItem("CAD", "Canadian Dollar", "C$"),
        AssetItem("AUD", "Australian Dollar", "A$"),
        AssetItem("CHF", "Swiss Franc", "CHF"),
        AssetItem("CNY", "Chinese Yuan", "¥"),
        AssetItem("SEK", "Swedish Krona", "kr"),
        AssetItem("NOK", "Norwegian Krone", "kr"),
        AssetItem("DKK", "Danish Krone", "kr"),
        AssetItem("PLN", "Polish Zloty", "zł"),
        AssetItem("CZK", "Czech Koruna", "Kč"),
        AssetItem("HUF", "Hungarian Forint", "Ft"),
        AssetItem("RUB", "Russian Ruble", "₽"),
        AssetItem("BRL", "Brazilian Real", "R$"),
        AssetItem("INR", "Indian Rupee", "₹"),
        AssetItem("KRW", "South Korean Won", "₩"),
        AssetItem("SGD", "Singapore Dollar", "S$"),
        AssetItem("HKD", "Hong Kong Dollar", "HK$"),
    ],
    "stock": [
        AssetItem("AAPL", "Apple Inc."),
        AssetItem("MSFT", "Microsoft Corp."),
        AssetItem("GOOGL", "Alphabet Inc."),
        AssetItem("AMZN", "Amazon.com Inc."),
        AssetItem("TSLA", "Tesla Inc."),
        AssetItem("META", "Meta Platforms Inc."),
        AssetItem("NVDA", "NVIDIA Corp."),
        AssetItem("BRK.B", "Berkshire Hathaway Inc."),
        AssetItem("UNH", "UnitedHealth Group Inc."),
        AssetItem("JNJ", "Johnson & Johnson"),
        AssetItem("V", "Visa Inc."),
        AssetItem("PG", "Procter & Gamble Co."),
        AssetItem("JPM", "JPMorgan Chase & Co."),
        AssetItem("MA", "Mastercard Inc."),
        AssetItem("HD", "Home Depot Inc."),
        AssetItem("DIS", "Walt Disney Co."),
        AssetItem("PYPL", "PayPal Holdings Inc."),
        AssetItem("ADBE", "Adobe Inc."),
        AssetItem("CRM", "Salesforce Inc."),
        AssetItem("NFLX", "Netflix Inc."),
        AssetItem("INTC", "Intel Corp."),
        AssetItem("AMD", "Advanced Micro Devices Inc."),
        AssetItem("UBER", "Uber Technologies Inc."),
        AssetItem("SQ", "Block Inc."),
    ],
    "etf": [
        AssetItem("SPY", "SPDR S&P 500 ETF Trust"),
        AssetItem("IVV", "iShares Core S&P 500 ETF"),
        AssetItem("VTI", "Vanguard Total Stock Market ETF"),
        AssetItem("VWCE.DE", "Vanguard Total World Stock ETF"),
        AssetItem("QQQ", "Invesco QQQ Trust"),
        AssetItem("IWM", "iShares Russell 2000 ETF"),
        AssetItem("VEA", "Vanguard FTSE Developed Markets ETF"),
        AssetItem("VWO", "Vanguard FTSE Emerging Markets ETF"),
        AssetItem("BND", "Vanguard Total Bond Market ETF"),
        AssetItem("TLT", "iShares 20+ Year Treasury Bond ETF"),
        AssetItem("GLD", "SPDR Gold Shares"),
        AssetItem("SLV", "iShares Silver Trust"),
        AssetItem("XLF", "Financial Select Sector SPDR Fund"),
        AssetItem("XLK", "Technology Select Sector SPDR Fund"),
        AssetItem("XLE", "Energy Select Sector SPDR Fund"),
        AssetItem("XLV", "Health Care Select Sector SPDR Fund"),
        AssetItem("ARKK", "ARK Innovation ETF"),
        AssetItem("TAN", "Invesco Solar ETF"),
        AssetItem("ICLN", "iShares Global Clean Energy ETF"),
    ],
    "crypto": [
        AssetItem("BTC", "Bitcoin", "₿"),
        AssetItem("ETH", "Ethereum", "Ξ"),
        AssetItem("SOL", "Solana"),
        AssetItem("ADA", "Cardano"),
        AssetItem("DOT", "Polkadot"),
        AssetItem("MATIC", "Polygon"),
        AssetItem("AVAX", "Avalanche"),
        AssetItem("LINK", "Chainlink"),
        AssetItem("UNI", "Uniswap"),
        AssetItem("ATOM", "Cosmos"),
        AssetItem("FTM", "Fantom"),
        AssetItem("ALGO", "Algorand"),
        AssetItem("VET", "VeChain"),
        AssetItem("FIL", "Filecoin"),
        AssetItem("TRX", "TRON"),
        AssetItem("XRP", "Ripple"),
        AssetItem("LTC", "Litecoin"),
        AssetItem("BCH", "Bitcoin Cash"),
        AssetItem("DOGE", "Dogecoin"),
        AssetItem("SHIB", "Shiba Inu"),
        AssetItem("USDC", "USD Coin"),
        AssetItem("USDT", "Tether"),
        AssetItem("DAI", "Dai"),
        AssetItem("BUSD", "Binance USD"),
    ],
}

_INDEX: dict[str, tuple[str, AssetItem]] = {
    item.ticker.upper(): (category, item)
    for category, items in ASSETS.items()
    for item in items
}


def normalize_ticker(value: str) -> str:
    normalized = value.strip().upper()
    if not normalized:
        raise ValueError("Ticker required.")
    return normalized


def normalize_category(value: str) -> str:
    normalized = value.strip().lower()
    if normalized not in ASSET_CATEGORIES:
        raise ValueError("Invalid asset category.")
    return normalized


def category_of(ticker: str) -> str:
    """Return the asset category for a ticker.

    Unknown tickers are treated as currencies.
    """
    entry = _INDEX.get(ticker.strip().upper())
    if entry is None:
        return DEFAULT_CATEGORY
    return entry[0]


def find_asset(ticker: str) -> AssetItem | None:
    entry = _INDEX.get(ticker.strip().upper())
    return entry[1] if entry else None


def display_name(ticker: str) -> str:
    item = find_asset(ticker)
    return item.name if item else ticker.strip().upper()


def symbol(ticker: str) -> str:
    item = find_asset(ticker)
    if item and item.symbol:
        return item.symbol
    return ticker.strip().upper()


def currency_codes() -> list[str]:
    return [item.ticker for item in ASSETS["currency"]]


def list_currencies() -> list[dict[str, str]]:
    return [
        {"code": item.ticker, "name": item.name, "symbol": item.symbol or item.ticker}
        for item in ASSETS["currency"]
    ]
