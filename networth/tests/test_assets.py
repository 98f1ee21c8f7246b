import unittest

from networth.assets import (
    category_of,
    currency_codes,
    display_name,
    list_currencies,
    normalize_category,
    normalize_ticker,
    symbol,
)


class AssetRegistryTests(unittest.TestCase):
    def test_category_lookup_is_case_insensitive(self) -> None:
        self.assertEqual(category_of("AAPL"), "stock")
        self.assertEqual(category_of("spy"), "etf")
        self.assertEqual(category_of(" btc "), "crypto")
        self.assertEqual(category_of("eur"), "currency")

    def test_unknown_ticker_defaults_to_currency(self) -> None:
        self.assertEqual(category_of("ZZZ"), "currency")
        self.assertEqual(category_of(""), "currency")

    def test_symbol_falls_back_to_ticker(self) -> None:
        self.assertEqual(symbol("EUR"), "€")
        self.assertEqual(symbol("aapl"), "AAPL")
        self.assertEqual(symbol("zzz"), "ZZZ")

    def test_display_name(self) -> None:
        self.assertEqual(display_name("btc"), "Bitcoin")
        self.assertEqual(display_name("zzz"), "ZZZ")

    def test_normalize_ticker_rejects_blank(self) -> None:
        self.assertEqual(normalize_ticker(" vwce.de "), "VWCE.DE")
        with self.assertRaises(ValueError):
            normalize_ticker("   ")

    def test_normalize_category_validates(self) -> None:
        self.assertEqual(normalize_category(" ETF "), "etf")
        with self.assertRaises(ValueError):
            normalize_category("bond")

    def test_currency_listing(self) -> None:
        codes = currency_codes()
        self.assertIn("USD", codes)
        self.assertEqual(len(codes), 20)
        usd = next(item for item in list_currencies() if item["code"] == "USD")
        self.assertEqual(usd, {"code": "USD", "name": "US Dollar", "symbol": "$"})


if __name__ == "__main__":
    unittest.main()
