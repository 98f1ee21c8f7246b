import unittest
from datetime import date, datetime
from decimal import Decimal

from networth.currency_conversion import RateTable
from networth.holdings_history import (
    AccountHoldings,
    HistoryOptions,
    HistoryPoint,
    PricingPath,
    calculate_historical_holdings,
    resolve_fetch_window,
    trim_leading_zero_points,
)
from networth.ledger import Balance, LedgerTransaction
from networth.rate_gateway import HistoricalPrice


class StubGateway:
    def __init__(self, current: RateTable, samples=None) -> None:
        self.current = current
        self.samples = samples or []
        self.current_calls = []
        self.historical_calls = []

    def get_current_rates(self, tickers, reporting_currency):
        self.current_calls.append((set(tickers), reporting_currency))
        return self.current

    def get_historical_rates(self, tickers, reporting_currency, period, interval):
        self.historical_calls.append((set(tickers), reporting_currency, period, interval))
        return list(self.samples)


def income(txn_id, amount, day, balance_id) -> LedgerTransaction:
    return LedgerTransaction(
        id=txn_id,
        type="income",
        amount=Decimal(str(amount)),
        date=day,
        account_balance_id=balance_id,
    )


def expense(txn_id, amount, day, balance_id) -> LedgerTransaction:
    return LedgerTransaction(
        id=txn_id,
        type="expense",
        amount=Decimal(str(amount)),
        date=day,
        account_balance_id=balance_id,
    )


def btc_sample(day: date, price: int) -> HistoricalPrice:
    return HistoricalPrice(
        ticker="BTC", timestamp=datetime(day.year, day.month, day.day), price=Decimal(price)
    )


class FetchWindowTests(unittest.TestCase):
    def setUp(self) -> None:
        self.today = date(2024, 3, 31)

    def test_bounded_period_without_transactions(self) -> None:
        window = resolve_fetch_window("30d", None, self.today)

        self.assertEqual(window.start, date(2024, 3, 2))
        self.assertEqual(window.end, self.today)
        self.assertEqual(window.upstream_period, "30d")
        self.assertEqual(len(window.days()), 30)

    def test_bounded_period_clamps_to_earliest_transaction(self) -> None:
        window = resolve_fetch_window("1y", date(2024, 3, 20), self.today)

        self.assertEqual(window.start, date(2024, 3, 20))
        self.assertEqual(window.upstream_period, "1y")

    def test_future_transactions_do_not_move_start_past_today(self) -> None:
        window = resolve_fetch_window("30d", date(2024, 4, 10), self.today)

        self.assertEqual(window.start, self.today)

    def test_ytd_starts_on_january_first(self) -> None:
        window = resolve_fetch_window("ytd", date(2023, 6, 1), self.today)

        self.assertEqual(window.start, date(2024, 1, 1))
        self.assertEqual(window.upstream_period, "ytd")

    def test_all_picks_smallest_covering_upstream_period(self) -> None:
        self.assertEqual(
            resolve_fetch_window("all", date(2024, 1, 1), self.today).upstream_period, "180d"
        )
        self.assertEqual(
            resolve_fetch_window("all", date(2024, 3, 25), self.today).upstream_period, "30d"
        )
        self.assertEqual(
            resolve_fetch_window("all", date(2015, 1, 1), self.today).upstream_period, "all"
        )

    def test_all_without_transactions_is_a_single_day(self) -> None:
        window = resolve_fetch_window("all", None, self.today)

        self.assertEqual(window.days(), [self.today])

    def test_unsupported_period_raises(self) -> None:
        with self.assertRaises(ValueError):
            resolve_fetch_window("2w", None, self.today)


class HistoricalHoldingsTests(unittest.TestCase):
    def test_no_balances_returns_empty_series(self) -> None:
        gateway = StubGateway(RateTable("USD"))

        points = calculate_historical_holdings(
            [AccountHoldings(id=1, name="Empty")], [], HistoryOptions(), gateway
        )

        self.assertEqual(points, [])
        self.assertEqual(gateway.current_calls, [])

    def test_balances_without_transactions_return_empty_series(self) -> None:
        accounts = [
            AccountHoldings(
                id=1,
                name="Checking",
                balances=[
                    Balance(id=10, account_id=1, ticker="USD", current_balance=Decimal("500"))
                ],
            )
        ]
        gateway = StubGateway(RateTable("USD"))

        points = calculate_historical_holdings(
            accounts, [], HistoryOptions(period="30d", as_of=date(2024, 1, 10)), gateway
        )

        # Every day replays to zero, and leading zero days are all dropped.
        self.assertEqual(points, [])

    def test_single_currency_income_is_flat_after_first_day(self) -> None:
        accounts = [
            AccountHoldings(id=1, name="Checking", balances=[Balance(id=10, account_id=1, ticker="USD")])
        ]
        transactions = [income(1, 1000, date(2024, 1, 1), 10)]
        gateway = StubGateway(RateTable("USD"))

        points = calculate_historical_holdings(
            accounts,
            transactions,
            HistoryOptions(period="30d", as_of=date(2024, 1, 10)),
            gateway,
        )

        self.assertEqual(len(points), 10)
        self.assertEqual(points[0].date, date(2024, 1, 1))
        self.assertEqual(points[-1].date, date(2024, 1, 10))
        self.assertTrue(all(point.total_value == Decimal("1000") for point in points))
        self.assertEqual(points[0].breakdown, {"Checking_USD": Decimal("1000")})
        self.assertEqual(gateway.historical_calls[0][2:], ("30d", "1d"))

    def test_sparse_history_uses_current_rates(self) -> None:
        accounts = [
            AccountHoldings(id=1, name="Wallet", balances=[Balance(id=7, account_id=1, ticker="BTC", category="crypto")])
        ]
        transactions = [income(1, 2, date(2024, 1, 1), 7)]
        gateway = StubGateway(
            RateTable("USD", {"BTC": Decimal("1") / Decimal("50000")}),
            samples=[btc_sample(date(2024, 1, 2), 40000), btc_sample(date(2024, 1, 3), 20000)],
        )

        with self.assertLogs("networth.holdings_history", level="INFO"):
            points = calculate_historical_holdings(
                accounts,
                transactions,
                HistoryOptions(period="30d", as_of=date(2024, 1, 4)),
                gateway,
            )

        self.assertEqual([point.total_value for point in points], [Decimal("100000")] * 4)
        self.assertTrue(all(point.pricing == PricingPath.CURRENT for point in points))

    def test_rich_history_uses_latest_preceding_sample(self) -> None:
        accounts = [
            AccountHoldings(id=1, name="Wallet", balances=[Balance(id=7, account_id=1, ticker="BTC", category="crypto")])
        ]
        transactions = [income(1, 2, date(2024, 1, 1), 7)]
        gateway = StubGateway(
            RateTable("USD", {"BTC": Decimal("1") / Decimal("50000")}),
            samples=[
                btc_sample(date(2024, 1, 2), 40000),
                btc_sample(date(2024, 1, 4), 20000),
                btc_sample(date(2024, 1, 6), 25000),
            ],
        )

        points = calculate_historical_holdings(
            accounts,
            transactions,
            HistoryOptions(period="all", as_of=date(2024, 1, 7)),
            gateway,
        )

        self.assertEqual(
            [(point.date.day, point.total_value) for point in points],
            [
                (1, Decimal("100000")),
                (2, Decimal("80000")),
                (3, Decimal("80000")),
                (4, Decimal("40000")),
                (5, Decimal("40000")),
                (6, Decimal("50000")),
                (7, Decimal("50000")),
            ],
        )
        self.assertTrue(all(point.pricing == PricingPath.HISTORICAL for point in points))
        self.assertEqual(gateway.historical_calls[0][2], "30d")

    def test_leading_zero_days_are_trimmed_but_later_zeros_kept(self) -> None:
        accounts = [
            AccountHoldings(id=1, name="Checking", balances=[Balance(id=10, account_id=1, ticker="USD")])
        ]
        transactions = [
            income(1, 100, date(2024, 1, 1), 10),
            expense(2, 100, date(2024, 1, 1), 10),
            income(3, 50, date(2024, 1, 3), 10),
            expense(4, 50, date(2024, 1, 5), 10),
        ]

        points = calculate_historical_holdings(
            accounts,
            transactions,
            HistoryOptions(period="30d", as_of=date(2024, 1, 6)),
            StubGateway(RateTable("USD")),
        )

        self.assertEqual(points[0].date, date(2024, 1, 3))
        self.assertEqual(
            [point.total_value for point in points],
            [Decimal("50"), Decimal("50"), Decimal("0"), Decimal("0")],
        )

    def test_multi_currency_breakdown_and_idle_balance(self) -> None:
        accounts = [
            AccountHoldings(
                id=1,
                name="Main",
                balances=[
                    Balance(id=10, account_id=1, ticker="USD"),
                    Balance(id=11, account_id=1, ticker="EUR"),
                    Balance(id=12, account_id=1, ticker="GBP"),
                ],
            )
        ]
        transactions = [
            income(1, 50, date(2024, 1, 1), 10),
            LedgerTransaction(
                id=2,
                type="transfer",
                amount=Decimal("20"),
                date=date(2024, 1, 2),
                account_balance_id=10,
                to_account_balance_id=11,
                to_amount=Decimal("18"),
            ),
        ]
        gateway = StubGateway(RateTable("USD", {"EUR": Decimal("0.9"), "GBP": Decimal("0.8")}))

        points = calculate_historical_holdings(
            accounts,
            transactions,
            HistoryOptions(period="30d", as_of=date(2024, 1, 2)),
            gateway,
        )

        self.assertEqual(len(points), 2)
        self.assertEqual(
            points[-1].breakdown,
            {"Main_USD": Decimal("30"), "Main_EUR": Decimal("20"), "Main_GBP": Decimal("0")},
        )
        self.assertEqual(points[-1].total_value, Decimal("50"))
        self.assertEqual(gateway.current_calls[0], ({"USD", "EUR", "GBP"}, "USD"))

    def test_missing_current_rate_values_at_parity_with_one_warning(self) -> None:
        accounts = [
            AccountHoldings(id=1, name="Odd", balances=[Balance(id=3, account_id=1, ticker="ZZZ")])
        ]
        transactions = [income(1, 5, date(2024, 1, 1), 3)]

        with self.assertLogs("networth.holdings_history", level="WARNING") as logs:
            points = calculate_historical_holdings(
                accounts,
                transactions,
                HistoryOptions(period="30d", as_of=date(2024, 1, 3)),
                StubGateway(RateTable("USD")),
            )

        self.assertEqual([point.total_value for point in points], [Decimal("5")] * 3)
        warnings = [line for line in logs.output if line.startswith("WARNING")]
        self.assertEqual(len(warnings), 1)
        self.assertIn("ZZZ", warnings[0])

    def test_reporting_currency_is_passed_to_gateway(self) -> None:
        accounts = [
            AccountHoldings(id=1, name="Main", balances=[Balance(id=10, account_id=1, ticker="USD")])
        ]
        transactions = [income(1, 100, date(2024, 1, 1), 10)]
        gateway = StubGateway(RateTable("EUR", {"USD": Decimal("1.25")}))

        points = calculate_historical_holdings(
            accounts,
            transactions,
            HistoryOptions(period="30d", reporting_currency="eur", as_of=date(2024, 1, 1)),
            gateway,
        )

        self.assertEqual(points[0].total_value, Decimal("80"))
        self.assertEqual(gateway.current_calls[0][1], "EUR")

    def test_trim_leading_zero_points(self) -> None:
        points = [
            HistoryPoint(date=date(2024, 1, day), total_value=Decimal(value))
            for day, value in [(1, 0), (2, 0), (3, 5), (4, 0)]
        ]

        trimmed = trim_leading_zero_points(points)

        self.assertEqual([point.date.day for point in trimmed], [3, 4])
        self.assertEqual(trim_leading_zero_points([points[0]]), [])


if __name__ == "__main__":
    unittest.main()
