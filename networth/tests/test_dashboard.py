import unittest
from datetime import date, datetime
from decimal import Decimal

from networth.currency_conversion import RateTable
from networth.dashboard import (
    OTHERS_LABEL,
    account_totals,
    asset_allocation,
    balance_at,
    build_dashboard_summary,
    month_bounds,
    percentage_change,
    previous_month_bounds,
    rates_as_of,
    sum_transactions,
    total_balance,
)
from networth.holdings_history import AccountHoldings
from networth.ledger import Balance, LedgerTransaction
from networth.rate_gateway import HistoricalPrice


def make_txn(txn_id, txn_type, amount, day, balance_id, ticker) -> LedgerTransaction:
    return LedgerTransaction(
        id=txn_id,
        type=txn_type,
        amount=Decimal(str(amount)),
        date=day,
        account_balance_id=balance_id,
        ticker=ticker,
    )


class DashboardTests(unittest.TestCase):
    def setUp(self) -> None:
        self.rates = RateTable("USD", {"EUR": Decimal("0.5")})
        self.accounts = [
            AccountHoldings(
                id=1,
                name="Main",
                balances=[
                    Balance(id=1, account_id=1, ticker="USD", current_balance=Decimal("150")),
                    Balance(id=2, account_id=1, ticker="EUR", current_balance=Decimal("40")),
                ],
            )
        ]
        self.transactions = [
            make_txn(1, "income", 100, date(2024, 4, 10), 1, "USD"),
            make_txn(2, "income", 20, date(2024, 4, 20), 2, "EUR"),
            make_txn(3, "expense", 10, date(2024, 4, 25), 1, "USD"),
            make_txn(4, "income", 60, date(2024, 5, 3), 1, "USD"),
            make_txn(5, "income", 20, date(2024, 5, 4), 2, "EUR"),
        ]

    def test_month_bounds(self) -> None:
        self.assertEqual(month_bounds(date(2024, 2, 15)), (date(2024, 2, 1), date(2024, 2, 29)))
        self.assertEqual(
            previous_month_bounds(date(2024, 1, 15)), (date(2023, 12, 1), date(2023, 12, 31))
        )

    def test_total_balance_converts_current_balances(self) -> None:
        self.assertEqual(total_balance(self.accounts, self.rates), Decimal("230"))

    def test_account_totals_convert_each_account(self) -> None:
        savings = AccountHoldings(
            id=2,
            name="Savings",
            balances=[Balance(id=3, account_id=2, ticker="EUR", current_balance=Decimal("10"))],
        )

        totals = account_totals(self.accounts + [savings], self.rates)

        self.assertEqual(
            [(entry.account_id, entry.name, entry.total) for entry in totals],
            [(1, "Main", Decimal("230")), (2, "Savings", Decimal("20"))],
        )

    def test_allocation_groups_tickers_across_accounts(self) -> None:
        savings = AccountHoldings(
            id=2,
            name="Savings",
            balances=[
                Balance(id=3, account_id=2, ticker="EUR", current_balance=Decimal("10")),
                Balance(id=4, account_id=2, ticker="USD", current_balance=Decimal("-30")),
            ],
        )

        slices = asset_allocation(self.accounts + [savings], self.rates)

        self.assertEqual(
            [(item.name, item.value, item.held) for item in slices],
            [("USD", Decimal("150"), Decimal("150")), ("EUR", Decimal("100"), Decimal("50"))],
        )
        self.assertEqual([item.percentage for item in slices], [Decimal("60"), Decimal("40")])

    def test_allocation_folds_small_slices_into_others(self) -> None:
        amounts = {"USD": 50, "EUR": 40, "GBP": 30, "CHF": 20, "JPY": 6, "CAD": 4}
        rates = RateTable("USD", {ticker: Decimal("1") for ticker in amounts})
        account = AccountHoldings(
            id=1,
            name="Main",
            balances=[
                Balance(id=index, account_id=1, ticker=ticker, current_balance=Decimal(amount))
                for index, (ticker, amount) in enumerate(amounts.items(), start=1)
            ],
        )

        slices = asset_allocation([account], rates)

        self.assertEqual(
            [(item.name, item.value) for item in slices],
            [
                ("USD", Decimal("50")),
                ("EUR", Decimal("40")),
                ("GBP", Decimal("30")),
                ("CHF", Decimal("20")),
                (OTHERS_LABEL, Decimal("10")),
            ],
        )
        self.assertIsNone(slices[-1].held)
        total_pct = sum(item.percentage for item in slices)
        self.assertEqual(total_pct.quantize(Decimal("0.01")), Decimal("100.00"))

    def test_allocation_keeps_five_slices_unfolded(self) -> None:
        amounts = {"USD": 50, "EUR": 40, "GBP": 30, "CHF": 20, "JPY": 6}
        rates = RateTable("USD", {ticker: Decimal("1") for ticker in amounts})
        account = AccountHoldings(
            id=1,
            name="Main",
            balances=[
                Balance(id=index, account_id=1, ticker=ticker, current_balance=Decimal(amount))
                for index, (ticker, amount) in enumerate(amounts.items(), start=1)
            ],
        )

        slices = asset_allocation([account], rates)

        self.assertEqual([item.name for item in slices], list(amounts))

    def test_allocation_by_category(self) -> None:
        rates = RateTable("USD", {"EUR": Decimal("0.5"), "BTC": Decimal("0.00002")})
        crypto = AccountHoldings(
            id=2,
            name="Wallet",
            balances=[
                Balance(
                    id=3, account_id=2, ticker="BTC", category="crypto", current_balance=Decimal("1")
                )
            ],
        )

        slices = asset_allocation(self.accounts + [crypto], rates, group_by="category")

        self.assertEqual(
            [(item.name, item.value, item.held) for item in slices],
            [("crypto", Decimal("50000"), None), ("currency", Decimal("230"), None)],
        )

    def test_allocation_rejects_unknown_grouping(self) -> None:
        with self.assertRaises(ValueError):
            asset_allocation(self.accounts, self.rates, group_by="account")

    def test_sum_transactions_filters_type_and_range(self) -> None:
        total = sum_transactions(
            self.transactions, "income", date(2024, 4, 1), date(2024, 4, 30), self.rates
        )

        self.assertEqual(total, Decimal("140"))

    def test_sum_transactions_rejects_inverted_range(self) -> None:
        with self.assertRaises(ValueError):
            sum_transactions(self.transactions, "income", date(2024, 5, 1), date(2024, 4, 1), self.rates)

    def test_percentage_change(self) -> None:
        self.assertEqual(percentage_change(Decimal("150"), Decimal("100")), Decimal("50"))
        self.assertIsNone(percentage_change(Decimal("150"), Decimal("0")))
        self.assertIsNone(percentage_change(Decimal("150"), None))

    def test_rates_as_of_uses_latest_sample_before_cutoff(self) -> None:
        samples = [
            HistoricalPrice("EUR", datetime(2024, 4, 1), Decimal("1")),
            HistoricalPrice("EUR", datetime(2024, 4, 30), Decimal("4")),
            HistoricalPrice("EUR", datetime(2024, 5, 2), Decimal("10")),
        ]

        table = rates_as_of(samples, date(2024, 4, 30), self.rates)

        self.assertEqual(table.get("EUR"), Decimal("0.25"))
        self.assertEqual(rates_as_of([], date(2024, 4, 30), self.rates).get("EUR"), Decimal("0.5"))

    def test_balance_at_replays_ledger(self) -> None:
        value = balance_at(self.accounts, self.transactions, date(2024, 4, 30), self.rates)

        self.assertEqual(value, Decimal("130"))

    def test_build_summary(self) -> None:
        summary = build_dashboard_summary(
            self.accounts, self.transactions, self.rates, [], today=date(2024, 5, 15)
        )

        self.assertEqual(summary.reporting_currency, "USD")
        self.assertEqual(summary.total_balance, Decimal("230"))
        self.assertEqual(summary.total_income, Decimal("100"))
        self.assertEqual(summary.total_expenses, Decimal("0"))
        self.assertEqual(summary.previous_income, Decimal("140"))
        self.assertEqual(summary.previous_expenses, Decimal("10"))
        self.assertEqual(summary.previous_balance, Decimal("130"))
        self.assertEqual(summary.expenses_change_pct, Decimal("-100"))
        self.assertEqual(
            summary.income_change_pct.quantize(Decimal("0.01")), Decimal("-28.57")
        )
        self.assertEqual(
            summary.balance_change_pct.quantize(Decimal("0.01")), Decimal("76.92")
        )
        self.assertEqual([entry.total for entry in summary.account_totals], [Decimal("230")])
        self.assertEqual(
            [(item.name, item.value) for item in summary.asset_allocation],
            [("USD", Decimal("150")), ("EUR", Decimal("80"))],
        )
        self.assertEqual(
            [item.name for item in summary.category_allocation], ["currency"]
        )

    def test_summary_without_transactions_has_no_previous_balance(self) -> None:
        summary = build_dashboard_summary(
            self.accounts, [], self.rates, [], today=date(2024, 5, 15)
        )

        self.assertIsNone(summary.previous_balance)
        self.assertIsNone(summary.balance_change_pct)
        self.assertEqual(summary.total_income, Decimal("0"))


if __name__ == "__main__":
    unittest.main()
