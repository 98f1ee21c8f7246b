"""
Persistence for profiles, accounts, balances and transactions.

Balances carry a running ``current_balance`` that every transaction write
keeps in step: the old transaction's deltas are reversed and the new ones
applied inside the caller's database transaction, one UPDATE per touched
balance row.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Iterable, Mapping, Optional

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    TypeDecorator,
    UniqueConstraint,
    func,
    insert,
    or_,
    select,
    update,
)
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Connection, RowMapping
from sqlalchemy.exc import IntegrityError

from networth.assets import category_of, normalize_category, normalize_ticker
from networth.currency_conversion import coerce_amount
from networth.holdings_history import AccountHoldings
from networth.ledger import ZERO, Balance, LedgerTransaction, balance_deltas

metadata = MetaData()


class DecimalAmount(TypeDecorator):
    """NUMERIC column that round-trips ``Decimal`` exactly on every backend.

    SQLite has no decimal storage and would keep NUMERIC values as REAL, so
    there the amount is stored as its plain decimal text instead.
    """

    impl = Numeric
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(40))
        return dialect.type_descriptor(self.impl)

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        amount = coerce_amount(value)
        if dialect.name != "sqlite":
            return amount
        if self.impl.scale is not None:
            amount = amount.quantize(Decimal(1).scaleb(-self.impl.scale))
        return format(amount, "f")

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return coerce_amount(value)


DEFAULT_CATEGORIES: dict[str, list[str]] = {
    "expense": [
        "Food & Dining",
        "Transportation",
        "Shopping",
        "Entertainment",
        "Bills & Utilities",
        "Healthcare",
        "Education",
        "Travel",
        "Groceries",
        "Gas",
        "Insurance",
        "Rent/Mortgage",
        "Gift",
        "Other",
    ],
    "income": [
        "Salary",
        "Freelance",
        "Investment",
        "Dividend",
        "Rental Income",
        "Business",
        "Bonus",
        "Commission",
        "Interest",
        "Gift",
        "Refund",
        "Other",
    ],
    "taxation": [
        "Income Tax",
        "Property Tax",
        "Sales Tax",
        "Capital Gains Tax",
        "Corporate Tax",
        "VAT",
        "Social Security",
        "Medicare",
        "State Tax",
        "Local Tax",
        "Estate Tax",
        "Gift Tax",
        "Other Tax",
    ],
}

profiles = Table(
    "profiles",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=False),
    Column("nickname", String(255)),
    Column("main_currency", String(3)),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    Column("updated_at", DateTime, nullable=False, server_default=func.now()),
)

accounts = Table(
    "accounts",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("profiles.id"), nullable=False),
    Column("name", String(255), nullable=False),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    Column("updated_at", DateTime, nullable=False, server_default=func.now()),
)

account_balances = Table(
    "account_balances",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("account_id", Integer, ForeignKey("accounts.id"), nullable=False),
    Column("category", String(20), nullable=False, server_default="currency"),
    Column("currency", String(20), nullable=False),
    Column("current_balance", DecimalAmount(20, 8), nullable=False, server_default="0"),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    Column("updated_at", DateTime, nullable=False, server_default=func.now()),
    UniqueConstraint("account_id", "category", "currency", name="uq_account_balances_asset"),
)

user_categories = Table(
    "user_categories",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("profiles.id"), nullable=False),
    Column("type", String(20), nullable=False),
    Column("name", String(255), nullable=False),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    UniqueConstraint("user_id", "type", "name", name="uq_user_categories_type_name"),
)

transactions = Table(
    "transactions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("profiles.id"), nullable=False),
    Column("account_id", Integer, ForeignKey("accounts.id"), nullable=False),
    Column("account_balance_id", Integer, ForeignKey("account_balances.id"), nullable=False),
    Column("type", String(20), nullable=False),
    Column("amount", DecimalAmount(20, 8), nullable=False),
    Column("currency", String(20), nullable=False),
    Column("description", String(500)),
    Column("category", String(255)),
    Column("date", Date, nullable=False),
    Column("to_account_id", Integer, ForeignKey("accounts.id")),
    Column("to_account_balance_id", Integer, ForeignKey("account_balances.id")),
    Column("to_amount", DecimalAmount(20, 8)),
    Column("to_currency", String(20)),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    Column("updated_at", DateTime, nullable=False, server_default=func.now()),
)


def insert_ignoring_conflict(
    conn: Connection,
    table: Table,
    values: Mapping[str, Any],
    index_elements: list[str],
) -> None:
    """Insert a row unless it collides with ``index_elements``.

    Uses ON CONFLICT DO NOTHING where the dialect supports it, so concurrent
    callers end up with a single row.
    """
    dialect = conn.dialect.name
    if dialect == "postgresql":
        stmt = pg_insert(table).values(**values).on_conflict_do_nothing(
            index_elements=index_elements
        )
        conn.execute(stmt)
    elif dialect == "sqlite":
        stmt = sqlite_insert(table).values(**values).on_conflict_do_nothing(
            index_elements=index_elements
        )
        conn.execute(stmt)
    else:
        try:
            with conn.begin_nested():
                conn.execute(insert(table).values(**values))
        except IntegrityError:
            pass


def ensure_profile(conn: Connection, user_id: int) -> RowMapping:
    insert_ignoring_conflict(conn, profiles, {"id": user_id}, ["id"])
    return conn.execute(select(profiles).where(profiles.c.id == user_id)).mappings().one()


def update_profile(
    conn: Connection,
    user_id: int,
    nickname: Optional[str],
    main_currency: Optional[str],
) -> Optional[RowMapping]:
    ensure_profile(conn, user_id)
    return conn.execute(
        update(profiles)
        .where(profiles.c.id == user_id)
        .values(nickname=nickname, main_currency=main_currency, updated_at=func.now())
        .returning(*profiles.c)
    ).mappings().first()


def ensure_default_categories(conn: Connection, user_id: int) -> None:
    existing = conn.execute(
        select(user_categories.c.id).where(user_categories.c.user_id == user_id).limit(1)
    ).first()
    if existing:
        return
    conn.execute(
        insert(user_categories),
        [
            {"user_id": user_id, "type": txn_type, "name": name}
            for txn_type, names in DEFAULT_CATEGORIES.items()
            for name in names
        ],
    )


def get_account(conn: Connection, user_id: int, account_id: int) -> Optional[RowMapping]:
    return conn.execute(
        select(accounts).where(accounts.c.id == account_id, accounts.c.user_id == user_id)
    ).mappings().first()


def get_balance(conn: Connection, user_id: int, balance_id: int) -> Optional[RowMapping]:
    """Fetch a balance only if its account belongs to ``user_id``."""
    return conn.execute(
        select(account_balances)
        .select_from(
            account_balances.join(accounts, account_balances.c.account_id == accounts.c.id)
        )
        .where(account_balances.c.id == balance_id, accounts.c.user_id == user_id)
    ).mappings().first()


def find_balance(
    conn: Connection, account_id: int, ticker: str, category: Optional[str] = None
) -> Optional[RowMapping]:
    normalized = normalize_ticker(ticker)
    resolved_category = normalize_category(category) if category else category_of(normalized)
    return conn.execute(
        select(account_balances).where(
            account_balances.c.account_id == account_id,
            account_balances.c.category == resolved_category,
            account_balances.c.currency == normalized,
        )
    ).mappings().first()


def ensure_balance(
    conn: Connection, account_id: int, ticker: str, category: Optional[str] = None
) -> RowMapping:
    """Return the balance for (account, category, ticker), creating it if needed.

    Args:
        conn: Database connection
        account_id: Owning account
        ticker: Asset ticker or currency code
        category: Asset category; looked up in the asset registry when omitted

    Returns:
        The single balance row for the asset
    """
    normalized = normalize_ticker(ticker)
    resolved_category = normalize_category(category) if category else category_of(normalized)
    insert_ignoring_conflict(
        conn,
        account_balances,
        {
            "account_id": account_id,
            "category": resolved_category,
            "currency": normalized,
            "current_balance": ZERO,
        },
        ["account_id", "category", "currency"],
    )
    return conn.execute(
        select(account_balances).where(
            account_balances.c.account_id == account_id,
            account_balances.c.category == resolved_category,
            account_balances.c.currency == normalized,
        )
    ).mappings().one()


def balances_for_account(conn: Connection, account_id: int) -> list[RowMapping]:
    return list(
        conn.execute(
            select(account_balances)
            .where(account_balances.c.account_id == account_id)
            .order_by(account_balances.c.id.asc())
        ).mappings().all()
    )


def list_accounts_with_balances(conn: Connection, user_id: int) -> list[tuple[RowMapping, list[RowMapping]]]:
    account_rows = conn.execute(
        select(accounts)
        .where(accounts.c.user_id == user_id)
        .order_by(accounts.c.created_at.desc(), accounts.c.id.desc())
    ).mappings().all()
    if not account_rows:
        return []
    balance_rows = conn.execute(
        select(account_balances)
        .where(account_balances.c.account_id.in_([row["id"] for row in account_rows]))
        .order_by(account_balances.c.id.asc())
    ).mappings().all()
    grouped: dict[int, list[RowMapping]] = {row["id"]: [] for row in account_rows}
    for row in balance_rows:
        grouped[row["account_id"]].append(row)
    return [(row, grouped[row["id"]]) for row in account_rows]


def transactions_for_balance(conn: Connection, balance_id: int) -> list[RowMapping]:
    return list(
        conn.execute(
            select(transactions)
            .where(
                or_(
                    transactions.c.account_balance_id == balance_id,
                    transactions.c.to_account_balance_id == balance_id,
                )
            )
            .order_by(transactions.c.date.asc(), transactions.c.id.asc())
        ).mappings().all()
    )


def transactions_for_user(conn: Connection, user_id: int) -> list[RowMapping]:
    return list(
        conn.execute(
            select(transactions)
            .where(transactions.c.user_id == user_id)
            .order_by(transactions.c.date.asc(), transactions.c.id.asc())
        ).mappings().all()
    )


def load_holdings(conn: Connection, user_id: int) -> list[AccountHoldings]:
    return [
        AccountHoldings(
            id=account["id"],
            name=account["name"],
            balances=tuple(row_to_balance(row) for row in balances),
        )
        for account, balances in list_accounts_with_balances(conn, user_id)
    ]


def load_ledger(conn: Connection, user_id: int) -> list[LedgerTransaction]:
    return [row_to_ledger(row) for row in transactions_for_user(conn, user_id)]


def row_to_balance(row: Mapping[str, Any]) -> Balance:
    return Balance(
        id=row["id"],
        account_id=row["account_id"],
        ticker=row["currency"],
        category=row["category"],
        current_balance=coerce_amount(row["current_balance"]),
    )


def row_to_ledger(row: Mapping[str, Any]) -> LedgerTransaction:
    return LedgerTransaction(
        id=row["id"],
        type=row["type"],
        amount=coerce_amount(row["amount"]),
        date=row["date"],
        account_balance_id=row["account_balance_id"],
        to_account_balance_id=row["to_account_balance_id"],
        to_amount=coerce_amount(row["to_amount"]) if row["to_amount"] is not None else None,
        ticker=row["currency"],
        to_ticker=row["to_currency"],
    )


def merge_deltas(*changes: tuple[Mapping[Any, Decimal], int]) -> dict[Any, Decimal]:
    merged: dict[Any, Decimal] = {}
    for deltas, sign in changes:
        for balance_id, delta in deltas.items():
            merged[balance_id] = merged.get(balance_id, ZERO) + delta * sign
    return merged


def apply_balance_deltas(
    conn: Connection, deltas: Mapping[Any, Decimal], sign: int = 1
) -> None:
    """Add each delta (times ``sign``) to its balance.

    Backends with a native NUMERIC add in place with a single UPDATE. On
    SQLite the balance is text, so it is read and rewritten as a ``Decimal``
    while the caller's transaction holds the write lock.
    """
    in_place = conn.dialect.name != "sqlite"
    for balance_id in sorted(deltas):
        delta = deltas[balance_id] * sign
        if not delta:
            continue
        target = account_balances.c.id == balance_id
        if in_place:
            conn.execute(
                update(account_balances)
                .where(target)
                .values(
                    current_balance=account_balances.c.current_balance + delta,
                    updated_at=func.now(),
                )
            )
            continue
        # The first write takes SQLite's database lock before the read.
        conn.execute(update(account_balances).where(target).values(updated_at=func.now()))
        current = conn.execute(
            select(account_balances.c.current_balance).where(target)
        ).scalar_one_or_none()
        if current is None:
            continue
        conn.execute(
            update(account_balances).where(target).values(current_balance=current + delta)
        )


def insert_transaction(conn: Connection, values: Mapping[str, Any]) -> RowMapping:
    row = conn.execute(
        insert(transactions).values(**values).returning(*transactions.c)
    ).mappings().one()
    apply_balance_deltas(conn, balance_deltas(row_to_ledger(row)))
    return row


def get_transaction(conn: Connection, user_id: int, transaction_id: int) -> Optional[RowMapping]:
    return conn.execute(
        select(transactions)
        .where(transactions.c.id == transaction_id, transactions.c.user_id == user_id)
        .with_for_update()
    ).mappings().first()


def update_transaction(
    conn: Connection, user_id: int, transaction_id: int, values: Mapping[str, Any]
) -> Optional[RowMapping]:
    existing = get_transaction(conn, user_id, transaction_id)
    if not existing:
        return None
    row = conn.execute(
        update(transactions)
        .where(transactions.c.id == transaction_id, transactions.c.user_id == user_id)
        .values(**values, updated_at=func.now())
        .returning(*transactions.c)
    ).mappings().one()
    apply_balance_deltas(
        conn,
        merge_deltas(
            (balance_deltas(row_to_ledger(existing)), -1),
            (balance_deltas(row_to_ledger(row)), 1),
        ),
    )
    return row


def delete_transaction(conn: Connection, user_id: int, transaction_id: int) -> bool:
    existing = get_transaction(conn, user_id, transaction_id)
    if not existing:
        return False
    conn.execute(transactions.delete().where(transactions.c.id == transaction_id))
    apply_balance_deltas(conn, balance_deltas(row_to_ledger(existing)), sign=-1)
    return True


def _reverse_and_delete(conn: Connection, rows: Iterable[Mapping[str, Any]]) -> int:
    rows = list(rows)
    if not rows:
        return 0
    reversal = merge_deltas(*[(balance_deltas(row_to_ledger(row)), -1) for row in rows])
    conn.execute(transactions.delete().where(transactions.c.id.in_([row["id"] for row in rows])))
    apply_balance_deltas(conn, reversal)
    return len(rows)


def delete_balance(conn: Connection, user_id: int, balance_id: int) -> Optional[int]:
    """Delete a balance and every transaction that references it.

    Returns:
        Number of transactions removed, or None when the balance is not found
    """
    if not get_balance(conn, user_id, balance_id):
        return None
    removed = _reverse_and_delete(conn, transactions_for_balance(conn, balance_id))
    conn.execute(account_balances.delete().where(account_balances.c.id == balance_id))
    return removed


def delete_account(conn: Connection, user_id: int, account_id: int) -> bool:
    if not get_account(conn, user_id, account_id):
        return False
    balance_ids = [row["id"] for row in balances_for_account(conn, account_id)]
    conditions = [
        transactions.c.account_id == account_id,
        transactions.c.to_account_id == account_id,
    ]
    if balance_ids:
        conditions.append(transactions.c.account_balance_id.in_(balance_ids))
        conditions.append(transactions.c.to_account_balance_id.in_(balance_ids))
    rows = conn.execute(select(transactions).where(or_(*conditions))).mappings().all()
    _reverse_and_delete(conn, rows)
    conn.execute(account_balances.delete().where(account_balances.c.account_id == account_id))
    conn.execute(accounts.delete().where(accounts.c.id == account_id))
    return True
