import logging
import os
from datetime import date, datetime
from decimal import Decimal

from fastapi import FastAPI, HTTPException, Header, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from sqlalchemy import create_engine, insert, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from networth import store
from networth.assets import (
    ASSET_CATEGORIES,
    ASSETS,
    category_of,
    display_name,
    list_currencies,
    normalize_category,
    normalize_ticker,
    symbol,
)
from networth.currency_conversion import DEFAULT_REPORTING_CURRENCY, normalize_currency
from networth.dashboard import AllocationSlice, build_dashboard_summary, previous_month_bounds
from networth.holdings_history import HistoryOptions, calculate_historical_holdings
from networth.ledger import TRANSACTION_TYPES, normalize_transaction_type
from networth.rate_gateway import (
    DEFAULT_CACHE_TTL_SECONDS,
    PriceApiClient,
    RateGateway,
    RatesCache,
    StaticPriceProvider,
    validate_interval,
    validate_period,
)

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI()

frontend_origin = os.getenv("FRONTEND_ORIGIN", "http://localhost:3000")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[frontend_origin],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

database_url = os.getenv("DATABASE_URL", "sqlite:///./networth.db")
connect_args = {}
if database_url.startswith("sqlite"):
    connect_args = {"check_same_thread": False}

engine = create_engine(database_url, connect_args=connect_args)


def get_system_default_currency() -> str:
    raw = os.getenv("DEFAULT_CURRENCY", DEFAULT_REPORTING_CURRENCY)
    try:
        return normalize_currency(raw)
    except ValueError:
        return DEFAULT_REPORTING_CURRENCY


def build_rate_gateway() -> RateGateway:
    ttl_seconds = float(os.getenv("RATES_CACHE_TTL_SECONDS", DEFAULT_CACHE_TTL_SECONDS))
    price_api_url = os.getenv("PRICE_API_URL")
    if price_api_url:
        provider = PriceApiClient(
            base_url=price_api_url,
            timeout=float(os.getenv("PRICE_API_TIMEOUT", "8")),
        )
    else:
        logger.info("PRICE_API_URL not set; using static prices")
        provider = StaticPriceProvider()
    return RateGateway(provider=provider, cache=RatesCache(ttl_seconds=ttl_seconds))


SYSTEM_DEFAULT_CURRENCY = get_system_default_currency()
RATE_GATEWAY = build_rate_gateway()
DASHBOARD_RECENT_TRANSACTIONS = 5


@app.on_event("startup")
def init_db() -> None:
    store.metadata.create_all(engine)


class ProfilePayload(BaseModel):
    nickname: str | None = None
    main_currency: str | None = None

    @classmethod
    def validate_payload(cls, payload: "ProfilePayload") -> "ProfilePayload":
        payload.nickname = payload.nickname.strip() if payload.nickname else None
        if payload.main_currency is not None:
            payload.main_currency = normalize_currency(payload.main_currency)
        return payload


class ProfileResponse(BaseModel):
    id: int
    nickname: str | None = None
    main_currency: str
    created_at: datetime | None = None


class AssetResponse(BaseModel):
    ticker: str
    name: str
    category: str
    symbol: str


class BalancePayload(BaseModel):
    ticker: str
    category: str | None = None

    @classmethod
    def validate_payload(cls, payload: "BalancePayload") -> "BalancePayload":
        payload.ticker = normalize_ticker(payload.ticker)
        if payload.category is not None:
            payload.category = normalize_category(payload.category)
        return payload


class BalanceResponse(BaseModel):
    id: int
    account_id: int
    category: str
    currency: str
    current_balance: Decimal
    created_at: datetime | None = None


class AccountPayload(BaseModel):
    name: str
    currencies: list[str] = []

    @classmethod
    def validate_payload(cls, payload: "AccountPayload") -> "AccountPayload":
        payload.name = payload.name.strip()
        if not payload.name:
            raise ValueError("Account name required.")
        currencies = []
        for value in payload.currencies:
            ticker = normalize_ticker(value)
            if ticker not in currencies:
                currencies.append(ticker)
        payload.currencies = currencies
        return payload


class AccountResponse(BaseModel):
    id: int
    user_id: int
    name: str
    created_at: datetime | None = None
    balances: list[BalanceResponse] = []


class CategoryType:
    values = {"income", "expense", "taxation"}

    @classmethod
    def validate(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in cls.values:
            raise ValueError("Invalid category type.")
        return normalized


class CategoryPayload(BaseModel):
    type: str
    name: str

    @classmethod
    def validate_payload(cls, payload: "CategoryPayload") -> "CategoryPayload":
        payload.type = CategoryType.validate(payload.type)
        payload.name = payload.name.strip()
        if not payload.name:
            raise ValueError("Category name required.")
        return payload


class CategoryResponse(BaseModel):
    id: int
    user_id: int
    type: str
    name: str
    created_at: datetime | None = None


class TransactionPayload(BaseModel):
    account_id: int
    account_balance_id: int | None = None
    type: str
    amount: Decimal
    currency: str | None = None
    description: str | None = None
    category: str | None = None
    date: date
    to_account_id: int | None = None
    to_account_balance_id: int | None = None
    to_amount: Decimal | None = None
    to_currency: str | None = None

    @classmethod
    def validate_payload(cls, payload: "TransactionPayload") -> "TransactionPayload":
        payload.type = normalize_transaction_type(payload.type)
        if payload.amount <= 0:
            raise ValueError("Amount must be greater than zero.")
        payload.currency = normalize_ticker(payload.currency) if payload.currency else None
        payload.description = payload.description.strip() if payload.description else None
        payload.category = payload.category.strip() if payload.category else None
        if payload.account_balance_id is None and payload.currency is None:
            raise ValueError("Balance or currency required.")

        if payload.type != "transfer":
            payload.to_account_id = None
            payload.to_account_balance_id = None
            payload.to_amount = None
            payload.to_currency = None
            return payload

        if payload.to_account_id is None:
            raise ValueError("Destination account required for transfers.")
        payload.to_currency = normalize_ticker(payload.to_currency) if payload.to_currency else None
        if payload.to_account_balance_id is None and payload.to_currency is None:
            raise ValueError("Destination balance or currency required for transfers.")
        if payload.to_amount is None:
            payload.to_amount = payload.amount
        if payload.to_amount <= 0:
            raise ValueError("Destination amount must be greater than zero.")
        return payload


class TransactionResponse(BaseModel):
    id: int
    user_id: int
    account_id: int
    account_balance_id: int
    type: str
    amount: Decimal
    currency: str
    description: str | None = None
    category: str | None = None
    date: date
    to_account_id: int | None = None
    to_account_balance_id: int | None = None
    to_amount: Decimal | None = None
    to_currency: str | None = None
    created_at: datetime | None = None


class RatesResponse(BaseModel):
    reporting_currency: str
    source: str
    rates: dict[str, Decimal]


class HistoryPointResponse(BaseModel):
    date: date
    total_value: Decimal
    breakdown: dict[str, Decimal]
    pricing: str


class HistoryResponse(BaseModel):
    reporting_currency: str
    period: str
    interval: str
    points: list[HistoryPointResponse]


class AccountTotalResponse(BaseModel):
    account_id: int
    name: str
    total: Decimal


class AllocationSliceResponse(BaseModel):
    name: str
    value: Decimal
    percentage: Decimal
    held: Decimal | None = None


class DashboardSummaryResponse(BaseModel):
    reporting_currency: str
    total_balance: Decimal
    total_income: Decimal
    total_expenses: Decimal
    previous_income: Decimal
    previous_expenses: Decimal
    previous_balance: Decimal | None = None
    income_change_pct: Decimal | None = None
    expenses_change_pct: Decimal | None = None
    balance_change_pct: Decimal | None = None
    accounts: list[AccountTotalResponse] = []
    asset_allocation: list[AllocationSliceResponse] = []
    category_allocation: list[AllocationSliceResponse] = []
    recent_transactions: list[TransactionResponse] = []


def get_user_id(x_user_id: str | None = Header(None)) -> int:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing user identity.")
    try:
        user_id = int(x_user_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid user identity.") from exc
    with engine.begin() as conn:
        store.ensure_profile(conn, user_id)
    return user_id


def resolve_reporting_currency(conn, user_id: int) -> str:
    main_currency = conn.execute(
        select(store.profiles.c.main_currency).where(store.profiles.c.id == user_id)
    ).scalar_one_or_none()
    if main_currency:
        try:
            return normalize_currency(main_currency)
        except ValueError:
            pass
    return SYSTEM_DEFAULT_CURRENCY


def to_profile_response(row) -> ProfileResponse:
    return ProfileResponse(
        id=row["id"],
        nickname=row["nickname"],
        main_currency=row["main_currency"] or SYSTEM_DEFAULT_CURRENCY,
        created_at=row["created_at"],
    )


def to_asset_response(ticker: str, category: str) -> AssetResponse:
    return AssetResponse(
        ticker=ticker,
        name=display_name(ticker),
        category=category,
        symbol=symbol(ticker),
    )


def to_balance_response(row) -> BalanceResponse:
    return BalanceResponse(
        id=row["id"],
        account_id=row["account_id"],
        category=row["category"],
        currency=row["currency"],
        current_balance=row["current_balance"],
        created_at=row["created_at"],
    )


def to_account_response(row, balances) -> AccountResponse:
    return AccountResponse(
        id=row["id"],
        user_id=row["user_id"],
        name=row["name"],
        created_at=row["created_at"],
        balances=[to_balance_response(balance) for balance in balances],
    )


def to_category_response(row) -> CategoryResponse:
    return CategoryResponse(
        id=row["id"],
        user_id=row["user_id"],
        type=row["type"],
        name=row["name"],
        created_at=row["created_at"],
    )


def to_allocation_response(item: AllocationSlice) -> AllocationSliceResponse:
    return AllocationSliceResponse(
        name=item.name, value=item.value, percentage=item.percentage, held=item.held
    )


def to_transaction_response(row) -> TransactionResponse:
    return TransactionResponse(
        id=row["id"],
        user_id=row["user_id"],
        account_id=row["account_id"],
        account_balance_id=row["account_balance_id"],
        type=row["type"],
        amount=row["amount"],
        currency=row["currency"],
        description=row["description"],
        category=row["category"],
        date=row["date"],
        to_account_id=row["to_account_id"],
        to_account_balance_id=row["to_account_balance_id"],
        to_amount=row["to_amount"],
        to_currency=row["to_currency"],
        created_at=row["created_at"],
    )


def resolve_transaction_values(conn, user_id: int, payload: TransactionPayload) -> dict:
    """Map a validated payload onto transaction columns.

    Income provisions its source balance from ``currency`` and transfers
    provision their destination balance from ``to_currency``; other types must
    reference an existing balance.
    """
    if not store.get_account(conn, user_id, payload.account_id):
        raise HTTPException(status_code=404, detail="Account not found.")

    if payload.account_balance_id is not None:
        balance = store.get_balance(conn, user_id, payload.account_balance_id)
        if not balance or balance["account_id"] != payload.account_id:
            raise HTTPException(status_code=404, detail="Balance not found.")
    elif payload.type == "income":
        balance = store.ensure_balance(conn, payload.account_id, payload.currency)
    else:
        balance = store.find_balance(conn, payload.account_id, payload.currency)
        if not balance:
            raise HTTPException(status_code=404, detail="Balance not found.")

    values = {
        "user_id": user_id,
        "account_id": payload.account_id,
        "account_balance_id": balance["id"],
        "type": payload.type,
        "amount": payload.amount,
        "currency": balance["currency"],
        "description": payload.description,
        "category": payload.category,
        "date": payload.date,
        "to_account_id": None,
        "to_account_balance_id": None,
        "to_amount": None,
        "to_currency": None,
    }
    if payload.type != "transfer":
        return values

    if not store.get_account(conn, user_id, payload.to_account_id):
        raise HTTPException(status_code=404, detail="Destination account not found.")
    if payload.to_account_balance_id is not None:
        to_balance = store.get_balance(conn, user_id, payload.to_account_balance_id)
        if not to_balance or to_balance["account_id"] != payload.to_account_id:
            raise HTTPException(status_code=404, detail="Destination balance not found.")
    else:
        to_balance = store.ensure_balance(conn, payload.to_account_id, payload.to_currency)

    values.update(
        to_account_id=payload.to_account_id,
        to_account_balance_id=to_balance["id"],
        to_amount=payload.to_amount,
        to_currency=to_balance["currency"],
    )
    return values


def category_in_use(conn, user_id: int, category_type: str, name: str) -> bool:
    match = conn.execute(
        select(store.transactions.c.id)
        .where(
            store.transactions.c.user_id == user_id,
            store.transactions.c.type == category_type,
            store.transactions.c.category == name,
        )
        .limit(1)
    ).first()
    return bool(match)


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.get("/profile", response_model=ProfileResponse)
def get_profile(x_user_id: str | None = Header(None, alias="x-user-id")) -> ProfileResponse:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        row = store.ensure_profile(conn, user_id)
    return to_profile_response(row)


@app.put("/profile", response_model=ProfileResponse)
def update_profile(
    payload: ProfilePayload, x_user_id: str | None = Header(None, alias="x-user-id")
) -> ProfileResponse:
    user_id = get_user_id(x_user_id)
    try:
        payload = ProfilePayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    with engine.begin() as conn:
        existing = store.ensure_profile(conn, user_id)
        row = store.update_profile(
            conn,
            user_id,
            nickname=payload.nickname if payload.nickname is not None else existing["nickname"],
            main_currency=payload.main_currency or existing["main_currency"],
        )
    if not row:
        raise HTTPException(status_code=404, detail="Profile not found.")
    return to_profile_response(row)


@app.get("/assets", response_model=dict[str, list[AssetResponse]])
def list_assets(category: str | None = Query(None)) -> dict[str, list[AssetResponse]]:
    if category is not None:
        try:
            categories = [normalize_category(category)]
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
    else:
        categories = list(ASSET_CATEGORIES)
    return {
        name: [to_asset_response(item.ticker, name) for item in ASSETS[name]]
        for name in categories
    }


@app.get("/currencies")
def get_currencies() -> list[dict]:
    return list_currencies()


@app.get("/assets/{ticker}", response_model=AssetResponse)
def get_asset(ticker: str) -> AssetResponse:
    try:
        normalized = normalize_ticker(ticker)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return to_asset_response(normalized, category_of(normalized))


@app.get("/accounts", response_model=list[AccountResponse])
def list_accounts(x_user_id: str | None = Header(None, alias="x-user-id")) -> list[AccountResponse]:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        grouped = store.list_accounts_with_balances(conn, user_id)
    return [to_account_response(row, balances) for row, balances in grouped]


@app.post("/accounts", response_model=AccountResponse)
def create_account(
    payload: AccountPayload, x_user_id: str | None = Header(None, alias="x-user-id")
) -> AccountResponse:
    user_id = get_user_id(x_user_id)
    try:
        payload = AccountPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    stmt = (
        insert(store.accounts)
        .values(user_id=user_id, name=payload.name)
        .returning(*store.accounts.c)
    )
    with engine.begin() as conn:
        row = conn.execute(stmt).mappings().first()
        if not row:
            raise HTTPException(status_code=500, detail="Failed to create account.")
        balances = [
            store.ensure_balance(conn, row["id"], ticker) for ticker in payload.currencies
        ]
    return to_account_response(row, balances)


@app.put("/accounts/{account_id}", response_model=AccountResponse)
def update_account(
    account_id: int, payload: AccountPayload, x_user_id: str | None = Header(None, alias="x-user-id")
) -> AccountResponse:
    user_id = get_user_id(x_user_id)
    try:
        payload = AccountPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    stmt = (
        update(store.accounts)
        .where(store.accounts.c.id == account_id, store.accounts.c.user_id == user_id)
        .values(name=payload.name)
        .returning(*store.accounts.c)
    )
    with engine.begin() as conn:
        row = conn.execute(stmt).mappings().first()
        if not row:
            raise HTTPException(status_code=404, detail="Account not found.")
        for ticker in payload.currencies:
            store.ensure_balance(conn, account_id, ticker)
        balances = store.balances_for_account(conn, account_id)
    return to_account_response(row, balances)


@app.delete("/accounts/{account_id}")
def delete_account(account_id: int, x_user_id: str | None = Header(None, alias="x-user-id")) -> dict:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        if not store.delete_account(conn, user_id, account_id):
            raise HTTPException(status_code=404, detail="Account not found.")
    return {"status": "deleted"}


@app.post("/accounts/{account_id}/balances", response_model=BalanceResponse)
def create_balance(
    account_id: int, payload: BalancePayload, x_user_id: str | None = Header(None, alias="x-user-id")
) -> BalanceResponse:
    user_id = get_user_id(x_user_id)
    try:
        payload = BalancePayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    with engine.begin() as conn:
        if not store.get_account(conn, user_id, account_id):
            raise HTTPException(status_code=404, detail="Account not found.")
        row = store.ensure_balance(conn, account_id, payload.ticker, payload.category)
    return to_balance_response(row)


@app.delete("/balances/{balance_id}")
def delete_balance(
    balance_id: int,
    confirm: bool = Query(False),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> dict:
    user_id = get_user_id(x_user_id)
    if not confirm:
        raise HTTPException(
            status_code=400,
            detail="Deleting a balance also deletes its transactions; pass confirm=true.",
        )
    with engine.begin() as conn:
        removed = store.delete_balance(conn, user_id, balance_id)
        if removed is None:
            raise HTTPException(status_code=404, detail="Balance not found.")
    return {"status": "deleted", "transactions_deleted": removed}


@app.get("/categories", response_model=list[CategoryResponse])
def list_categories(
    txn_type: str | None = Query(None, alias="type"),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[CategoryResponse]:
    user_id = get_user_id(x_user_id)
    filters = [store.user_categories.c.user_id == user_id]
    if txn_type is not None:
        try:
            filters.append(store.user_categories.c.type == CategoryType.validate(txn_type))
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

    with engine.begin() as conn:
        store.ensure_default_categories(conn, user_id)
        rows = conn.execute(
            select(store.user_categories)
            .where(*filters)
            .order_by(
                store.user_categories.c.type.asc(),
                store.user_categories.c.name.asc(),
                store.user_categories.c.id.asc(),
            )
        ).mappings().all()
    return [to_category_response(row) for row in rows]


@app.post("/categories", response_model=CategoryResponse)
def create_category(
    payload: CategoryPayload, x_user_id: str | None = Header(None, alias="x-user-id")
) -> CategoryResponse:
    user_id = get_user_id(x_user_id)
    try:
        payload = CategoryPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    stmt = (
        insert(store.user_categories)
        .values(user_id=user_id, type=payload.type, name=payload.name)
        .returning(*store.user_categories.c)
    )
    try:
        with engine.begin() as conn:
            row = conn.execute(stmt).mappings().first()
    except IntegrityError as exc:
        raise HTTPException(status_code=409, detail="Category already exists.") from exc

    if not row:
        raise HTTPException(status_code=500, detail="Failed to create category.")
    return to_category_response(row)


@app.put("/categories/{category_id}", response_model=CategoryResponse)
def update_category(
    category_id: int,
    payload: CategoryPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> CategoryResponse:
    user_id = get_user_id(x_user_id)
    try:
        payload = CategoryPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    stmt = (
        update(store.user_categories)
        .where(
            store.user_categories.c.id == category_id,
            store.user_categories.c.user_id == user_id,
        )
        .values(type=payload.type, name=payload.name)
        .returning(*store.user_categories.c)
    )
    try:
        with engine.begin() as conn:
            row = conn.execute(stmt).mappings().first()
    except IntegrityError as exc:
        raise HTTPException(status_code=409, detail="Category already exists.") from exc

    if not row:
        raise HTTPException(status_code=404, detail="Category not found.")
    return to_category_response(row)


@app.delete("/categories/{category_id}")
def delete_category(
    category_id: int, x_user_id: str | None = Header(None, alias="x-user-id")
) -> dict:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        row = conn.execute(
            select(store.user_categories).where(
                store.user_categories.c.id == category_id,
                store.user_categories.c.user_id == user_id,
            )
        ).mappings().first()
        if not row:
            raise HTTPException(status_code=404, detail="Category not found.")
        if category_in_use(conn, user_id, row["type"], row["name"]):
            raise HTTPException(status_code=409, detail="Category is in use.")
        conn.execute(
            store.user_categories.delete().where(store.user_categories.c.id == category_id)
        )
    return {"status": "deleted"}


@app.get("/transactions", response_model=list[TransactionResponse])
def list_transactions(
    account_id: int | None = Query(None),
    txn_type: str | None = Query(None, alias="type"),
    limit: int = Query(100, ge=1, le=500),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[TransactionResponse]:
    user_id = get_user_id(x_user_id)
    filters = [store.transactions.c.user_id == user_id]
    if account_id is not None:
        filters.append(
            (store.transactions.c.account_id == account_id)
            | (store.transactions.c.to_account_id == account_id)
        )
    if txn_type is not None:
        if txn_type.strip().lower() not in TRANSACTION_TYPES:
            raise HTTPException(status_code=400, detail="Invalid transaction type.")
        filters.append(store.transactions.c.type == txn_type.strip().lower())

    with engine.begin() as conn:
        rows = conn.execute(
            select(store.transactions)
            .where(*filters)
            .order_by(store.transactions.c.date.desc(), store.transactions.c.id.desc())
            .limit(limit)
        ).mappings().all()
    return [to_transaction_response(row) for row in rows]


@app.post("/transactions", response_model=TransactionResponse)
def create_transaction(
    payload: TransactionPayload, x_user_id: str | None = Header(None, alias="x-user-id")
) -> TransactionResponse:
    user_id = get_user_id(x_user_id)
    try:
        payload = TransactionPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    with engine.begin() as conn:
        values = resolve_transaction_values(conn, user_id, payload)
        row = store.insert_transaction(conn, values)
    return to_transaction_response(row)


@app.put("/transactions/{transaction_id}", response_model=TransactionResponse)
def update_transaction(
    transaction_id: int,
    payload: TransactionPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> TransactionResponse:
    user_id = get_user_id(x_user_id)
    try:
        payload = TransactionPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    with engine.begin() as conn:
        if not store.get_transaction(conn, user_id, transaction_id):
            raise HTTPException(status_code=404, detail="Transaction not found.")
        values = resolve_transaction_values(conn, user_id, payload)
        row = store.update_transaction(conn, user_id, transaction_id, values)
    if not row:
        raise HTTPException(status_code=404, detail="Transaction not found.")
    return to_transaction_response(row)


@app.delete("/transactions/{transaction_id}")
def delete_transaction(
    transaction_id: int, x_user_id: str | None = Header(None, alias="x-user-id")
) -> dict:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        if not store.delete_transaction(conn, user_id, transaction_id):
            raise HTTPException(status_code=404, detail="Transaction not found.")
    return {"status": "deleted"}


@app.get("/rates/current", response_model=RatesResponse)
def get_current_rates(
    tickers: list[str] = Query([]),
    currency: str | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> RatesResponse:
    user_id = get_user_id(x_user_id)
    try:
        requested = {normalize_ticker(ticker) for ticker in tickers}
        reporting = normalize_currency(currency) if currency else None
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    with engine.begin() as conn:
        if reporting is None:
            reporting = resolve_reporting_currency(conn, user_id)
        if not requested:
            requested = {
                balance.ticker
                for account in store.load_holdings(conn, user_id)
                for balance in account.balances
            }
    table = RATE_GATEWAY.get_current_rates(requested, reporting)
    return RatesResponse(
        reporting_currency=table.reporting_currency,
        source=table.source.value,
        rates=dict(table.rates),
    )


@app.get("/portfolio/history", response_model=HistoryResponse)
def get_portfolio_history(
    period: str = Query("30d"),
    interval: str = Query("1d"),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> HistoryResponse:
    user_id = get_user_id(x_user_id)
    try:
        period = validate_period(period)
        interval = validate_interval(interval)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    try:
        with engine.begin() as conn:
            reporting = resolve_reporting_currency(conn, user_id)
            holdings = store.load_holdings(conn, user_id)
            ledger = store.load_ledger(conn, user_id)
    except SQLAlchemyError as exc:
        logger.exception("Failed to load portfolio data for user %s", user_id)
        raise HTTPException(status_code=503, detail="Failed to load data.") from exc

    points = calculate_historical_holdings(
        holdings,
        ledger,
        HistoryOptions(period=period, interval=interval, reporting_currency=reporting),
        RATE_GATEWAY,
    )
    return HistoryResponse(
        reporting_currency=reporting,
        period=period,
        interval=interval,
        points=[
            HistoryPointResponse(
                date=point.date,
                total_value=point.total_value,
                breakdown=point.breakdown,
                pricing=point.pricing.value,
            )
            for point in points
        ],
    )


@app.get("/dashboard/summary", response_model=DashboardSummaryResponse)
def get_dashboard_summary(
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> DashboardSummaryResponse:
    user_id = get_user_id(x_user_id)
    try:
        with engine.begin() as conn:
            reporting = resolve_reporting_currency(conn, user_id)
            holdings = store.load_holdings(conn, user_id)
            ledger = store.load_ledger(conn, user_id)
            recent_rows = conn.execute(
                select(store.transactions)
                .where(store.transactions.c.user_id == user_id)
                .order_by(store.transactions.c.date.desc(), store.transactions.c.id.desc())
                .limit(DASHBOARD_RECENT_TRANSACTIONS)
            ).mappings().all()
    except SQLAlchemyError as exc:
        logger.exception("Failed to load dashboard data for user %s", user_id)
        raise HTTPException(status_code=503, detail="Failed to load data.") from exc

    today = date.today()
    tickers = {balance.ticker for account in holdings for balance in account.balances}
    tickers.update(txn.ticker for txn in ledger if txn.ticker)
    current_rates = RATE_GATEWAY.get_current_rates(tickers, reporting)

    samples = []
    if ledger and tickers:
        previous_start, _ = previous_month_bounds(today)
        period = "30d" if (today - previous_start).days < 30 else "180d"
        samples = RATE_GATEWAY.get_historical_rates(tickers, reporting, period, "1d")

    summary = build_dashboard_summary(holdings, ledger, current_rates, samples, today)
    return DashboardSummaryResponse(
        reporting_currency=summary.reporting_currency,
        total_balance=summary.total_balance,
        total_income=summary.total_income,
        total_expenses=summary.total_expenses,
        previous_income=summary.previous_income,
        previous_expenses=summary.previous_expenses,
        previous_balance=summary.previous_balance,
        income_change_pct=summary.income_change_pct,
        expenses_change_pct=summary.expenses_change_pct,
        balance_change_pct=summary.balance_change_pct,
        accounts=[
            AccountTotalResponse(account_id=entry.account_id, name=entry.name, total=entry.total)
            for entry in summary.account_totals
        ],
        asset_allocation=[to_allocation_response(item) for item in summary.asset_allocation],
        category_allocation=[
            to_allocation_response(item) for item in summary.category_allocation
        ],
        recent_transactions=[to_transaction_response(row) for row in recent_rows],
    )
