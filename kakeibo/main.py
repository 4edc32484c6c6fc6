import logging
import os
from dataclasses import asdict
from datetime import date, datetime, timedelta

from fastapi import FastAPI, HTTPException, Header, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from sqlalchemy import (
    Column,
    Date,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    create_engine,
    func,
    insert,
    select,
)

from kakeibo.monthly_investments import (
    INVESTMENT_CATEGORY,
    ExpenseRecord,
    group_investments_by_month,
    investments_by_month,
    summarize_by_category,
)
from kakeibo.price_series import summarize_series
from kakeibo.quote_cache import QuoteCacheStore
from kakeibo.quote_gateway import QuoteGateway, QuoteLookup
from kakeibo.quote_provider import AlphaVantageQuoteProvider
from kakeibo.simulation_engine import (
    SimulationResult,
    simulate_ledger,
    simulate_lump_sum,
    simulate_periodic,
)

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI()

frontend_origin = os.getenv("FRONTEND_ORIGIN", "http://localhost:3001")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[frontend_origin],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

database_url = os.getenv("DATABASE_URL", "sqlite:///./kakeibo.db")
connect_args = {}
if database_url.startswith("sqlite"):
    connect_args = {"check_same_thread": False}

engine = create_engine(database_url, connect_args=connect_args)
metadata = MetaData()

DEFAULT_CACHE_TTL_HOURS = 24.0
DEFAULT_SYMBOL = os.getenv("DEFAULT_SYMBOL", "SPY").strip().upper() or "SPY"
DEFAULT_INVESTMENT_AMOUNT = 1_000_000
DEFAULT_YEARS_AGO = 5


def get_cache_ttl_hours() -> float:
    raw = os.getenv("QUOTE_CACHE_TTL_HOURS", str(DEFAULT_CACHE_TTL_HOURS))
    try:
        hours = float(raw)
    except ValueError:
        return DEFAULT_CACHE_TTL_HOURS
    return hours if hours > 0 else DEFAULT_CACHE_TTL_HOURS


quote_store = QuoteCacheStore(engine)
quote_gateway = QuoteGateway(
    store=quote_store,
    provider=AlphaVantageQuoteProvider(
        api_key=os.getenv("ALPHA_VANTAGE_API_KEY") or None,
        base_url=os.getenv("ALPHA_VANTAGE_BASE_URL", "https://www.alphavantage.co"),
    ),
    ttl=timedelta(hours=get_cache_ttl_hours()),
)

kakeibo_data = Table(
    "kakeibo_data",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("title", String(255), nullable=False),
    Column("category", String(100), nullable=False),
    Column("amount", Integer, nullable=False),
    Column("date", Date, nullable=False),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)


@app.on_event("startup")
def init_db() -> None:
    metadata.create_all(engine)
    quote_store.open()


@app.on_event("shutdown")
def close_db() -> None:
    quote_store.close()


class ExpensePayload(BaseModel):
    title: str
    category: str
    amount: int
    date: date

    @classmethod
    def validate_payload(cls, payload: "ExpensePayload") -> "ExpensePayload":
        payload.title = payload.title.strip()
        payload.category = payload.category.strip()
        if not payload.title or not payload.category:
            raise ValueError("Title and category are required.")
        if payload.amount <= 0:
            raise ValueError("Amount must be greater than zero.")
        return payload


class ExpenseResponse(ExpensePayload):
    id: int
    user_id: int


class MonthlyInvestmentResponse(BaseModel):
    month: str
    total_amount: int
    transactions: list[ExpenseResponse]


class MonthlyInvestmentSummaryResponse(BaseModel):
    total_investments: int
    total_amount: int
    monthly_data: list[MonthlyInvestmentResponse]


class CategoryTotalResponse(BaseModel):
    category: str
    total_amount: int
    count: int
    share_percent: float


class ExpenseSummaryResponse(BaseModel):
    total_amount: int
    total_records: int
    categories: list[CategoryTotalResponse]


class StockCachedResponse(BaseModel):
    symbol: str
    status: str
    cached: bool
    fetched_at: datetime
    age_hours: float
    data: dict


class StockSummaryResponse(BaseModel):
    symbol: str
    status: str
    latest_date: date
    latest_close: float
    previous_close: float | None = None
    change: float | None = None
    change_percent: float | None = None
    last_refreshed: str | None = None


class ChartSeriesResponse(BaseModel):
    labels: list[str]
    principal: list[float]
    valuation: list[float]


class SimulationSnapshotResponse(BaseModel):
    date: date
    amount_invested: float
    total_invested: float
    total_shares: float
    price: float
    valuation: float
    profit: float


class SimulationResponse(BaseModel):
    symbol: str
    data_status: str
    strategy: str
    start_date: date | None = None
    start_price: float
    current_price: float
    shares_held: float
    amount_invested: float
    current_value: float
    profit: float
    profit_percent: float
    annualized_return_percent: float
    monthly_amount: float
    periods: int
    chart: ChartSeriesResponse
    history: list[SimulationSnapshotResponse]
    unmatched_months: list[str]


def get_user_id(x_user_id: str | None) -> int:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing user identity.")
    try:
        user_id = int(x_user_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid user identity.") from exc
    if user_id <= 0:
        raise HTTPException(status_code=400, detail="Invalid user identity.")
    return user_id


def lookup_quotes(symbol: str) -> QuoteLookup:
    try:
        return quote_gateway.get_series(symbol)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def fetch_expense_records(user_id: int, investment_only: bool = False) -> list[ExpenseRecord]:
    conditions = [kakeibo_data.c.user_id == user_id]
    if investment_only:
        conditions.append(func.lower(func.trim(kakeibo_data.c.category)) == INVESTMENT_CATEGORY)
    with engine.begin() as conn:
        rows = conn.execute(
            select(kakeibo_data)
            .where(*conditions)
            .order_by(kakeibo_data.c.date.desc(), kakeibo_data.c.id.desc())
        ).mappings().all()
    return [
        ExpenseRecord(
            id=row["id"],
            owner_id=row["user_id"],
            title=row["title"],
            category=row["category"],
            amount=row["amount"],
            date=row["date"],
        )
        for row in rows
    ]


def to_expense_response(record: ExpenseRecord) -> ExpenseResponse:
    return ExpenseResponse(
        id=record.id,
        user_id=record.owner_id,
        title=record.title,
        category=record.category,
        amount=record.amount,
        date=record.date,
    )


def to_simulation_response(lookup: QuoteLookup, result: SimulationResult) -> SimulationResponse:
    return SimulationResponse(symbol=lookup.symbol, data_status=lookup.status, **asdict(result))


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.get("/api/kakeibo", response_model=list[ExpenseResponse])
def list_kakeibo(x_user_id: str | None = Header(None, alias="x-user-id")) -> list[ExpenseResponse]:
    user_id = get_user_id(x_user_id)
    return [to_expense_response(record) for record in fetch_expense_records(user_id)]


@app.post("/api/kakeibo", response_model=ExpenseResponse)
def create_kakeibo(
    payload: ExpensePayload, x_user_id: str | None = Header(None, alias="x-user-id")
) -> ExpenseResponse:
    user_id = get_user_id(x_user_id)
    try:
        payload = ExpensePayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    stmt = (
        insert(kakeibo_data)
        .values(
            user_id=user_id,
            title=payload.title,
            category=payload.category,
            amount=payload.amount,
            date=payload.date,
        )
        .returning(kakeibo_data.c.id)
    )
    with engine.begin() as conn:
        record_id = conn.execute(stmt).scalar_one_or_none()

    if record_id is None:
        raise HTTPException(status_code=500, detail="Failed to create record.")
    return ExpenseResponse(id=record_id, user_id=user_id, **payload.model_dump())


@app.delete("/api/kakeibo/{record_id}")
def delete_kakeibo(record_id: int, x_user_id: str | None = Header(None, alias="x-user-id")) -> dict:
    user_id = get_user_id(x_user_id)
    stmt = kakeibo_data.delete().where(kakeibo_data.c.id == record_id, kakeibo_data.c.user_id == user_id)
    with engine.begin() as conn:
        result = conn.execute(stmt)
        if result.rowcount == 0:
            raise HTTPException(status_code=404, detail="Record not found.")
    return {"status": "deleted"}


@app.get("/expenses", response_model=list[ExpenseResponse])
def list_expenses(x_user_id: str | None = Header(None, alias="x-user-id")) -> list[ExpenseResponse]:
    user_id = get_user_id(x_user_id)
    records = fetch_expense_records(user_id)
    logger.info("Fetched %d expense records for user %d", len(records), user_id)
    return [to_expense_response(record) for record in records]


@app.get("/expenses/summary", response_model=ExpenseSummaryResponse)
def expense_summary(x_user_id: str | None = Header(None, alias="x-user-id")) -> ExpenseSummaryResponse:
    user_id = get_user_id(x_user_id)
    records = fetch_expense_records(user_id)
    totals = summarize_by_category(records)
    return ExpenseSummaryResponse(
        total_amount=sum(total.total_amount for total in totals),
        total_records=len(records),
        categories=[CategoryTotalResponse(**asdict(total)) for total in totals],
    )


@app.get("/expenses/investment", response_model=list[ExpenseResponse])
def list_investment_expenses(
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[ExpenseResponse]:
    user_id = get_user_id(x_user_id)
    return [
        to_expense_response(record)
        for record in fetch_expense_records(user_id, investment_only=True)
    ]


@app.get("/expenses/investment/monthly", response_model=MonthlyInvestmentSummaryResponse)
def monthly_investment_expenses(
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> MonthlyInvestmentSummaryResponse:
    user_id = get_user_id(x_user_id)
    records = fetch_expense_records(user_id, investment_only=True)
    groups = group_investments_by_month(records)
    return MonthlyInvestmentSummaryResponse(
        total_investments=len(records),
        total_amount=sum(group.total_amount for group in groups),
        monthly_data=[
            MonthlyInvestmentResponse(
                month=group.month,
                total_amount=group.total_amount,
                transactions=[to_expense_response(record) for record in group.records],
            )
            for group in groups
        ],
    )


@app.get("/api/stock-cached/{symbol}", response_model=StockCachedResponse)
def stock_cached(symbol: str) -> StockCachedResponse:
    lookup = lookup_quotes(symbol)
    return StockCachedResponse(
        symbol=lookup.symbol,
        status=lookup.status,
        cached=lookup.cached,
        fetched_at=lookup.fetched_at,
        age_hours=round(lookup.age.total_seconds() / 3600, 2),
        data=lookup.bundle.to_document(),
    )


@app.get("/api/stock/{symbol}/summary", response_model=StockSummaryResponse)
def stock_summary(symbol: str) -> StockSummaryResponse:
    lookup = lookup_quotes(symbol)
    summary = summarize_series(lookup.series)
    if summary is None:
        raise HTTPException(status_code=404, detail="No price data available.")
    return StockSummaryResponse(
        symbol=lookup.symbol,
        status=lookup.status,
        latest_date=summary.latest_date,
        latest_close=summary.latest_close,
        previous_close=summary.previous_close,
        change=summary.change,
        change_percent=summary.change_percent,
        last_refreshed=lookup.bundle.last_refreshed,
    )


@app.get("/simulations/lump-sum", response_model=SimulationResponse)
def lump_sum_simulation(
    symbol: str = Query(DEFAULT_SYMBOL),
    amount: float = Query(DEFAULT_INVESTMENT_AMOUNT),
    years: int = Query(DEFAULT_YEARS_AGO),
) -> SimulationResponse:
    lookup = lookup_quotes(symbol)
    result = simulate_lump_sum(lookup.series, amount, years)
    return to_simulation_response(lookup, result)


@app.get("/simulations/periodic", response_model=SimulationResponse)
def periodic_simulation(
    symbol: str = Query(DEFAULT_SYMBOL),
    amount: float = Query(DEFAULT_INVESTMENT_AMOUNT),
    years: int = Query(DEFAULT_YEARS_AGO),
) -> SimulationResponse:
    lookup = lookup_quotes(symbol)
    result = simulate_periodic(lookup.series, amount, years)
    return to_simulation_response(lookup, result)


@app.get("/simulations/ledger", response_model=SimulationResponse)
def ledger_simulation(
    symbol: str = Query(DEFAULT_SYMBOL),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> SimulationResponse:
    user_id = get_user_id(x_user_id)
    records = fetch_expense_records(user_id, investment_only=True)
    monthly_amounts = investments_by_month(group_investments_by_month(records))
    lookup = lookup_quotes(symbol)
    result = simulate_ledger(lookup.series, monthly_amounts)
    if result.unmatched_months:
        logger.info(
            "Ledger months without price data for %s: %s",
            lookup.symbol,
            ", ".join(result.unmatched_months),
        )
    return to_simulation_response(lookup, result)
