from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import json
import logging
from typing import Mapping

from sqlalchemy import Column, DateTime, Integer, MetaData, String, Table, Text, select
from sqlalchemy.engine import Engine

logger = logging.getLogger(__name__)

metadata = MetaData()

stock_cache = Table(
    "stock_cache",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("symbol", String(16), unique=True, nullable=False),
    Column("data", Text, nullable=False),
    Column("fetched_at", DateTime(timezone=True), nullable=False),
)


@dataclass(frozen=True)
class CacheEntry:
    symbol: str
    document: Mapping[str, object]
    fetched_at: datetime

    def age(self, now: datetime) -> timedelta:
        return now - self.fetched_at

    def is_fresh(self, now: datetime, ttl: timedelta) -> bool:
        return self.age(now) < ttl


class QuoteCacheStore:
    """One cached quote document per symbol, backed by a SQLAlchemy engine.

    The store does not create or own global state; callers open it once at
    startup and close it at shutdown.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def open(self) -> None:
        metadata.create_all(self.engine)

    def close(self) -> None:
        self.engine.dispose()

    def get(self, symbol: str) -> CacheEntry | None:
        with self.engine.begin() as conn:
            row = conn.execute(
                select(stock_cache.c.symbol, stock_cache.c.data, stock_cache.c.fetched_at)
                .where(stock_cache.c.symbol == symbol)
                .limit(1)
            ).mappings().first()
        if not row:
            return None
        try:
            document = json.loads(row["data"])
        except json.JSONDecodeError:
            logger.warning("Discarding unreadable cache row for %s", symbol)
            return None
        return CacheEntry(
            symbol=row["symbol"],
            document=document,
            fetched_at=_as_utc(row["fetched_at"]),
        )

    def upsert(self, symbol: str, document: Mapping[str, object], fetched_at: datetime) -> None:
        values = {
            "symbol": symbol,
            "data": json.dumps(document, sort_keys=True),
            "fetched_at": _as_utc(fetched_at),
        }
        stmt = _upsert_statement(self.engine.dialect.name, values)
        with self.engine.begin() as conn:
            conn.execute(stmt)


def _upsert_statement(dialect_name: str, values: dict[str, object]):
    update_values = {"data": values["data"], "fetched_at": values["fetched_at"]}
    if dialect_name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert as pg_insert

        return pg_insert(stock_cache).values(**values).on_conflict_do_update(
            index_elements=["symbol"],
            set_=update_values,
        )
    if dialect_name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert as sqlite_insert

        return sqlite_insert(stock_cache).values(**values).on_conflict_do_update(
            index_elements=["symbol"],
            set_=update_values,
        )
    if dialect_name in {"mysql", "mariadb"}:
        from sqlalchemy.dialects.mysql import insert as mysql_insert

        return mysql_insert(stock_cache).values(**values).on_duplicate_key_update(
            **update_values
        )
    raise ValueError(f"Unsupported cache database dialect: {dialect_name}")


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
