"""
Quote cache gateway.

Resolves a symbol to a price series in this order:
1. a cache row younger than the TTL
2. a live upstream fetch, written back to the cache
3. a stale cache row holding real data, whatever its age
4. a synthetic series, written back to the cache

Every lookup is tagged with a status so callers can tell cached, live, stale
and synthetic data apart.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
import logging
import random
from typing import Callable, Protocol

from sqlalchemy.exc import SQLAlchemyError

from kakeibo.price_series import PriceSeries, QuoteBundle
from kakeibo.quote_cache import CacheEntry, QuoteCacheStore
from kakeibo.quote_provider import (
    QuoteProviderUnavailable,
    QuoteRateLimited,
    normalize_symbol,
)
from kakeibo.synthetic_series import generate_synthetic_quotes

logger = logging.getLogger(__name__)

DEFAULT_TTL = timedelta(hours=24)

STATUS_FRESH_CACHED = "fresh_cached"
STATUS_FRESH_LIVE = "fresh_live"
STATUS_STALE = "stale"
STATUS_SYNTHETIC = "synthetic"


class QuoteProvider(Protocol):
    def fetch_monthly(self, symbol: str) -> QuoteBundle:
        ...


@dataclass(frozen=True)
class QuoteLookup:
    symbol: str
    bundle: QuoteBundle
    status: str
    fetched_at: datetime
    age: timedelta
    cached: bool = False

    @property
    def series(self) -> PriceSeries:
        return self.bundle.monthly

    @property
    def daily(self) -> PriceSeries | None:
        return self.bundle.daily

    @property
    def is_synthetic(self) -> bool:
        return self.status == STATUS_SYNTHETIC


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class QuoteGateway:
    store: QuoteCacheStore
    provider: QuoteProvider
    ttl: timedelta = DEFAULT_TTL
    clock: Callable[[], datetime] = utcnow
    rng: random.Random | None = None
    synthesizer: Callable[..., QuoteBundle] = field(default=generate_synthetic_quotes)

    def get_series(self, symbol: str) -> QuoteLookup:
        normalized = normalize_symbol(symbol)
        now = self.clock()

        entry = self._read_cache(normalized)
        if entry is not None and entry.is_fresh(now, self.ttl):
            bundle = _bundle_from_entry(entry)
            if bundle is not None:
                status = STATUS_SYNTHETIC if bundle.is_synthetic else STATUS_FRESH_CACHED
                logger.info("Cache hit for %s (%s)", normalized, status)
                return QuoteLookup(
                    symbol=normalized,
                    bundle=bundle,
                    status=status,
                    fetched_at=entry.fetched_at,
                    age=entry.age(now),
                    cached=True,
                )

        logger.info("Cache miss for %s, fetching from upstream", normalized)
        try:
            bundle = self.provider.fetch_monthly(normalized)
        except QuoteRateLimited as exc:
            logger.warning("Upstream rate limit for %s: %s", normalized, exc)
        except QuoteProviderUnavailable as exc:
            logger.warning("Upstream unavailable for %s: %s", normalized, exc)
        else:
            self._write_cache(normalized, bundle, now)
            return QuoteLookup(
                symbol=normalized,
                bundle=bundle,
                status=STATUS_FRESH_LIVE,
                fetched_at=now,
                age=timedelta(0),
            )

        return self._fallback(normalized, entry, now)

    def _fallback(self, symbol: str, entry: CacheEntry | None, now: datetime) -> QuoteLookup:
        if entry is not None:
            bundle = _bundle_from_entry(entry)
            if bundle is not None and not bundle.is_synthetic:
                age = entry.age(now)
                logger.warning("Serving stale data for %s (age %s)", symbol, age)
                return QuoteLookup(
                    symbol=symbol,
                    bundle=bundle,
                    status=STATUS_STALE,
                    fetched_at=entry.fetched_at,
                    age=age,
                    cached=True,
                )

        logger.warning("No usable data for %s, generating synthetic series", symbol)
        bundle = self.synthesizer(symbol, now.date(), rng=self.rng)
        self._write_cache(symbol, bundle, now)
        return QuoteLookup(
            symbol=symbol,
            bundle=bundle,
            status=STATUS_SYNTHETIC,
            fetched_at=now,
            age=timedelta(0),
        )

    def _read_cache(self, symbol: str) -> CacheEntry | None:
        try:
            return self.store.get(symbol)
        except SQLAlchemyError:
            logger.exception("Cache read failed for %s", symbol)
            return None

    def _write_cache(self, symbol: str, bundle: QuoteBundle, now: datetime) -> None:
        try:
            self.store.upsert(symbol, bundle.to_document(), now)
        except SQLAlchemyError:
            logger.exception("Cache write failed for %s", symbol)
        else:
            logger.info("Saved %s data for %s to cache", bundle.source, symbol)


def _bundle_from_entry(entry: CacheEntry) -> QuoteBundle | None:
    try:
        return QuoteBundle.from_document(entry.document)
    except (AttributeError, KeyError, TypeError, ValueError):
        logger.warning("Cached document for %s is malformed", entry.symbol)
        return None
