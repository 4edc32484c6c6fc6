from __future__ import annotations

from datetime import date, timedelta
import random

from kakeibo.price_series import PricePoint, PriceSeries, QuoteBundle

BASE_PRICE = 450.0
MONTHLY_POINTS = 60
DAILY_POINTS = 30
MAX_DEVIATION = 0.05
MAX_WICK = 0.01


def generate_synthetic_quotes(
    symbol: str,
    today: date,
    rng: random.Random | None = None,
    base_price: float = BASE_PRICE,
) -> QuoteBundle:
    """Build a placeholder quote bundle for when no real data is reachable.

    Closes stay within +/-5% of ``base_price``. Monthly points fall on the
    first of each month up to the current month; daily points end at ``today``.
    """
    generator = rng or random.Random()
    current_month = today.replace(day=1)
    monthly_dates = [
        _shift_month(current_month, offset - (MONTHLY_POINTS - 1))
        for offset in range(MONTHLY_POINTS)
    ]
    daily_dates = [
        today - timedelta(days=DAILY_POINTS - 1 - offset) for offset in range(DAILY_POINTS)
    ]

    monthly = PriceSeries(
        symbol=symbol,
        interval="monthly",
        points=tuple(_synthetic_point(day, base_price, generator) for day in monthly_dates),
    )
    daily = PriceSeries(
        symbol=symbol,
        interval="daily",
        points=tuple(_synthetic_point(day, base_price, generator) for day in daily_dates),
    )
    return QuoteBundle(
        symbol=symbol,
        monthly=monthly,
        daily=daily,
        source="synthetic",
        last_refreshed=today.isoformat(),
    )


def _synthetic_point(day: date, base_price: float, generator: random.Random) -> PricePoint:
    open_price = base_price * (1 + generator.uniform(-MAX_DEVIATION, MAX_DEVIATION))
    close_price = base_price * (1 + generator.uniform(-MAX_DEVIATION, MAX_DEVIATION))
    high = max(open_price, close_price) * (1 + generator.uniform(0, MAX_WICK))
    low = min(open_price, close_price) * (1 - generator.uniform(0, MAX_WICK))
    return PricePoint(
        date=day,
        open=round(open_price, 2),
        high=round(high, 2),
        low=round(low, 2),
        close=round(close_price, 2),
        volume=float(generator.randint(50_000_000, 150_000_000)),
    )


def _shift_month(value: date, months: int) -> date:
    total_month = value.month - 1 + months
    year = value.year + total_month // 12
    month = total_month % 12 + 1
    return date(year, month, 1)
