"""
Investment simulation engine.

Projects what a sum of money would be worth had it gone into a stock instead,
using a monthly price series:

- lump sum: the whole amount buys shares at the start date
- periodic: the budget is split into equal monthly purchases
- ledger: monthly purchases follow recorded investment expenses

All functions are pure. Invalid or empty inputs produce a zeroed result of the
requested strategy instead of raising, so an interactive caller always has
something to render. Money is handled as float; the small rounding drift over
many months is acceptable for a what-if tool.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
import math
from typing import Iterable, List, Mapping, Optional

from kakeibo.price_series import PricePoint, PriceSeries, month_key, month_label

LUMP = "lump"
PERIODIC = "periodic"
LEDGER = "ledger"

CHART_STEPS = (1, 2, 3, 6, 12)
MAX_CHART_POINTS = 30
DAYS_PER_YEAR = 365.25


@dataclass(frozen=True)
class SimulationSnapshot:
    date: date
    amount_invested: float
    total_invested: float
    total_shares: float
    price: float
    valuation: float
    profit: float


@dataclass(frozen=True)
class ChartSeries:
    labels: tuple[str, ...] = ()
    principal: tuple[float, ...] = ()
    valuation: tuple[float, ...] = ()


@dataclass(frozen=True)
class SimulationResult:
    strategy: str
    start_date: Optional[date]
    start_price: float
    current_price: float
    shares_held: float
    amount_invested: float
    current_value: float
    profit: float
    profit_percent: float
    annualized_return_percent: float
    monthly_amount: float = 0.0
    periods: int = 0
    history: tuple[SimulationSnapshot, ...] = ()
    chart: ChartSeries = field(default_factory=ChartSeries)
    unmatched_months: tuple[str, ...] = ()


def resolve_start_point(
    series: PriceSeries,
    years_ago: int,
    today: Optional[date] = None,
) -> Optional[PricePoint]:
    """First point on or after the start of the month ``years_ago`` years back.

    Falls back to the earliest point when the series does not reach that far.
    """
    if series.is_empty:
        return None
    reference = today or date.today()
    years = min(max(int(years_ago), 0), reference.year - 1)
    target = date(reference.year - years, reference.month, 1)
    return series.on_or_after(target) or series.first


def simulate_lump_sum(
    series: PriceSeries,
    amount: float,
    years_ago: int,
    today: Optional[date] = None,
) -> SimulationResult:
    start = resolve_start_point(series, years_ago, today)
    current = series.latest
    if (
        start is None
        or current is None
        or not _is_positive_amount(amount)
        or start.close <= 0
    ):
        return _empty_result(LUMP, start, current)

    amount = float(amount)
    shares = amount / start.close
    current_value = shares * current.close
    profit = current_value - amount
    profit_percent = _percent(profit, amount)

    history = [
        _snapshot(point, amount if index == 0 else 0.0, amount, shares)
        for index, point in enumerate(series.since(start.date))
    ]
    return SimulationResult(
        strategy=LUMP,
        start_date=start.date,
        start_price=start.close,
        current_price=current.close,
        shares_held=shares,
        amount_invested=amount,
        current_value=current_value,
        profit=profit,
        profit_percent=profit_percent,
        annualized_return_percent=_annualized(current_value, amount, years_ago, profit_percent),
        periods=1,
        history=tuple(history),
        chart=build_chart_series(history),
    )


def simulate_periodic(
    series: PriceSeries,
    total_budget: float,
    years_ago: int,
    today: Optional[date] = None,
) -> SimulationResult:
    start = resolve_start_point(series, years_ago, today)
    current = series.latest
    if (
        start is None
        or current is None
        or not _is_positive_amount(total_budget)
        or years_ago <= 0
    ):
        return _empty_result(PERIODIC, start, current)

    total_months = int(years_ago) * 12
    monthly_amount = float(total_budget) / total_months

    total_shares = 0.0
    total_invested = 0.0
    history: List[SimulationSnapshot] = []
    # Only months with a price point are bought; missing months are not filled in.
    for point in series.since(start.date)[:total_months]:
        if point.close <= 0:
            continue
        total_shares += monthly_amount / point.close
        total_invested += monthly_amount
        history.append(_snapshot(point, monthly_amount, total_invested, total_shares))

    if not history:
        return _empty_result(PERIODIC, start, current)

    last = history[-1]
    current_value = last.total_shares * current.close
    profit = current_value - last.total_invested
    profit_percent = _percent(profit, last.total_invested)
    return SimulationResult(
        strategy=PERIODIC,
        start_date=history[0].date,
        start_price=history[0].price,
        current_price=current.close,
        shares_held=last.total_shares,
        amount_invested=last.total_invested,
        current_value=current_value,
        profit=profit,
        profit_percent=profit_percent,
        annualized_return_percent=_annualized(
            current_value, last.total_invested, years_ago, profit_percent
        ),
        monthly_amount=monthly_amount,
        periods=len(history),
        history=tuple(history),
        chart=build_chart_series(history),
    )


def simulate_ledger(
    series: PriceSeries,
    monthly_amounts: Mapping[str, float],
) -> SimulationResult:
    """Replay recorded monthly investments against the price series.

    A month buys once, at its first price point, when its recorded amount is
    positive. Other points only revalue the shares already held.
    """
    current = series.latest
    series_months = {month_key(point.date) for point in series}
    unmatched = tuple(
        sorted(
            key
            for key, value in monthly_amounts.items()
            if _is_positive_amount(value) and key not in series_months
        )
    )
    if current is None:
        return _empty_result(LEDGER, None, None, unmatched_months=unmatched)

    total_shares = 0.0
    total_invested = 0.0
    purchases = 0
    bought_months: set[str] = set()
    history: List[SimulationSnapshot] = []
    for point in series:
        key = month_key(point.date)
        amount = float(monthly_amounts.get(key, 0) or 0)
        bought = 0.0
        if _is_positive_amount(amount) and key not in bought_months and point.close > 0:
            total_shares += amount / point.close
            total_invested += amount
            bought = amount
            purchases += 1
            bought_months.add(key)
        if not history and not bought:
            continue
        history.append(_snapshot(point, bought, total_invested, total_shares))

    if not history:
        return _empty_result(LEDGER, None, current, unmatched_months=unmatched)

    first = history[0]
    current_value = total_shares * current.close
    profit = current_value - total_invested
    profit_percent = _percent(profit, total_invested)
    elapsed_years = (current.date - first.date).days / DAYS_PER_YEAR
    return SimulationResult(
        strategy=LEDGER,
        start_date=first.date,
        start_price=first.price,
        current_price=current.close,
        shares_held=total_shares,
        amount_invested=total_invested,
        current_value=current_value,
        profit=profit,
        profit_percent=profit_percent,
        annualized_return_percent=_annualized(
            current_value, total_invested, elapsed_years, profit_percent
        ),
        monthly_amount=total_invested / purchases,
        periods=purchases,
        history=tuple(history),
        chart=build_chart_series(history),
        unmatched_months=unmatched,
    )


def build_chart_series(
    history: Iterable[SimulationSnapshot],
    step: Optional[int] = None,
) -> ChartSeries:
    snapshots = list(history)
    if not snapshots:
        return ChartSeries()
    step = step if step and step > 0 else chart_step(len(snapshots))
    indexes = list(range(0, len(snapshots), step))
    if indexes[-1] != len(snapshots) - 1:
        indexes.append(len(snapshots) - 1)
    selected = [snapshots[index] for index in indexes]
    return ChartSeries(
        labels=tuple(month_label(snapshot.date) for snapshot in selected),
        principal=tuple(snapshot.total_invested for snapshot in selected),
        valuation=tuple(snapshot.valuation for snapshot in selected),
    )


def chart_step(length: int) -> int:
    for step in CHART_STEPS:
        if math.ceil(length / step) <= MAX_CHART_POINTS:
            return step
    return math.ceil(length / MAX_CHART_POINTS)


def _snapshot(
    point: PricePoint,
    amount_invested: float,
    total_invested: float,
    total_shares: float,
) -> SimulationSnapshot:
    valuation = total_shares * point.close
    return SimulationSnapshot(
        date=point.date,
        amount_invested=amount_invested,
        total_invested=total_invested,
        total_shares=total_shares,
        price=point.close,
        valuation=valuation,
        profit=valuation - total_invested,
    )


def _is_positive_amount(value: float) -> bool:
    return math.isfinite(value) and value > 0


def _percent(part: float, whole: float) -> float:
    if whole <= 0:
        return 0.0
    return part / whole * 100


def _annualized(
    current_value: float,
    invested: float,
    years: float,
    profit_percent: float,
) -> float:
    if invested <= 0:
        return 0.0
    # A zero or negative horizon has no yearly rate; report the total return.
    if years <= 0:
        return profit_percent
    return ((current_value / invested) ** (1 / years) - 1) * 100


def _empty_result(
    strategy: str,
    start: Optional[PricePoint],
    current: Optional[PricePoint],
    unmatched_months: tuple[str, ...] = (),
) -> SimulationResult:
    return SimulationResult(
        strategy=strategy,
        start_date=start.date if start else None,
        start_price=start.close if start else 0.0,
        current_price=current.close if current else 0.0,
        shares_held=0.0,
        amount_invested=0.0,
        current_value=0.0,
        profit=0.0,
        profit_percent=0.0,
        annualized_return_percent=0.0,
        unmatched_months=unmatched_months,
    )
