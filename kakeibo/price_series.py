from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Mapping

SUPPORTED_INTERVALS = {"monthly", "daily"}

PROVIDER_SERIES_KEYS = {
    "monthly": "Monthly Time Series",
    "daily": "Time Series (Daily)",
}
PROVIDER_FIELDS = {
    "open": "1. open",
    "high": "2. high",
    "low": "3. low",
    "close": "4. close",
    "volume": "5. volume",
}


@dataclass(frozen=True)
class PricePoint:
    date: date
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    def to_document(self) -> dict[str, float]:
        return {
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
        }


@dataclass(frozen=True)
class PriceSeries:
    """Price history for one symbol, always held in ascending date order.

    Construction sorts the points; duplicate dates are rejected.
    """

    symbol: str
    interval: str = "monthly"
    points: tuple[PricePoint, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if self.interval not in SUPPORTED_INTERVALS:
            raise ValueError(f"Unsupported interval: {self.interval}")
        ordered = tuple(sorted(self.points, key=lambda point: point.date))
        for previous, current in zip(ordered, ordered[1:]):
            if previous.date == current.date:
                raise ValueError(f"Duplicate price date: {current.date.isoformat()}")
        object.__setattr__(self, "points", ordered)

    def __len__(self) -> int:
        return len(self.points)

    def __iter__(self):
        return iter(self.points)

    @property
    def is_empty(self) -> bool:
        return not self.points

    @property
    def first(self) -> PricePoint | None:
        return self.points[0] if self.points else None

    @property
    def latest(self) -> PricePoint | None:
        return self.points[-1] if self.points else None

    def on_or_after(self, target: date) -> PricePoint | None:
        for point in self.points:
            if point.date >= target:
                return point
        return None

    def since(self, start: date) -> tuple[PricePoint, ...]:
        return tuple(point for point in self.points if point.date >= start)

    def to_document(self) -> dict[str, dict[str, float]]:
        return {point.date.isoformat(): point.to_document() for point in self.points}

    @classmethod
    def from_document(
        cls,
        symbol: str,
        interval: str,
        document: Mapping[str, Mapping[str, object]],
    ) -> "PriceSeries":
        points = [
            _parse_point(date_key, values, field_names=None)
            for date_key, values in document.items()
        ]
        return cls(symbol=symbol, interval=interval, points=tuple(points))


@dataclass(frozen=True)
class QuoteBundle:
    """Monthly series with an optional daily series, as cached per symbol."""

    symbol: str
    monthly: PriceSeries
    daily: PriceSeries | None = None
    source: str = "live"
    last_refreshed: str | None = None

    @property
    def is_synthetic(self) -> bool:
        return self.source == "synthetic"

    def to_document(self) -> dict[str, object]:
        document: dict[str, object] = {
            "symbol": self.symbol,
            "source": self.source,
            "last_refreshed": self.last_refreshed,
            "monthly": self.monthly.to_document(),
        }
        if self.daily is not None:
            document["daily"] = self.daily.to_document()
        return document

    @classmethod
    def from_document(cls, document: Mapping[str, object]) -> "QuoteBundle":
        symbol = str(document["symbol"])
        monthly = PriceSeries.from_document(symbol, "monthly", document["monthly"])
        daily_document = document.get("daily")
        daily = None
        if daily_document:
            daily = PriceSeries.from_document(symbol, "daily", daily_document)
        return cls(
            symbol=symbol,
            monthly=monthly,
            daily=daily,
            source=str(document.get("source") or "live"),
            last_refreshed=document.get("last_refreshed"),
        )


@dataclass(frozen=True)
class QuoteSummary:
    symbol: str
    latest_date: date
    latest_close: float
    previous_close: float | None
    change: float | None
    change_percent: float | None


def parse_provider_series(
    payload: Mapping[str, object],
    symbol: str,
    interval: str = "monthly",
) -> PriceSeries:
    """Normalize an upstream time-series payload into a PriceSeries.

    Raises ValueError when the series key is missing or a value cannot be
    read as a number.
    """
    series_key = PROVIDER_SERIES_KEYS.get(interval)
    if series_key is None:
        raise ValueError(f"Unsupported interval: {interval}")
    raw_series = payload.get(series_key)
    if not isinstance(raw_series, Mapping) or not raw_series:
        raise ValueError(f"Response missing '{series_key}'.")

    points = [
        _parse_point(date_key, values, field_names=PROVIDER_FIELDS)
        for date_key, values in raw_series.items()
    ]
    return PriceSeries(symbol=symbol, interval=interval, points=tuple(points))


def summarize_series(series: PriceSeries) -> QuoteSummary | None:
    latest = series.latest
    if latest is None:
        return None
    previous = series.points[-2] if len(series.points) > 1 else None
    if previous is None:
        return QuoteSummary(
            symbol=series.symbol,
            latest_date=latest.date,
            latest_close=latest.close,
            previous_close=None,
            change=None,
            change_percent=None,
        )
    change = latest.close - previous.close
    change_percent = change / previous.close * 100 if previous.close else 0.0
    return QuoteSummary(
        symbol=series.symbol,
        latest_date=latest.date,
        latest_close=latest.close,
        previous_close=previous.close,
        change=change,
        change_percent=change_percent,
    )


def month_key(value: date) -> str:
    return f"{value.year:04d}-{value.month:02d}"


def month_label(value: date) -> str:
    return f"{value.year:04d}/{value.month:02d}"


def parse_series_date(value: str) -> date:
    try:
        return datetime.strptime(value.strip()[:10], "%Y-%m-%d").date()
    except ValueError as exc:
        raise ValueError("Date must be in YYYY-MM-DD format.") from exc


def _parse_point(
    date_key: str,
    values: Mapping[str, object],
    field_names: Mapping[str, str] | None,
) -> PricePoint:
    if not isinstance(values, Mapping):
        raise ValueError(f"Malformed price entry for {date_key}.")
    names = field_names or {name: name for name in PROVIDER_FIELDS}
    parsed: dict[str, float] = {}
    for name, source_key in names.items():
        raw = values.get(source_key)
        if raw is None:
            if name == "volume":
                parsed[name] = 0.0
                continue
            raise ValueError(f"Price entry for {date_key} missing '{source_key}'.")
        try:
            parsed[name] = float(raw)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid '{source_key}' value for {date_key}.") from exc
    return PricePoint(date=parse_series_date(date_key), **parsed)
