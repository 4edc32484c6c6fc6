import unittest
from datetime import date

from kakeibo.price_series import (
    PricePoint,
    PriceSeries,
    QuoteBundle,
    parse_provider_series,
    summarize_series,
)


def provider_entry(close: str) -> dict:
    return {
        "1. open": close,
        "2. high": close,
        "3. low": close,
        "4. close": close,
        "5. volume": "1000",
    }


class PriceSeriesTests(unittest.TestCase):
    def test_points_are_sorted_ascending(self) -> None:
        series = PriceSeries(
            symbol="SPY",
            points=(
                PricePoint(date=date(2022, 1, 31), open=1, high=1, low=1, close=500),
                PricePoint(date=date(2020, 1, 31), open=1, high=1, low=1, close=300),
                PricePoint(date=date(2021, 1, 29), open=1, high=1, low=1, close=400),
            ),
        )

        self.assertEqual(
            [point.date for point in series],
            [date(2020, 1, 31), date(2021, 1, 29), date(2022, 1, 31)],
        )
        self.assertEqual(series.latest.close, 500)

    def test_duplicate_dates_raise(self) -> None:
        point = PricePoint(date=date(2020, 1, 31), open=1, high=1, low=1, close=300)

        with self.assertRaises(ValueError):
            PriceSeries(symbol="SPY", points=(point, point))

    def test_parses_provider_payload(self) -> None:
        payload = {
            "Meta Data": {"2. Symbol": "SPY"},
            "Monthly Time Series": {
                "2024-02-29": provider_entry("508.08"),
                "2024-01-31": provider_entry("482.88"),
            },
        }

        series = parse_provider_series(payload, "SPY")

        self.assertEqual(series.first.date, date(2024, 1, 31))
        self.assertAlmostEqual(series.first.close, 482.88)
        self.assertAlmostEqual(series.latest.close, 508.08)
        self.assertEqual(series.latest.volume, 1000.0)

    def test_missing_series_key_raises(self) -> None:
        with self.assertRaises(ValueError):
            parse_provider_series({"Meta Data": {}}, "SPY")

    def test_non_numeric_close_raises(self) -> None:
        payload = {"Monthly Time Series": {"2024-01-31": provider_entry("n/a")}}

        with self.assertRaises(ValueError):
            parse_provider_series(payload, "SPY")

    def test_bundle_document_round_trip_keeps_daily_and_source(self) -> None:
        monthly = PriceSeries(
            symbol="SPY",
            points=(PricePoint(date=date(2024, 1, 1), open=1, high=2, low=0.5, close=1.5),),
        )
        daily = PriceSeries(
            symbol="SPY",
            interval="daily",
            points=(PricePoint(date=date(2024, 1, 2), open=1, high=2, low=0.5, close=1.7),),
        )
        bundle = QuoteBundle(symbol="SPY", monthly=monthly, daily=daily, source="synthetic")

        restored = QuoteBundle.from_document(bundle.to_document())

        self.assertEqual(restored, bundle)
        self.assertTrue(restored.is_synthetic)

    def test_summary_reports_change_from_previous_close(self) -> None:
        series = PriceSeries(
            symbol="SPY",
            points=(
                PricePoint(date=date(2024, 1, 31), open=1, high=1, low=1, close=400),
                PricePoint(date=date(2024, 2, 29), open=1, high=1, low=1, close=420),
            ),
        )

        summary = summarize_series(series)

        self.assertEqual(summary.latest_close, 420)
        self.assertEqual(summary.previous_close, 400)
        self.assertEqual(summary.change, 20)
        self.assertAlmostEqual(summary.change_percent, 5.0)

    def test_summary_of_empty_series_is_none(self) -> None:
        self.assertIsNone(summarize_series(PriceSeries(symbol="SPY")))


if __name__ == "__main__":
    unittest.main()
