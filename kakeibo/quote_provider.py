from __future__ import annotations

from dataclasses import dataclass
import http.client
import json
import logging
from typing import Mapping
from urllib.parse import urlencode
from urllib.request import urlopen

from kakeibo.price_series import QuoteBundle, parse_provider_series

logger = logging.getLogger(__name__)

ERROR_FIELD = "Error Message"
RATE_LIMIT_FIELDS = ("Note", "Information")
META_FIELD = "Meta Data"
LAST_REFRESHED_FIELD = "3. Last Refreshed"


class QuoteProviderUnavailable(RuntimeError):
    """Raised when the upstream provider cannot supply a usable series."""


class QuoteProviderError(QuoteProviderUnavailable):
    """The provider answered with an error payload (bad symbol, bad key)."""


class QuoteRateLimited(QuoteProviderUnavailable):
    """The provider answered with a quota or rate-limit notice."""


@dataclass
class AlphaVantageQuoteProvider:
    api_key: str | None = None
    base_url: str = "https://www.alphavantage.co"
    timeout_seconds: float = 8

    def fetch_monthly(self, symbol: str) -> QuoteBundle:
        normalized = normalize_symbol(symbol)
        payload = self._fetch_payload("TIME_SERIES_MONTHLY", normalized)
        return parse_quote_payload(payload, normalized)

    def _fetch_payload(self, function: str, symbol: str) -> Mapping[str, object]:
        if not self.api_key:
            raise QuoteProviderUnavailable("Alpha Vantage API key not configured")

        query = urlencode({"function": function, "symbol": symbol, "apikey": self.api_key})
        url = f"{self.base_url}/query?{query}"
        logger.info("Fetching %s for %s from Alpha Vantage", function, symbol)
        try:
            with urlopen(url, timeout=self.timeout_seconds) as response:
                payload = json.load(response)
        except (OSError, http.client.HTTPException, ValueError) as exc:
            raise QuoteProviderUnavailable("Alpha Vantage API unavailable") from exc

        if not isinstance(payload, dict):
            raise QuoteProviderError("Alpha Vantage response is not a JSON object")
        return payload


def parse_quote_payload(payload: Mapping[str, object], symbol: str) -> QuoteBundle:
    """Classify an upstream payload and normalize it into a QuoteBundle.

    The provider reports failures inside an HTTP 200 body, so the payload's
    top-level keys decide the outcome rather than the status code.
    """
    if payload.get(ERROR_FIELD):
        raise QuoteProviderError(str(payload[ERROR_FIELD]))
    for field_name in RATE_LIMIT_FIELDS:
        if payload.get(field_name):
            raise QuoteRateLimited(str(payload[field_name]))

    try:
        series = parse_provider_series(payload, symbol, interval="monthly")
    except ValueError as exc:
        raise QuoteProviderError(str(exc)) from exc

    meta = payload.get(META_FIELD)
    last_refreshed = None
    if isinstance(meta, Mapping):
        last_refreshed = meta.get(LAST_REFRESHED_FIELD)
    if last_refreshed is None and series.latest is not None:
        last_refreshed = series.latest.date.isoformat()

    return QuoteBundle(
        symbol=symbol,
        monthly=series,
        source="live",
        last_refreshed=last_refreshed,
    )


def normalize_symbol(value: str) -> str:
    normalized = value.strip().upper()
    if not normalized or len(normalized) > 16:
        raise ValueError("Symbol must be 1 to 16 characters.")
    if not all(ch.isalnum() or ch in ".-^=" for ch in normalized):
        raise ValueError("Symbol contains unsupported characters.")
    return normalized
