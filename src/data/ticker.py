from __future__ import annotations

import logging
from typing import Any

import requests

from src.domain.errors import FetchError
from src.domain.models import TickerEntry

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.coinmarketcap.com"


class TickerFetchError(FetchError):
    """Raised when one or more ids could not be fetched. `partial` holds the entries that were."""

    def __init__(self, message: str, partial: list[TickerEntry] | None = None):
        super().__init__(message)
        self.partial = list(partial or [])


def _to_float(v: Any) -> float | None:
    if v is None or v == "":
        return None
    return float(v)


def parse_ticker_row(row: dict) -> TickerEntry:
    """Turn one ticker JSON row (numbers arrive as strings) into a TickerEntry."""
    coin_id = row.get("id")
    if not coin_id:
        raise FetchError("ticker row has no id")
    try:
        price_usd = _to_float(row.get("price_usd"))
        price_btc = _to_float(row.get("price_btc"))
        last_updated = row.get("last_updated")
        last_updated = int(last_updated) if last_updated not in (None, "") else None
    except (TypeError, ValueError) as e:
        raise FetchError(f"malformed ticker row for {coin_id}: {e}") from e
    if price_usd is None:
        raise FetchError(f"ticker row for {coin_id} has no price_usd")
    return TickerEntry(id=str(coin_id), price_usd=price_usd, price_btc=price_btc, last_updated=last_updated)


class CoinMarketCapTicker:
    """
    Reads coin prices from the public ticker endpoints (one request per id).

    The upstream refreshes roughly every 5 minutes, so there is no point polling it much faster.
    """

    def __init__(self, base_url: str = DEFAULT_BASE_URL, timeout: float = 20.0, user_agent: str = "Wallkeeper/1.0"):
        self.base_url = base_url.rstrip("/")
        self.timeout = float(timeout)
        self.session = requests.Session()
        self.session.headers.update({"User-Agent": user_agent, "Accept": "application/json"})

    def fetch_one(self, coin_id: str) -> TickerEntry:
        url = f"{self.base_url}/v1/ticker/{coin_id}/"
        try:
            resp = self.session.get(url, timeout=self.timeout)
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as e:
            raise FetchError(f"ticker request for {coin_id} failed: {type(e).__name__}: {str(e)[:200]}") from e

        # The endpoint answers with a one-element list.
        if isinstance(data, list):
            data = data[0] if data else None
        if not isinstance(data, dict):
            raise FetchError(f"unexpected ticker payload for {coin_id}")
        return parse_ticker_row(data)

    def fetch(self, ids: list[str]) -> list[TickerEntry]:
        entries: list[TickerEntry] = []
        failures: list[str] = []
        for coin_id in ids:
            try:
                entries.append(self.fetch_one(coin_id))
            except FetchError as e:
                logger.warning("Ticker fetch failed: %s", e)
                failures.append(str(e))
        if failures:
            raise TickerFetchError("; ".join(failures), partial=entries)
        return entries
