from __future__ import annotations

import logging
from typing import Any

import requests

from src.domain.errors import BalanceError, CancellationError, OpenOrdersError, PlacementError, WallkeeperError
from src.domain.models import Balance, OpenOrder, OrderAck

logger = logging.getLogger(__name__)

# Request timeout (seconds) for every call; the reconciler adds its own wall-clock cap on top.
EXCHANGE_REQUEST_TIMEOUT = 20

BALANCE_PATH = "/balance"
PENDING_PATH = "/orders/pending"
CANCEL_PATH = "/orders/{order_id}/cancel"
BUY_PATH = "/orders/buy"
SELL_PATH = "/orders/sell"


def parse_balance(data: Any) -> Balance:
    """Accepts {"currencies": {"BTC": {"amount": 1.0}}} or a flat {"BTC": 1.0} mapping."""
    if isinstance(data, dict) and isinstance(data.get("currencies"), dict):
        data = data["currencies"]
    if not isinstance(data, dict):
        raise BalanceError(f"unexpected balance payload: {type(data).__name__}")
    out: dict[str, float] = {}
    for code, v in data.items():
        amount = v.get("amount") if isinstance(v, dict) else v
        try:
            out[str(code)] = float(amount or 0.0)
        except (TypeError, ValueError) as e:
            raise BalanceError(f"malformed balance for {code}: {amount!r}") from e
    return Balance(out)


def parse_open_orders(data: Any) -> list[OpenOrder]:
    rows = data.get("trades") if isinstance(data, dict) else data
    if rows is None:
        return []
    if not isinstance(rows, list):
        raise OpenOrdersError(f"unexpected open orders payload: {type(rows).__name__}")
    out: list[OpenOrder] = []
    for r in rows:
        try:
            out.append(
                OpenOrder(
                    order_id=str(r["id"]),
                    base=str(r["base"]),
                    counter=str(r["counter"]),
                    side=str(r.get("side") or r.get("type") or "").lower(),
                    price=float(r.get("price") or 0.0),
                    amount=float(r.get("amount") or 0.0),
                )
            )
        except (KeyError, TypeError, ValueError) as e:
            raise OpenOrdersError(f"malformed open order row {r!r}: {e}") from e
    return out


class RestExchangeClient:
    """
    Minimal REST client for the exchange's trading API.

    Each method maps transport, HTTP and API-level failures onto the matching WallkeeperError subclass
    so callers only need to handle one family of exceptions per operation.
    """

    def __init__(self, base_url: str, api_key: str, timeout: float = EXCHANGE_REQUEST_TIMEOUT):
        if not base_url:
            raise ValueError("exchange base_url is required")
        self.base_url = base_url.rstrip("/")
        self.timeout = float(timeout)
        self.session = requests.Session()
        self.session.headers.update({"Accept": "application/json"})
        if api_key:
            self.session.headers.update({"X-API-Key": api_key})
        else:
            logger.warning("No exchange API key configured; private endpoints will be rejected.")

    def _request(self, method: str, path: str, error_cls: type[WallkeeperError], **kwargs: Any) -> Any:
        url = f"{self.base_url}{path}"
        try:
            resp = self.session.request(method, url, timeout=self.timeout, **kwargs)
            resp.raise_for_status()
            data = resp.json() if resp.content else {}
        except (requests.RequestException, ValueError) as e:
            raise error_cls(f"{method} {path} failed: {type(e).__name__}: {str(e)[:200]}") from e
        if isinstance(data, dict) and data.get("error"):
            raise error_cls(f"{method} {path} rejected: {str(data['error'])[:200]}")
        return data

    def get_balance(self) -> Balance:
        return parse_balance(self._request("GET", BALANCE_PATH, BalanceError))

    def get_pending(self) -> list[OpenOrder]:
        return parse_open_orders(self._request("GET", PENDING_PATH, OpenOrdersError))

    def cancel(self, order_id: str) -> None:
        self._request("POST", CANCEL_PATH.format(order_id=order_id), CancellationError)

    def _place(self, path: str, base: str, counter: str, amount: float, price: float) -> OrderAck:
        payload = {"base": base, "counter": counter, "amount": float(amount), "price": float(price)}
        data = self._request("POST", path, PlacementError, json=payload)
        if not isinstance(data, dict):
            data = {}
        order_id = data.get("id")
        return OrderAck(
            order_id=str(order_id) if order_id is not None else None,
            status=str(data.get("status") or "submitted"),
            raw=data,
        )

    def place_buy_order(self, base: str, counter: str, amount: float, price: float) -> OrderAck:
        return self._place(BUY_PATH, base, counter, amount, price)

    def place_sell_order(self, base: str, counter: str, amount: float, price: float) -> OrderAck:
        return self._place(SELL_PATH, base, counter, amount, price)
