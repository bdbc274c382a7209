from __future__ import annotations

import time
from copy import deepcopy
from typing import Any

from src.domain.errors import CancellationError, PlacementError
from src.domain.models import Balance, OpenOrder, OrderAck, TickerEntry


def make_doc(**overrides: Any) -> dict[str, Any]:
    doc: dict[str, Any] = {
        "target_valuation": 10.0,
        "poll_interval_seconds": 120,
        "tracked_pairs": [
            {
                "market_data_id": "bitcoin",
                "base": "VIVA",
                "counter": "BTC",
                "target_spread": 0.0,
                "price_target_key": "BTC",
                "tiers": {
                    "buy": [{"offset_percent": 5, "amount": 50}],
                    "sell": [{"offset_percent": 5, "amount": 50}],
                },
            }
        ],
        "exchange": {"sell_side_mode": "sell"},
    }
    doc.update(deepcopy(overrides))
    return doc


def make_pair(key: str, *, market_data_id: str, counter: str, buy=None, sell=None) -> dict[str, Any]:
    return {
        "market_data_id": market_data_id,
        "base": "VIVA",
        "counter": counter,
        "target_spread": 0.0,
        "price_target_key": key,
        "tiers": {"buy": list(buy or []), "sell": list(sell or [])},
    }


class FakeExchange:
    """In-memory exchange that records every call in order."""

    def __init__(self, balance: dict[str, float] | None = None, open_orders: list[OpenOrder] | None = None):
        self.balance = Balance(balance or {})
        self.open_orders: list[OpenOrder] = list(open_orders or [])
        self.calls: list[tuple] = []
        self.placements: list[tuple] = []
        self.fail_balance: Exception | None = None
        self.fail_pending: Exception | None = None
        self.fail_cancel_ids: set[str] = set()
        self.fail_placement_indexes: set[int] = set()
        self.resting_at_placement: list[int] = []
        self.balance_delay = 0.0

    def get_balance(self) -> Balance:
        self.calls.append(("get_balance",))
        if self.balance_delay:
            time.sleep(self.balance_delay)
        if self.fail_balance is not None:
            raise self.fail_balance
        return self.balance

    def get_pending(self) -> list[OpenOrder]:
        self.calls.append(("get_pending",))
        if self.fail_pending is not None:
            raise self.fail_pending
        return list(self.open_orders)

    def cancel(self, order_id: str) -> None:
        self.calls.append(("cancel", order_id))
        if order_id in self.fail_cancel_ids:
            raise CancellationError(f"order {order_id} is locked")
        self.open_orders = [o for o in self.open_orders if o.order_id != order_id]

    def _place(self, side: str, base: str, counter: str, amount: float, price: float) -> OrderAck:
        idx = len(self.placements)
        self.calls.append((f"place_{side}", base, counter, amount, price))
        self.placements.append((side, base, counter, amount, price))
        self.resting_at_placement.append(sum(1 for o in self.open_orders if o.base == base and o.counter == counter))
        if idx in self.fail_placement_indexes:
            raise PlacementError(f"placement {idx} rejected")
        return OrderAck(order_id=f"ack-{idx}", status="open")

    def place_buy_order(self, base: str, counter: str, amount: float, price: float) -> OrderAck:
        return self._place("buy", base, counter, amount, price)

    def place_sell_order(self, base: str, counter: str, amount: float, price: float) -> OrderAck:
        return self._place("sell", base, counter, amount, price)

    def call_names(self) -> list[str]:
        return [c[0] for c in self.calls]


class FakeMarketData:
    def __init__(self, prices: dict[str, float] | None = None, *, error: Exception | None = None, delay: float = 0.0):
        self.prices = dict(prices or {})
        self.error = error
        self.delay = delay
        self.requests: list[list[str]] = []

    def fetch(self, ids: list[str]) -> list[TickerEntry]:
        self.requests.append(list(ids))
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return [TickerEntry(id=i, price_usd=self.prices[i]) for i in ids if i in self.prices]
