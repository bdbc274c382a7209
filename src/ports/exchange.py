from __future__ import annotations

from typing import Protocol

from src.domain.models import Balance, OpenOrder, OrderAck


class ExchangeClient(Protocol):
    def get_balance(self) -> Balance: ...

    def get_pending(self) -> list[OpenOrder]: ...

    def cancel(self, order_id: str) -> None: ...

    def place_buy_order(self, base: str, counter: str, amount: float, price: float) -> OrderAck: ...

    def place_sell_order(self, base: str, counter: str, amount: float, price: float) -> OrderAck: ...
