"""
Order reconciliation: bring the exchange's resting orders in line with the latest price targets.

Policy is cancel-then-recreate. Every open order on a tracked pair is cancelled
and the whole ladder is placed again from the current targets. Between the
cancel and the placements a pair briefly has no resting orders at all.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, TypeVar

from src.domain.models import Balance, CycleReport, Level, OpenOrder, TrackedPair, WallConfig
from src.ports.exchange import ExchangeClient
from src.ports.narration import Narrator
from src.trader.timeout import call_with_timeout
from src.walls.store import PriceTargetStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Per exchange call (balance, pending, each cancel, each placement).
DEFAULT_CALL_TIMEOUT_SECONDS = 30.0

SELL_SIDE_MODES = ("sell", "buy")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _err(e: Exception) -> str:
    return f"{type(e).__name__}: {str(e)[:200]}"


class OrderReconciler:
    def __init__(
        self,
        exchange: ExchangeClient,
        narrator: Narrator,
        *,
        call_timeout_seconds: float | None = DEFAULT_CALL_TIMEOUT_SECONDS,
    ) -> None:
        self.exchange = exchange
        self.narrator = narrator
        self.call_timeout_seconds = call_timeout_seconds

    def _call(self, func: Callable[..., T], *args: Any) -> T:
        if self.call_timeout_seconds is None:
            return func(*args)
        return call_with_timeout(func, self.call_timeout_seconds, *args)

    def _say(self, level: str, message: str, *, pair: str | None = None, step: str | None = None) -> None:
        self.narrator.publish(level, message, pair=pair, step=step)

    def reconcile(
        self,
        config: WallConfig,
        store: PriceTargetStore,
        *,
        skip_keys: frozenset[str] | set[str] = frozenset(),
    ) -> CycleReport:
        """Run one cancel-then-place pass over every tracked pair in `config`."""
        report = CycleReport(started_at=_now())
        self._say("INFO", "Going to set buy / sell walls", step="Start")

        try:
            balance: Balance = self._call(self.exchange.get_balance)
        except Exception as e:
            return self._abort(report, f"Not setting walls, balance unavailable: {_err(e)}", step="Balance")
        self._say("INFO", f"Balance is {balance.to_dict()}", step="Balance")

        try:
            open_orders: list[OpenOrder] = list(self._call(self.exchange.get_pending))
        except Exception as e:
            return self._abort(report, f"Not setting walls, open orders unavailable: {_err(e)}", step="OpenOrders")
        self._say("INFO", f"{len(open_orders)} open order(s) on the exchange", step="OpenOrders")

        # Pairs may share base/counter; an order id is only cancelled once per cycle.
        handled_ids: set[str] = set()
        for pair in config.tracked_pairs:
            key = pair.price_target_key
            if key in skip_keys:
                report.skipped_pairs.append(key)
                self._say("WARN", "Skipping pair this cycle: price target could not be computed", pair=pair.symbol, step="Skip")
                continue
            if store.get(key) is None:
                report.skipped_pairs.append(key)
                self._say("WARN", "Skipping pair: no price target yet", pair=pair.symbol, step="Skip")
                continue
            target = store.get_current(pair, config.target_valuation)
            if target is None:
                report.skipped_pairs.append(key)
                self._say(
                    "WARN",
                    "Skipping pair: price target was computed for a previous config",
                    pair=pair.symbol,
                    step="Skip",
                )
                continue

            self._cancel_pair_orders(pair, open_orders, report, handled_ids)

            for level in target.buy:
                self._place(pair, level, "buy", balance, report, via=self.exchange.place_buy_order)

            sell_via = self.exchange.place_sell_order
            if config.sell_side_mode == "buy":
                # Legacy behaviour: sell levels go through the buy primitive.
                sell_via = self.exchange.place_buy_order
            for level in target.sell:
                self._place(pair, level, "sell", balance, report, via=sell_via)

        report.finished_at = _now()
        self._say(
            "INFO",
            (
                f"Walls set: placed={report.placed} failed={report.placement_failures} "
                f"skipped={report.skipped_insufficient} cancelled={report.cancelled}"
            ),
            step="Complete",
        )
        return report

    def _abort(self, report: CycleReport, reason: str, *, step: str) -> CycleReport:
        report.aborted = True
        report.abort_reason = reason
        report.finished_at = _now()
        self._say("ERROR", reason, step=step)
        return report

    def _cancel_pair_orders(
        self,
        pair: TrackedPair,
        open_orders: list[OpenOrder],
        report: CycleReport,
        handled_ids: set[str],
    ) -> None:
        for order in open_orders:
            if not order.matches(pair) or order.order_id in handled_ids:
                continue
            handled_ids.add(order.order_id)
            self._say("INFO", f"Cancelling order {order.order_id} ({order.side} {order.amount} @ {order.price})", pair=pair.symbol, step="Cancel")
            try:
                self._call(self.exchange.cancel, order.order_id)
                report.cancelled += 1
            except Exception as e:
                report.cancel_failures += 1
                self._say("ERROR", f"Failed to cancel order {order.order_id}: {_err(e)}", pair=pair.symbol, step="Cancel")

    def _place(
        self,
        pair: TrackedPair,
        level: Level,
        side: str,
        balance: Balance,
        report: CycleReport,
        *,
        via: Callable[[str, str, float, float], Any],
    ) -> None:
        verb = "Buy" if side == "buy" else "Sell"
        available = balance.available(pair.price_target_key)
        if available < level.amount * level.price:
            report.skipped_insufficient += 1
            self._say(
                "WARN",
                f"Insufficient balance ({available:f}) cannot {verb} {level.amount:f} {pair.symbol} @ {level.price:f}",
                pair=pair.symbol,
                step=verb,
            )
            return

        self._say("INFO", f"Going to {verb} {level.amount:f} {pair.symbol} @ {level.price:f}", pair=pair.symbol, step=verb)
        try:
            ack = self._call(via, pair.base, pair.counter, level.amount, level.price)
        except Exception as e:
            report.placement_failures += 1
            self._say("ERROR", f"Failed setting {side} wall level: {_err(e)}", pair=pair.symbol, step=verb)
            return
        report.placed += 1
        self._say("INFO", f"{verb} response {ack.to_dict()}", pair=pair.symbol, step=verb)
