from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable, TypeVar

from src.domain.models import CycleReport, TickerEntry
from src.ports.market_data import MarketDataProvider
from src.ports.narration import Narrator
from src.trader.config_store import ConfigStore
from src.trader.timeout import call_with_timeout
from src.walls.reconciler import OrderReconciler
from src.walls.store import PriceTargetStore
from src.walls.targets import targets_for_ticker

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Wall-clock cap for one market-data fetch (all ids).
DEFAULT_FETCH_TIMEOUT_SECONDS = 60.0


class WallScheduler:
    """
    Fixed-interval driver for the fetch -> compute -> reconcile cycle.

    - Runs in its own thread; the first cycle starts immediately.
    - Cycles never overlap: this thread is the only writer of the target store
      and the only caller of exchange mutations.
    - Upstream failures are narrated and never stop the loop.
    """

    def __init__(
        self,
        config_store: ConfigStore,
        market_data: MarketDataProvider,
        reconciler: OrderReconciler,
        store: PriceTargetStore,
        narrator: Narrator,
        *,
        fetch_timeout_seconds: float | None = DEFAULT_FETCH_TIMEOUT_SECONDS,
    ) -> None:
        self.config_store = config_store
        self.market_data = market_data
        self.reconciler = reconciler
        self.store = store
        self.narrator = narrator
        self.fetch_timeout_seconds = fetch_timeout_seconds

        self.last_report: CycleReport | None = None
        self.cycles_run = 0

        self._thread: threading.Thread | None = None
        self._stop_evt = threading.Event()
        self._cycle_lock = threading.Lock()

    # -------------------
    # Lifecycle
    # -------------------

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_evt.clear()
        self._thread = threading.Thread(target=self._thread_main, name="wall-scheduler", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        """Stop the timer. A cycle already in progress is allowed to finish first."""
        self._stop_evt.set()
        if self._thread:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning("Scheduler thread still finishing its cycle after %ss", timeout)

    def is_running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    def _thread_main(self) -> None:
        while not self._stop_evt.is_set():
            cycle_start = time.monotonic()
            try:
                self.run_cycle()
            except Exception as e:
                logger.exception("Wall cycle crashed")
                self.narrator.publish("ERROR", f"Wall cycle failed: {type(e).__name__}: {str(e)[:200]}", step="Cycle")

            interval = self.config_store.current().poll_interval_seconds
            cycle_duration = time.monotonic() - cycle_start
            if cycle_duration >= interval:
                # Cycle took longer than interval - start next immediately.
                msg = f"Cycle took {cycle_duration:.1f}s (interval {interval}s); starting next immediately"
                self.narrator.publish("WARN", msg, step="Timing")
                continue

            remaining = interval - cycle_duration
            logger.info("Cycle complete in %.1fs. Next in %.0fs", cycle_duration, remaining)
            if self._stop_evt.wait(remaining):
                break
        logger.info("Wall scheduler stopped")

    # -------------------
    # Cycle
    # -------------------

    def _call(self, func: Callable[..., T], *args: Any) -> T:
        if self.fetch_timeout_seconds is None:
            return func(*args)
        return call_with_timeout(func, self.fetch_timeout_seconds, *args)

    def _fetch_ticker(self, ids: list[str]) -> list[TickerEntry]:
        self.narrator.publish("INFO", f"Fetching market data for {', '.join(ids)}", step="Fetch")
        try:
            return list(self._call(self.market_data.fetch, ids))
        except Exception as e:
            partial = list(getattr(e, "partial", []) or [])
            self.narrator.publish(
                "ERROR",
                f"Market data fetch failed ({len(partial)}/{len(ids)} ids usable); keeping previous targets: "
                f"{type(e).__name__}: {str(e)[:200]}",
                step="Fetch",
            )
            return partial

    def run_cycle(self) -> CycleReport:
        """One fetch -> compute -> reconcile pass against a single config snapshot."""
        with self._cycle_lock:
            config = self.config_store.current()
            started = datetime.now(timezone.utc).strftime("%H:%M")
            self.narrator.publish("INFO", f"Starting wall cycle at {started}", step="Cycle")

            dropped = self.store.retain(p.price_target_key for p in config.tracked_pairs)
            if dropped:
                logger.info("Dropped targets for untracked key(s): %s", ", ".join(dropped))

            ticker = self._fetch_ticker(config.market_data_ids())

            targets, errors = targets_for_ticker(config, ticker)
            by_key = {p.price_target_key: p for p in config.tracked_pairs}
            for key, target in targets.items():
                self.store.set(key, target, pair=by_key[key], target_valuation=config.target_valuation)
                self.narrator.publish(
                    "INFO",
                    f"Targets for {key}: {target.to_dict()}",
                    pair=by_key[key].symbol,
                    step="Targets",
                )
            for key, err in errors.items():
                self.narrator.publish(
                    "ERROR",
                    f"Cannot compute targets for {key}: {err}",
                    pair=by_key[key].symbol,
                    step="Targets",
                )

            report = self.reconciler.reconcile(config, self.store, skip_keys=frozenset(errors))
            self.last_report = report
            self.cycles_run += 1
            return report
