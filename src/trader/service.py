from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from src.data.ticker import DEFAULT_BASE_URL as DEFAULT_MARKET_DATA_URL
from src.data.ticker import CoinMarketCapTicker
from src.exchange.client import EXCHANGE_REQUEST_TIMEOUT, RestExchangeClient
from src.ports.exchange import ExchangeClient
from src.ports.market_data import MarketDataProvider
from src.trader.config_store import ConfigStore
from src.trader.scheduler import WallScheduler
from src.walls.broadcaster import DEFAULT_BUFFER_SIZE, EventBroadcaster
from src.walls.reconciler import DEFAULT_CALL_TIMEOUT_SECONDS, OrderReconciler
from src.walls.store import PriceTargetStore

logger = logging.getLogger(__name__)


class WallService:
    """Everything the API and the scheduler share, built once per process."""

    def __init__(
        self,
        config_store: ConfigStore,
        broadcaster: EventBroadcaster,
        exchange: ExchangeClient,
        market_data: MarketDataProvider,
        *,
        call_timeout_seconds: float | None = DEFAULT_CALL_TIMEOUT_SECONDS,
    ) -> None:
        self.config_store = config_store
        self.broadcaster = broadcaster
        self.exchange = exchange
        self.market_data = market_data
        self.store = PriceTargetStore()
        self.reconciler = OrderReconciler(exchange, broadcaster, call_timeout_seconds=call_timeout_seconds)
        self.scheduler = WallScheduler(config_store, market_data, self.reconciler, self.store, broadcaster)

    @classmethod
    def from_config(cls, doc: dict[str, Any], *, path: str | Path | None = None) -> "WallService":
        bc_cfg = doc.get("broadcaster") or {}
        broadcaster = EventBroadcaster(int(bc_cfg.get("buffer_size", DEFAULT_BUFFER_SIZE)))
        config_store = ConfigStore(doc, path=path, narrator=broadcaster)

        ex_cfg = doc.get("exchange") or {}
        exchange = RestExchangeClient(
            base_url=str(ex_cfg.get("base_url") or ""),
            api_key=(os.environ.get("WALLKEEPER_EXCHANGE_API_KEY") or "").strip(),
            timeout=float(ex_cfg.get("request_timeout_seconds", EXCHANGE_REQUEST_TIMEOUT)),
        )

        md_cfg = doc.get("market_data") or {}
        market_data = CoinMarketCapTicker(
            base_url=str(md_cfg.get("base_url") or DEFAULT_MARKET_DATA_URL),
            timeout=float(md_cfg.get("request_timeout_seconds", 20.0)),
        )

        return cls(
            config_store,
            broadcaster,
            exchange,
            market_data,
            call_timeout_seconds=float(ex_cfg.get("call_timeout_seconds", DEFAULT_CALL_TIMEOUT_SECONDS)),
        )

    def start(self) -> None:
        self.scheduler.start()
        logger.info("Wall scheduler started")

    def stop(self, timeout: float | None = 60.0) -> None:
        self.scheduler.stop(timeout=timeout)
