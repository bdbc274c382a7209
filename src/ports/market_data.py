from __future__ import annotations

from typing import Protocol

from src.domain.models import TickerEntry


class MarketDataProvider(Protocol):
    def fetch(self, ids: list[str]) -> list[TickerEntry]: ...
