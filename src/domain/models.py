from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping


@dataclass(frozen=True)
class Tier:
    offset_percent: float
    amount: float

    def to_dict(self) -> dict[str, Any]:
        return {"offset_percent": float(self.offset_percent), "amount": float(self.amount)}


@dataclass(frozen=True)
class TierSet:
    buy: tuple[Tier, ...] = ()
    sell: tuple[Tier, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {"buy": [t.to_dict() for t in self.buy], "sell": [t.to_dict() for t in self.sell]}


@dataclass(frozen=True)
class TrackedPair:
    market_data_id: str
    base: str
    counter: str
    target_spread: float
    price_target_key: str
    tiers: TierSet

    @property
    def symbol(self) -> str:
        return f"{self.base}/{self.counter}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "market_data_id": self.market_data_id,
            "base": self.base,
            "counter": self.counter,
            "target_spread": float(self.target_spread),
            "price_target_key": self.price_target_key,
            "tiers": self.tiers.to_dict(),
        }


@dataclass(frozen=True)
class WallConfig:
    """Effective wall settings. Replaced as a whole on reload, never mutated."""

    target_valuation: float
    poll_interval_seconds: int
    tracked_pairs: tuple[TrackedPair, ...]
    sell_side_mode: str = "sell"

    def market_data_ids(self) -> list[str]:
        out: list[str] = []
        for p in self.tracked_pairs:
            if p.market_data_id not in out:
                out.append(p.market_data_id)
        return out


@dataclass(frozen=True)
class TickerEntry:
    id: str
    price_usd: float
    price_btc: float | None = None
    last_updated: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "price_usd": float(self.price_usd),
            "price_btc": self.price_btc,
            "last_updated": self.last_updated,
        }


@dataclass(frozen=True)
class Level:
    price: float
    amount: float

    def to_dict(self) -> dict[str, Any]:
        return {"price": float(self.price), "amount": float(self.amount)}


@dataclass(frozen=True)
class PriceTarget:
    base: str
    counter: str
    buy: tuple[Level, ...] = ()
    sell: tuple[Level, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "base": self.base,
            "counter": self.counter,
            "buy": [lv.to_dict() for lv in self.buy],
            "sell": [lv.to_dict() for lv in self.sell],
        }


@dataclass(frozen=True)
class Balance:
    currencies: Mapping[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "currencies", MappingProxyType(dict(self.currencies)))

    def available(self, code: str) -> float:
        return float(self.currencies.get(code, 0.0))

    def to_dict(self) -> dict[str, Any]:
        return {k: float(v) for k, v in self.currencies.items()}


@dataclass(frozen=True)
class OpenOrder:
    order_id: str
    base: str
    counter: str
    side: str
    price: float
    amount: float

    def matches(self, pair: TrackedPair) -> bool:
        return self.base == pair.base and self.counter == pair.counter

    def to_dict(self) -> dict[str, Any]:
        return {
            "order_id": self.order_id,
            "base": self.base,
            "counter": self.counter,
            "side": self.side,
            "price": float(self.price),
            "amount": float(self.amount),
        }


@dataclass(frozen=True)
class OrderAck:
    order_id: str | None
    status: str
    raw: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"order_id": self.order_id, "status": self.status}


@dataclass
class CycleReport:
    started_at: str
    finished_at: str | None = None
    aborted: bool = False
    abort_reason: str | None = None
    cancelled: int = 0
    cancel_failures: int = 0
    placed: int = 0
    placement_failures: int = 0
    skipped_insufficient: int = 0
    skipped_pairs: list[str] = field(default_factory=list)

    @property
    def placement_attempts(self) -> int:
        return self.placed + self.placement_failures

    def to_dict(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "aborted": self.aborted,
            "abort_reason": self.abort_reason,
            "cancelled": self.cancelled,
            "cancel_failures": self.cancel_failures,
            "placed": self.placed,
            "placement_failures": self.placement_failures,
            "skipped_insufficient": self.skipped_insufficient,
            "skipped_pairs": list(self.skipped_pairs),
        }
