from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Iterable

from src.domain.models import PriceTarget, TrackedPair


@dataclass(frozen=True)
class _Entry:
    target: PriceTarget
    pair: TrackedPair
    target_valuation: float


class PriceTargetStore:
    """Latest computed PriceTarget per price_target_key.

    PriceTarget is immutable, so swapping the reference under the lock is
    enough for readers to see either the old or the new target, never a mix.

    Each target remembers the pair definition and valuation it was computed
    from; `get_current` only hands it out while those still match.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[str, _Entry] = {}

    def set(self, key: str, target: PriceTarget, *, pair: TrackedPair, target_valuation: float) -> None:
        with self._lock:
            self._entries[key] = _Entry(target, pair, float(target_valuation))

    def get(self, key: str) -> PriceTarget | None:
        with self._lock:
            entry = self._entries.get(key)
        return entry.target if entry else None

    def get_current(self, pair: TrackedPair, target_valuation: float) -> PriceTarget | None:
        """Target for `pair`, or None when it was computed from another pair definition or valuation."""
        with self._lock:
            entry = self._entries.get(pair.price_target_key)
        if entry is None or entry.pair != pair or entry.target_valuation != float(target_valuation):
            return None
        return entry.target

    def discard(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def retain(self, keys: Iterable[str]) -> list[str]:
        """Drop every key not in `keys`; returns the dropped keys."""
        keep = set(keys)
        with self._lock:
            dropped = [k for k in self._entries if k not in keep]
            for k in dropped:
                del self._entries[k]
        return dropped

    def snapshot(self) -> dict[str, PriceTarget]:
        with self._lock:
            return {k: e.target for k, e in self._entries.items()}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
