"""
Wall price math.

Market data quotes the reference coin in USD; the walls are quoted in the inverse
direction (counter per base), so each tier's adjusted price is inverted before it
becomes an order price.
"""

from __future__ import annotations

import math
from typing import Iterable

from src.domain.errors import ComputationError
from src.domain.models import Level, PriceTarget, TickerEntry, Tier, TierSet, WallConfig


def _quote(adjusted: float, tier: Tier, *, side: str, index: int) -> Level:
    if not math.isfinite(adjusted) or adjusted <= 0:
        raise ComputationError(
            f"{side} tier {index} (offset {tier.offset_percent}%) gives a non-positive adjusted price: {adjusted}"
        )
    return Level(price=1 / adjusted, amount=float(tier.amount))


def compute_targets(
    reference_price: float,
    target_valuation: float,
    tiers: TierSet,
    *,
    base: str = "",
    counter: str = "",
) -> PriceTarget:
    """
    Translate a reference price and a tier set into buy/sell levels.

    Buy offsets push the adjusted price up (a lower quote); sell offsets push it
    down (a higher quote). Levels come back in tier order.

    Raises ComputationError when target_valuation is zero or a tier's adjusted
    price is zero (or otherwise not a usable positive number).
    """
    if not math.isfinite(target_valuation) or target_valuation == 0:
        raise ComputationError(f"target valuation must be non-zero; got {target_valuation}")
    if not math.isfinite(reference_price):
        raise ComputationError(f"reference price must be finite; got {reference_price}")

    ratio = reference_price / target_valuation

    buy = tuple(
        _quote(ratio + (ratio * t.offset_percent / 100), t, side="buy", index=i) for i, t in enumerate(tiers.buy)
    )
    sell = tuple(
        _quote(ratio - (ratio * t.offset_percent / 100), t, side="sell", index=i) for i, t in enumerate(tiers.sell)
    )
    return PriceTarget(base=base, counter=counter, buy=buy, sell=sell)


def targets_for_ticker(
    config: WallConfig,
    ticker: Iterable[TickerEntry],
) -> tuple[dict[str, PriceTarget], dict[str, ComputationError]]:
    """
    Compute targets for every tracked pair present in a ticker snapshot.

    Returns (targets by price_target_key, errors by price_target_key). Pairs the
    ticker does not mention appear in neither map.
    """
    by_id = {entry.id: entry for entry in ticker}
    targets: dict[str, PriceTarget] = {}
    errors: dict[str, ComputationError] = {}

    for pair in config.tracked_pairs:
        entry = by_id.get(pair.market_data_id)
        if entry is None:
            continue
        try:
            targets[pair.price_target_key] = compute_targets(
                entry.price_usd,
                config.target_valuation,
                pair.tiers,
                base=pair.base,
                counter=pair.counter,
            )
        except ComputationError as e:
            errors[pair.price_target_key] = e
    return targets, errors
