import pytest

from src.domain.errors import ComputationError
from src.domain.models import TickerEntry, Tier, TierSet
from src.utils.wall_config import parse_wall_config
from src.walls.targets import compute_targets, targets_for_ticker
from tests.fakes import make_doc, make_pair


def _tiers(buy=(), sell=()):
    return TierSet(buy=tuple(Tier(o, a) for o, a in buy), sell=tuple(Tier(o, a) for o, a in sell))


def test_buy_tier_worked_example():
    t = compute_targets(100, 10, _tiers(buy=[(5, 50)]))
    assert len(t.buy) == 1
    assert t.buy[0].price == pytest.approx(1 / 10.5)
    assert t.buy[0].price == pytest.approx(0.095238, abs=1e-6)
    assert t.buy[0].amount == 50


def test_sell_tier_worked_example():
    t = compute_targets(100, 10, _tiers(sell=[(5, 50)]))
    assert t.sell[0].price == pytest.approx(1 / 9.5)
    assert t.sell[0].price == pytest.approx(0.105263, abs=1e-6)
    assert t.sell[0].amount == 50


def test_zero_offset_is_neutral_on_both_sides():
    t = compute_targets(100, 10, _tiers(buy=[(0, 1)], sell=[(0, 1)]))
    assert t.buy[0].price == t.sell[0].price == pytest.approx(0.1)


@pytest.mark.parametrize("reference_price", [0.01, 1.0, 100.0, 6500.0])
@pytest.mark.parametrize("target_valuation", [0.05, 1.0, 10.0])
def test_buy_price_never_above_sell_price_for_same_offset(reference_price, target_valuation):
    offsets = [0, 0.5, 5, 25, 99]
    t = compute_targets(
        reference_price,
        target_valuation,
        _tiers(buy=[(o, 1) for o in offsets], sell=[(o, 1) for o in offsets]),
    )
    for b, s in zip(t.buy, t.sell):
        assert b.price <= s.price


def test_levels_follow_tier_order():
    t = compute_targets(100, 10, _tiers(buy=[(10, 3), (1, 1), (5, 2)], sell=[(2, 7), (20, 9)]))
    assert [lv.amount for lv in t.buy] == [3, 1, 2]
    assert [lv.amount for lv in t.sell] == [7, 9]
    # Larger buy offsets quote lower; larger sell offsets quote higher.
    assert t.buy[0].price < t.buy[2].price < t.buy[1].price
    assert t.sell[0].price < t.sell[1].price


def test_zero_target_valuation_is_a_computation_error():
    with pytest.raises(ComputationError, match=r"target valuation"):
        compute_targets(100, 0, _tiers(buy=[(5, 50)]))


def test_zero_adjusted_price_is_a_computation_error():
    # A 100% sell offset drives the adjusted price to exactly zero.
    with pytest.raises(ComputationError, match=r"sell tier 0"):
        compute_targets(100, 10, _tiers(sell=[(100, 1)]))


def test_zero_reference_price_is_a_computation_error():
    with pytest.raises(ComputationError):
        compute_targets(0, 10, _tiers(buy=[(5, 1)]))


def test_identical_inputs_give_identical_targets():
    tiers = _tiers(buy=[(1, 1), (2.5, 2)], sell=[(1, 1), (7.25, 3)])
    a = compute_targets(1234.5678, 0.0375, tiers, base="VIVA", counter="BTC")
    b = compute_targets(1234.5678, 0.0375, tiers, base="VIVA", counter="BTC")
    assert a == b
    assert [lv.price.hex() for lv in a.buy + a.sell] == [lv.price.hex() for lv in b.buy + b.sell]


def test_targets_for_ticker_maps_pairs_and_collects_errors():
    cfg = parse_wall_config(
        make_doc(
            tracked_pairs=[
                make_pair("BTC", market_data_id="bitcoin", counter="BTC", buy=[{"offset_percent": 5, "amount": 50}]),
                make_pair("LTC", market_data_id="litecoin", counter="LTC", buy=[{"offset_percent": 5, "amount": 5}]),
                make_pair("ETH", market_data_id="ethereum", counter="ETH", sell=[{"offset_percent": 5, "amount": 5}]),
            ]
        )
    )
    ticker = [
        TickerEntry(id="bitcoin", price_usd=100.0),
        TickerEntry(id="litecoin", price_usd=0.0),
    ]

    targets, errors = targets_for_ticker(cfg, ticker)

    assert set(targets) == {"BTC"}
    assert targets["BTC"].base == "VIVA"
    assert targets["BTC"].counter == "BTC"
    assert targets["BTC"].buy[0].price == pytest.approx(1 / 10.5)
    assert set(errors) == {"LTC"}
    # Missing from the ticker: neither a target nor an error.
    assert "ETH" not in targets and "ETH" not in errors
