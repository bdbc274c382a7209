from __future__ import annotations

import math
from copy import deepcopy
from typing import Any

from src.domain.errors import ConfigError
from src.domain.models import Tier, TierSet, TrackedPair, WallConfig

DEFAULT_POLL_INTERVAL_SECONDS = 120
DEFAULT_SELL_SIDE_MODE = "sell"

_LEGACY_TOP_KEYS = {
    "VivaTargetPrice": "target_valuation",
    "TradeQwikTradesRefresh": "poll_interval_seconds",
    "TrackCoins": "tracked_pairs",
}

_LEGACY_PAIR_KEYS = {
    "CoinMarketCapID": "market_data_id",
    "TargetSpread": "target_spread",
    "Base": "base",
    "Counter": "counter",
    "PriceTarget": "price_target_key",
    "Tiers": "tiers",
}


def _migrate_legacy_tiers(tiers: Any) -> Any:
    if not isinstance(tiers, dict):
        return tiers
    out = dict(tiers)
    for old, new in (("Buy", "buy"), ("Sell", "sell")):
        if old in out and new not in out:
            out[new] = out.pop(old)
    for side in ("buy", "sell"):
        rows = out.get(side)
        if not isinstance(rows, list):
            continue
        migrated = []
        for row in rows:
            if isinstance(row, dict):
                row = dict(row)
                if "Target" in row and "offset_percent" not in row:
                    row["offset_percent"] = row.pop("Target")
                if "Amount" in row and "amount" not in row:
                    row["amount"] = row.pop("Amount")
            migrated.append(row)
        out[side] = migrated
    return out


def normalise_wall_config(doc: dict[str, Any] | None) -> dict[str, Any]:
    """
    Return a copy of `doc` in the current key layout with defaults filled in.

    Documents in the legacy JSON layout (VivaTargetPrice / TrackCoins / Tiers.Buy[].Target ...)
    are migrated to the snake_case layout.
    """
    if doc is None:
        raise ConfigError("config document is empty")
    if not isinstance(doc, dict):
        raise ConfigError(f"config must be an object; got {type(doc).__name__}")

    out = deepcopy(doc)
    for old, new in _LEGACY_TOP_KEYS.items():
        if old in out and new not in out:
            out[new] = out.pop(old)
        else:
            out.pop(old, None)

    pairs = out.get("tracked_pairs")
    if isinstance(pairs, list):
        migrated = []
        for p in pairs:
            if isinstance(p, dict):
                p = dict(p)
                for old, new in _LEGACY_PAIR_KEYS.items():
                    if old in p and new not in p:
                        p[new] = p.pop(old)
                p["tiers"] = _migrate_legacy_tiers(p.get("tiers"))
                if p.get("tiers") is None:
                    p["tiers"] = {"buy": [], "sell": []}
                p.setdefault("target_spread", 0.0)
            migrated.append(p)
        out["tracked_pairs"] = migrated

    if out.get("poll_interval_seconds") is None:
        out["poll_interval_seconds"] = DEFAULT_POLL_INTERVAL_SECONDS

    exchange = out.get("exchange")
    if exchange is None:
        exchange = out["exchange"] = {}
    if isinstance(exchange, dict):
        exchange.setdefault("sell_side_mode", DEFAULT_SELL_SIDE_MODE)
    return out


def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool) and math.isfinite(float(v))


def _require_positive_number(v: Any, *, name: str) -> None:
    if not _is_number(v):
        raise ConfigError(f"{name} must be a number")
    if float(v) <= 0:
        raise ConfigError(f"{name} must be > 0")


def _require_positive_int(v: Any, *, name: str) -> None:
    if not isinstance(v, int) or isinstance(v, bool):
        raise ConfigError(f"{name} must be an integer")
    if v <= 0:
        raise ConfigError(f"{name} must be > 0")


def _require_code(v: Any, *, name: str) -> None:
    if not isinstance(v, str) or not v.strip():
        raise ConfigError(f"{name} must be a non-empty string")


def _validate_tiers(tiers: Any, *, name: str) -> None:
    if not isinstance(tiers, dict):
        raise ConfigError(f"{name} must be an object with buy/sell lists")
    unknown = set(tiers) - {"buy", "sell"}
    if unknown:
        raise ConfigError(f"Unsupported key in {name}: {sorted(unknown)[0]}")
    for side in ("buy", "sell"):
        rows = tiers.get(side, [])
        if not isinstance(rows, list):
            raise ConfigError(f"{name}.{side} must be an array")
        for i, row in enumerate(rows):
            where = f"{name}.{side}[{i}]"
            if not isinstance(row, dict):
                raise ConfigError(f"{where} must be an object")
            off = row.get("offset_percent")
            if not _is_number(off):
                raise ConfigError(f"{where}.offset_percent must be a number")
            if float(off) < 0 or float(off) >= 100:
                raise ConfigError(f"{where}.offset_percent must be >= 0 and < 100")
            _require_positive_number(row.get("amount"), name=f"{where}.amount")


def _validate_section(doc: dict[str, Any], section: str, validators: dict[str, Any]) -> None:
    sec = doc.get(section)
    if sec is None:
        return
    if not isinstance(sec, dict):
        raise ConfigError(f"{section} must be an object")
    for key, validator in validators.items():
        if key in sec and sec[key] is not None:
            validator(sec[key], name=f"{section}.{key}")


def _validate_url(v: Any, *, name: str) -> None:
    if not isinstance(v, str) or not v.startswith(("http://", "https://")):
        raise ConfigError(f"{name} must be an http(s) URL")


def _validate_sell_side_mode(v: Any, *, name: str) -> None:
    if v not in ("sell", "buy"):
        raise ConfigError(f"{name} must be 'sell' or 'buy'")


def validate_wall_config(doc: dict[str, Any]) -> None:
    if not isinstance(doc, dict):
        raise ConfigError("config must be an object")

    tv = doc.get("target_valuation")
    if not _is_number(tv):
        raise ConfigError("target_valuation must be a number")
    if float(tv) <= 0:
        raise ConfigError("target_valuation must be > 0")

    _require_positive_int(doc.get("poll_interval_seconds"), name="poll_interval_seconds")

    pairs = doc.get("tracked_pairs")
    if not isinstance(pairs, list) or not pairs:
        raise ConfigError("tracked_pairs must be a non-empty array")
    seen: set[str] = set()
    for i, p in enumerate(pairs):
        where = f"tracked_pairs[{i}]"
        if not isinstance(p, dict):
            raise ConfigError(f"{where} must be an object")
        for k in ("market_data_id", "base", "counter", "price_target_key"):
            _require_code(p.get(k), name=f"{where}.{k}")
        key = p["price_target_key"].strip()
        if key in seen:
            raise ConfigError(f"Duplicate price_target_key: {key}")
        seen.add(key)
        spread = p.get("target_spread", 0.0)
        if not _is_number(spread):
            raise ConfigError(f"{where}.target_spread must be a number")
        _validate_tiers(p.get("tiers"), name=f"{where}.tiers")

    _validate_section(
        doc,
        "exchange",
        {
            "base_url": _validate_url,
            "request_timeout_seconds": _require_positive_number,
            "call_timeout_seconds": _require_positive_number,
            "sell_side_mode": _validate_sell_side_mode,
        },
    )
    _validate_section(
        doc,
        "market_data",
        {
            "base_url": _validate_url,
            "request_timeout_seconds": _require_positive_number,
        },
    )
    _validate_section(doc, "api", {"host": _require_code, "port": _require_positive_int})
    _validate_section(doc, "broadcaster", {"buffer_size": _require_positive_int})


def _tiers_from(rows: list[dict[str, Any]]) -> tuple[Tier, ...]:
    return tuple(Tier(offset_percent=float(r["offset_percent"]), amount=float(r["amount"])) for r in rows)


def parse_wall_config(doc: dict[str, Any]) -> WallConfig:
    """Normalise + validate a document and build the immutable WallConfig from it."""
    doc_n = normalise_wall_config(doc)
    validate_wall_config(doc_n)

    pairs = []
    for p in doc_n["tracked_pairs"]:
        tiers = p.get("tiers") or {}
        pairs.append(
            TrackedPair(
                market_data_id=p["market_data_id"].strip(),
                base=p["base"].strip(),
                counter=p["counter"].strip(),
                target_spread=float(p.get("target_spread", 0.0)),
                price_target_key=p["price_target_key"].strip(),
                tiers=TierSet(buy=_tiers_from(tiers.get("buy", [])), sell=_tiers_from(tiers.get("sell", []))),
            )
        )

    return WallConfig(
        target_valuation=float(doc_n["target_valuation"]),
        poll_interval_seconds=int(doc_n["poll_interval_seconds"]),
        tracked_pairs=tuple(pairs),
        sell_side_mode=str((doc_n.get("exchange") or {}).get("sell_side_mode", DEFAULT_SELL_SIDE_MODE)),
    )
