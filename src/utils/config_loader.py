from __future__ import annotations

import logging
import os
import tempfile
import threading
from copy import deepcopy
from pathlib import Path
from typing import Any

import yaml

from src.domain.errors import ConfigError
from src.utils.wall_config import normalise_wall_config, validate_wall_config

logger = logging.getLogger(__name__)

_cache_lock = threading.Lock()
_cached: dict[str, Any] | None = None
_cached_path: str | None = None


def _project_root() -> Path:
    # src/utils/config_loader.py -> src/utils -> src -> project root
    return Path(__file__).resolve().parents[2]


def default_config_path() -> Path:
    env = (os.environ.get("WALLKEEPER_CONFIG_PATH") or "").strip()
    if env:
        return Path(env)
    return _project_root() / "config" / "config.yaml"


def _apply_env_overrides(cfg: dict[str, Any]) -> None:
    """
    Override selected settings with environment variables.

    Only operational knobs are overridable; the tracked pairs and tiers always come from the file.
    """
    if os.getenv("WALLKEEPER_POLL_INTERVAL_SECONDS"):
        cfg["poll_interval_seconds"] = int(os.environ["WALLKEEPER_POLL_INTERVAL_SECONDS"])

    exchange = cfg.setdefault("exchange", {})
    if os.getenv("WALLKEEPER_EXCHANGE_BASE_URL"):
        exchange["base_url"] = os.environ["WALLKEEPER_EXCHANGE_BASE_URL"]

    market_data = cfg.setdefault("market_data", {})
    if os.getenv("WALLKEEPER_MARKET_DATA_BASE_URL"):
        market_data["base_url"] = os.environ["WALLKEEPER_MARKET_DATA_BASE_URL"]

    api = cfg.setdefault("api", {})
    if os.getenv("WALLKEEPER_API_HOST"):
        api["host"] = os.environ["WALLKEEPER_API_HOST"]
    if os.getenv("WALLKEEPER_API_PORT"):
        api["port"] = int(os.environ["WALLKEEPER_API_PORT"])


def load_config(config_path: str | Path | None = None, *, force_reload: bool = False) -> dict[str, Any]:
    """
    Load the YAML config once and reuse it across the process.

    - Reads `config/config.yaml` by default (JSON documents are valid YAML and load too).
    - Migrates legacy key names and applies environment overrides.
    - Returns a deep copy so callers can safely mutate local copies.

    Raises FileNotFoundError for a missing file and ConfigError for a malformed one.
    """
    global _cached, _cached_path

    path = Path(config_path) if config_path else default_config_path()
    path_str = str(path.resolve())

    with _cache_lock:
        if not force_reload and _cached is not None and _cached_path == path_str:
            return deepcopy(_cached)

        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with path.open("r", encoding="utf-8") as f:
            try:
                cfg = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"Config file is not valid YAML/JSON: {e}") from e

        if not isinstance(cfg, dict):
            raise ConfigError(f"Config must be a YAML mapping (dict); got {type(cfg).__name__}")

        cfg = normalise_wall_config(cfg)
        _apply_env_overrides(cfg)
        validate_wall_config(cfg)

        _cached = cfg
        _cached_path = path_str
        logger.info("Loaded config from %s", path_str)
        return deepcopy(cfg)


def save_config(doc: dict[str, Any], config_path: str | Path | None = None) -> Path:
    """
    Persist a config document as YAML, replacing the file atomically.

    The in-process cache is updated so a subsequent load_config() sees the saved document.
    """
    global _cached, _cached_path

    path = Path(config_path) if config_path else default_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)

    with _cache_lock:
        fd, tmp = tempfile.mkstemp(prefix=".config-", suffix=".yaml", dir=str(path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                yaml.safe_dump(doc, f, sort_keys=False, default_flow_style=False)
            os.replace(tmp, path)
        except BaseException:
            try:
                os.unlink(tmp)
            except OSError:
                pass
            raise

        _cached = deepcopy(doc)
        _cached_path = str(path.resolve())
    logger.info("Saved config to %s", path)
    return path
