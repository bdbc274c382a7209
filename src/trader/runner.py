from __future__ import annotations

import fcntl
import logging
import os
import sys
from pathlib import Path

import uvicorn

from src.api.app import create_app
from src.domain.errors import ConfigError
from src.trader.service import WallService
from src.utils.config_loader import default_config_path, load_config

logger = logging.getLogger(__name__)

DEFAULT_API_HOST = "127.0.0.1"
DEFAULT_API_PORT = 4050

# Exit codes
EXIT_CONFIG = 2
EXIT_LOCKED = 1


def _acquire_single_instance_lock(lock_path: Path):
    """
    Enforce single-instance operation.
    Two bots reconciling the same account would cancel each other's walls, so fail fast instead.
    """
    lock_f = lock_path.open("w")
    try:
        fcntl.flock(lock_f.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
    except OSError:
        lock_f.close()
        return None
    lock_f.write(str(os.getpid()))
    lock_f.flush()
    return lock_f


def main() -> int:
    # Configure logging (idempotent; safe if configured elsewhere).
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    lock_f = _acquire_single_instance_lock(Path(".wallkeeper.lock"))
    if lock_f is None:
        logger.error("Another Wallkeeper instance appears to be running (lockfile busy). Exiting.")
        return EXIT_LOCKED

    path = default_config_path()
    try:
        doc = load_config(path)
        service = WallService.from_config(doc, path=path)
    except (FileNotFoundError, ConfigError, ValueError) as e:
        logger.error("Cannot start: %s: %s", type(e).__name__, e)
        return EXIT_CONFIG

    api_cfg = doc.get("api") or {}
    host = str(api_cfg.get("host", DEFAULT_API_HOST))
    port = int(api_cfg.get("port", DEFAULT_API_PORT))

    app = create_app(service)
    logger.info("Starting Wallkeeper on %s:%s (%s tracked pair(s))", host, port, len(service.config_store.current().tracked_pairs))
    try:
        uvicorn.run(app, host=host, port=port, reload=False, log_level="info", workers=1)
    except KeyboardInterrupt:
        logger.info("Stopping Wallkeeper...")
    finally:
        lock_f.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
