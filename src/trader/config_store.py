from __future__ import annotations

import logging
import threading
from copy import deepcopy
from pathlib import Path
from typing import Any

from src.domain.models import WallConfig
from src.ports.narration import Narrator
from src.utils.config_loader import save_config
from src.utils.wall_config import normalise_wall_config, parse_wall_config

logger = logging.getLogger(__name__)


class ConfigStore:
    """
    Process-wide holder of the active config.

    The document and its parsed WallConfig are swapped together under one lock, so
    readers always get a matching pair from the same generation.
    """

    def __init__(
        self,
        doc: dict[str, Any],
        *,
        path: str | Path | None = None,
        narrator: Narrator | None = None,
    ) -> None:
        doc_n = normalise_wall_config(doc)
        self._lock = threading.Lock()
        self._state: tuple[dict[str, Any], WallConfig] = (doc_n, parse_wall_config(doc_n))
        self.path = Path(path) if path else None
        self.narrator = narrator
        self.generation = 1

    def current(self) -> WallConfig:
        with self._lock:
            return self._state[1]

    def document(self) -> dict[str, Any]:
        with self._lock:
            return deepcopy(self._state[0])

    def reload(self, doc: dict[str, Any], *, persist: bool = True) -> WallConfig:
        """
        Validate `doc` and make it the active config, replacing every tracked pair.

        Raises ConfigError (and leaves the previous config active) when the document is malformed.
        """
        doc_n = normalise_wall_config(doc)
        cfg = parse_wall_config(doc_n)

        with self._lock:
            if persist and self.path is not None:
                save_config(doc_n, self.path)
            self._state = (doc_n, cfg)
            self.generation += 1
            generation = self.generation

        logger.info("Config reloaded (generation %s, %s tracked pair(s))", generation, len(cfg.tracked_pairs))
        if self.narrator is not None:
            self.narrator.publish("INFO", "Config updated", step="Config")
        return cfg
