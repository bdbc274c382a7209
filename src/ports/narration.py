from __future__ import annotations

from typing import Any, Protocol


class Narrator(Protocol):
    def publish(self, level: str, message: str, *, pair: str | None = None, step: str | None = None) -> Any: ...
