from __future__ import annotations


class WallkeeperError(Exception):
    """Base class for errors raised by the wall engine and its upstream clients."""


class FetchError(WallkeeperError):
    """Market data could not be fetched or was malformed."""


class UpstreamTimeout(FetchError):
    """An upstream call did not complete within its wall-clock budget."""


class BalanceError(WallkeeperError):
    """The exchange balance could not be fetched."""


class OpenOrdersError(WallkeeperError):
    """The exchange open orders could not be fetched."""


class ComputationError(WallkeeperError):
    """Target prices for a pair are undefined (degenerate division)."""


class CancellationError(WallkeeperError):
    """A single open order could not be cancelled."""


class PlacementError(WallkeeperError):
    """A single wall level could not be placed."""


class ConfigError(WallkeeperError, ValueError):
    """A configuration document is malformed."""
