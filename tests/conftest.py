import os

import pytest

# Unit tests never start the background scheduler from the API startup hook.
os.environ.setdefault("WALLKEEPER_DISABLE_SCHEDULER", "1")

from src.walls.broadcaster import EventBroadcaster
from src.walls.store import PriceTargetStore


@pytest.fixture
def broadcaster():
    return EventBroadcaster(buffer_size=1000)


@pytest.fixture
def feed(broadcaster):
    """A subscription opened before the code under test runs."""
    sub = broadcaster.subscribe()
    yield sub
    broadcaster.unsubscribe(sub)


@pytest.fixture
def target_store():
    return PriceTargetStore()
