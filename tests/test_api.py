import asyncio
import json

import pytest
from fastapi.testclient import TestClient

from src.api.app import create_app, event_stream
from src.trader.config_store import ConfigStore
from src.trader.service import WallService
from src.walls.broadcaster import EventBroadcaster
from tests.fakes import FakeExchange, FakeMarketData, make_doc


def _service():
    broadcaster = EventBroadcaster(buffer_size=100)
    return WallService(
        ConfigStore(make_doc(), narrator=broadcaster),
        broadcaster,
        FakeExchange(balance={"BTC": 1000.0}),
        FakeMarketData({"bitcoin": 100.0}),
        call_timeout_seconds=None,
    )


@pytest.fixture
def service():
    return _service()


@pytest.fixture
def client(service):
    with TestClient(create_app(service)) as c:
        yield c


def test_api_health_ok(client):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    # WALLKEEPER_DISABLE_SCHEDULER is set for unit tests.
    assert data["scheduler_running"] is False
    assert data["cycles_run"] == 0


def test_api_config_get_returns_active_document(client):
    resp = client.get("/api/config")
    assert resp.status_code == 200
    data = resp.json()
    assert data["target_valuation"] == 10.0
    assert data["tracked_pairs"][0]["price_target_key"] == "BTC"
    assert data["exchange"]["sell_side_mode"] == "sell"


def test_api_config_put_replaces_config(client, service):
    doc = make_doc(target_valuation=0.25, poll_interval_seconds=300)
    resp = client.put("/api/config", json=doc)
    assert resp.status_code == 200
    assert resp.json()["target_valuation"] == 0.25
    assert service.config_store.current().poll_interval_seconds == 300


def test_api_config_put_rejects_malformed_document(client, service):
    before = client.get("/api/config").json()

    resp = client.put("/api/config", json=make_doc(tracked_pairs=[]))

    assert resp.status_code == 400
    assert resp.json()["detail"].startswith("Invalid config:")
    assert client.get("/api/config").json() == before
    assert service.config_store.generation == 1


def test_api_targets_and_latest_cycle(client, service):
    empty = client.get("/api/cycle/latest").json()
    assert empty["started_at"] is None
    assert client.get("/api/targets").json() == {}

    service.scheduler.run_cycle()

    targets = client.get("/api/targets").json()
    assert set(targets) == {"BTC"}
    assert targets["BTC"]["buy"][0]["price"] == pytest.approx(1 / 10.5)

    latest = client.get("/api/cycle/latest").json()
    assert latest["aborted"] is False
    assert latest["placed"] == 2
    assert client.get("/api/health").json()["cycles_run"] == 1


def test_api_service_not_ready_is_503():
    app = create_app(None)
    # No startup hook run (no context manager), so no service has been built.
    client = TestClient(app)
    assert client.get("/api/targets").status_code == 503


def _parse(chunk):
    assert chunk.startswith("data: ")
    return json.loads(chunk[len("data: "):])


def test_event_stream_sends_config_snapshot_then_live_narration(service):
    async def scenario():
        calls = {"n": 0}

        async def is_disconnected():
            calls["n"] += 1
            return calls["n"] > 2

        gen = event_stream(service, is_disconnected, poll_seconds=0)
        chunks = [await gen.__anext__() for _ in range(3)]
        assert service.broadcaster.listener_count() == 1

        service.broadcaster.publish("WARN", "Insufficient balance", pair="VIVA/BTC", step="Buy")
        chunks.extend([c async for c in gen])
        return chunks

    chunks = asyncio.run(scenario())

    assert chunks[0].startswith("retry:")
    assert _parse(chunks[1])["message"] == "connected"
    snapshot = _parse(chunks[2])
    assert snapshot["step"] == "Config"
    assert snapshot["config"]["tracked_pairs"][0]["price_target_key"] == "BTC"
    live = _parse(chunks[3])
    assert (live["level"], live["pair"], live["step"]) == ("WARN", "VIVA/BTC", "Buy")
    assert chunks[4] == ": keep-alive\n\n"
    # The generator unsubscribes on exit.
    assert service.broadcaster.listener_count() == 0


def test_event_stream_does_not_replay_history(service):
    service.broadcaster.publish("INFO", "before anyone listened")

    async def scenario():
        async def is_disconnected():
            return True

        return [c async for c in event_stream(service, is_disconnected, poll_seconds=0)]

    chunks = asyncio.run(scenario())

    assert len(chunks) == 3
    assert all("before anyone listened" not in c for c in chunks)
