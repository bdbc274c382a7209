import threading
import time

import pytest

from src.walls.broadcaster import EventBroadcaster


def test_publish_reaches_every_subscriber():
    bus = EventBroadcaster()
    subs = [bus.subscribe() for _ in range(3)]

    msg = bus.publish("INFO", "Going to set buy / sell walls", step="Start")

    for s in subs:
        got = s.drain()
        assert [m.id for m in got] == [msg.id]
        assert got[0].message == "Going to set buy / sell walls"
        assert got[0].level == "INFO"


def test_stalled_listener_neither_blocks_publisher_nor_starves_others():
    bus = EventBroadcaster()
    stalled = bus.subscribe(maxlen=2)
    reader = bus.subscribe(maxlen=1000)

    start = time.monotonic()
    for i in range(500):
        bus.publish("INFO", f"msg {i}")
    assert time.monotonic() - start < 5.0

    assert [m.message for m in reader.drain()] == [f"msg {i}" for i in range(500)]
    # Drop-oldest: the stalled listener keeps only the newest messages.
    assert [m.message for m in stalled.drain()] == ["msg 498", "msg 499"]
    assert stalled.dropped == 498


def test_no_replay_for_late_subscribers():
    bus = EventBroadcaster()
    bus.publish("INFO", "before")
    late = bus.subscribe()
    bus.publish("INFO", "after")
    assert [m.message for m in late.drain()] == ["after"]


def test_unsubscribe_stops_delivery():
    bus = EventBroadcaster()
    sub = bus.subscribe()
    assert bus.listener_count() == 1

    assert bus.unsubscribe(sub) is True
    bus.publish("INFO", "ignored")

    assert bus.listener_count() == 0
    assert sub.drain() == []
    assert bus.unsubscribe(sub) is False


def test_get_waits_for_a_message_from_another_thread():
    bus = EventBroadcaster()
    sub = bus.subscribe()

    t = threading.Timer(0.05, lambda: bus.publish("WARN", "late news", pair="VIVA/BTC"))
    t.start()
    try:
        msg = sub.get(timeout=2.0)
    finally:
        t.join()

    assert msg is not None
    assert msg.message == "late news"
    assert msg.level == "WARN"
    assert msg.pair == "VIVA/BTC"


def test_get_times_out_with_none():
    sub = EventBroadcaster().subscribe()
    assert sub.get(timeout=0.01) is None


def test_message_ids_increase():
    bus = EventBroadcaster()
    a = bus.publish("info", "a")
    b = bus.publish("error", "b")
    assert b.id > a.id
    assert a.level == "INFO"
    assert b.to_dict()["level"] == "ERROR"


def test_buffer_size_must_be_positive():
    with pytest.raises(ValueError):
        EventBroadcaster(buffer_size=0)
