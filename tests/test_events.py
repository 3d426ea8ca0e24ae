"""Event fan-out registry."""

import threading
import time

from adbox.sync.events import InProcessEventRegistry


def test_failing_listener_does_not_block_others():
    registry = InProcessEventRegistry("t")
    got = []

    def broken(event):
        raise RuntimeError("boom")

    registry.subscribe(["p1"], broken)
    registry.subscribe(["p1"], got.append)

    delivered = registry.publish("p1", {"type": "new_message"})

    assert got == [{"type": "new_message"}]
    assert delivered == 1


def test_listener_under_several_keys():
    registry = InProcessEventRegistry("t")
    got = []
    registry.subscribe(["p1", "p2", "p1"], got.append)

    registry.publish("p1", 1)
    registry.publish("p2", 2)
    registry.publish("p3", 3)

    assert got == [1, 2]
    assert registry.listener_count("p1") == 1


def test_unsubscribe_is_idempotent():
    registry = InProcessEventRegistry("t")
    got = []
    unsubscribe = registry.subscribe(["p1", "p2"], got.append)

    unsubscribe()
    unsubscribe()
    registry.publish("p1", "x")

    assert got == []
    assert registry.listener_count() == 0


def test_no_delivery_after_unsubscribe_returns():
    registry = InProcessEventRegistry("t")
    started = threading.Event()
    calls = []

    def slow(event):
        calls.append(("start", event))
        started.set()
        time.sleep(0.1)
        calls.append(("end", event))

    unsubscribe = registry.subscribe(["p1"], slow)
    publisher = threading.Thread(target=registry.publish, args=("p1", "e1"))
    publisher.start()
    started.wait(1)

    # Blocks until the in-flight call finishes
    unsubscribe()
    calls.append(("unsubscribed", None))
    registry.publish("p1", "e2")
    publisher.join()

    assert calls == [("start", "e1"), ("end", "e1"), ("unsubscribed", None)]


def test_concurrent_subscribe_and_publish():
    registry = InProcessEventRegistry("t")
    counts = []
    lock = threading.Lock()

    def listener(event):
        with lock:
            counts.append(event)

    def churn():
        for _ in range(50):
            unsubscribe = registry.subscribe(["p1"], listener)
            registry.publish("p1", 1)
            unsubscribe()

    threads = [threading.Thread(target=churn) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert registry.listener_count() == 0
    assert len(counts) >= 50


def test_publish_without_listeners():
    assert InProcessEventRegistry("t").publish("nobody", {}) == 0
