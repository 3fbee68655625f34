from __future__ import annotations

import threading

import pytest

from weldpath.pipeline.events import EventChannel


def test_drain_runs_callbacks_in_post_order() -> None:
    channel = EventChannel()
    seen = []
    for i in range(5):
        channel.post(seen.append, i)
    assert len(channel) == 5
    assert seen == []
    assert channel.drain() == 5
    assert seen == [0, 1, 2, 3, 4]
    assert len(channel) == 0
    assert channel.drain() == 0


def test_posts_during_drain_wait_for_next_drain() -> None:
    channel = EventChannel()
    seen = []

    def first() -> None:
        seen.append("first")
        channel.post(seen.append, "nested")

    channel.post(first)
    channel.post(seen.append, "second")
    assert channel.drain() == 2
    assert seen == ["first", "second"]
    assert channel.drain() == 1
    assert seen == ["first", "second", "nested"]


def test_failing_callback_keeps_remaining_queue() -> None:
    channel = EventChannel()
    seen = []

    def fail() -> None:
        raise RuntimeError("listener failed")

    channel.post(seen.append, 1)
    channel.post(fail)
    channel.post(seen.append, 2)
    with pytest.raises(RuntimeError):
        channel.drain()
    assert seen == [1]
    channel.post(seen.append, 3)
    channel.drain()
    assert seen == [1, 2, 3]


def test_posts_from_many_threads() -> None:
    channel = EventChannel()
    seen = []

    def producer(tag: int) -> None:
        for i in range(100):
            channel.post(seen.append, (tag, i))

    threads = [threading.Thread(target=producer, args=(t,)) for t in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert channel.drain() == 400
    for tag in range(4):
        # each producer's events stay in order
        assert [i for t, i in seen if t == tag] == list(range(100))
