"""
Tests for SeenRegistry.
"""

import threading

from lpkeeper.execution.dedup import SeenRegistry


def test_first_insert_wins_second_is_duplicate():
    reg = SeenRegistry()
    assert reg.insert_if_absent("/data/A.json") is True
    assert reg.insert_if_absent("/data/A.json") is False
    assert reg.contains("/data/A.json")
    assert reg.size() == 1


def test_stats_track_duplicates():
    reg = SeenRegistry()
    reg.insert_if_absent("a")
    reg.insert_if_absent("a")
    reg.insert_if_absent("b")
    stats = reg.get_stats()
    assert stats["inserted"] == 2
    assert stats["duplicates"] == 1
    assert stats["current_size"] == 2


def test_duplicate_logged_through_callback():
    events = []
    reg = SeenRegistry(log_event=lambda event, **kw: events.append((event, kw)))
    reg.insert_if_absent("x")
    reg.insert_if_absent("x")
    assert events == [("dispatch_dedup_skip", {"key": "x"})]


def test_concurrent_inserts_single_winner():
    reg = SeenRegistry()
    barrier = threading.Barrier(16)
    wins = []
    lock = threading.Lock()

    def worker():
        barrier.wait()
        if reg.insert_if_absent("/data/RACE.json"):
            with lock:
                wins.append(1)

    threads = [threading.Thread(target=worker) for _ in range(16)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(wins) == 1
    assert reg.get_stats()["duplicates"] == 15
