"""Tests for FifoQueue — per-key ordering, visibility, dedup, dead letters."""

from __future__ import annotations

import threading
import time
from pathlib import Path

import pytest

from edgesite.models.queue import QueueMessage
from edgesite.platform.fifo_queue import FifoQueue, QueueError


def _keys(batch) -> list[str]:
    return [r.message.key for r in batch]


class TestDelivery:
    def test_empty_receive(self, queue: FifoQueue):
        assert queue.receive() == []

    def test_fifo_within_group(self, queue: FifoQueue):
        for i in range(3):
            queue.send(QueueMessage(key=f"v{i}", grouping_key="/page"))
        assert _keys(queue.receive(10)) == ["v0", "v1", "v2"]

    def test_in_flight_message_blocks_its_group(self, queue: FifoQueue):
        queue.send(QueueMessage(key="first", grouping_key="/page"))
        [received] = queue.receive(1)
        queue.send(QueueMessage(key="second", grouping_key="/page"))
        assert queue.receive(10) == []
        queue.delete(received.receipt_handle)
        assert _keys(queue.receive(10)) == ["second"]

    def test_other_groups_not_blocked(self, queue: FifoQueue):
        queue.send(QueueMessage(key="/a"))
        queue.receive(1)
        queue.send(QueueMessage(key="/b"))
        assert _keys(queue.receive(10)) == ["/b"]

    def test_max_messages_respected(self, queue: FifoQueue):
        for i in range(7):
            queue.send(QueueMessage(key=f"/p{i}"))
        assert len(queue.receive(5)) == 5

    def test_depth(self, queue: FifoQueue):
        queue.send(QueueMessage(key="/a"))
        queue.send(QueueMessage(key="/b"))
        queue.receive(1)
        assert queue.depth == 2


class TestVisibility:
    def test_redelivered_after_timeout(self, queue: FifoQueue, clock):
        queue.send(QueueMessage(key="/a"))
        [first] = queue.receive(1)
        clock.advance(31)
        [second] = queue.receive(1)
        assert second.message.message_id == first.message.message_id
        assert second.receive_count == 2
        assert second.receipt_handle != first.receipt_handle

    def test_stale_receipt_rejected(self, queue: FifoQueue, clock):
        queue.send(QueueMessage(key="/a"))
        [first] = queue.receive(1)
        clock.advance(31)
        queue.receive(1)
        with pytest.raises(QueueError):
            queue.delete(first.receipt_handle)

    def test_change_visibility_extends(self, queue: FifoQueue, clock):
        queue.send(QueueMessage(key="/a"))
        [received] = queue.receive(1)
        clock.advance(20)
        queue.change_visibility(received.receipt_handle, 30)
        clock.advance(20)
        assert queue.receive(1) == []
        clock.advance(11)
        assert _keys(queue.receive(1)) == ["/a"]

    def test_change_visibility_zero_releases(self, queue: FifoQueue):
        queue.send(QueueMessage(key="/a"))
        [received] = queue.receive(1)
        queue.change_visibility(received.receipt_handle, 0)
        assert _keys(queue.receive(1)) == ["/a"]

    def test_unknown_receipt(self, queue: FifoQueue):
        with pytest.raises(QueueError):
            queue.change_visibility("nope", 10)


class TestDedupAndLimits:
    def test_duplicate_dedup_id_dropped(self, queue: FifoQueue):
        first = queue.send(QueueMessage(key="/a", deduplication_id="d1"))
        second = queue.send(QueueMessage(key="/a", deduplication_id="d1"))
        assert first == second
        assert queue.depth == 1

    def test_same_message_id_rejected(self, queue: FifoQueue):
        message = QueueMessage(key="/a")
        queue.send(message)
        with pytest.raises(QueueError):
            queue.send(message)

    def test_full_queue_rejects(self, clock):
        with FifoQueue("small", max_depth=1, clock=clock) as q:
            q.send(QueueMessage(key="/a"))
            with pytest.raises(QueueError, match="full"):
                q.send(QueueMessage(key="/b"))


class TestDeadLetters:
    def test_moved_after_max_receives(self, clock):
        with FifoQueue("dlq", max_receive_count=2, visibility_timeout=5, clock=clock) as q:
            q.send(QueueMessage(key="/poison", grouping_key="g"))
            q.send(QueueMessage(key="/next", grouping_key="g"))
            for _ in range(2):
                assert _keys(q.receive(1)) == ["/poison"]
                clock.advance(6)
            # Third attempt dead-letters the poison message and frees the group.
            assert _keys(q.receive(1)) == ["/next"]
            assert [m.key for m in q.dead_letters] == ["/poison"]
            assert q.depth == 1


class TestPersistenceAndWaiting:
    def test_sqlite_file_survives_reopen(self, tmp_path: Path):
        db = tmp_path / "q" / "queue.db"
        with FifoQueue("p", db_path=db) as q:
            q.send(QueueMessage(key="/a"))
        with FifoQueue("p", db_path=db) as q:
            assert _keys(q.receive(1)) == ["/a"]

    def test_long_poll_wakes_on_send(self):
        with FifoQueue("lp") as q:
            timer = threading.Timer(0.05, lambda: q.send(QueueMessage(key="/late")))
            timer.start()
            started = time.monotonic()
            batch = q.receive(1, wait_seconds=5)
            timer.join()
            assert _keys(batch) == ["/late"]
            assert time.monotonic() - started < 5

    def test_long_poll_times_out_empty(self):
        with FifoQueue("lp") as q:
            assert q.receive(1, wait_seconds=0.05) == []
