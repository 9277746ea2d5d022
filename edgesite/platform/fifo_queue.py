"""FIFO-per-key queue with visibility timeouts, backed by SQLite.

Semantics follow a FIFO queue primitive:

- Delivery is at-least-once.  A received message becomes invisible for the
  visibility timeout; if it is not deleted in time it is delivered again.
- Ordering holds only within a grouping key.  While any message of a group
  is in flight, no later message of that group is delivered.  Different
  groups may interleave arbitrarily.
- ``receive`` long-polls up to ``wait_seconds`` when nothing is available.
- With ``max_receive_count`` set, a message received more than that many
  times is moved to the dead-letter set instead of being delivered.

``db_path=None`` keeps the queue in an in-memory SQLite database (volatile);
a path makes it persistent across processes.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
import uuid
from collections.abc import Callable
from pathlib import Path
from typing import Any

from edgesite.models.queue import QueueMessage, ReceivedMessage

logger = logging.getLogger(__name__)

_CREATE_QUEUE = """
CREATE TABLE IF NOT EXISTS messages (
    seq              INTEGER PRIMARY KEY AUTOINCREMENT,
    message_id       TEXT NOT NULL UNIQUE,
    msg_key          TEXT NOT NULL,
    grouping_key     TEXT NOT NULL,
    dedup_id         TEXT,
    visible_at       REAL NOT NULL DEFAULT 0,
    receive_count    INTEGER NOT NULL DEFAULT 0,
    receipt_handle   TEXT,
    dead             INTEGER NOT NULL DEFAULT 0
);
"""

_CREATE_IDX_GROUP = """
CREATE INDEX IF NOT EXISTS idx_group ON messages(grouping_key, seq);
"""


class QueueError(RuntimeError):
    """Raised for invalid queue operations (unknown receipt, full queue)."""


class FifoQueue:
    """FIFO-per-key queue.

    Parameters
    ----------
    name:
        Queue name, used in log lines.
    db_path:
        SQLite file for persistence; ``None`` for an in-memory queue.
    visibility_timeout:
        Default seconds a received message stays invisible.
    max_receive_count:
        Dead-letter threshold; ``None`` disables dead-lettering.
    max_depth:
        Maximum number of live messages.
    clock:
        Time source returning seconds; injectable for tests.
    """

    def __init__(
        self,
        name: str = "revalidation",
        *,
        db_path: Path | None = None,
        visibility_timeout: float = 30.0,
        max_receive_count: int | None = None,
        max_depth: int = 10_000,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.name = name
        self._visibility_timeout = visibility_timeout
        self._max_receive_count = max_receive_count
        self._max_depth = max_depth
        self._clock = clock
        self._lock = threading.Lock()
        self._available = threading.Condition(self._lock)

        if db_path is not None:
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = sqlite3.connect(
            str(db_path) if db_path is not None else ":memory:",
            check_same_thread=False,
        )
        self._db.execute(_CREATE_QUEUE)
        self._db.execute(_CREATE_IDX_GROUP)
        self._db.commit()
        logger.debug(
            "FifoQueue %s: backend=%s", name, db_path if db_path else "memory"
        )

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def depth(self) -> int:
        """Live (not dead-lettered) messages, visible or in flight."""
        with self._lock:
            row = self._db.execute(
                "SELECT COUNT(*) FROM messages WHERE dead = 0"
            ).fetchone()
        return row[0] if row else 0

    @property
    def dead_letters(self) -> list[QueueMessage]:
        with self._lock:
            rows = self._db.execute(
                "SELECT message_id, msg_key, grouping_key, dedup_id "
                "FROM messages WHERE dead = 1 ORDER BY seq"
            ).fetchall()
        return [self._to_message(row) for row in rows]

    # ------------------------------------------------------------------
    # Producer
    # ------------------------------------------------------------------

    def send(self, message: QueueMessage) -> str:
        """Enqueue *message*, returning its message id.

        A message whose ``deduplication_id`` matches a live message is
        accepted but not enqueued twice.
        """
        with self._available:
            if message.deduplication_id:
                dup = self._db.execute(
                    "SELECT message_id FROM messages WHERE dedup_id = ? AND dead = 0",
                    (message.deduplication_id,),
                ).fetchone()
                if dup:
                    logger.debug(
                        "FifoQueue %s: duplicate %s dropped", self.name,
                        message.deduplication_id,
                    )
                    return dup[0]

            depth = self._db.execute(
                "SELECT COUNT(*) FROM messages WHERE dead = 0"
            ).fetchone()[0]
            if depth >= self._max_depth:
                raise QueueError(
                    f"Queue {self.name} is full (depth={depth}). "
                    f"Message for {message.key!r} rejected."
                )
            try:
                self._db.execute(
                    "INSERT INTO messages (message_id, msg_key, grouping_key, dedup_id) "
                    "VALUES (?, ?, ?, ?)",
                    (
                        message.message_id,
                        message.key,
                        message.grouping_key,
                        message.deduplication_id,
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise QueueError(
                    f"Message {message.message_id} is already queued"
                ) from exc
            self._db.commit()
            self._available.notify_all()
        logger.debug(
            "FifoQueue %s: queued %s (group=%s)", self.name, message.key,
            message.grouping_key,
        )
        return message.message_id

    # ------------------------------------------------------------------
    # Consumer
    # ------------------------------------------------------------------

    def receive(
        self,
        max_messages: int = 10,
        *,
        visibility_timeout: float | None = None,
        wait_seconds: float = 0.0,
    ) -> list[ReceivedMessage]:
        """Receive up to *max_messages*, honouring per-group ordering."""
        deadline = time.monotonic() + wait_seconds
        with self._available:
            while True:
                batch = self._receive_locked(max_messages, visibility_timeout)
                remaining = deadline - time.monotonic()
                if batch or remaining <= 0:
                    return batch
                self._available.wait(timeout=remaining)

    def _receive_locked(
        self, max_messages: int, visibility_timeout: float | None
    ) -> list[ReceivedMessage]:
        now = self._clock()
        timeout = (
            self._visibility_timeout if visibility_timeout is None else visibility_timeout
        )
        rows = self._db.execute(
            "SELECT seq, message_id, msg_key, grouping_key, dedup_id, visible_at, "
            "receive_count FROM messages WHERE dead = 0 ORDER BY seq"
        ).fetchall()

        blocked_groups: set[str] = set()
        batch: list[ReceivedMessage] = []
        for seq, message_id, key, group, dedup_id, visible_at, count in rows:
            if len(batch) >= max_messages:
                break
            if group in blocked_groups:
                continue
            if visible_at > now:
                # In flight: nothing later in this group may be delivered.
                blocked_groups.add(group)
                continue

            if self._max_receive_count is not None and count >= self._max_receive_count:
                self._db.execute("UPDATE messages SET dead = 1 WHERE seq = ?", (seq,))
                logger.warning(
                    "FifoQueue %s: %s exceeded %d receives, moved to dead letters",
                    self.name, key, self._max_receive_count,
                )
                # The dead message no longer holds the group.
                continue

            receipt = uuid.uuid4().hex
            self._db.execute(
                "UPDATE messages SET visible_at = ?, receive_count = ?, "
                "receipt_handle = ? WHERE seq = ?",
                (now + timeout, count + 1, receipt, seq),
            )
            batch.append(
                ReceivedMessage(
                    message=self._to_message((message_id, key, group, dedup_id)),
                    receipt_handle=receipt,
                    receive_count=count + 1,
                )
            )
        self._db.commit()
        return batch

    def delete(self, receipt_handle: str) -> None:
        """Delete a received message. Unknown or stale receipts raise."""
        with self._available:
            cur = self._db.execute(
                "DELETE FROM messages WHERE receipt_handle = ? AND dead = 0",
                (receipt_handle,),
            )
            self._db.commit()
            if cur.rowcount == 0:
                raise QueueError(f"Unknown receipt handle: {receipt_handle}")
            self._available.notify_all()

    def change_visibility(self, receipt_handle: str, timeout: float) -> None:
        """Extend (or shorten) how long a received message stays invisible."""
        with self._available:
            cur = self._db.execute(
                "UPDATE messages SET visible_at = ? WHERE receipt_handle = ? AND dead = 0",
                (self._clock() + timeout, receipt_handle),
            )
            self._db.commit()
            if cur.rowcount == 0:
                raise QueueError(f"Unknown receipt handle: {receipt_handle}")
            if timeout <= 0:
                self._available.notify_all()

    def close(self) -> None:
        with self._lock:
            self._db.close()

    def __enter__(self) -> FifoQueue:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"FifoQueue(name={self.name!r})"

    @staticmethod
    def _to_message(row: tuple) -> QueueMessage:
        message_id, key, group, dedup_id = row
        return QueueMessage(
            key=key,
            grouping_key=group,
            message_id=message_id,
            deduplication_id=dedup_id,
        )
