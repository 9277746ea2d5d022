"""Revalidation pipeline — stale-page signals and their consumer.

Declarative side: the FIFO queue and the event-source mapping that feeds
its messages to the revalidation compute unit in small batches.

Runtime side: ``mark_stale`` is what the server unit does when a page goes
stale; ``RevalidationConsumer`` is what the revalidation unit does with a
batch.  Ordering is per key only; delivery is at-least-once, so
``regenerate`` must tolerate repeats.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, ConfigDict

from edgesite.models.queue import ConsumerBinding, QueueMessage, QueueSpec
from edgesite.models.resources import Ref, ResourceSpec
from edgesite.platform.fifo_queue import FifoQueue, QueueError

logger = logging.getLogger(__name__)


class RevalidationPipeline:
    """Queue and consumer wiring for one site."""

    def __init__(
        self,
        site_name: str,
        *,
        consumer_function: str,
        queue: QueueSpec | None = None,
        binding: ConsumerBinding | None = None,
    ) -> None:
        self.site_name = site_name
        self._consumer_function = consumer_function
        self.queue_spec = queue or QueueSpec()
        self.binding = binding or ConsumerBinding()

    @property
    def queue_name(self) -> str:
        return f"{self.site_name}-queue"

    @property
    def queue_arn(self) -> Ref:
        return Ref(resource=self.queue_name, attribute="arn")

    @property
    def queue_url(self) -> Ref:
        return Ref(resource=self.queue_name, attribute="url")

    def queue_resource(self) -> ResourceSpec:
        return ResourceSpec(
            kind="queue:Queue",
            name=self.queue_name,
            properties={
                "fifoQueue": self.queue_spec.fifo,
                "receiveWaitTimeSeconds": self.queue_spec.receive_wait_seconds,
                "visibilityTimeoutSeconds": self.queue_spec.visibility_timeout_seconds,
                "contentBasedDeduplication": self.queue_spec.content_based_deduplication,
            },
        )

    def event_source_mapping(self) -> ResourceSpec:
        return ResourceSpec(
            kind="compute:EventSourceMapping",
            name=f"{self._consumer_function}-event-source-mapping",
            properties={
                "functionName": Ref(resource=self._consumer_function, attribute="arn"),
                "eventSourceArn": self.queue_arn,
                "batchSize": self.binding.batch_size,
                "enabled": self.binding.enabled,
            },
        )


def mark_stale(
    queue: FifoQueue, key: str, *, deduplication_id: str | None = None
) -> str:
    """Signal that *key* needs regenerating.  Returns the message id."""
    message_id = queue.send(
        QueueMessage(key=key, grouping_key=key, deduplication_id=deduplication_id)
    )
    logger.debug("Marked %s stale (message %s)", key, message_id)
    return message_id


class ConsumerBatchResult(BaseModel):
    """What one ``poll_once`` did with its batch."""

    model_config = ConfigDict(frozen=True)

    received: int = 0
    succeeded: list[str] = []
    failed: list[str] = []
    deferred: list[str] = []
    # Regenerated, but the receipt went stale before the delete.
    expired: list[str] = []
    extended: int = 0

    @property
    def empty(self) -> bool:
        return self.received == 0


class _VisibilityHeartbeat:
    """Keeps one in-flight message invisible while it is being processed.

    Every *interval* seconds the message is given a fresh visibility
    timeout, until ``stop`` is called or the receipt goes stale.
    """

    def __init__(
        self, queue: FifoQueue, receipt_handle: str, *, timeout: float, interval: float
    ) -> None:
        self._queue = queue
        self._receipt_handle = receipt_handle
        self._timeout = timeout
        self._interval = interval
        self._stopped = threading.Event()
        self._thread = threading.Thread(
            target=self._run, name="edgesite-visibility-heartbeat", daemon=True
        )
        self.beats = 0

    def __enter__(self) -> _VisibilityHeartbeat:
        self._thread.start()
        return self

    def __exit__(self, *exc: Any) -> None:
        self.stop()

    def stop(self) -> None:
        self._stopped.set()
        self._thread.join()

    def _run(self) -> None:
        while not self._stopped.wait(self._interval):
            try:
                self._queue.change_visibility(self._receipt_handle, self._timeout)
            except QueueError as exc:
                logger.warning("Visibility heartbeat stopped: %s", exc)
                return
            self.beats += 1


class RevalidationConsumer:
    """Processes revalidation batches from a ``FifoQueue``.

    Parameters
    ----------
    queue:
        Source queue.
    regenerate:
        Called with each message key.  Raising marks the message failed.
    batch_size:
        Messages requested per receive.
    visibility_timeout:
        Seconds received messages stay invisible.
    extend_after:
        Once this many seconds have passed since the batch arrived, each
        message still waiting is given a fresh visibility timeout before
        it is processed.  While ``regenerate`` runs, the message's timeout
        is also refreshed every *extend_after* seconds.  Defaults to half
        the visibility timeout.
    clock:
        Time source returning seconds; injectable for tests.
    """

    def __init__(
        self,
        queue: FifoQueue,
        regenerate: Callable[[str], object],
        *,
        batch_size: int = 5,
        visibility_timeout: float = 30.0,
        extend_after: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        self._queue = queue
        self._regenerate = regenerate
        self._batch_size = batch_size
        self._visibility_timeout = visibility_timeout
        self._extend_after = (
            visibility_timeout / 2 if extend_after is None else extend_after
        )
        if self._extend_after <= 0:
            raise ValueError(f"extend_after must be > 0, got {self._extend_after}")
        self._clock = clock

    def poll_once(self, *, wait_seconds: float = 0.0) -> ConsumerBatchResult:
        """Receive one batch and process it in delivery order.

        Successful messages are deleted.  A failed message is left for
        redelivery, and every later message of the same grouping key in
        the batch is released unprocessed so the key's order is kept.
        A message whose receipt went stale is logged and reported as
        expired; the rest of the batch still runs.
        """
        batch = self._queue.receive(
            self._batch_size,
            visibility_timeout=self._visibility_timeout,
            wait_seconds=wait_seconds,
        )
        if not batch:
            return ConsumerBatchResult()

        arrived = self._clock()
        failed_groups: set[str] = set()
        succeeded: list[str] = []
        failed: list[str] = []
        deferred: list[str] = []
        expired: list[str] = []
        extended = 0

        for received in batch:
            message = received.message
            if message.grouping_key in failed_groups:
                try:
                    self._queue.change_visibility(received.receipt_handle, 0)
                except QueueError as exc:
                    logger.warning("Could not release %s: %s", message.key, exc)
                deferred.append(message.key)
                continue

            if self._clock() - arrived >= self._extend_after:
                try:
                    self._queue.change_visibility(
                        received.receipt_handle, self._visibility_timeout
                    )
                except QueueError as exc:
                    logger.warning(
                        "Revalidation of %s skipped, receipt expired: %s", message.key, exc
                    )
                    expired.append(message.key)
                    continue
                extended += 1

            heartbeat = _VisibilityHeartbeat(
                self._queue,
                received.receipt_handle,
                timeout=self._visibility_timeout,
                interval=self._extend_after,
            )
            try:
                with heartbeat:
                    self._regenerate(message.key)
            except Exception as exc:
                logger.warning(
                    "Revalidation of %s failed (attempt %d): %s",
                    message.key, received.receive_count, exc,
                )
                failed_groups.add(message.grouping_key)
                failed.append(message.key)
                continue
            finally:
                extended += heartbeat.beats

            try:
                self._queue.delete(received.receipt_handle)
            except QueueError as exc:
                # Visible again before the delete; it will be redelivered.
                logger.warning(
                    "Revalidated %s but could not delete it: %s", message.key, exc
                )
                expired.append(message.key)
                continue
            succeeded.append(message.key)

        logger.info(
            "Revalidation batch: %d received, %d regenerated, %d failed, "
            "%d deferred, %d expired",
            len(batch), len(succeeded), len(failed), len(deferred), len(expired),
        )
        return ConsumerBatchResult(
            received=len(batch),
            succeeded=succeeded,
            failed=failed,
            deferred=deferred,
            expired=expired,
            extended=extended,
        )

    def drain(self, max_batches: int = 100) -> list[ConsumerBatchResult]:
        """Poll until a receive comes back empty or *max_batches* is reached."""
        results: list[ConsumerBatchResult] = []
        for _ in range(max_batches):
            result = self.poll_once()
            if result.empty:
                break
            results.append(result)
        return results
