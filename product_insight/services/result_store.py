"""
Result output channel.

The orchestrator never writes to storage directly. After a task settles it
publishes a ``TaskResultRecord`` onto a ``ResultPublisher``; a background
consumer drains the queue into a ``ResultStore``. A slow or failing store
therefore cannot delay or fail an analysis run.
"""

from __future__ import annotations

import asyncio
from typing import Optional

from product_insight.models.schemas import TaskResultRecord
from product_insight.utils.logger import get_logger

logger = get_logger(__name__)


# =============================================================================
# Stores
# =============================================================================

class ResultStore:
    """Base class for task result persistence."""

    async def save_task_result(self, record: TaskResultRecord) -> None:
        raise NotImplementedError

    async def list_results(self, product_identifier: str) -> list[TaskResultRecord]:
        raise NotImplementedError


class InMemoryResultStore(ResultStore):
    """In-memory store keyed by product identifier."""

    def __init__(self):
        self._records: dict[str, list[TaskResultRecord]] = {}

    async def save_task_result(self, record: TaskResultRecord) -> None:
        self._records.setdefault(record.product_identifier, []).append(record)

    async def list_results(self, product_identifier: str) -> list[TaskResultRecord]:
        return list(self._records.get(product_identifier, []))

    @property
    def count(self) -> int:
        return sum(len(records) for records in self._records.values())


# =============================================================================
# Publisher
# =============================================================================

class ResultPublisher:
    """
    Queue-backed, fire-and-forget publisher in front of a ResultStore.

    Example:
        >>> publisher = ResultPublisher(InMemoryResultStore())
        >>> publisher.start()
        >>> publisher.publish(record)
        >>> await publisher.close()  # drains pending records
    """

    def __init__(self, store: ResultStore, max_queue_size: int = 1000):
        self.store = store
        self._queue: asyncio.Queue[TaskResultRecord] = asyncio.Queue(maxsize=max_queue_size)
        self._consumer: Optional[asyncio.Task] = None
        self.published = 0
        self.saved = 0
        self.failed = 0
        self.dropped = 0

    @property
    def is_running(self) -> bool:
        return self._consumer is not None and not self._consumer.done()

    def start(self) -> None:
        """Start the consumer task on the running loop."""
        if not self.is_running:
            self._consumer = asyncio.create_task(self._consume(), name="result-publisher")

    def publish(self, record: TaskResultRecord) -> None:
        """Enqueue a record without waiting. A full queue drops the record."""
        try:
            self._queue.put_nowait(record)
            self.published += 1
        except asyncio.QueueFull:
            self.dropped += 1
            logger.error(
                "Result queue full, dropping record",
                task_id=record.task_id,
                product_id=record.product_identifier,
            )

    async def _consume(self) -> None:
        while True:
            record = await self._queue.get()
            try:
                await self.store.save_task_result(record)
                self.saved += 1
                logger.debug("Task result saved", task_id=record.task_id, product_id=record.product_identifier)
            except Exception as e:
                self.failed += 1
                logger.error(
                    "Failed to save task result",
                    task_id=record.task_id,
                    product_id=record.product_identifier,
                    error=str(e),
                )
            finally:
                self._queue.task_done()

    async def drain(self) -> None:
        """Wait until every published record has been handled."""
        if self.is_running:
            await self._queue.join()

    async def close(self) -> None:
        """Drain the queue and stop the consumer."""
        await self.drain()
        if self._consumer is not None:
            self._consumer.cancel()
            try:
                await self._consumer
            except asyncio.CancelledError:
                pass
            self._consumer = None

    def get_stats(self) -> dict[str, int]:
        return {
            "published": self.published,
            "saved": self.saved,
            "failed": self.failed,
            "dropped": self.dropped,
            "queued": self._queue.qsize(),
        }


__all__ = ["ResultStore", "InMemoryResultStore", "ResultPublisher"]
