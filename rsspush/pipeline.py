"""Bounded queues, subscription producer and fetch worker pool."""

import queue
import threading
from collections.abc import Callable, Iterable, Iterator
from typing import Any

from .logging_config import create_execution_logger
from .models import Subscription, TimeWindow

DEFAULT_QUEUE_SIZE = 20
DEFAULT_WORKERS = 5

# Marker put on the underlying queue by close()
_CLOSED = object()


class QueueClosedError(Exception):
    """Raised on put() after close(), and on get() once a closed queue is drained."""


class ClosableQueue:
    """Bounded blocking FIFO with close-once semantics.

    Producers close the queue after their last put. Consumers keep getting
    items until the queue is both closed and drained; iterating the queue
    does exactly that. Any number of consumers may share one queue.
    """

    def __init__(self, maxsize: int = DEFAULT_QUEUE_SIZE, name: str = "queue"):
        if maxsize < 1:
            raise ValueError(f"Queue size must be at least 1, got {maxsize}")
        self.name = name
        self._queue: queue.Queue = queue.Queue(maxsize=maxsize)
        self._close_lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def put(self, item: Any) -> None:
        """Enqueue ``item``, blocking while the queue is full."""
        if self._closed:
            raise QueueClosedError(f"put() on closed {self.name}")
        self._queue.put(item)

    def get(self) -> Any:
        """Dequeue the next item, blocking while the queue is empty."""
        item = self._queue.get()
        if item is _CLOSED:
            # Leave the marker for the other consumers
            self._queue.put(_CLOSED)
            raise QueueClosedError(f"{self.name} is closed and drained")
        return item

    def close(self) -> None:
        """Mark the end of input. Calling it twice is a no-op."""
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        self._queue.put(_CLOSED)

    def __iter__(self) -> Iterator[Any]:
        while True:
            try:
                yield self.get()
            except QueueClosedError:
                return


def produce(subscriptions: Iterable[Subscription], work_queue: ClosableQueue) -> int:
    """Feed subscriptions into ``work_queue`` in order, then close it.

    Returns the number of subscriptions enqueued.
    """
    count = 0
    try:
        for subscription in subscriptions:
            work_queue.put(subscription)
            count += 1
    finally:
        work_queue.close()
    return count


def start_producer(
    subscriptions: Iterable[Subscription], work_queue: ClosableQueue
) -> threading.Thread:
    """Run produce() on its own thread and return the started thread."""
    thread = threading.Thread(
        target=produce,
        args=(list(subscriptions), work_queue),
        name="producer",
        daemon=True,
    )
    thread.start()
    return thread


class WorkerPool:
    """Fixed-size pool of threads fetching subscriptions in parallel."""

    def __init__(
        self,
        fetcher,
        work_queue: ClosableQueue,
        delivery_queue: ClosableQueue,
        window_factory: Callable[[], TimeWindow],
        size: int = DEFAULT_WORKERS,
        execution_id: str | None = None,
    ):
        """Initialize the pool.

        Args:
            fetcher: Object with ``fetch(subscription, window) -> list[FeedItem]``
            work_queue: Queue of Subscription objects to drain
            delivery_queue: Queue receiving every FeedItem found
            window_factory: Called once per subscription to get the time window
            size: Number of worker threads
            execution_id: Execution ID for logging context
        """
        if size < 1:
            raise ValueError(f"Worker pool size must be at least 1, got {size}")
        self.fetcher = fetcher
        self.work_queue = work_queue
        self.delivery_queue = delivery_queue
        self.window_factory = window_factory
        self.size = size
        self.logger = create_execution_logger("pipeline", execution_id)

        self._threads: list[threading.Thread] = []
        self._lock = threading.Lock()
        self.subscriptions_processed = 0
        self.items_found = 0
        self.errors = 0

    def start(self) -> None:
        """Spawn the worker threads."""
        for index in range(self.size):
            thread = threading.Thread(
                target=self._work, name=f"worker-{index}", daemon=True
            )
            self._threads.append(thread)
            thread.start()
        self.logger.info("Worker pool started", workers=self.size)

    def join(self) -> None:
        """Block until every worker has exited."""
        for thread in self._threads:
            thread.join()
        self.logger.info(
            "Worker pool finished",
            subscriptions_processed=self.subscriptions_processed,
            items_found=self.items_found,
        )

    def _work(self) -> None:
        for subscription in self.work_queue:
            try:
                items = self.fetcher.fetch(subscription, self.window_factory())
            except Exception as e:
                self.logger.error(
                    f"Unexpected error processing feed {subscription.url}: {e}",
                    feed_url=subscription.url,
                    error=str(e),
                )
                with self._lock:
                    self.subscriptions_processed += 1
                    self.errors += 1
                continue

            for item in items:
                self.delivery_queue.put(item)

            with self._lock:
                self.subscriptions_processed += 1
                self.items_found += len(items)

        self.logger.debug("Worker exiting")
