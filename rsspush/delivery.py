"""Serialized delivery of feed items to the messaging channel."""

import threading
import time
from collections.abc import Callable

from .logging_config import create_execution_logger
from .models import FeedItem
from .pipeline import ClosableQueue

HEARTBEAT_MESSAGE = "😆 only a heartbeat, no new items this run"
PACE_EVERY = 10
PACE_SECONDS = 2.0


def format_display_message(item: FeedItem) -> str:
    """Render an item as ``author\\ntitle\\nlink``.

    The author line is left out when the item has no author.
    """
    lines = []
    if item.author and item.author.strip():
        lines.append(item.author.strip())
    lines.append(item.title)
    lines.append(item.link)
    return "\n".join(lines)


class DeliveryStage:
    """Single consumer of the delivery queue.

    Every item is formatted and sent once. After every ``pace_every`` items the
    stage sleeps ``pace_seconds`` to stay under the channel's rate limit. When
    the whole run yields nothing, one heartbeat message is sent instead.
    """

    def __init__(
        self,
        publisher,
        delivery_queue: ClosableQueue,
        dry_run: bool = False,
        pace_every: int = PACE_EVERY,
        pace_seconds: float = PACE_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
        execution_id: str | None = None,
    ):
        """Initialize the delivery stage.

        Args:
            publisher: Object with ``send_text(text) -> bool``; unused in dry run
            delivery_queue: Queue of FeedItem objects to drain
            dry_run: Count, pace and log as usual but never send
            pace_every: Pause after this many processed items
            pace_seconds: Length of each pause
            sleep: Sleep function, injectable for tests
            execution_id: Execution ID for logging context
        """
        self.publisher = publisher
        self.delivery_queue = delivery_queue
        self.dry_run = dry_run
        self.pace_every = pace_every
        self.pace_seconds = pace_seconds
        self.sleep = sleep
        self.logger = create_execution_logger("delivery", execution_id)

        self.delivered = 0
        self.send_failures = 0
        self.pauses = 0
        self.heartbeat_sent = False
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        """Run the stage on its own thread."""
        self._thread = threading.Thread(target=self.run, name="delivery", daemon=True)
        self._thread.start()

    def join(self) -> None:
        if self._thread is not None:
            self._thread.join()

    def run(self) -> None:
        """Drain the queue until it is closed, then send the heartbeat if idle."""
        for item in self.delivery_queue:
            try:
                self.deliver(item)
            except Exception as e:
                self.logger.error(
                    f"Unexpected error delivering {item.link}: {e}",
                    item_title=item.title,
                    error=str(e),
                )

        if self.delivered == 0:
            self.send_heartbeat()

        self.logger.info(
            "Delivery stage finished",
            delivered=self.delivered,
            send_failures=self.send_failures,
            heartbeat_sent=self.heartbeat_sent,
        )

    def deliver(self, item: FeedItem) -> None:
        self.logger.info(f"{item.title} {item.link}", item_title=item.title)

        try:
            if not self.dry_run:
                if self._send(format_display_message(item)):
                    self.logger.log_item_processing(item.title, "sent_to_telegram")
                else:
                    self.send_failures += 1
                    self.logger.log_item_processing(
                        item.title, "send_failed", success=False
                    )
        finally:
            # An item counts as handled even when formatting it blew up
            self.delivered += 1
            if self.pace_every > 0 and self.delivered % self.pace_every == 0:
                self.logger.debug(
                    f"Pausing {self.pace_seconds}s after {self.delivered} items",
                    delivered=self.delivered,
                )
                self.pauses += 1
                self.sleep(self.pace_seconds)

    def send_heartbeat(self) -> None:
        """Tell the channel the run found nothing new."""
        self.logger.info("No new items this run, sending heartbeat", dry_run=self.dry_run)
        if self.dry_run:
            return
        if self._send(HEARTBEAT_MESSAGE):
            self.heartbeat_sent = True
        else:
            self.logger.error("Failed to send heartbeat")

    def _send(self, text: str) -> bool:
        try:
            return bool(self.publisher.send_text(text))
        except Exception as e:
            self.logger.error(f"Send raised: {e}", error=str(e))
            return False
