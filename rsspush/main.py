"""Run orchestrator for rsspush."""

import sys
from collections.abc import Callable, Sequence
from dataclasses import asdict, dataclass
from functools import partial

from .config import (
    ConfigError,
    Settings,
    load_subscriptions,
    parse_settings,
    resolve_bot_token,
)
from .delivery import DeliveryStage
from .logging_config import (
    create_execution_logger,
    new_execution_id,
    setup_structured_logging,
)
from .models import Subscription, TimeWindow
from .pipeline import ClosableQueue, WorkerPool, start_producer
from .rss import FeedFetcher
from .telegram import TelegramError, TelegramPublisher
from .window import current_window


@dataclass
class RunSummary:
    """Counters reported at the end of a run."""

    subscriptions: int = 0
    feeds_failed: int = 0
    items_found: int = 0
    items_delivered: int = 0
    send_failures: int = 0
    heartbeat_sent: bool = False


def run_pipeline(
    settings: Settings,
    subscriptions: Sequence[Subscription],
    fetcher,
    publisher,
    execution_id: str | None = None,
    window_factory: Callable[[], TimeWindow] | None = None,
    sleep: Callable[[float], None] | None = None,
) -> RunSummary:
    """
    Fetch every subscription and deliver the recent items.

    The delivery stage starts first, then the producer, then the worker pool.
    The delivery queue is closed only after every worker has exited, so no
    in-flight item is lost.

    Args:
        settings: Validated process parameters
        subscriptions: Feeds to poll
        fetcher: Object with ``fetch(subscription, window)``
        publisher: Object with ``send_text(text)``; may be None in dry run
        execution_id: Execution ID for logging context
        window_factory: Override for the per-fetch time window
        sleep: Override for the delivery pacing sleep

    Returns:
        RunSummary with the run's counters
    """
    logger = create_execution_logger("main", execution_id)
    if window_factory is None:
        window_factory = partial(current_window, settings.startby_hours)

    work_queue = ClosableQueue(settings.queue_size, name="work queue")
    delivery_queue = ClosableQueue(settings.queue_size, name="delivery queue")

    stage_kwargs = {"sleep": sleep} if sleep is not None else {}
    delivery = DeliveryStage(
        publisher,
        delivery_queue,
        dry_run=settings.dry_run,
        execution_id=execution_id,
        **stage_kwargs,
    )
    delivery.start()

    start_producer(subscriptions, work_queue)

    pool = WorkerPool(
        fetcher,
        work_queue,
        delivery_queue,
        window_factory,
        size=settings.workers,
        execution_id=execution_id,
    )
    pool.start()
    pool.join()

    logger.info("Closing delivery queue")
    delivery_queue.close()
    logger.info("Waiting for delivery stage to finish")
    delivery.join()
    logger.info("Done")

    return RunSummary(
        subscriptions=pool.subscriptions_processed,
        feeds_failed=getattr(fetcher, "failures", 0) + pool.errors,
        items_found=pool.items_found,
        items_delivered=delivery.delivered,
        send_failures=delivery.send_failures,
        heartbeat_sent=delivery.heartbeat_sent,
    )


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point: configure, run once, return the process exit status."""
    execution_id = new_execution_id()

    try:
        settings = parse_settings(argv)
    except ConfigError as e:
        setup_structured_logging()
        create_execution_logger("main", execution_id).error(
            f"Invalid configuration: {e}", error=str(e)
        )
        return 1

    setup_structured_logging("DEBUG" if settings.debug else settings.log_level)
    main_logger = create_execution_logger("main", execution_id)
    main_logger.log_execution_start(
        rss_filepath=settings.rss_filepath,
        startby_hours=settings.startby_hours,
        workers=settings.workers,
        dry_run=settings.dry_run,
    )

    try:
        settings.bot_token = resolve_bot_token(settings, execution_id)
        settings.validate()
        subscriptions = load_subscriptions(settings.rss_filepath)
        main_logger.info(
            f"Loaded {len(subscriptions)} subscriptions",
            subscription_count=len(subscriptions),
        )

        publisher = None
        if not settings.dry_run:
            publisher = TelegramPublisher(
                settings.get_telegram_config(), execution_id=execution_id
            )
            publisher.verify()
    except (ConfigError, FileNotFoundError, TelegramError) as e:
        main_logger.error(f"Startup failed: {e}", error=str(e))
        main_logger.log_execution_end(success=False, error=str(e))
        return 1

    fetcher = FeedFetcher(timeout=settings.fetch_timeout, execution_id=execution_id)
    summary = run_pipeline(
        settings, subscriptions, fetcher, publisher, execution_id=execution_id
    )

    main_logger.log_metrics(asdict(summary))
    main_logger.log_execution_end(success=True)
    return 0


def cli() -> None:
    sys.exit(main())


if __name__ == "__main__":
    cli()
