"""Feed fetching and time-window filtering for rsspush."""

import calendar
import threading
from collections.abc import Iterable
from datetime import UTC, datetime
from urllib.parse import urlparse

import feedparser
import requests
from bs4 import BeautifulSoup
from dateutil import parser as date_parser

from .logging_config import create_execution_logger
from .models import FeedItem, Subscription, TimeWindow


class FeedFetchError(Exception):
    """Raised when a feed cannot be downloaded or parsed."""


def effective_timestamp(item: FeedItem) -> datetime | None:
    """Pick the timestamp an item is filtered on.

    Published wins over updated. Items carrying neither have no effective
    timestamp and never match a window.
    """
    for candidate in (item.published, item.updated):
        if candidate is not None:
            return candidate
    return None


def filter_items(items: Iterable[FeedItem], window: TimeWindow) -> list[FeedItem]:
    """Keep the items whose effective timestamp falls inside ``window``.

    Relative order of ``items`` is preserved.
    """
    selected = []
    for item in items:
        moment = effective_timestamp(item)
        if moment is not None and window.contains(moment):
            selected.append(item)
    return selected


class FeedFetcher:
    """Downloads one subscription and returns its recent entries."""

    def __init__(self, timeout: float = 30, execution_id: str | None = None):
        """Initialize FeedFetcher.

        Args:
            timeout: HTTP request timeout in seconds
            execution_id: Execution ID for logging context
        """
        self.timeout = timeout
        self.logger = create_execution_logger("feed_fetcher", execution_id)
        self.session = requests.Session()
        self.session.headers.update(
            {"User-Agent": "rsspush/1.0 (RSS to Telegram channel pusher)"}
        )
        self._lock = threading.Lock()
        self._failures = 0

        self.logger.info("FeedFetcher initialized", timeout=timeout)

    @property
    def failures(self) -> int:
        """Number of subscriptions that could not be fetched so far."""
        with self._lock:
            return self._failures

    def fetch(self, subscription: Subscription, window: TimeWindow) -> list[FeedItem]:
        """Fetch a subscription and keep the entries inside ``window``.

        Download and parse errors are logged and yield an empty list, so one
        broken feed never stops the others.
        """
        try:
            items = self.parse_feed(subscription.url)
        except (FeedFetchError, requests.RequestException) as e:
            with self._lock:
                self._failures += 1
            self.logger.error(
                f"Failed to fetch feed {subscription.url}: {e}",
                feed_url=subscription.url,
                feed_title=subscription.title,
                error=str(e),
            )
            return []

        selected = filter_items(items, window)
        self.logger.log_feed_processing(subscription.url, len(selected))
        return selected

    def parse_feed(self, feed_url: str) -> list[FeedItem]:
        """Download and parse a single RSS/Atom feed.

        Args:
            feed_url: URL of the RSS/Atom feed

        Returns:
            All entries of the feed as FeedItem objects, in document order

        Raises:
            FeedFetchError: If the URL is not http(s) or the document is unusable
            requests.RequestException: If the download fails
        """
        scheme = urlparse(feed_url).scheme
        if scheme not in ("http", "https"):
            raise FeedFetchError(f"Unsupported feed URL scheme: {feed_url}")

        response = self.session.get(feed_url, timeout=self.timeout)
        response.raise_for_status()
        self.logger.debug(
            "Feed downloaded",
            feed_url=feed_url,
            status_code=response.status_code,
            content_length=len(response.content),
        )

        feed = feedparser.parse(response.content)
        if feed.bozo and not feed.entries:
            raise FeedFetchError(
                f"Malformed feed document: {getattr(feed, 'bozo_exception', 'unknown')}"
            )
        if feed.bozo:
            self.logger.warning(
                f"Feed parsing warning for {feed_url}: {feed.get('bozo_exception')}",
                feed_url=feed_url,
            )

        items = []
        for entry in feed.entries:
            try:
                item = self.normalize_item(entry, feed_url)
            except (AttributeError, KeyError, TypeError, ValueError) as e:
                self.logger.warning(
                    f"Failed to normalize entry from {feed_url}: {e}",
                    feed_url=feed_url,
                    error=str(e),
                )
                continue
            self.logger.debug(
                f"Title={item.title}, Url={item.link}, "
                f"Published={item.published}, Updated={item.updated}",
                feed_url=feed_url,
            )
            items.append(item)

        return items

    def normalize_item(self, entry, feed_url: str) -> FeedItem:
        """Normalize a raw feedparser entry into a FeedItem."""
        author = None
        author_detail = entry.get("author_detail")
        if author_detail and author_detail.get("name"):
            author = author_detail["name"]
        elif entry.get("author"):
            author = entry["author"]

        return FeedItem(
            title=self.clean_html_content(entry.get("title", "")),
            link=entry.get("link", ""),
            author=author.strip() if author else None,
            published=self._entry_timestamp(entry, "published"),
            updated=self._entry_timestamp(entry, "updated"),
            feed_url=feed_url,
        )

    def _entry_timestamp(self, entry, field: str) -> datetime | None:
        """Read ``field`` of an entry as an aware UTC datetime.

        feedparser's parsed tuple is preferred; the raw string is parsed with
        dateutil as a fallback. Zero or pre-epoch values count as absent.
        """
        moment = None
        # dict.get bypasses FeedParserDict key aliases ("updated" -> "published")
        parsed = dict.get(entry, f"{field}_parsed")
        if parsed:
            try:
                moment = datetime.fromtimestamp(calendar.timegm(parsed), UTC)
            except (OverflowError, ValueError, OSError):
                return None
        elif dict.get(entry, field):
            try:
                moment = date_parser.parse(dict.get(entry, field))
            except (ValueError, TypeError, OverflowError):
                return None
            if moment.tzinfo is None:
                moment = moment.replace(tzinfo=UTC)
            else:
                moment = moment.astimezone(UTC)

        if moment is None or moment.timestamp() <= 0:
            return None
        return moment

    def clean_html_content(self, content: str) -> str:
        """Remove HTML tags from content and normalize whitespace."""
        if not content:
            return ""

        if "<" not in content and ">" not in content:
            return " ".join(content.split())

        soup = BeautifulSoup(content, "html.parser")
        for script in soup(["script", "style"]):
            script.decompose()

        text = soup.get_text(separator=" ")
        return " ".join(text.split())
