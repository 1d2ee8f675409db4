"""Unit tests for the run orchestrator."""

import json
import os
from datetime import UTC, datetime
from unittest.mock import Mock, patch

from rsspush.config import Settings
from rsspush.delivery import HEARTBEAT_MESSAGE
from rsspush.main import main, run_pipeline
from rsspush.models import FeedItem, Subscription, TimeWindow
from rsspush.rss import FeedFetchError, FeedFetcher
from rsspush.telegram import TelegramError

WINDOW = TimeWindow(
    start=datetime(2024, 1, 1, 9, tzinfo=UTC),
    end=datetime(2024, 1, 1, 12, tzinfo=UTC),
)


def _item(link: str, hour: int) -> FeedItem:
    return FeedItem(
        title=link, link=link, published=datetime(2024, 1, 1, hour, tzinfo=UTC)
    )


class TestRunPipeline:
    """Unit tests for run_pipeline."""

    def setup_method(self):
        self.settings = Settings(bot_token="t", chat_id=1, workers=2)
        self.publisher = Mock()
        self.publisher.send_text.return_value = True
        self.sleep = Mock()

    def test_failing_feed_does_not_affect_others(self):
        """Feed A fails, feed B has two recent items: exactly B's items are sent."""
        fetcher = FeedFetcher()

        def parse_feed(url):
            if url == "https://a.example.com/feed":
                raise FeedFetchError("Malformed feed document")
            return [
                _item("https://b.example.com/1", 10),
                _item("https://b.example.com/old", 3),
                _item("https://b.example.com/2", 11),
            ]

        subscriptions = [
            Subscription(title="A", url="https://a.example.com/feed"),
            Subscription(title="B", url="https://b.example.com/feed"),
        ]
        with patch.object(fetcher, "parse_feed", side_effect=parse_feed):
            summary = run_pipeline(
                self.settings,
                subscriptions,
                fetcher,
                self.publisher,
                window_factory=lambda: WINDOW,
                sleep=self.sleep,
            )

        assert summary.items_delivered == 2
        assert summary.items_found == 2
        assert summary.feeds_failed == 1
        assert summary.subscriptions == 2
        assert summary.heartbeat_sent is False
        sent = [call.args[0] for call in self.publisher.send_text.call_args_list]
        assert sent == [
            "https://b.example.com/1\nhttps://b.example.com/1",
            "https://b.example.com/2\nhttps://b.example.com/2",
        ]

    def test_empty_run_sends_heartbeat(self):
        fetcher = Mock()
        fetcher.fetch.return_value = []
        fetcher.failures = 0

        summary = run_pipeline(
            self.settings,
            [Subscription(title="A", url="https://a.example.com/feed")],
            fetcher,
            self.publisher,
            window_factory=lambda: WINDOW,
            sleep=self.sleep,
        )

        self.publisher.send_text.assert_called_once_with(HEARTBEAT_MESSAGE)
        assert summary.heartbeat_sent is True
        assert summary.items_delivered == 0

    def test_no_subscriptions_still_completes(self):
        fetcher = Mock()
        fetcher.failures = 0

        summary = run_pipeline(
            self.settings, [], fetcher, self.publisher, window_factory=lambda: WINDOW
        )

        fetcher.fetch.assert_not_called()
        assert summary.subscriptions == 0
        assert summary.heartbeat_sent is True

    def test_many_items_are_paced(self):
        fetcher = Mock()
        fetcher.failures = 0
        fetcher.fetch.side_effect = lambda subscription, window: [
            FeedItem(title=f"{subscription.title}-{i}", link=f"{subscription.url}/{i}")
            for i in range(5)
        ]
        subscriptions = [
            Subscription(title=f"s{i}", url=f"https://s{i}.example.com") for i in range(5)
        ]

        summary = run_pipeline(
            Settings(bot_token="t", chat_id=1, workers=3, queue_size=2),
            subscriptions,
            fetcher,
            self.publisher,
            window_factory=lambda: WINDOW,
            sleep=self.sleep,
        )

        assert summary.items_delivered == 25
        assert self.publisher.send_text.call_count == 25
        assert self.sleep.call_count >= 2

    def test_dry_run_reaches_no_publisher(self):
        fetcher = Mock()
        fetcher.failures = 0
        fetcher.fetch.return_value = [_item("https://a.example.com/1", 10)]

        summary = run_pipeline(
            Settings(bot_token="t", chat_id=1, debug=True),
            [Subscription(title="A", url="https://a.example.com/feed")],
            fetcher,
            None,
            window_factory=lambda: WINDOW,
            sleep=self.sleep,
        )

        assert summary.items_delivered == 1


class TestMain:
    """Unit tests for the process entry point."""

    def _rss_file(self, tmp_path) -> str:
        path = tmp_path / "rss.json"
        path.write_text(
            json.dumps({"rss_info": [{"title": "A", "url": "https://a.example.com/feed"}]})
        )
        return str(path)

    def test_missing_token_is_fatal(self, tmp_path):
        with (
            patch.dict(os.environ, {}, clear=True),
            patch("rsspush.main.FeedFetcher") as mock_fetcher_class,
        ):
            status = main(["--tg-channel", "1", "--rss-filepath", self._rss_file(tmp_path)])

        assert status == 1
        mock_fetcher_class.assert_not_called()

    def test_zero_channel_is_fatal(self, tmp_path):
        with patch.dict(os.environ, {}, clear=True):
            status = main(["--tg-bot", "t", "--rss-filepath", self._rss_file(tmp_path)])

        assert status == 1

    def test_missing_rss_file_is_fatal(self, tmp_path):
        with (
            patch.dict(os.environ, {}, clear=True),
            patch("rsspush.main.FeedFetcher") as mock_fetcher_class,
        ):
            status = main(
                [
                    "--tg-bot", "t",
                    "--tg-channel", "1",
                    "--rss-filepath", str(tmp_path / "missing.json"),
                ]
            )

        assert status == 1
        mock_fetcher_class.assert_not_called()

    def test_rejected_token_is_fatal(self, tmp_path):
        with (
            patch.dict(os.environ, {}, clear=True),
            patch("rsspush.main.TelegramPublisher") as mock_publisher_class,
            patch("rsspush.main.FeedFetcher") as mock_fetcher_class,
        ):
            mock_publisher_class.return_value.verify.side_effect = TelegramError("401")

            status = main(
                ["--tg-bot", "t", "--tg-channel", "1", "--rss-filepath", self._rss_file(tmp_path)]
            )

        assert status == 1
        mock_fetcher_class.assert_not_called()

    def test_live_run_with_no_items_sends_heartbeat(self, tmp_path):
        with (
            patch.dict(os.environ, {}, clear=True),
            patch("rsspush.main.TelegramPublisher") as mock_publisher_class,
            patch("rsspush.main.FeedFetcher") as mock_fetcher_class,
        ):
            publisher = mock_publisher_class.return_value
            publisher.send_text.return_value = True
            fetcher = mock_fetcher_class.return_value
            fetcher.fetch.return_value = []
            fetcher.failures = 0

            status = main(
                ["--tg-bot", "t", "--tg-channel", "1", "--rss-filepath", self._rss_file(tmp_path)]
            )

        assert status == 0
        publisher.verify.assert_called_once()
        publisher.send_text.assert_called_once_with(HEARTBEAT_MESSAGE)
        fetcher.fetch.assert_called_once()

    def test_dry_run_never_builds_publisher(self, tmp_path):
        with (
            patch.dict(os.environ, {}, clear=True),
            patch("rsspush.main.TelegramPublisher") as mock_publisher_class,
            patch("rsspush.main.FeedFetcher") as mock_fetcher_class,
        ):
            fetcher = mock_fetcher_class.return_value
            fetcher.fetch.return_value = []
            fetcher.failures = 0

            status = main(
                [
                    "--tg-bot", "t",
                    "--tg-channel", "1",
                    "--rss-filepath", self._rss_file(tmp_path),
                    "--debug",
                ]
            )

        assert status == 0
        mock_publisher_class.assert_not_called()

    def test_unreadable_rss_file_is_fatal(self, tmp_path):
        path = tmp_path / "rss.json"
        path.write_bytes(b"\xff\xfe")

        with (
            patch.dict(os.environ, {}, clear=True),
            patch("rsspush.main.FeedFetcher") as mock_fetcher_class,
        ):
            status = main(["--tg-bot", "t", "--tg-channel", "1", "--rss-filepath", str(path)])

        assert status == 1
        mock_fetcher_class.assert_not_called()

    def test_rss_path_pointing_at_directory_is_fatal(self, tmp_path):
        with patch.dict(os.environ, {}, clear=True):
            status = main(["--tg-bot", "t", "--tg-channel", "1", "--rss-filepath", str(tmp_path)])

        assert status == 1

    def test_token_check_timeout_is_fatal(self, tmp_path):
        with (
            patch.dict(os.environ, {}, clear=True),
            patch("urllib.request.urlopen", side_effect=TimeoutError("timed out")),
            patch("rsspush.main.FeedFetcher") as mock_fetcher_class,
        ):
            status = main(
                ["--tg-bot", "t", "--tg-channel", "1", "--rss-filepath", self._rss_file(tmp_path)]
            )

        assert status == 1
        mock_fetcher_class.assert_not_called()

    def test_invalid_log_level_is_fatal(self, tmp_path):
        with patch.dict(os.environ, {"LOG_LEVEL": "LOUD"}, clear=True):
            status = main(
                ["--tg-bot", "t", "--tg-channel", "1", "--rss-filepath", self._rss_file(tmp_path)]
            )

        assert status == 1
