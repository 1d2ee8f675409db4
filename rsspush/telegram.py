"""Telegram publisher for rsspush."""

import json
import urllib.error
import urllib.request

from .config import TelegramConfig
from .logging_config import create_execution_logger

API_BASE = "https://api.telegram.org"


class TelegramError(Exception):
    """Raised when the Telegram Bot API rejects a request."""


class TelegramPublisher:
    """Sends plain text messages to a Telegram channel.

    Each message gets exactly one attempt; failures are reported through the
    return value and the log, never retried.
    """

    def __init__(self, config: TelegramConfig, execution_id: str | None = None):
        """Initialize Telegram publisher with configuration."""
        self.config = config
        self.logger = create_execution_logger("telegram_publisher", execution_id)
        self.base_url = f"{API_BASE}/bot{config.bot_token}"

        self.logger.info(
            "TelegramPublisher initialized",
            chat_id=config.chat_id,
            parse_mode=config.parse_mode,
            timeout=config.timeout,
        )

    def verify(self) -> str:
        """Check the bot token with ``getMe`` and return the bot username.

        Raises:
            TelegramError: If the token is rejected or the API is unreachable
        """
        try:
            result = self._call("getMe", {})
        except urllib.error.HTTPError as e:
            raise TelegramError(f"Token verification failed: HTTP {e.code}") from e
        except urllib.error.URLError as e:
            raise TelegramError(f"Telegram API unreachable: {e.reason}") from e
        except (OSError, ValueError) as e:
            raise TelegramError(f"Token verification failed: {e}") from e

        if not isinstance(result, dict):
            raise TelegramError("Token verification failed: unexpected response")
        if not result.get("ok"):
            raise TelegramError(
                f"Token verification failed: {result.get('description', 'unknown')}"
            )
        username = result.get("result", {}).get("username", "")
        self.logger.info("Telegram bot verified", bot_username=username)
        return username

    def send_text(self, text: str) -> bool:
        """
        Send a text message to the configured chat.

        Args:
            text: Message body

        Returns:
            True if Telegram accepted the message, False otherwise
        """
        data = {
            "chat_id": self.config.chat_id,
            "text": text,
            "disable_web_page_preview": self.config.disable_web_page_preview,
        }
        if self.config.parse_mode:
            data["parse_mode"] = self.config.parse_mode

        try:
            self.logger.debug("Sending message to Telegram API", message_length=len(text))
            result = self._call("sendMessage", data)
        except urllib.error.HTTPError as e:
            if e.code == 429:
                self.logger.warning(
                    "Rate limited by Telegram API",
                    http_code=e.code,
                    retry_after=self._retry_after(e),
                )
            else:
                self.logger.error(
                    f"HTTP error sending message: {e.code} - {e.reason}",
                    http_code=e.code,
                    http_reason=str(e.reason),
                )
            return False
        except urllib.error.URLError as e:
            self.logger.error(
                f"URL error sending message: {e.reason}", error_reason=str(e.reason)
            )
            return False
        except Exception as e:
            self.logger.error(f"Unexpected error sending message: {e}", error=str(e))
            return False

        if not result.get("ok"):
            self.logger.error(
                f"Telegram API refused message: {result.get('description', 'unknown')}"
            )
            return False
        return True

    def _call(self, method: str, payload: dict) -> dict:
        req = urllib.request.Request(
            f"{self.base_url}/{method}",
            data=json.dumps(payload).encode("utf-8"),
            headers={
                "Content-Type": "application/json",
                "User-Agent": "rsspush/1.0",
            },
        )
        with urllib.request.urlopen(req, timeout=self.config.timeout) as response:
            return json.loads(response.read().decode("utf-8"))

    def _retry_after(self, error: urllib.error.HTTPError) -> int | None:
        """Extract the ``retry_after`` hint from a 429 response body."""
        try:
            body = json.loads(error.read().decode("utf-8"))
        except (AttributeError, TypeError, ValueError, OSError):
            return None
        if not isinstance(body, dict):
            return None
        return body.get("parameters", {}).get("retry_after")
