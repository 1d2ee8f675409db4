"""Configuration management for rsspush."""

import argparse
import json
import os
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

import boto3
from botocore.exceptions import ClientError

from .logging_config import create_execution_logger
from .models import Subscription

TOKEN_KEYS = ("token", "bot_token", "telegram_token", "telegram_bot_token")
TRUE_VALUES = ("1", "true", "yes", "on")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigError(ValueError):
    """Invalid or missing startup configuration."""


@dataclass
class TelegramConfig:
    """Configuration for Telegram Bot API."""

    bot_token: str
    chat_id: int
    parse_mode: str | None = None
    timeout: float = 30.0
    disable_web_page_preview: bool = False


@dataclass
class Settings:
    """Process parameters for one run."""

    bot_token: str = ""
    chat_id: int = 0
    startby_hours: int = 3
    rss_filepath: str = "rss.json"
    debug: bool = False
    workers: int = 5
    queue_size: int = 20
    fetch_timeout: float = 30.0
    send_timeout: float = 30.0
    secret_name: str = ""
    aws_region: str = "us-east-1"
    log_level: str = "INFO"

    @property
    def dry_run(self) -> bool:
        return self.debug

    def validate(self) -> None:
        """Raise ConfigError unless the settings can drive a run."""
        if not self.bot_token or not self.bot_token.strip():
            raise ConfigError("Telegram bot token cannot be empty")
        if self.chat_id == 0:
            raise ConfigError("Telegram channel id cannot be zero")
        if self.workers < 1:
            raise ConfigError(f"Worker count must be at least 1, got {self.workers}")
        if self.queue_size < 1:
            raise ConfigError(f"Queue size must be at least 1, got {self.queue_size}")
        if self.fetch_timeout <= 0 or self.send_timeout <= 0:
            raise ConfigError("Timeouts must be positive")

    def get_telegram_config(self) -> TelegramConfig:
        return TelegramConfig(
            bot_token=self.bot_token,
            chat_id=self.chat_id,
            timeout=self.send_timeout,
        )


def _env_int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name, "")
    if not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")


def build_parser(environ: Mapping[str, str] | None = None) -> argparse.ArgumentParser:
    """Build the command line parser; environment values become the defaults."""
    env = os.environ if environ is None else environ

    parser = argparse.ArgumentParser(
        prog="rsspush",
        description="Push recent RSS/Atom entries to a Telegram channel.",
    )
    parser.add_argument(
        "--tg-bot",
        dest="bot_token",
        default=env.get("TELEGRAM_BOT_TOKEN", ""),
        help="Telegram bot token",
    )
    parser.add_argument(
        "--tg-channel",
        dest="chat_id",
        type=int,
        default=_env_int(env, "TELEGRAM_CHAT_ID", 0),
        help="Telegram channel id",
    )
    parser.add_argument(
        "--startby",
        dest="startby_hours",
        type=int,
        default=_env_int(env, "RSS_STARTBY_HOURS", 3),
        help="Look-back window in hours",
    )
    parser.add_argument(
        "--rss-filepath",
        dest="rss_filepath",
        default=env.get("RSS_FILEPATH", "rss.json"),
        help="Subscription JSON file path",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=env.get("RSS_DEBUG", "").strip().lower() in TRUE_VALUES,
        help="Dry run: log everything, send nothing",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=_env_int(env, "RSS_WORKERS", 5),
        help="Number of concurrent feed fetchers",
    )
    parser.add_argument("--queue-size", type=int, default=20)
    parser.add_argument("--fetch-timeout", type=float, default=30.0)
    parser.add_argument("--send-timeout", type=float, default=30.0)
    parser.add_argument(
        "--tg-secret-name",
        dest="secret_name",
        default=env.get("TELEGRAM_SECRET_NAME", ""),
        help="AWS Secrets Manager secret holding the bot token",
    )
    parser.add_argument(
        "--aws-region",
        default=env.get("AWS_DEFAULT_REGION", "us-east-1"),
    )
    parser.add_argument("--log-level", default=env.get("LOG_LEVEL", "INFO"))
    return parser


def parse_settings(
    argv: Sequence[str] | None = None, environ: Mapping[str, str] | None = None
) -> Settings:
    """Parse process parameters.

    Only the log level is checked here, since logging is set up before
    Settings.validate() runs.
    """
    args = build_parser(environ).parse_args(argv)
    settings = Settings(**vars(args))
    settings.log_level = settings.log_level.strip().upper()
    if settings.log_level not in LOG_LEVELS:
        raise ConfigError(
            f"Log level must be one of {', '.join(LOG_LEVELS)}, got {args.log_level!r}"
        )
    return settings


def load_subscriptions(path: str | Path) -> list[Subscription]:
    """Read the subscription document.

    The document looks like ``{"rss_info": [{"title", "url", "full_content"}]}``.
    Entries with ``"enabled": false`` are skipped.

    Raises:
        FileNotFoundError: If the file does not exist
        ConfigError: If the document is not valid JSON or has the wrong shape
    """
    rss_file = Path(path)
    if not rss_file.exists():
        raise FileNotFoundError(f"Subscription file not found: {path}")

    try:
        with open(rss_file, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in subscription file: {e}") from e
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"Cannot read subscription file {path}: {e}") from e

    if not isinstance(data, dict) or not isinstance(data.get("rss_info"), list):
        raise ConfigError("Subscription file must contain an 'rss_info' list")

    subscriptions = []
    for index, entry in enumerate(data["rss_info"]):
        if not isinstance(entry, dict) or not entry.get("url"):
            raise ConfigError(f"Subscription #{index} has no url")
        if not entry.get("enabled", True):
            continue
        subscriptions.append(
            Subscription(
                title=str(entry.get("title", "")),
                url=str(entry["url"]),
                full_content=bool(entry.get("full_content", False)),
            )
        )
    return subscriptions


def get_telegram_token(secret_name: str, aws_region: str, execution_id: str) -> str:
    """
    Retrieve the Telegram bot token from AWS Secrets Manager.

    Plain string secrets and JSON object secrets are both supported. The
    token itself is never logged.

    Raises:
        ConfigError: If the secret cannot be read or holds no usable token
    """
    secrets_logger = create_execution_logger("secrets_manager", execution_id)

    if not secret_name or not secret_name.strip():
        raise ConfigError("Secret name cannot be empty")

    try:
        secrets_logger.info(f"Retrieving Telegram token from Secrets Manager: {secret_name}")
        secrets_client = boto3.client("secretsmanager", region_name=aws_region)
        response = secrets_client.get_secret_value(SecretId=secret_name)
    except ClientError as e:
        error_code = e.response.get("Error", {}).get("Code", "Unknown")
        secrets_logger.error(
            f"AWS Secrets Manager error retrieving {secret_name}: {error_code}"
        )
        raise ConfigError(f"Failed to retrieve secret {secret_name}") from e

    secret_value = response.get("SecretString", "")
    if not secret_value or not secret_value.strip():
        raise ConfigError(f"Secret {secret_name} contains no string value")

    try:
        secret_data = json.loads(secret_value)
    except json.JSONDecodeError:
        secrets_logger.info("Retrieved token from plain text secret")
        return secret_value.strip()

    if not isinstance(secret_data, dict):
        raise ConfigError(f"JSON secret {secret_name} must be an object")

    for key in TOKEN_KEYS:
        value = secret_data.get(key)
        if isinstance(value, str) and value.strip():
            secrets_logger.info("Retrieved token from JSON secret", secret_key=key)
            return value.strip()

    raise ConfigError(f"No token found in JSON secret {secret_name}")


def resolve_bot_token(settings: Settings, execution_id: str) -> str:
    """Token from the command line/environment, else from Secrets Manager."""
    if settings.bot_token and settings.bot_token.strip():
        return settings.bot_token.strip()
    if settings.secret_name:
        return get_telegram_token(settings.secret_name, settings.aws_region, execution_id)
    return ""
