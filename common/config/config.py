"""
Configuration for the sync client.

Values come from environment variables, optionally loaded from a .env file.
SyncConfig is a plain validated dataclass; nothing here is read at import
time except the .env file, so tests can build configs directly.
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Load environment variables from .env file
load_dotenv()

DEFAULT_PROJECT_POLL_INTERVAL = 5.0
DEFAULT_DAILY_REPORT_POLL_INTERVAL = 30.0
DEFAULT_NOTIFICATION_CAP = 50
DEFAULT_DEDUP_WINDOW = 500
DEFAULT_BULK_CONCURRENCY = 10
DEFAULT_HTTP_TIMEOUT_SECONDS = 30.0


def _env_float(key: str, default: float) -> float:
    value = os.getenv(key)
    return float(value) if value else default


def _env_int(key: str, default: int) -> int:
    value = os.getenv(key)
    return int(value) if value else default


def _env_bool(key: str, default: bool) -> bool:
    value = os.getenv(key)
    if value is None:
        return default
    return value.lower() in ("1", "true", "yes")


@dataclass
class SyncConfig:
    """Settings for one sync session."""

    api_base_url: str
    api_timeout: float = DEFAULT_HTTP_TIMEOUT_SECONDS
    api_token: Optional[str] = None
    project_poll_interval: float = DEFAULT_PROJECT_POLL_INTERVAL
    daily_report_poll_interval: float = DEFAULT_DAILY_REPORT_POLL_INTERVAL
    notification_cap: int = DEFAULT_NOTIFICATION_CAP
    dedup_window: int = DEFAULT_DEDUP_WINDOW
    bulk_concurrency: int = DEFAULT_BULK_CONCURRENCY
    use_bulk_endpoint: bool = False

    def __post_init__(self):
        """Validate required fields."""
        if not self.api_base_url:
            raise ValueError("SOLAR_API_BASE_URL environment variable not set")
        self.api_base_url = self.api_base_url.rstrip("/")
        if self.api_timeout <= 0:
            raise ValueError("SOLAR_API_TIMEOUT must be positive")
        if self.project_poll_interval <= 0 or self.daily_report_poll_interval <= 0:
            raise ValueError("Poll intervals must be positive")
        if self.notification_cap < 1:
            raise ValueError("NOTIFICATION_CAP must be at least 1")
        if self.dedup_window < self.notification_cap:
            raise ValueError("DEDUP_WINDOW must not be smaller than NOTIFICATION_CAP")
        if self.bulk_concurrency < 1:
            raise ValueError("BULK_CONCURRENCY must be at least 1")

    @classmethod
    def from_env(cls) -> "SyncConfig":
        """
        Build a config from environment variables.

        Raises:
            ValueError: If SOLAR_API_BASE_URL is missing or a value is out of range

        Example:
            >>> config = SyncConfig.from_env()
            >>> print(config.api_base_url)
        """
        config = cls(
            api_base_url=os.getenv("SOLAR_API_BASE_URL", ""),
            api_timeout=_env_float("SOLAR_API_TIMEOUT", DEFAULT_HTTP_TIMEOUT_SECONDS),
            api_token=os.getenv("SOLAR_API_TOKEN") or None,
            project_poll_interval=_env_float(
                "PROJECT_POLL_INTERVAL", DEFAULT_PROJECT_POLL_INTERVAL
            ),
            daily_report_poll_interval=_env_float(
                "DAILY_REPORT_POLL_INTERVAL", DEFAULT_DAILY_REPORT_POLL_INTERVAL
            ),
            notification_cap=_env_int("NOTIFICATION_CAP", DEFAULT_NOTIFICATION_CAP),
            dedup_window=_env_int("DEDUP_WINDOW", DEFAULT_DEDUP_WINDOW),
            bulk_concurrency=_env_int("BULK_CONCURRENCY", DEFAULT_BULK_CONCURRENCY),
            use_bulk_endpoint=_env_bool("USE_BULK_ENDPOINT", False),
        )
        logger.debug(f"Loaded sync configuration for API: {config.api_base_url}")
        return config
