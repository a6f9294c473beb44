"""
External service connection setup.

This module contains *only* configuration loading and HTTP client construction
for the repository modules, plus the failure taxonomy every external call is
classified into:

- NotFoundError: the remote resource does not exist (404)
- ConflictError: the remote state rejects the change (409)
- TransientError: network failure, timeout, 429 or 5xx (retryable by caller policy)
- PermanentError: any other 4xx or a malformed response (not retryable)

Environment variables required:
- GIFT_BOT_TOKEN: Telegram bot token used to dispatch gifts
- PRIZE_STORE_URL: Base URL of the prize ledger service

Optional:
- CATALOG_PATH, LOG_CHAT_ID, GIFT_LOG_TOPIC_ID, HTTP_TIMEOUT_SECONDS,
  DISPATCH_TIMEOUT_SECONDS, REVERT_ON_INSUFFICIENT_BALANCE, ALLOWED_ORIGINS,
  LOG_LEVEL, TELEGRAM_API_URL, ADMIN_TOKEN (unset disables the admin routes)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

import httpx
from dotenv import load_dotenv

_PROJECT_ROOT = Path(__file__).parent.parent


class ExternalServiceError(Exception):
    """Base class for classified failures of an external service call."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NotFoundError(ExternalServiceError):
    pass


class ConflictError(ExternalServiceError):
    pass


class TransientError(ExternalServiceError):
    pass


class PermanentError(ExternalServiceError):
    pass


def classify_status(status_code: int, message: str) -> ExternalServiceError:
    """Map an unsuccessful HTTP (or Bot API error_code) status to its failure class."""

    if status_code == 404:
        return NotFoundError(message, status_code=status_code)
    if status_code == 409:
        return ConflictError(message, status_code=status_code)
    if status_code == 429 or status_code >= 500:
        return TransientError(message, status_code=status_code)
    return PermanentError(message, status_code=status_code)


def classify_transport_error(exc: httpx.HTTPError, what: str) -> ExternalServiceError:
    """Wrap a raw httpx failure (timeouts included) as a TransientError."""

    if isinstance(exc, httpx.TimeoutException):
        return TransientError(f"{what} timed out: {exc}")
    return TransientError(f"{what} failed: {exc}")


@dataclass(frozen=True, slots=True)
class Settings:
    """Process configuration, read once at startup."""

    gift_bot_token: str
    prize_store_url: str
    catalog_path: Path
    log_chat_id: Optional[str] = None
    gift_log_topic_id: int = 5
    http_timeout_seconds: float = 10.0
    dispatch_timeout_seconds: float = 30.0
    revert_on_insufficient_balance: bool = False
    allowed_origins: Tuple[str, ...] = ("*",)
    log_level: str = "INFO"
    telegram_api_url: str = "https://api.telegram.org"
    admin_token: Optional[str] = None


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise RuntimeError(f"Invalid value for {name}: {raw!r} (expected a number)") from None


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def load_env_file(env_file: Optional[Path] = None) -> None:
    """Load a .env file (default: project root) into the environment; existing variables win."""

    load_dotenv(dotenv_path=env_file or _PROJECT_ROOT / ".env")


def catalog_path_from_env() -> Path:
    return Path(os.getenv("CATALOG_PATH", str(_PROJECT_ROOT / "data" / "gift-catalog.json")))


def load_allowed_origins() -> Tuple[str, ...]:
    """CORS origins from ALLOWED_ORIGINS (comma separated); defaults to all."""

    origins = tuple(
        origin.strip()
        for origin in os.getenv("ALLOWED_ORIGINS", "*").split(",")
        if origin.strip()
    )
    return origins or ("*",)


def load_settings(env_file: Optional[Path] = None) -> Settings:
    """
    Load Settings from the environment (and a .env file, if present).

    Raises:
        RuntimeError: if a required variable is missing or a value is malformed
    """

    load_env_file(env_file)

    gift_bot_token = os.getenv("GIFT_BOT_TOKEN")
    prize_store_url = os.getenv("PRIZE_STORE_URL")

    if not gift_bot_token:
        raise RuntimeError(
            "Missing environment variable: GIFT_BOT_TOKEN. "
            "Set GIFT_BOT_TOKEN to the Telegram bot token used to send gifts."
        )

    if not prize_store_url:
        raise RuntimeError(
            "Missing environment variable: PRIZE_STORE_URL. "
            "Set PRIZE_STORE_URL to the prize store base URL "
            "(e.g. https://your-prize-store.up.railway.app)."
        )

    topic_raw = os.getenv("GIFT_LOG_TOPIC_ID", "5")
    try:
        topic_id = int(topic_raw)
    except ValueError:
        raise RuntimeError(f"Invalid value for GIFT_LOG_TOPIC_ID: {topic_raw!r}") from None

    return Settings(
        gift_bot_token=gift_bot_token,
        prize_store_url=prize_store_url.rstrip("/"),
        catalog_path=catalog_path_from_env(),
        log_chat_id=os.getenv("LOG_CHAT_ID") or None,
        gift_log_topic_id=topic_id,
        http_timeout_seconds=_env_float("HTTP_TIMEOUT_SECONDS", 10.0),
        dispatch_timeout_seconds=_env_float("DISPATCH_TIMEOUT_SECONDS", 30.0),
        revert_on_insufficient_balance=_env_bool("REVERT_ON_INSUFFICIENT_BALANCE", False),
        allowed_origins=load_allowed_origins(),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        telegram_api_url=os.getenv("TELEGRAM_API_URL", "https://api.telegram.org").rstrip("/"),
        admin_token=os.getenv("ADMIN_TOKEN") or None,
    )


def build_http_client(
    base_url: str,
    timeout_seconds: float,
    transport: Optional[httpx.BaseTransport] = None,
) -> httpx.Client:
    """Create the shared httpx client for one external service."""

    return httpx.Client(
        base_url=base_url,
        timeout=httpx.Timeout(timeout_seconds),
        headers={"Accept": "application/json"},
        transport=transport,
    )


__all__ = [
    "ExternalServiceError",
    "NotFoundError",
    "ConflictError",
    "TransientError",
    "PermanentError",
    "classify_status",
    "classify_transport_error",
    "Settings",
    "configure_logging",
    "load_env_file",
    "load_allowed_origins",
    "catalog_path_from_env",
    "load_settings",
    "build_http_client",
]
