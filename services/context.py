"""
Application context.

Holds the configuration and every collaborator a claim needs. It is built
once at startup, kept on the FastAPI app state and passed explicitly into the
services; nothing here is a module-level singleton.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Optional, Protocol, Set

import httpx

from domain.prize import LedgerPrize, PrizeStatus
from repositories.catalog_store import GiftCatalogStore
from repositories.client import Settings, build_http_client
from repositories.gift_provider_client import DispatchConfirmation, TelegramGiftProvider
from repositories.ledger_client import PrizeLedgerClient
from services.audit_service import AuditNotifier, LoggingAuditNotifier, TelegramAuditNotifier

logger = logging.getLogger(__name__)


class PrizeLedger(Protocol):
    def fetch_prize(self, prize_id: str) -> LedgerPrize: ...

    def patch_status(
        self, prize_id: str, status: PrizeStatus, error_message: Optional[str] = None
    ) -> None: ...

    def delete_prize(self, prize_id: str) -> None: ...


class GiftProvider(Protocol):
    def send_gift(self, user_id: str, provider_gift_id: str, message: str) -> DispatchConfirmation: ...

    def get_balance(self) -> int: ...


class InFlightPrizes:
    """
    Process-local set of prize ids with a claim currently running.

    A second claim for the same prize in this process is refused instead of
    waiting; claims for different prizes never contend.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ids: Set[str] = set()

    def try_acquire(self, prize_id: str) -> bool:
        with self._lock:
            if prize_id in self._ids:
                return False
            self._ids.add(prize_id)
            return True

    def release(self, prize_id: str) -> None:
        with self._lock:
            self._ids.discard(prize_id)


@dataclass
class AppContext:
    settings: Settings
    catalog: GiftCatalogStore
    ledger: PrizeLedger
    provider: GiftProvider
    notifier: AuditNotifier
    in_flight: InFlightPrizes = field(default_factory=InFlightPrizes)

    def close(self) -> None:
        for client in (self.ledger, self.provider):
            close = getattr(client, "close", None)
            if callable(close):
                close()


def build_context(
    settings: Settings,
    *,
    ledger_transport: Optional[httpx.BaseTransport] = None,
    telegram_transport: Optional[httpx.BaseTransport] = None,
) -> AppContext:
    """
    Wire the production collaborators and load the catalog.

    Transports can be injected to run against mocked HTTP services.
    """

    ledger = PrizeLedgerClient(
        build_http_client(settings.prize_store_url, settings.http_timeout_seconds, ledger_transport)
    )
    provider = TelegramGiftProvider(
        build_http_client(
            f"{settings.telegram_api_url}/bot{settings.gift_bot_token}",
            settings.http_timeout_seconds,
            telegram_transport,
        ),
        dispatch_timeout_seconds=settings.dispatch_timeout_seconds,
    )

    notifier: AuditNotifier
    if settings.log_chat_id:
        notifier = TelegramAuditNotifier(provider, settings.log_chat_id, settings.gift_log_topic_id)
    else:
        logger.warning("LOG_CHAT_ID not configured - audit messages go to the log only")
        notifier = LoggingAuditNotifier()

    catalog = GiftCatalogStore(settings.catalog_path)
    catalog.initialize()

    return AppContext(
        settings=settings,
        catalog=catalog,
        ledger=ledger,
        provider=provider,
        notifier=notifier,
    )


__all__ = [
    "PrizeLedger",
    "GiftProvider",
    "InFlightPrizes",
    "AppContext",
    "build_context",
]
