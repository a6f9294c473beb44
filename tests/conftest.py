"""
Pytest configuration and shared fakes.

Adds the project root to the Python path so tests can import domain,
repositories, services and api, and provides in-memory stand-ins for the
prize ledger, the gift provider and the audit channel.
"""

import sys
import threading
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest

# Add the project root to the Python path
# so tests can import domain, repositories, etc.
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from domain.prize import LedgerPrize, PrizeStatus  # noqa: E402
from domain.time import utc_now  # noqa: E402
from repositories.catalog_store import GiftCatalogStore  # noqa: E402
from repositories.client import NotFoundError, Settings  # noqa: E402
from repositories.gift_provider_client import DispatchConfirmation  # noqa: E402
from services.audit_service import AuditNotifier  # noqa: E402
from services.context import AppContext  # noqa: E402


class FakeLedger:
    """In-memory prize ledger with per-operation failure injection."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.rows: Dict[str, dict] = {}
        self.calls: List[Tuple] = []
        self.fetch_errors: List[Exception] = []
        self.patch_errors: Dict[PrizeStatus, Exception] = {}
        self.delete_error: Optional[Exception] = None

    def add(self, prize_id: str, user_id, gift_name: str = "Heart", status: str = "pending") -> None:
        self.rows[prize_id] = {"user_id": user_id, "status": status, "gift_name": gift_name}

    def status_of(self, prize_id: str) -> Optional[str]:
        row = self.rows.get(prize_id)
        return row["status"] if row else None

    def mutations(self) -> List[Tuple]:
        return [c for c in self.calls if c[0] != "GET"]

    def fetch_prize(self, prize_id: str) -> LedgerPrize:
        with self._lock:
            self.calls.append(("GET", prize_id))
            if self.fetch_errors:
                raise self.fetch_errors.pop(0)
            row = self.rows.get(prize_id)
            if row is None:
                raise NotFoundError(f"Prize {prize_id} not found", status_code=404)
            return LedgerPrize.from_payload(prize_id, dict(row))

    def patch_status(self, prize_id: str, status: PrizeStatus, error_message: Optional[str] = None) -> None:
        with self._lock:
            self.calls.append(("PATCH", prize_id, status, error_message))
            if status in self.patch_errors:
                raise self.patch_errors[status]
            row = self.rows.get(prize_id)
            if row is None:
                raise NotFoundError(f"Prize {prize_id} not found", status_code=404)
            row["status"] = status.value
            if error_message is not None:
                row["error_message"] = error_message

    def delete_prize(self, prize_id: str) -> None:
        with self._lock:
            self.calls.append(("DELETE", prize_id))
            if self.delete_error is not None:
                raise self.delete_error
            if self.rows.pop(prize_id, None) is None:
                raise NotFoundError(f"Prize {prize_id} not found", status_code=404)


class FakeProvider:
    """Gift provider with a Star balance that dispatches deduct from."""

    def __init__(self, balance: int = 1000) -> None:
        self.balance = balance
        self.sent: List[Tuple[str, str, str]] = []
        self.send_error: Optional[Exception] = None
        self.balance_error: Optional[Exception] = None
        self.balance_calls = 0
        self.send_gate: Optional[threading.Event] = None
        self.send_started = threading.Event()

    def get_balance(self) -> int:
        self.balance_calls += 1
        if self.balance_error is not None:
            raise self.balance_error
        return self.balance

    def send_gift(self, user_id: str, provider_gift_id: str, message: str) -> DispatchConfirmation:
        self.send_started.set()
        if self.send_gate is not None:
            self.send_gate.wait(timeout=5)
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((user_id, provider_gift_id, message))
        return DispatchConfirmation(user_id=user_id, provider_gift_id=provider_gift_id, sent_at=utc_now())


class RecordingNotifier(AuditNotifier):
    def __init__(self) -> None:
        self.events: List[Tuple] = []

    def claim_succeeded(self, user_id, gift_name, prize_id, star_cost, balance_after) -> None:
        self.events.append(("succeeded", prize_id, gift_name, star_cost, balance_after))

    def claim_failed(self, user_id, gift_name, prize_id, error) -> None:
        self.events.append(("failed", prize_id, error))

    def ledger_out_of_sync(self, user_id, gift_name, prize_id, detail) -> None:
        self.events.append(("out_of_sync", prize_id, detail))

    def kinds(self) -> List[str]:
        return [e[0] for e in self.events]


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        gift_bot_token="123:test-token",
        prize_store_url="http://ledger.test",
        catalog_path=tmp_path / "gift-catalog.json",
        admin_token="admin-secret",
    )


@pytest.fixture
def catalog(settings: Settings) -> GiftCatalogStore:
    store = GiftCatalogStore(settings.catalog_path)
    store.initialize()
    return store


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider(balance=100)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def context(settings, catalog, ledger, provider, notifier) -> AppContext:
    return AppContext(
        settings=settings,
        catalog=catalog,
        ledger=ledger,
        provider=provider,
        notifier=notifier,
    )
