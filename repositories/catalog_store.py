"""
Gift catalog store (local durable persistence).

Owns two collections and the dispatch counters, persisted together in one
JSON document:

    {
      "gifts":      {name: {providerGiftId, starCost, displayName, updatedAt}},
      "prizes":     {prizeId: {...local prize mirror...}},
      "statistics": {totalGiftsSent, totalStarsSpent},
      "lastSync":   ISO-8601 | null,
      "version":    "3.0"
    }

The file is shared by the API process and the maintenance scripts. Every
mutation holds a thread lock and a `<catalog>.lock` file lock, reloads the
file if another process replaced it, and runs as read-modify-write on a copy
of the state; the copy is written to a temp file in the same directory,
fsynced and renamed over the catalog file. Only after the rename succeeds
does the in-memory state switch to the copy, so a failed write leaves both
unchanged. Reads reload a file that changed on disk before answering.

A writer that cannot take the file lock in time raises filelock.Timeout
(an OSError).

Enforced here (persistence constraints, not claim rules):
- gift names are unique (dict key)
- a provider gift id maps to at most one gift name
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from filelock import FileLock

from domain.gift import GiftDefinition, GiftIdentifier, IdentifierKind, seed_definitions
from domain.prize import PrizeRecord, PrizeStatus
from domain.time import parse_utc_datetime, to_iso_utc, utc_now

logger = logging.getLogger(__name__)

CATALOG_VERSION: str = "3.0"

# How long a writer waits for another process to release the catalog file lock.
LOCK_TIMEOUT_SECONDS: float = 10.0


class CatalogConflictError(ValueError):
    """Raised when a write would map one provider gift id to two gift names."""


@dataclass(frozen=True, slots=True)
class CatalogStats:
    gifts_total: int
    gifts_mapped: int
    gifts_unmapped: int
    mapped_percentage: int
    prizes_total: int
    prizes_pending: int
    prizes_sent: int
    prizes_failed: int
    total_stars_value: int
    total_gifts_sent: int
    total_stars_spent: int
    last_sync: Optional[datetime]


@dataclass
class _State:
    gifts: Dict[str, GiftDefinition] = field(default_factory=dict)
    by_provider_id: Dict[str, str] = field(default_factory=dict)
    prizes: Dict[str, PrizeRecord] = field(default_factory=dict)
    total_gifts_sent: int = 0
    total_stars_spent: int = 0
    last_sync: Optional[datetime] = None

    def copy(self) -> "_State":
        return _State(
            gifts=dict(self.gifts),
            by_provider_id=dict(self.by_provider_id),
            prizes=dict(self.prizes),
            total_gifts_sent=self.total_gifts_sent,
            total_stars_spent=self.total_stars_spent,
            last_sync=self.last_sync,
        )

    def put_gift(self, gift: GiftDefinition) -> None:
        """Insert/replace a gift, keeping the provider id index consistent."""

        if gift.provider_gift_id is not None:
            owner = self.by_provider_id.get(gift.provider_gift_id)
            if owner is not None and owner != gift.name:
                raise CatalogConflictError(
                    f"Provider gift id {gift.provider_gift_id} is already mapped to {owner!r}"
                )

        previous = self.gifts.get(gift.name)
        if previous is not None and previous.provider_gift_id is not None:
            self.by_provider_id.pop(previous.provider_gift_id, None)

        self.gifts[gift.name] = gift
        if gift.provider_gift_id is not None:
            self.by_provider_id[gift.provider_gift_id] = gift.name


# ============================================================================
# (De)serialization
# ============================================================================

def _gift_to_json(gift: GiftDefinition) -> Dict[str, Any]:
    return {
        "providerGiftId": gift.provider_gift_id,
        "starCost": gift.star_cost,
        "displayName": gift.display_name,
        "updatedAt": to_iso_utc(gift.updated_at, name="updated_at"),
    }


def _gift_from_json(name: str, row: Mapping[str, Any], now: datetime) -> GiftDefinition:
    # "telegramId" / "lastUpdated" are the keys of the 2.x catalog files.
    provider_id = row.get("providerGiftId", row.get("telegramId"))
    updated_raw = row.get("updatedAt") or row.get("lastUpdated")
    return GiftDefinition(
        name=name,
        star_cost=int(row["starCost"]),
        updated_at=parse_utc_datetime(updated_raw) if updated_raw else now,
        provider_gift_id=str(provider_id) if provider_id else None,
        display_name=row.get("displayName") or name,
    )


def _prize_to_json(prize: PrizeRecord) -> Dict[str, Any]:
    return {
        "prizeId": prize.prize_id,
        "giftName": prize.gift_name,
        "ownerUserId": prize.owner_user_id,
        "status": prize.status.value,
        "claimedAt": to_iso_utc(prize.claimed_at, name="claimed_at"),
        "updatedAt": to_iso_utc(prize.updated_at, name="updated_at"),
        "errorMessage": prize.error_message,
        "retryCount": prize.retry_count,
        "starCost": prize.star_cost,
        "ledgerFinalized": prize.ledger_finalized,
    }


def _prize_from_json(prize_id: str, row: Mapping[str, Any], now: datetime) -> PrizeRecord:
    claimed_raw = row.get("claimedAt")
    updated_raw = row.get("updatedAt")
    return PrizeRecord(
        prize_id=str(row.get("prizeId") or prize_id),
        gift_name=str(row.get("giftName") or ""),
        owner_user_id=str(row.get("ownerUserId", row.get("userId", ""))),
        status=PrizeStatus(row["status"]),
        claimed_at=parse_utc_datetime(claimed_raw) if claimed_raw else now,
        updated_at=parse_utc_datetime(updated_raw) if updated_raw else now,
        error_message=row.get("errorMessage"),
        retry_count=int(row.get("retryCount", 0)),
        star_cost=int(row.get("starCost", 0)),
        # 2.x files have no flag; they only marked a prize sent after the ledger row was removed
        ledger_finalized=bool(row.get("ledgerFinalized", True)),
    )


def _state_to_json(state: _State) -> Dict[str, Any]:
    return {
        "gifts": {name: _gift_to_json(g) for name, g in state.gifts.items()},
        "prizes": {pid: _prize_to_json(p) for pid, p in state.prizes.items()},
        "statistics": {
            "totalGiftsSent": state.total_gifts_sent,
            "totalStarsSpent": state.total_stars_spent,
        },
        "lastSync": to_iso_utc(state.last_sync, name="last_sync") if state.last_sync else None,
        "version": CATALOG_VERSION,
    }


def _state_from_json(document: Mapping[str, Any], now: datetime) -> _State:
    state = _State()

    for name, row in (document.get("gifts") or {}).items():
        try:
            gift = _gift_from_json(name, row, now)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(
                f"Skipping malformed gift entry {name!r}",
                extra={"gift_name": name, "error": str(e)},
            )
            continue
        # Duplicate provider ids in the file are a hard error: CatalogConflictError
        state.put_gift(gift)

    for prize_id, row in (document.get("prizes") or {}).items():
        try:
            state.prizes[prize_id] = _prize_from_json(prize_id, row, now)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(
                f"Skipping malformed prize entry {prize_id!r}",
                extra={"prize_id": prize_id, "error": str(e)},
            )

    statistics = document.get("statistics") or {}
    state.total_gifts_sent = int(statistics.get("totalGiftsSent", 0))
    state.total_stars_spent = int(statistics.get("totalStarsSpent", 0))

    last_sync = document.get("lastSync", (document.get("metadata") or {}).get("lastSync"))
    state.last_sync = parse_utc_datetime(last_sync) if last_sync else None
    return state


# ============================================================================
# Store
# ============================================================================

class GiftCatalogStore:
    """
    Durable gift catalog + local prize mirror + dispatch statistics.

    Call initialize() once before use.
    """

    def __init__(
        self,
        path: Path,
        *,
        seed: Optional[Iterable[GiftDefinition]] = None,
        clock: Callable[[], datetime] = utc_now,
        lock_timeout_seconds: float = LOCK_TIMEOUT_SECONDS,
    ) -> None:
        self._path = Path(path)
        self._clock = clock
        self._seed = list(seed) if seed is not None else None
        self._lock = threading.RLock()
        # Serializes writers across processes (API server, CLI scripts).
        self._file_lock = FileLock(f"{self._path}.lock", timeout=lock_timeout_seconds)
        self._state = _State()
        self._signature: Optional[Tuple[int, int, int]] = None

    @property
    def path(self) -> Path:
        return self._path

    # ------------------------------------------------------------------
    # Initialization / file operations
    # ------------------------------------------------------------------

    def initialize(self) -> None:
        """
        Load the catalog file (creating it when missing) and merge the seed list.

        Seed entries never overwrite an existing gift name or an already
        mapped provider id.
        """

        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock, self._file_lock:
            now = self._clock()
            if self._path.exists():
                state = self._load(now)
                logger.info(
                    "Gift catalog loaded from disk",
                    extra={"path": str(self._path), "gifts": len(state.gifts), "prizes": len(state.prizes)},
                )
            else:
                state = _State()
                logger.info("Creating new gift catalog", extra={"path": str(self._path)})

            seed = self._seed if self._seed is not None else seed_definitions(now)
            for gift in seed:
                if gift.name in state.gifts:
                    continue
                if gift.provider_gift_id is not None and gift.provider_gift_id in state.by_provider_id:
                    continue
                state.put_gift(gift)

            self._persist(state)
            self._state = state

    def _file_signature(self) -> Optional[Tuple[int, int, int]]:
        try:
            st = os.stat(self._path)
        except FileNotFoundError:
            return None
        return (st.st_ino, st.st_mtime_ns, st.st_size)

    def _load(self, now: datetime) -> _State:
        signature = self._file_signature()
        with self._path.open("r", encoding="utf-8") as f:
            document = json.load(f)
        if not isinstance(document, dict):
            raise ValueError(f"Gift catalog {self._path} is not a JSON object")
        state = _state_from_json(document, now)
        self._signature = signature
        return state

    def _refresh(self) -> None:
        """Reload the state when another process has replaced the catalog file."""

        signature = self._file_signature()
        if signature is None or signature == self._signature:
            return
        self._state = self._load(self._clock())
        logger.debug("Gift catalog reloaded after an external write", extra={"path": str(self._path)})

    def _persist(self, state: _State) -> None:
        """Atomically replace the catalog file with `state`."""

        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(_state_to_json(state), indent=2, ensure_ascii=False)

        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self._path.name}.", suffix=".tmp", dir=str(self._path.parent)
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self._path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise
        self._signature = self._file_signature()

    def _mutate(self, change: Callable[[_State], Any]) -> Any:
        """
        Run `change` on a copy of the latest state, persist it, then publish it.

        The file lock is held from reload to rename, so writers in other
        processes are applied on top of each other instead of overwritten.
        """

        with self._lock, self._file_lock:
            self._refresh()
            state = self._state.copy()
            result = change(state)
            self._persist(state)
            self._state = state
            return result

    def _current(self) -> _State:
        """Latest published state; call with self._lock held."""
        self._refresh()
        return self._state

    # ------------------------------------------------------------------
    # Gift catalog operations
    # ------------------------------------------------------------------

    def resolve(self, identifier: GiftIdentifier) -> Optional[GiftDefinition]:
        """Explicit tagged lookup against the name index or the provider id index."""

        with self._lock:
            state = self._current()
            if identifier.kind is IdentifierKind.NAME:
                return state.gifts.get(identifier.value)
            name = state.by_provider_id.get(identifier.value)
            return state.gifts.get(name) if name is not None else None

    def resolve_any(self, value: str) -> Optional[GiftDefinition]:
        """Forward lookup (gift name) first, then reverse lookup (provider gift id)."""

        if not value or not value.strip():
            return None
        value = value.strip()
        return self.resolve(GiftIdentifier.name(value)) or self.resolve(GiftIdentifier.provider_id(value))

    def get_gift(self, name: str) -> Optional[GiftDefinition]:
        with self._lock:
            return self._current().gifts.get(name)

    def list_gifts(self) -> List[GiftDefinition]:
        """All gift definitions, cheapest first."""

        with self._lock:
            gifts = list(self._current().gifts.values())
        return sorted(gifts, key=lambda g: (g.star_cost, g.name))

    def upsert(self, definition: GiftDefinition) -> GiftDefinition:
        """
        Insert or replace a gift definition, stamping updated_at.

        Raises:
            CatalogConflictError: provider_gift_id already belongs to another name
        """

        def change(state: _State) -> GiftDefinition:
            now = self._clock()
            stored = definition.touched(now)
            state.put_gift(stored)
            if stored.provider_gift_id is not None:
                state.last_sync = now
            return stored

        stored = self._mutate(change)
        logger.info(
            f"Gift mapping saved: {stored.name}",
            extra={
                "gift_name": stored.name,
                "provider_gift_id": stored.provider_gift_id,
                "star_cost": stored.star_cost,
            },
        )
        return stored

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def record_dispatch(self, star_cost: int) -> None:
        """Count one confirmed dispatch costing `star_cost` stars."""

        if star_cost < 0:
            raise ValueError("star_cost must be >= 0")

        def change(state: _State) -> None:
            state.total_gifts_sent += 1
            state.total_stars_spent += star_cost

        self._mutate(change)

    def stats(self) -> CatalogStats:
        with self._lock:
            state = self._current()
            gifts = list(state.gifts.values())
            prizes = list(state.prizes.values())
            totals = (state.total_gifts_sent, state.total_stars_spent, state.last_sync)

        mapped = sum(1 for g in gifts if g.is_mapped)
        sent = [p for p in prizes if p.status == PrizeStatus.SENT]

        return CatalogStats(
            gifts_total=len(gifts),
            gifts_mapped=mapped,
            gifts_unmapped=len(gifts) - mapped,
            mapped_percentage=round(mapped * 100 / len(gifts)) if gifts else 0,
            prizes_total=len(prizes),
            prizes_pending=sum(1 for p in prizes if p.status == PrizeStatus.PENDING),
            prizes_sent=len(sent),
            prizes_failed=sum(1 for p in prizes if p.status == PrizeStatus.FAILED),
            total_stars_value=sum(p.star_cost for p in sent),
            total_gifts_sent=totals[0],
            total_stars_spent=totals[1],
            last_sync=totals[2],
        )

    # ------------------------------------------------------------------
    # Local prize mirror
    # ------------------------------------------------------------------

    def record_prize_locally(
        self,
        prize_id: str,
        gift_name: str,
        owner_user_id: str,
        status: PrizeStatus = PrizeStatus.PENDING,
        *,
        star_cost: int = 0,
    ) -> PrizeRecord:
        """
        Create (or overwrite) the local mirror of a prize.

        The ledger is the service of record, so an existing local record is
        replaced rather than transitioned; its claimed_at is kept and
        retry_count is bumped to count the new attempt.
        """

        def change(state: _State) -> PrizeRecord:
            now = self._clock()
            existing = state.prizes.get(prize_id)
            record = PrizeRecord(
                prize_id=prize_id,
                gift_name=gift_name,
                owner_user_id=str(owner_user_id),
                status=status,
                claimed_at=existing.claimed_at if existing else now,
                updated_at=now,
                retry_count=existing.retry_count + 1 if existing else 0,
                star_cost=star_cost,
                ledger_finalized=False,
            )
            state.prizes[prize_id] = record
            return record

        return self._mutate(change)

    def update_local_prize_status(
        self,
        prize_id: str,
        status: PrizeStatus,
        *,
        error_message: Optional[str] = None,
        ledger_finalized: Optional[bool] = None,
        increment_retry: bool = False,
        gift_name: Optional[str] = None,
        star_cost: Optional[int] = None,
    ) -> Optional[PrizeRecord]:
        """
        Move a locally mirrored prize to `status`.

        Returns None when the prize is not mirrored locally.

        Raises:
            ValueError: if the move is not an allowed forward transition
        """

        def change(state: _State) -> Optional[PrizeRecord]:
            existing = state.prizes.get(prize_id)
            if existing is None:
                return None
            record = existing.with_status(status, updated_at=self._clock(), error_message=error_message)
            updates: Dict[str, Any] = {}
            if ledger_finalized is not None:
                updates["ledger_finalized"] = ledger_finalized
            if increment_retry:
                updates["retry_count"] = record.retry_count + 1
            if gift_name is not None:
                updates["gift_name"] = gift_name
            if star_cost is not None:
                updates["star_cost"] = star_cost
            if updates:
                record = replace(record, **updates)
            state.prizes[prize_id] = record
            return record

        return self._mutate(change)

    def get_local_prize(self, prize_id: str) -> Optional[PrizeRecord]:
        with self._lock:
            return self._current().prizes.get(prize_id)

    def list_local_prizes(
        self,
        status: Optional[PrizeStatus] = None,
        owner_user_id: Optional[str] = None,
    ) -> List[PrizeRecord]:
        """Local prize history, newest first, optionally filtered."""

        with self._lock:
            prizes = list(self._current().prizes.values())

        if status is not None:
            prizes = [p for p in prizes if p.status == status]
        if owner_user_id is not None:
            prizes = [p for p in prizes if p.owner_user_id == str(owner_user_id)]
        return sorted(prizes, key=lambda p: p.updated_at, reverse=True)

    def list_unfinalized_prizes(self) -> List[PrizeRecord]:
        """Prizes whose gift was sent but whose ledger row was not finalized."""

        with self._lock:
            prizes = [p for p in self._current().prizes.values() if p.needs_reconciliation]
        return sorted(prizes, key=lambda p: p.updated_at)

    def delete_local_prize(self, prize_id: str) -> bool:
        def change(state: _State) -> bool:
            return state.prizes.pop(prize_id, None) is not None

        with self._lock:
            if prize_id not in self._current().prizes:
                return False
            return self._mutate(change)

    def cleanup(self, older_than_days: int = 7) -> int:
        """
        Drop settled (sent/failed) local records not updated for `older_than_days`.

        Unfinalized sent records are kept until reconciliation finalizes them.
        """

        if older_than_days < 0:
            raise ValueError("older_than_days must be >= 0")

        def change(state: _State) -> int:
            cutoff = self._clock() - timedelta(days=older_than_days)
            stale = [
                pid
                for pid, p in state.prizes.items()
                if p.updated_at < cutoff
                and p.status in (PrizeStatus.SENT, PrizeStatus.FAILED)
                and not p.needs_reconciliation
            ]
            for pid in stale:
                del state.prizes[pid]
            return len(stale)

        cleaned = self._mutate(change)
        if cleaned:
            logger.info(f"Cleaned up {cleaned} old prizes", extra={"older_than_days": older_than_days})
        return cleaned


__all__ = [
    "CATALOG_VERSION",
    "CatalogConflictError",
    "CatalogStats",
    "GiftCatalogStore",
]
