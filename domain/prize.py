"""
Domain: Prize reservations and their claim status.

Contract excerpts implemented here:
- A Prize entitles exactly one user to claim exactly one gift.
- Status only moves forward:
    pending  -> claiming
    claiming -> claimed | sent | failed | pending (recovery before dispatch)
    claimed  -> sent
- A prize in claimed/sent/failed is never dispatched again.

Two views of a prize exist:
- LedgerPrize: what the external prize ledger reports (service of record).
- PrizeRecord: the local mirror kept by the catalog store for history and
  statistics. It may lag the ledger.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any, FrozenSet, Mapping, Optional

from .time import require_utc_timestamp


class PrizeStatus(str, Enum):
    PENDING = "pending"
    CLAIMING = "claiming"
    CLAIMED = "claimed"
    SENT = "sent"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """True for statuses that must never lead to another dispatch."""
        return self in _TERMINAL


_TERMINAL: FrozenSet[PrizeStatus] = frozenset(
    {PrizeStatus.CLAIMED, PrizeStatus.SENT, PrizeStatus.FAILED}
)

_TRANSITIONS: Mapping[PrizeStatus, FrozenSet[PrizeStatus]] = {
    PrizeStatus.PENDING: frozenset({PrizeStatus.CLAIMING}),
    PrizeStatus.CLAIMING: frozenset(
        {PrizeStatus.CLAIMED, PrizeStatus.SENT, PrizeStatus.FAILED, PrizeStatus.PENDING}
    ),
    PrizeStatus.CLAIMED: frozenset({PrizeStatus.SENT}),
    PrizeStatus.SENT: frozenset(),
    PrizeStatus.FAILED: frozenset(),
}


def can_transition(current: PrizeStatus, target: PrizeStatus) -> bool:
    """Whether `current -> target` is an allowed status move."""

    return target in _TRANSITIONS[current]


@dataclass(frozen=True, slots=True)
class LedgerPrize:
    """
    A prize as reported by the external ledger.

    status is kept as the raw string when the ledger reports a value this
    service does not know, so conflicts can still be reported verbatim.
    """

    prize_id: str
    owner_user_id: str
    status: str
    gift_name: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def is_pending(self) -> bool:
        return self.status == PrizeStatus.PENDING.value

    def is_owned_by(self, user_id: Any) -> bool:
        """String-normalized owner comparison (ids arrive as numbers or strings)."""
        return str(self.owner_user_id).strip() == str(user_id).strip()

    @classmethod
    def from_payload(cls, prize_id: str, payload: Mapping[str, Any]) -> "LedgerPrize":
        """
        Build from the ledger JSON `{user_id, status, gift_name, error_message?}`.

        Raises:
            ValueError: if user_id or status is missing
        """

        user_id = payload.get("user_id")
        status = payload.get("status")
        if user_id is None or status is None:
            raise ValueError("Ledger prize payload must include user_id and status")

        return cls(
            prize_id=str(payload.get("prize_id") or payload.get("id") or prize_id),
            owner_user_id=str(user_id),
            status=str(status),
            gift_name=payload.get("gift_name"),
            error_message=payload.get("error_message"),
        )


@dataclass(frozen=True, slots=True)
class PrizeRecord:
    """
    Local mirror of a prize transaction.

    ledger_finalized is False while a dispatched gift has not yet been
    reflected in the ledger (status claimed + row deleted). Such records are
    picked up by the reconciliation sweep.
    """

    prize_id: str
    gift_name: str
    owner_user_id: str
    status: PrizeStatus
    claimed_at: datetime
    updated_at: datetime
    error_message: Optional[str] = None
    retry_count: int = 0
    star_cost: int = 0
    ledger_finalized: bool = False

    def __post_init__(self) -> None:
        if not self.prize_id:
            raise ValueError("prize_id must be non-empty")
        if self.retry_count < 0:
            raise ValueError("retry_count must be >= 0")
        if self.star_cost < 0:
            raise ValueError("star_cost must be >= 0")
        require_utc_timestamp("claimed_at", self.claimed_at)
        require_utc_timestamp("updated_at", self.updated_at)

    @property
    def needs_reconciliation(self) -> bool:
        return self.status == PrizeStatus.SENT and not self.ledger_finalized

    def with_status(
        self,
        status: PrizeStatus,
        *,
        updated_at: datetime,
        error_message: Optional[str] = None,
    ) -> "PrizeRecord":
        """
        Return a copy moved to `status`.

        Re-applying the current status only refreshes error_message and
        updated_at.

        Raises:
            ValueError: if the move is not an allowed forward transition
        """

        if status != self.status and not can_transition(self.status, status):
            raise ValueError(
                f"Prize {self.prize_id} cannot move from {self.status.value} to {status.value}"
            )
        return replace(self, status=status, updated_at=updated_at, error_message=error_message)


__all__ = [
    "PrizeStatus",
    "LedgerPrize",
    "PrizeRecord",
    "can_transition",
]
