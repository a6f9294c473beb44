"""
Reconciliation sweep for prizes whose gift was sent but whose ledger row was
never finalized (claimed + deleted).

A dispatched gift is final, so such prizes are treated as claimed: the sweep
re-applies the finalize and cleanup steps until the ledger agrees. Records
the sweep cannot converge stay flagged in the local mirror for the next run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List

from domain.prize import PrizeStatus
from repositories.client import ExternalServiceError, NotFoundError
from services.context import AppContext

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ReconciliationReport:
    examined: int
    finalized: List[str] = field(default_factory=list)
    unresolved: List[str] = field(default_factory=list)


class ReconciliationService:
    def __init__(self, context: AppContext) -> None:
        self._ctx = context

    def _finalize(self, prize_id: str) -> None:
        """Bring one ledger row to claimed and delete it. Raises ExternalServiceError."""

        ledger = self._ctx.ledger
        try:
            prize = ledger.fetch_prize(prize_id)
        except NotFoundError:
            return  # already removed

        if prize.status != PrizeStatus.CLAIMED.value:
            ledger.patch_status(prize_id, PrizeStatus.CLAIMED)
        try:
            ledger.delete_prize(prize_id)
        except NotFoundError:
            pass

    def sweep(self) -> ReconciliationReport:
        """Finalize every locally mirrored prize flagged as sent-but-not-finalized."""

        pending = self._ctx.catalog.list_unfinalized_prizes()
        finalized: List[str] = []
        unresolved: List[str] = []

        for record in pending:
            try:
                self._finalize(record.prize_id)
            except ExternalServiceError as e:
                logger.warning(
                    f"Reconciliation could not finalize prize {record.prize_id}: {e}",
                    extra={"prize_id": record.prize_id, "retry_count": record.retry_count + 1},
                )
                self._ctx.catalog.update_local_prize_status(
                    record.prize_id,
                    PrizeStatus.SENT,
                    error_message=f"Ledger finalize pending: {e}",
                    increment_retry=True,
                )
                unresolved.append(record.prize_id)
                continue

            self._ctx.catalog.update_local_prize_status(
                record.prize_id,
                PrizeStatus.SENT,
                ledger_finalized=True,
                increment_retry=True,
            )
            finalized.append(record.prize_id)
            logger.info(
                f"Reconciled prize {record.prize_id} (gift already sent)",
                extra={"prize_id": record.prize_id},
            )

        if pending:
            logger.info(
                f"Reconciliation sweep: {len(finalized)} finalized, {len(unresolved)} unresolved",
                extra={"examined": len(pending)},
            )
        return ReconciliationReport(examined=len(pending), finalized=finalized, unresolved=unresolved)


__all__ = ["ReconciliationReport", "ReconciliationService"]
