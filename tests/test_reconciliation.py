"""
Tests for `services/reconciliation_service.py`.

A prize whose gift was sent but whose ledger row was not finalized is
finalized on a later sweep; it is never dispatched again.
"""

from __future__ import annotations

from domain.prize import PrizeStatus
from repositories.client import TransientError
from services.claim_service import ClaimCoordinator
from services.reconciliation_service import ReconciliationService


def _claim_with_ledger_down(context, ledger, prize_id: str = "p1") -> None:
    ledger.add(prize_id, user_id="42")
    ledger.patch_errors[PrizeStatus.CLAIMED] = TransientError("ledger down")
    result = ClaimCoordinator(context).claim_gift("42", prize_id, "Heart")
    assert result.success and not result.ledger_finalized
    del ledger.patch_errors[PrizeStatus.CLAIMED]


def test_sweep_with_nothing_to_do(context) -> None:
    report = ReconciliationService(context).sweep()

    assert report.examined == 0
    assert report.finalized == []
    assert report.unresolved == []


def test_sweep_finalizes_sent_prize(context, ledger, provider, catalog) -> None:
    _claim_with_ledger_down(context, ledger)

    report = ReconciliationService(context).sweep()

    assert report.examined == 1
    assert report.finalized == ["p1"]
    assert "p1" not in ledger.rows
    assert ("PATCH", "p1", PrizeStatus.CLAIMED, None) in ledger.mutations()
    assert len(provider.sent) == 1

    record = catalog.get_local_prize("p1")
    assert record.status == PrizeStatus.SENT
    assert record.ledger_finalized
    assert record.retry_count == 1
    assert catalog.list_unfinalized_prizes() == []


def test_sweep_skips_patch_when_already_claimed(context, ledger, catalog) -> None:
    ledger.add("p1", user_id="42", status="claimed")
    catalog.record_prize_locally("p1", "Heart", "42", PrizeStatus.CLAIMING)
    catalog.update_local_prize_status("p1", PrizeStatus.SENT, ledger_finalized=False)

    report = ReconciliationService(context).sweep()

    assert report.finalized == ["p1"]
    assert ledger.mutations() == [("DELETE", "p1")]


def test_sweep_treats_missing_row_as_finalized(context, ledger, catalog) -> None:
    catalog.record_prize_locally("p1", "Heart", "42", PrizeStatus.CLAIMING)
    catalog.update_local_prize_status("p1", PrizeStatus.SENT, ledger_finalized=False)

    report = ReconciliationService(context).sweep()

    assert report.finalized == ["p1"]
    assert ledger.mutations() == []
    assert catalog.get_local_prize("p1").ledger_finalized


def test_sweep_keeps_unresolved_prizes_flagged(context, ledger, catalog) -> None:
    _claim_with_ledger_down(context, ledger)
    ledger.patch_errors[PrizeStatus.CLAIMED] = TransientError("still down")

    report = ReconciliationService(context).sweep()

    assert report.unresolved == ["p1"]
    assert report.finalized == []
    record = catalog.get_local_prize("p1")
    assert record.needs_reconciliation
    assert record.retry_count == 1
    assert "still down" in record.error_message

    del ledger.patch_errors[PrizeStatus.CLAIMED]
    second = ReconciliationService(context).sweep()

    assert second.finalized == ["p1"]
    assert catalog.get_local_prize("p1").retry_count == 2
