"""
Prize History API Endpoints.

Read-only access to the local prize mirror, and the reconciliation sweep for
prizes whose gift was sent but whose ledger row was not finalized.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from api.dependencies import get_context, require_admin
from api.models import (
    ErrorResponse,
    PrizeHistoryResponse,
    PrizeRecordModel,
    ReconciliationResponse,
)
from domain.prize import PrizeStatus
from services.context import AppContext
from services.reconciliation_service import ReconciliationService

router = APIRouter()


@router.get(
    "/prizes",
    response_model=PrizeHistoryResponse,
    summary="Prize History",
    description="Locally recorded prize claims, newest first."
)
def list_prizes(
    user_id: Optional[str] = Query(None, description="Filter by prize owner"),
    status: Optional[PrizeStatus] = Query(None, description="Filter by local status"),
    context: AppContext = Depends(get_context),
):
    records = context.catalog.list_local_prizes(status=status, owner_user_id=user_id)
    return PrizeHistoryResponse(
        prizes=[PrizeRecordModel.from_record(r) for r in records],
        total=len(records),
    )


@router.get(
    "/prizes/{prize_id}",
    response_model=PrizeRecordModel,
    summary="Prize Record",
)
def get_prize(prize_id: str, context: AppContext = Depends(get_context)):
    record = context.catalog.get_local_prize(prize_id)
    if record is None:
        raise HTTPException(
            status_code=404,
            detail=f"Prize not found: {prize_id}"
        )
    return PrizeRecordModel.from_record(record)


@router.post(
    "/reconcile",
    response_model=ReconciliationResponse,
    summary="Reconcile Sent Prizes",
    description="Finalize ledger rows for prizes whose gift was already sent.",
    dependencies=[Depends(require_admin)],
    responses={
        401: {"model": ErrorResponse, "description": "Missing or wrong X-Admin-Token"},
        403: {"model": ErrorResponse, "description": "ADMIN_TOKEN is not configured"},
    },
)
def reconcile(context: AppContext = Depends(get_context)):
    report = ReconciliationService(context).sweep()
    return ReconciliationResponse(
        examined=report.examined,
        finalized=report.finalized,
        unresolved=report.unresolved,
    )
