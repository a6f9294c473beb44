"""
Claims API Endpoints.

Endpoint the WebApp calls when a user claims a prize.
"""

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from api.dependencies import get_context
from api.models import ClaimGiftRequest, ClaimGiftResponse
from services.claim_service import ClaimCoordinator
from services.context import AppContext

router = APIRouter()


@router.post(
    "/claim-gift",
    response_model=ClaimGiftResponse,
    response_model_exclude_none=True,
    responses={
        400: {"model": ClaimGiftResponse, "description": "Missing fields"},
        402: {"model": ClaimGiftResponse, "description": "Bot balance cannot cover the gift"},
        403: {"model": ClaimGiftResponse, "description": "Requester does not own the prize"},
        404: {"model": ClaimGiftResponse, "description": "Prize not found"},
        409: {"model": ClaimGiftResponse, "description": "Prize is not pending"},
        500: {"model": ClaimGiftResponse, "description": "Mapping, dispatch, ledger or provider failure"},
    },
    summary="Claim Gift",
    description="Verify prize ownership, lock the prize, and send its gift exactly once."
)
def claim_gift(request: ClaimGiftRequest, context: AppContext = Depends(get_context)):
    """
    Claim a prize and send the corresponding Telegram gift.

    **Process:**
    1. Verifies the prize exists in the prize store and belongs to `userId`
    2. Requires the prize to be `pending`, then locks it (`claiming`)
    3. Resolves `giftName` in the catalog (gift name or provider gift id)
    4. Checks the bot's Star balance and sends the gift
    5. Marks the prize `claimed` and removes it from the prize store

    **Example request:**
    ```json
    {
      "userId": "123456789",
      "prizeId": "prize_8f2c",
      "giftName": "Heart"
    }
    ```

    **Failure response (prize already claimed):**
    ```json
    {
      "success": false,
      "prizeId": "prize_8f2c",
      "error": "Prize is in \\"claiming\\" state and cannot be claimed.",
      "errorCode": "CONFLICT",
      "currentStatus": "claiming"
    }
    ```
    """
    try:
        result = ClaimCoordinator(context).claim_gift(
            request.user_id,
            request.prize_id,
            request.gift_name,
        )
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to process claim: {str(e)}"
        )

    if result.success:
        return ClaimGiftResponse(
            success=True,
            prize_id=result.prize_id,
            gift_name=result.gift_name,
            message="Gift sent successfully!",
        )

    body = ClaimGiftResponse(
        success=False,
        prize_id=result.prize_id or None,
        error=result.error.message,
        error_code=result.error.kind.value,
        current_status=result.error.current_status,
    )
    return JSONResponse(
        status_code=result.error.http_status,
        content=body.model_dump(by_alias=True, exclude_none=True),
    )
