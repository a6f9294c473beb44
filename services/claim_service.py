"""
Claim service for dispatching prize gifts.

Handles:
- Ownership and status verification against the prize ledger
- Locking the prize (pending -> claiming) before anything is spent
- Catalog resolution of the requested gift (name first, then provider id)
- Balance check, dispatch, and ledger finalization
- Local history mirror and dispatch statistics

A gift is dispatched at most once per prize. Every failure is returned as a
ClaimFailure; nothing raised by a collaborator escapes claim_gift().
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Union

from domain.errors import ClaimError, ClaimErrorKind
from domain.gift import GiftDefinition
from domain.prize import LedgerPrize, PrizeStatus
from repositories.client import ConflictError, ExternalServiceError, NotFoundError
from repositories.gift_provider_client import DispatchConfirmation
from services.context import AppContext

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ClaimSuccess:
    """
    Result of a completed claim.

    balance_after is the balance read before dispatch minus the gift's cost.
    ledger_finalized is False when the gift was sent but the ledger could not
    be moved to claimed/deleted; the reconciliation sweep finishes the job.
    """
    prize_id: str
    gift_name: str
    star_cost: int
    confirmation: DispatchConfirmation
    balance_after: int
    ledger_finalized: bool = True

    @property
    def success(self) -> bool:
        return True


@dataclass(frozen=True, slots=True)
class ClaimFailure:
    """Result of a rejected or failed claim."""
    prize_id: str
    error: ClaimError

    @property
    def success(self) -> bool:
        return False


ClaimResult = Union[ClaimSuccess, ClaimFailure]


@dataclass(slots=True)
class _ClaimProgress:
    """How far a claim got; read when something unexpected escapes the claim steps."""
    locked: bool = False
    gift: Optional[GiftDefinition] = None
    balance: int = 0
    dispatch_attempted: bool = False
    confirmation: Optional[DispatchConfirmation] = None
    ledger_finalized: bool = False


def _normalize(value: Any) -> str:
    return "" if value is None else str(value).strip()


def _gift_message(gift: GiftDefinition, prize_id: str) -> str:
    return (
        "🎉 Congratulations!\n\n"
        f"You claimed: {gift.display_name}\n"
        f"Prize ID: {prize_id}\n\n"
        "Enjoy your gift! 🎁"
    )


class ClaimCoordinator:
    """Runs one claim end-to-end against the collaborators in an AppContext."""

    def __init__(self, context: AppContext) -> None:
        self._ctx = context

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _fail(
        self,
        prize_id: str,
        kind: ClaimErrorKind,
        message: str,
        *,
        detail: Optional[str] = None,
        current_status: Optional[str] = None,
        user_id: str = "",
        gift_name: str = "",
        audit: bool = True,
    ) -> ClaimFailure:
        error = ClaimError(kind=kind, message=message, detail=detail, current_status=current_status)
        logger.info(
            f"Claim rejected ({kind.value}) for prize {prize_id}: {detail or message}",
            extra={"prize_id": prize_id, "user_id": user_id, "error_kind": kind.value},
        )
        if audit:
            self._ctx.notifier.claim_failed(user_id, gift_name, prize_id, detail or message)
        return ClaimFailure(prize_id=prize_id, error=error)

    def _patch_best_effort(
        self, prize_id: str, status: PrizeStatus, error_message: Optional[str] = None
    ) -> bool:
        try:
            self._ctx.ledger.patch_status(prize_id, status, error_message)
            return True
        except Exception as e:
            logger.warning(
                f"Failed to set prize {prize_id} to {status.value}: {e}",
                extra={"prize_id": prize_id, "target_status": status.value},
                exc_info=not isinstance(e, ExternalServiceError),
            )
            return False

    def _mirror(self, prize_id: str, status: PrizeStatus, **kwargs: Any) -> None:
        """Update the local history mirror; it may lag the ledger but must not break a claim."""
        try:
            self._ctx.catalog.update_local_prize_status(prize_id, status, **kwargs)
        except Exception as e:
            logger.error(
                f"Failed to update local prize record {prize_id}: {e}",
                extra={"prize_id": prize_id, "target_status": status.value},
                exc_info=True,
            )

    def _release_to_pending(self, prize_id: str, error_message: str) -> None:
        """Put a locked, undispatched prize back to pending so it can be claimed again."""
        self._patch_best_effort(prize_id, PrizeStatus.PENDING, error_message)
        self._mirror(prize_id, PrizeStatus.PENDING, error_message=error_message)

    # ------------------------------------------------------------------
    # Claim
    # ------------------------------------------------------------------

    def claim_gift(
        self,
        owner_user_id: Any,
        prize_id: Any,
        requested_gift_identifier: Any,
    ) -> ClaimResult:
        """
        Claim a prize and dispatch its gift.

        Process:
        1. Validate inputs are present
        2. Fetch the prize from the ledger
        3. Verify the requester owns it (before any status/mapping check)
        4. Require status pending
        5. Lock: pending -> claiming, then re-read to confirm the lock is ours
        6. Resolve the gift in the catalog (name, then provider id)
           - unresolvable: revert to pending, MAPPING
        7. Check the Star balance covers the gift
        8. Send the gift
           - any failure, timeouts included: ledger failed, DISPATCH (terminal)
        9. Finalize: ledger claimed (best-effort)
        10. Cleanup: delete ledger row (best-effort)
        11. Count the dispatch in the catalog statistics

        Args:
            owner_user_id: Requesting user id (number or string)
            prize_id: Prize to claim
            requested_gift_identifier: Gift name or provider gift id

        Returns:
            ClaimSuccess or ClaimFailure; never raises

        Example:
            result = ClaimCoordinator(context).claim_gift("u1", "p1", "Heart")

            if result.success:
                print(f"Sent {result.gift_name} ({result.star_cost} stars)")
            else:
                print(f"Claim failed: {result.error.kind.value} {result.error.message}")
        """
        user_id = _normalize(owner_user_id)
        pid = _normalize(prize_id)
        identifier = _normalize(requested_gift_identifier)

        logger.info(
            "Gift claim request",
            extra={"prize_id": pid, "user_id": user_id, "gift": identifier},
        )

        # 1. Validate input
        if not user_id or not pid or not identifier:
            return self._fail(
                pid,
                ClaimErrorKind.VALIDATION,
                "Missing required fields: userId, prizeId, giftName",
                user_id=user_id,
                gift_name=identifier,
                audit=False,
            )

        progress = _ClaimProgress()
        try:
            return self._claim(user_id, pid, identifier, progress)
        except Exception as e:
            logger.error(
                f"Unexpected error while claiming prize {pid}: {e}",
                extra={"prize_id": pid, "user_id": user_id, "locked": progress.locked},
                exc_info=True,
            )
            return self._recover(user_id, pid, identifier, progress, e)

    def _recover(
        self,
        user_id: str,
        prize_id: str,
        identifier: str,
        progress: _ClaimProgress,
        error: Exception,
    ) -> ClaimResult:
        """Turn an unexpected error into a result that matches the prize's real state."""
        gift = progress.gift

        # The provider confirmed the gift: whatever broke afterwards, the claim succeeded.
        if progress.confirmation is not None and gift is not None:
            logger.error(
                f"Prize {prize_id} was sent but the claim was interrupted afterwards: {error}",
                extra={"prize_id": prize_id, "condition": "sent_claim_interrupted"},
            )
            self._mirror(
                prize_id,
                PrizeStatus.SENT,
                ledger_finalized=progress.ledger_finalized,
                gift_name=gift.name,
                star_cost=gift.star_cost,
            )
            return ClaimSuccess(
                prize_id=prize_id,
                gift_name=gift.name,
                star_cost=gift.star_cost,
                confirmation=progress.confirmation,
                balance_after=progress.balance - gift.star_cost,
                ledger_finalized=progress.ledger_finalized,
            )

        if not progress.locked:
            return self._fail(
                prize_id,
                ClaimErrorKind.LEDGER_UNAVAILABLE,
                "Claim could not be processed. Please try again later.",
                detail=f"Unexpected error: {error}",
                user_id=user_id,
                gift_name=identifier,
            )

        # A send without confirmation may still have gone out: never hand it back.
        if progress.dispatch_attempted and gift is not None:
            return self._fail(
                prize_id,
                ClaimErrorKind.DISPATCH,
                "Gift sending failed. Contact admin.",
                detail=f"Claim interrupted after dispatch attempt: {error}",
                user_id=user_id,
                gift_name=gift.name,
            )

        # Locked but nothing was sent: hand the prize back.
        reason = f"Claim interrupted: {error}"
        self._release_to_pending(prize_id, reason)
        if gift is not None:
            return self._fail(
                prize_id,
                ClaimErrorKind.PROVIDER_UNAVAILABLE,
                "Gift provider is unavailable. Please try again later.",
                detail=reason,
                user_id=user_id,
                gift_name=gift.name,
            )
        return self._fail(
            prize_id,
            ClaimErrorKind.LOCK_FAILURE,
            "Failed to lock prize",
            detail=reason,
            user_id=user_id,
            gift_name=identifier,
        )

    def _claim(
        self, user_id: str, prize_id: str, identifier: str, progress: _ClaimProgress
    ) -> ClaimResult:
        # 2. Verify prize exists in the ledger
        try:
            prize = self._ctx.ledger.fetch_prize(prize_id)
        except NotFoundError:
            return self._fail(
                prize_id,
                ClaimErrorKind.NOT_FOUND,
                "Prize not found. It may have already been claimed.",
                detail="Prize not found in database",
                user_id=user_id,
                gift_name=identifier,
            )
        except ExternalServiceError as e:
            return self._fail(
                prize_id,
                ClaimErrorKind.LEDGER_UNAVAILABLE,
                "Failed to verify prize",
                detail=str(e),
                user_id=user_id,
                gift_name=identifier,
            )

        # 3. Verify ownership
        if not prize.is_owned_by(user_id):
            return self._fail(
                prize_id,
                ClaimErrorKind.OWNERSHIP,
                "You do not own this prize.",
                detail=f"Ownership mismatch (owner {prize.owner_user_id})",
                user_id=user_id,
                gift_name=identifier,
            )

        # 4. Check status is pending
        if not prize.is_pending:
            return self._conflict(prize_id, prize.status, user_id, identifier)

        # 5. Lock the prize
        if not self._ctx.in_flight.try_acquire(prize_id):
            return self._conflict(prize_id, PrizeStatus.CLAIMING.value, user_id, identifier)
        try:
            return self._claim_locked(user_id, prize_id, identifier, prize, progress)
        finally:
            self._ctx.in_flight.release(prize_id)

    def _conflict(self, prize_id: str, status: str, user_id: str, identifier: str) -> ClaimFailure:
        return self._fail(
            prize_id,
            ClaimErrorKind.CONFLICT,
            f'Prize is in "{status}" state and cannot be claimed.',
            current_status=status,
            user_id=user_id,
            gift_name=identifier,
            audit=False,
        )

    def _claim_locked(
        self,
        user_id: str,
        prize_id: str,
        identifier: str,
        prize: LedgerPrize,
        progress: _ClaimProgress,
    ) -> ClaimResult:
        ledger = self._ctx.ledger

        try:
            ledger.patch_status(prize_id, PrizeStatus.CLAIMING)
        except ConflictError:
            return self._conflict(prize_id, PrizeStatus.CLAIMING.value, user_id, identifier)
        except ExternalServiceError as e:
            return self._fail(
                prize_id,
                ClaimErrorKind.LOCK_FAILURE,
                "Failed to lock prize",
                detail=str(e),
                user_id=user_id,
                gift_name=identifier,
            )
        progress.locked = True

        # The ledger does not promise compare-and-swap: re-read and make sure
        # nobody else advanced the prize in between.
        try:
            locked = ledger.fetch_prize(prize_id)
        except ExternalServiceError as e:
            logger.warning(
                f"Prize {prize_id} left in claiming: lock could not be confirmed",
                extra={"prize_id": prize_id, "condition": "lock_unconfirmed"},
            )
            return self._fail(
                prize_id,
                ClaimErrorKind.LOCK_FAILURE,
                "Failed to lock prize",
                detail=f"Lock could not be confirmed: {e}",
                user_id=user_id,
                gift_name=identifier,
            )
        if locked.status != PrizeStatus.CLAIMING.value or not locked.is_owned_by(user_id):
            return self._conflict(prize_id, locked.status, user_id, identifier)

        logger.info(f"Prize {prize_id} locked (claiming)", extra={"prize_id": prize_id})

        try:
            self._ctx.catalog.record_prize_locally(
                prize_id,
                prize.gift_name or identifier,
                user_id,
                PrizeStatus.CLAIMING,
            )
        except Exception as e:
            logger.error(
                f"Failed to record prize {prize_id} locally: {e}",
                extra={"prize_id": prize_id},
                exc_info=True,
            )

        # 6. Look up the gift in the catalog
        gift = self._ctx.catalog.resolve_any(identifier)
        provider_gift_id = gift.provider_gift_id if gift is not None else None
        if gift is None or provider_gift_id is None:
            if gift is None:
                reason = f'Gift "{identifier}" not found in catalog'
            else:
                reason = f'Gift "{gift.name}" has no provider gift id'
            self._release_to_pending(prize_id, reason)
            return self._fail(
                prize_id,
                ClaimErrorKind.MAPPING,
                "Gift not mapped. Contact admin.",
                detail=reason,
                user_id=user_id,
                gift_name=identifier,
            )
        progress.gift = gift

        # 7. Balance check
        try:
            balance = self._ctx.provider.get_balance()
        except ExternalServiceError as e:
            self._release_to_pending(prize_id, f"Balance check failed: {e}")
            return self._fail(
                prize_id,
                ClaimErrorKind.PROVIDER_UNAVAILABLE,
                "Gift provider is unavailable. Please try again later.",
                detail=f"Balance check failed: {e}",
                user_id=user_id,
                gift_name=gift.name,
            )
        progress.balance = balance

        if balance < gift.star_cost:
            reason = f"Insufficient balance: {balance} stars available, {gift.star_cost} required"
            if self._ctx.settings.revert_on_insufficient_balance:
                self._release_to_pending(prize_id, reason)
            else:
                logger.warning(
                    f"Prize {prize_id} left in claiming: {reason}",
                    extra={"prize_id": prize_id, "condition": "claiming_insufficient_balance"},
                )
                self._mirror(prize_id, PrizeStatus.CLAIMING, error_message=reason)
            return self._fail(
                prize_id,
                ClaimErrorKind.INSUFFICIENT_BALANCE,
                "Gift cannot be sent right now. Please try again later.",
                detail=reason,
                user_id=user_id,
                gift_name=gift.name,
            )

        # 8. Send the gift
        progress.dispatch_attempted = True
        try:
            confirmation = self._ctx.provider.send_gift(
                user_id, provider_gift_id, _gift_message(gift, prize_id)
            )
        except Exception as e:
            # Timeouts land here too: without an explicit confirmation the
            # prize is failed, never finalized.
            reason = f"Gift dispatch failed: {e}"
            logger.error(
                f"Telegram sendGift failed for prize {prize_id}: {e}",
                extra={"prize_id": prize_id, "gift_name": gift.name},
                exc_info=not isinstance(e, ExternalServiceError),
            )
            if not self._patch_best_effort(prize_id, PrizeStatus.FAILED, reason):
                logger.error(
                    f"Prize {prize_id} dispatch failed and ledger still shows claiming",
                    extra={"prize_id": prize_id, "condition": "dispatch_failed_ledger_not_updated"},
                )
            self._mirror(prize_id, PrizeStatus.FAILED, error_message=reason)
            return self._fail(
                prize_id,
                ClaimErrorKind.DISPATCH,
                "Gift sending failed. Contact admin.",
                detail=reason,
                user_id=user_id,
                gift_name=gift.name,
            )
        progress.confirmation = confirmation

        logger.info(
            f"Gift sent: {gift.name} to user {user_id}",
            extra={"prize_id": prize_id, "gift_name": gift.name, "star_cost": gift.star_cost},
        )

        # 9. Finalize -> claimed
        finalized = self._patch_best_effort(prize_id, PrizeStatus.CLAIMED)

        # 10. Cleanup -> delete the ledger row
        if finalized:
            try:
                ledger.delete_prize(prize_id)
            except NotFoundError:
                pass
            except Exception as e:
                finalized = False
                logger.warning(
                    f"Cleanup failed (non-fatal) for prize {prize_id}: {e}",
                    extra={"prize_id": prize_id},
                    exc_info=not isinstance(e, ExternalServiceError),
                )

        progress.ledger_finalized = finalized
        if not finalized:
            self._ctx.notifier.ledger_out_of_sync(
                user_id, gift.name, prize_id, "Gift was sent; ledger finalize/cleanup did not complete"
            )

        # 11. Update statistics
        try:
            self._ctx.catalog.record_dispatch(gift.star_cost)
        except Exception as e:
            logger.error(
                f"Failed to persist dispatch statistics for prize {prize_id}: {e}",
                extra={"prize_id": prize_id, "star_cost": gift.star_cost},
                exc_info=True,
            )
        self._mirror(
            prize_id,
            PrizeStatus.SENT,
            ledger_finalized=finalized,
            gift_name=gift.name,
            star_cost=gift.star_cost,
        )

        balance_after = balance - gift.star_cost
        self._ctx.notifier.claim_succeeded(user_id, gift.name, prize_id, gift.star_cost, balance_after)

        return ClaimSuccess(
            prize_id=prize_id,
            gift_name=gift.name,
            star_cost=gift.star_cost,
            confirmation=confirmation,
            balance_after=balance_after,
            ledger_finalized=finalized,
        )


__all__ = [
    "ClaimSuccess",
    "ClaimFailure",
    "ClaimResult",
    "ClaimCoordinator",
]
