"""
Audit notifications for claim outcomes.

Every outcome is written to the Python log. When a log chat is configured,
a human-readable HTML message is also posted to its gift-log topic. Posting
is best-effort: a Telegram failure is logged and never changes the outcome
of the claim being reported.

"Gift sent but ledger not updated" is its own notification so it can be
reconciled by hand if the automatic sweep cannot converge it.
"""

from __future__ import annotations

import html
import logging
from typing import Optional, Protocol

from domain.time import utc_now

logger = logging.getLogger(__name__)


class _MessageSender(Protocol):
    def send_message(self, chat_id: str, text: str, thread_id: Optional[int] = None) -> None: ...


class AuditNotifier:
    """Interface for the outbound audit channel."""

    def claim_succeeded(
        self, user_id: str, gift_name: str, prize_id: str, star_cost: int, balance_after: int
    ) -> None:
        raise NotImplementedError

    def claim_failed(self, user_id: str, gift_name: str, prize_id: str, error: str) -> None:
        raise NotImplementedError

    def ledger_out_of_sync(self, user_id: str, gift_name: str, prize_id: str, detail: str) -> None:
        raise NotImplementedError


class LoggingAuditNotifier(AuditNotifier):
    """Audit channel backed by the Python log only."""

    def claim_succeeded(
        self, user_id: str, gift_name: str, prize_id: str, star_cost: int, balance_after: int
    ) -> None:
        logger.info(
            f"Gift claimed: {gift_name} for user {user_id} (prize {prize_id})",
            extra={
                "audit_event": "claim_succeeded",
                "user_id": user_id,
                "gift_name": gift_name,
                "prize_id": prize_id,
                "star_cost": star_cost,
                "balance_after": balance_after,
            },
        )

    def claim_failed(self, user_id: str, gift_name: str, prize_id: str, error: str) -> None:
        logger.warning(
            f"Gift claim failed for prize {prize_id}: {error}",
            extra={
                "audit_event": "claim_failed",
                "user_id": user_id,
                "gift_name": gift_name,
                "prize_id": prize_id,
                "error": error,
            },
        )

    def ledger_out_of_sync(self, user_id: str, gift_name: str, prize_id: str, detail: str) -> None:
        logger.error(
            f"Gift sent but ledger not updated for prize {prize_id}: {detail}",
            extra={
                "audit_event": "ledger_out_of_sync",
                "condition": "gift_sent_ledger_not_updated",
                "user_id": user_id,
                "gift_name": gift_name,
                "prize_id": prize_id,
                "detail": detail,
            },
        )


class TelegramAuditNotifier(LoggingAuditNotifier):
    """Logs every event, then posts it to the configured log chat topic."""

    def __init__(self, sender: _MessageSender, chat_id: str, thread_id: Optional[int] = None) -> None:
        self._sender = sender
        self._chat_id = chat_id
        self._thread_id = thread_id

    def _post(self, text: str) -> None:
        try:
            self._sender.send_message(self._chat_id, text, self._thread_id)
        except Exception as e:
            logger.error(
                f"Error sending gift log to Telegram: {e}",
                extra={"chat_id": self._chat_id, "thread_id": self._thread_id},
            )

    def claim_succeeded(
        self, user_id: str, gift_name: str, prize_id: str, star_cost: int, balance_after: int
    ) -> None:
        super().claim_succeeded(user_id, gift_name, prize_id, star_cost, balance_after)
        self._post(
            "✅ <b>GIFT CLAIMED SUCCESSFULLY</b>\n"
            "━━━━━━━━━━━━━━━━━━━━\n\n"
            f"👤 <b>User ID:</b> <code>{html.escape(user_id)}</code>\n"
            f"🎁 <b>Gift:</b> {html.escape(gift_name)}\n"
            f"🆔 <b>Prize ID:</b> <code>{html.escape(prize_id)}</code>\n"
            f"⭐ <b>Stars Spent:</b> {star_cost}\n"
            f"💰 <b>New Balance:</b> {balance_after} stars\n"
            f"📅 <b>Time:</b> {utc_now().isoformat()}\n\n"
            "<b>Status:</b> Gift sent via Telegram API"
        )

    def claim_failed(self, user_id: str, gift_name: str, prize_id: str, error: str) -> None:
        super().claim_failed(user_id, gift_name, prize_id, error)
        self._post(
            "❌ <b>GIFT CLAIM FAILED</b>\n"
            "━━━━━━━━━━━━━━━━━━━━\n\n"
            f"👤 <b>User ID:</b> <code>{html.escape(user_id)}</code>\n"
            f"🎁 <b>Gift:</b> {html.escape(gift_name)}\n"
            f"🆔 <b>Prize ID:</b> <code>{html.escape(prize_id)}</code>\n"
            f"❌ <b>Error:</b> {html.escape(error)}\n"
            f"📅 <b>Time:</b> {utc_now().isoformat()}\n\n"
            "<b>Status:</b> Gift NOT sent - claim failed"
        )

    def ledger_out_of_sync(self, user_id: str, gift_name: str, prize_id: str, detail: str) -> None:
        super().ledger_out_of_sync(user_id, gift_name, prize_id, detail)
        self._post(
            "⚠️ <b>GIFT SENT - LEDGER NOT UPDATED</b>\n"
            "━━━━━━━━━━━━━━━━━━━━\n\n"
            f"👤 <b>User ID:</b> <code>{html.escape(user_id)}</code>\n"
            f"🎁 <b>Gift:</b> {html.escape(gift_name)}\n"
            f"🆔 <b>Prize ID:</b> <code>{html.escape(prize_id)}</code>\n"
            f"📝 <b>Detail:</b> {html.escape(detail)}\n"
            f"📅 <b>Time:</b> {utc_now().isoformat()}\n\n"
            "<b>Status:</b> Needs reconciliation"
        )


__all__ = ["AuditNotifier", "LoggingAuditNotifier", "TelegramAuditNotifier"]
