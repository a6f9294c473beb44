"""
Tests for `services/audit_service.py`.

Posting to the log chat is best-effort and must never raise.
"""

from __future__ import annotations

import logging

from services.audit_service import LoggingAuditNotifier, TelegramAuditNotifier


class RecordingSender:
    def __init__(self, error: Exception = None) -> None:
        self.messages = []
        self.error = error

    def send_message(self, chat_id, text, thread_id=None) -> None:
        if self.error is not None:
            raise self.error
        self.messages.append((chat_id, text, thread_id))


def test_success_message_is_posted_to_gift_log_topic() -> None:
    sender = RecordingSender()
    notifier = TelegramAuditNotifier(sender, "-1001", thread_id=5)

    notifier.claim_succeeded("42", "Heart", "p1", 15, 85)

    chat_id, text, thread_id = sender.messages[0]
    assert (chat_id, thread_id) == ("-1001", 5)
    assert "GIFT CLAIMED SUCCESSFULLY" in text
    assert "<code>p1</code>" in text
    assert "15" in text and "85 stars" in text


def test_failure_message_escapes_html() -> None:
    sender = RecordingSender()
    notifier = TelegramAuditNotifier(sender, "-1001")

    notifier.claim_failed("42", "<Rose>", "p1", "Gift dispatch failed: <timeout>")

    text = sender.messages[0][1]
    assert "GIFT CLAIM FAILED" in text
    assert "&lt;Rose&gt;" in text
    assert "&lt;timeout&gt;" in text


def test_post_failure_is_logged_not_raised(caplog) -> None:
    notifier = TelegramAuditNotifier(RecordingSender(error=RuntimeError("chat not found")), "-1001")

    with caplog.at_level(logging.ERROR, logger="services.audit_service"):
        notifier.ledger_out_of_sync("42", "Heart", "p1", "cleanup failed")

    assert any("chat not found" in r.getMessage() for r in caplog.records)


def test_out_of_sync_is_logged_as_error_with_condition(caplog) -> None:
    with caplog.at_level(logging.INFO, logger="services.audit_service"):
        LoggingAuditNotifier().ledger_out_of_sync("42", "Heart", "p1", "cleanup failed")

    record = caplog.records[-1]
    assert record.levelno == logging.ERROR
    assert record.condition == "gift_sent_ledger_not_updated"
    assert record.prize_id == "p1"
