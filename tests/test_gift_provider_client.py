"""
Tests for `repositories/gift_provider_client.py`.

The Telegram Bot API is replaced with an httpx.MockTransport. A gift counts
as sent only on an explicit `ok: true` / `result: true` answer.
"""

from __future__ import annotations

import json

import httpx
import pytest

from repositories.client import PermanentError, TransientError, build_http_client
from repositories.gift_provider_client import TelegramGiftProvider, net_star_balance

BASE_URL = "https://api.telegram.org/bot123:test-token"


def _provider(handler, dispatch_timeout: float = 30.0) -> TelegramGiftProvider:
    http = build_http_client(BASE_URL, 5.0, httpx.MockTransport(handler))
    return TelegramGiftProvider(http, dispatch_timeout_seconds=dispatch_timeout)


class TestSendGift:
    def test_sends_gift_payload(self) -> None:
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append((request.url.path, json.loads(request.content)))
            return httpx.Response(200, json={"ok": True, "result": True})

        confirmation = _provider(handler).send_gift("123456789", "d01a849b9ef17642d8f4", "Enjoy!")

        assert confirmation.user_id == "123456789"
        assert confirmation.provider_gift_id == "d01a849b9ef17642d8f4"
        assert confirmation.sent_at.tzinfo is not None
        path, payload = seen[0]
        assert path == "/bot123:test-token/sendGift"
        assert payload == {
            "user_id": 123456789,
            "gift_id": "d01a849b9ef17642d8f4",
            "text": "Enjoy!",
            "text_parse_mode": "Markdown",
        }

    def test_non_numeric_user_id_is_sent_as_string(self) -> None:
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return httpx.Response(200, json={"ok": True, "result": True})

        _provider(handler).send_gift("user-abc", "gift", "hi")

        assert seen[0]["user_id"] == "user-abc"

    def test_api_error_is_permanent(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                400, json={"ok": False, "error_code": 400, "description": "Bad Request: BALANCE_TOO_LOW"}
            )

        with pytest.raises(PermanentError, match="BALANCE_TOO_LOW"):
            _provider(handler).send_gift("1", "gift", "hi")

    def test_rate_limit_is_transient(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(429, json={"ok": False, "error_code": 429, "description": "Too Many Requests"})

        with pytest.raises(TransientError):
            _provider(handler).send_gift("1", "gift", "hi")

    def test_server_error_without_json_is_transient(self) -> None:
        with pytest.raises(TransientError):
            _provider(lambda request: httpx.Response(502, text="Bad Gateway")).send_gift("1", "gift", "hi")

    def test_timeout_is_not_a_confirmation(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(TransientError, match="timed out"):
            _provider(handler).send_gift("1", "gift", "hi")

    def test_unacknowledged_answer_is_rejected(self) -> None:
        with pytest.raises(PermanentError):
            _provider(lambda request: httpx.Response(200, json={"ok": False})).send_gift("1", "gift", "hi")
        with pytest.raises(PermanentError):
            _provider(lambda request: httpx.Response(200, json={"ok": True, "result": False})).send_gift(
                "1", "gift", "hi"
            )


class TestBalance:
    def test_net_star_balance(self) -> None:
        transactions = [
            {"id": "a", "amount": 100, "source": {"type": "user"}},
            {"id": "b", "amount": 15, "receiver": {"type": "user"}},
            {"id": "c", "amount": 7},
        ]
        assert net_star_balance(transactions) == 85

    def test_get_balance_pages_through_transactions(self) -> None:
        offsets = []

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path.endswith("/getStarTransactions")
            body = json.loads(request.content)
            offsets.append(body["offset"])
            if body["offset"] == 0:
                page = [{"id": str(i), "amount": 2, "source": {"type": "user"}} for i in range(100)]
            else:
                page = [{"id": "out", "amount": 15, "receiver": {"type": "user"}}]
            return httpx.Response(200, json={"ok": True, "result": {"transactions": page}})

        assert _provider(handler).get_balance() == 185
        assert offsets == [0, 100]

    def test_get_balance_failure_is_classified(self) -> None:
        with pytest.raises(TransientError):
            _provider(lambda request: httpx.Response(500, text="oops")).get_balance()

    @pytest.mark.parametrize(
        "result",
        [
            {"transactions": [{"amount": "n/a", "source": {}}]},
            {"transactions": ["not a transaction"]},
            {"transactions": {"amount": 5}},
            ["unexpected"],
        ],
    )
    def test_malformed_transactions_are_permanent(self, result) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"ok": True, "result": result})

        with pytest.raises(PermanentError):
            _provider(handler).get_balance()

    def test_non_numeric_error_code_is_still_classified(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502, json={"ok": False, "error_code": "bad", "description": "gateway"})

        with pytest.raises(TransientError):
            _provider(handler).get_balance()


def test_send_message_posts_html_to_thread() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.url.path, json.loads(request.content)))
        return httpx.Response(200, json={"ok": True, "result": {"message_id": 1}})

    _provider(handler).send_message("-1001", "<b>hi</b>", thread_id=5)

    path, payload = seen[0]
    assert path.endswith("/sendMessage")
    assert payload["chat_id"] == "-1001"
    assert payload["parse_mode"] == "HTML"
    assert payload["message_thread_id"] == 5
