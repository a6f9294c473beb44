"""
Gift provider client (Telegram Bot API).

Wraps the three Bot API methods this service needs:

- sendGift:            dispatch a gift to a user, paid from the bot's Star balance
- getStarTransactions: page through the bot's Star transactions to derive its balance
- sendMessage:         post to the audit log chat

The Bot API answers `{"ok": true, "result": ...}` or
`{"ok": false, "error_code": n, "description": "..."}`; failures are raised as
the classified ExternalServiceError subclasses from repositories.client.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping, Optional

import httpx

from domain.time import utc_now
from repositories.client import (
    PermanentError,
    classify_status,
    classify_transport_error,
)

# Bot API maximum page size for getStarTransactions.
_TRANSACTIONS_PAGE_SIZE: int = 100


@dataclass(frozen=True, slots=True)
class DispatchConfirmation:
    """Explicit provider acknowledgement that a gift was sent."""

    user_id: str
    provider_gift_id: str
    sent_at: datetime


def net_star_balance(transactions: list[Mapping[str, Any]]) -> int:
    """
    Net Stars from a list of StarTransaction objects.

    Incoming transactions carry a `source`, outgoing ones a `receiver`.
    """

    balance = 0
    for tx in transactions:
        amount = int(tx.get("amount", 0))
        if tx.get("source") is not None:
            balance += amount
        elif tx.get("receiver") is not None:
            balance -= amount
    return balance


class TelegramGiftProvider:
    """Bot API client bound to one bot token (carried in the http client's base URL)."""

    def __init__(self, http: httpx.Client, dispatch_timeout_seconds: Optional[float] = None) -> None:
        self._http = http
        self._dispatch_timeout = dispatch_timeout_seconds

    def _call(self, method: str, payload: Mapping[str, Any], timeout: Optional[float] = None) -> Any:
        what = f"Telegram {method}"
        kwargs: dict[str, Any] = {"json": dict(payload)}
        if timeout is not None:
            kwargs["timeout"] = timeout

        try:
            response = self._http.post(f"/{method}", **kwargs)
        except httpx.HTTPError as e:
            raise classify_transport_error(e, what) from e

        try:
            body = response.json()
        except ValueError:
            if response.is_success:
                raise PermanentError(f"{what} returned a non-JSON response") from None
            raise classify_status(response.status_code, f"{what} returned {response.status_code}") from None

        if not isinstance(body, dict):
            raise PermanentError(f"{what} returned an unexpected payload")

        if body.get("ok") is True:
            return body.get("result")

        error_code = body.get("error_code") or response.status_code
        description = body.get("description") or "unknown error"
        if response.is_success and not body.get("error_code"):
            # 200 without ok=true is not a confirmation
            raise PermanentError(f"{what} was not acknowledged: {description}")
        try:
            status = int(error_code)
        except (TypeError, ValueError):
            status = response.status_code
        raise classify_status(status, f"{what} failed ({error_code}): {description}")

    def send_gift(self, user_id: str, provider_gift_id: str, message: str) -> DispatchConfirmation:
        """
        Send a gift to a user.

        Returns only on an explicit `ok: true`; a timeout raises TransientError
        and must not be read as success.
        """

        result = self._call(
            "sendGift",
            {
                "user_id": int(user_id) if str(user_id).lstrip("-").isdigit() else user_id,
                "gift_id": provider_gift_id,
                "text": message,
                "text_parse_mode": "Markdown",
            },
            timeout=self._dispatch_timeout,
        )
        if result is not True:
            raise PermanentError(f"Telegram sendGift returned unexpected result: {result!r}")

        return DispatchConfirmation(
            user_id=str(user_id),
            provider_gift_id=provider_gift_id,
            sent_at=utc_now(),
        )

    def get_balance(self) -> int:
        """
        Current Star balance: credits minus debits over all transactions.

        A payload that cannot be read as StarTransactions raises PermanentError.
        """

        transactions: list[Mapping[str, Any]] = []
        offset = 0
        while True:
            result = self._call(
                "getStarTransactions",
                {"offset": offset, "limit": _TRANSACTIONS_PAGE_SIZE},
            )
            if result is not None and not isinstance(result, dict):
                raise PermanentError(f"Telegram getStarTransactions returned unexpected result: {result!r}")
            page = (result or {}).get("transactions") or []
            if not isinstance(page, list):
                raise PermanentError(f"Telegram getStarTransactions returned unexpected transactions: {page!r}")
            transactions.extend(page)
            if len(page) < _TRANSACTIONS_PAGE_SIZE:
                break
            offset += len(page)

        try:
            return net_star_balance(transactions)
        except (AttributeError, TypeError, ValueError) as e:
            raise PermanentError(f"Telegram getStarTransactions returned a malformed transaction: {e}") from e

    def send_message(self, chat_id: str, text: str, thread_id: Optional[int] = None) -> None:
        payload: dict[str, Any] = {
            "chat_id": chat_id,
            "text": text,
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }
        if thread_id is not None:
            payload["message_thread_id"] = thread_id
        self._call("sendMessage", payload)

    def close(self) -> None:
        self._http.close()


__all__ = [
    "DispatchConfirmation",
    "TelegramGiftProvider",
    "net_star_balance",
]
