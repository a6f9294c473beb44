"""
Prize ledger client (external persistence).

Thin typed wrapper over the prize store HTTP API, the service of record for
prize ownership and claim status:

- GET    /prizes/{id}  -> {user_id, status, gift_name, error_message?}
- PATCH  /prizes/{id}  <- {status, error_message?}
- DELETE /prizes/{id}

It contains no claim rules. Every failure is raised as one of the classified
ExternalServiceError subclasses from repositories.client; raw httpx exceptions
never leave this module.
"""

from __future__ import annotations

from typing import Any, Optional
from urllib.parse import quote

import httpx

from domain.prize import LedgerPrize, PrizeStatus
from repositories.client import (
    PermanentError,
    classify_status,
    classify_transport_error,
)


def _prize_path(prize_id: str) -> str:
    return f"/prizes/{quote(str(prize_id), safe='')}"


class PrizeLedgerClient:
    """HTTP client for the prize ledger."""

    def __init__(self, http: httpx.Client) -> None:
        self._http = http

    def _request(self, method: str, prize_id: str, **kwargs: Any) -> httpx.Response:
        what = f"Prize ledger {method} {prize_id}"
        try:
            response = self._http.request(method, _prize_path(prize_id), **kwargs)
        except httpx.HTTPError as e:
            raise classify_transport_error(e, what) from e

        if response.is_success:
            return response

        raise classify_status(
            response.status_code,
            f"{what} returned {response.status_code}: {response.text[:200]}",
        )

    def fetch_prize(self, prize_id: str) -> LedgerPrize:
        """
        Fetch a prize from the ledger.

        Raises:
            NotFoundError: prize does not exist
            TransientError / PermanentError: ledger unreachable or misbehaving
        """

        response = self._request("GET", prize_id)
        try:
            payload = response.json()
        except ValueError as e:
            raise PermanentError(f"Prize ledger returned invalid JSON for {prize_id}") from e

        if not isinstance(payload, dict):
            raise PermanentError(f"Prize ledger returned unexpected payload for {prize_id}")

        try:
            return LedgerPrize.from_payload(prize_id, payload)
        except ValueError as e:
            raise PermanentError(str(e)) from e

    def patch_status(
        self,
        prize_id: str,
        status: PrizeStatus,
        error_message: Optional[str] = None,
    ) -> None:
        """Set the ledger status of a prize (optionally with an error message)."""

        body: dict[str, Any] = {"status": status.value}
        if error_message is not None:
            body["error_message"] = error_message

        self._request("PATCH", prize_id, json=body)

    def delete_prize(self, prize_id: str) -> None:
        """Remove a prize row from the ledger."""

        self._request("DELETE", prize_id)

    def close(self) -> None:
        self._http.close()


__all__ = ["PrizeLedgerClient"]
