"""
Domain: Claim failure taxonomy.

Every way a claim can fail maps to exactly one ClaimErrorKind. The kind fixes
the HTTP status the API answers with and whether the prize was left
re-claimable.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ClaimErrorKind(str, Enum):
    VALIDATION = "VALIDATION"
    NOT_FOUND = "NOT_FOUND"
    OWNERSHIP = "OWNERSHIP"
    CONFLICT = "CONFLICT"
    MAPPING = "MAPPING"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    DISPATCH = "DISPATCH"
    LEDGER_UNAVAILABLE = "LEDGER_UNAVAILABLE"
    LOCK_FAILURE = "LOCK_FAILURE"
    PROVIDER_UNAVAILABLE = "PROVIDER_UNAVAILABLE"

    @property
    def http_status(self) -> int:
        return _HTTP_STATUS[self]


_HTTP_STATUS = {
    ClaimErrorKind.VALIDATION: 400,
    ClaimErrorKind.NOT_FOUND: 404,
    ClaimErrorKind.OWNERSHIP: 403,
    ClaimErrorKind.CONFLICT: 409,
    ClaimErrorKind.MAPPING: 500,
    ClaimErrorKind.INSUFFICIENT_BALANCE: 402,
    ClaimErrorKind.DISPATCH: 500,
    ClaimErrorKind.LEDGER_UNAVAILABLE: 500,
    ClaimErrorKind.LOCK_FAILURE: 500,
    ClaimErrorKind.PROVIDER_UNAVAILABLE: 500,
}


@dataclass(frozen=True, slots=True)
class ClaimError:
    """
    Structured claim failure.

    message is safe to show to the claimant; detail carries the internal
    cause for logs and the audit channel.
    current_status is set for CONFLICT failures.
    """

    kind: ClaimErrorKind
    message: str
    detail: Optional[str] = None
    current_status: Optional[str] = None

    @property
    def http_status(self) -> int:
        return self.kind.http_status


__all__ = ["ClaimErrorKind", "ClaimError"]
