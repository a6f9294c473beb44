"""
Domain: Gift catalog definitions.

Contract excerpts implemented here:
- A GiftDefinition maps a human-readable gift name to a provider gift id and a star cost.
- Gift names are globally unique; a provider gift id belongs to at most one name.
- Lookups are explicit: a GiftIdentifier states whether its value is a gift name
  or a provider gift id. No conditional string matching happens downstream.

This module contains only pure domain entities/value objects: no I/O, no frameworks.
All timestamps must be passed explicitly.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple

from .time import require_utc_timestamp


class IdentifierKind(str, Enum):
    NAME = "name"
    PROVIDER_ID = "provider_id"


@dataclass(frozen=True, slots=True)
class GiftIdentifier:
    """Tagged catalog lookup key."""

    kind: IdentifierKind
    value: str

    def __post_init__(self) -> None:
        if not self.value or not self.value.strip():
            raise ValueError("GiftIdentifier value must be non-empty")

    @classmethod
    def name(cls, value: str) -> "GiftIdentifier":
        return cls(IdentifierKind.NAME, value)

    @classmethod
    def provider_id(cls, value: str) -> "GiftIdentifier":
        return cls(IdentifierKind.PROVIDER_ID, value)


@dataclass(frozen=True, slots=True)
class GiftDefinition:
    """
    Immutable catalog entry for a single gift.

    provider_gift_id is None while the gift is known by name only (unmapped);
    such a gift can never be dispatched.
    """

    name: str
    star_cost: int
    updated_at: datetime
    provider_gift_id: Optional[str] = None
    display_name: str = ""

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise ValueError("name must be non-empty")
        if isinstance(self.star_cost, bool) or not isinstance(self.star_cost, int):
            raise ValueError("star_cost must be an integer")
        if self.star_cost <= 0:
            raise ValueError("star_cost must be > 0")
        if self.provider_gift_id is not None and not self.provider_gift_id.strip():
            raise ValueError("provider_gift_id must be non-empty when set")
        require_utc_timestamp("updated_at", self.updated_at)
        if not self.display_name:
            # frozen + slots: bypass __setattr__ to apply the default
            object.__setattr__(self, "display_name", self.name)

    @property
    def is_mapped(self) -> bool:
        return self.provider_gift_id is not None

    def touched(self, updated_at: datetime) -> "GiftDefinition":
        """Return a copy stamped with a new updated_at."""

        return replace(self, updated_at=updated_at)


# Standard Telegram gifts: (provider gift id, name, star cost).
GIFT_SEED: Tuple[Tuple[str, str, int], ...] = (
    ("d01a849b9ef17642d8f4", "Heart", 15),
    ("d01a849bfc7f7938aa86", "Bear", 75),
    ("d01a849b9e2c54fb0cf1", "Rose", 100),
    ("d01a849ba490ee9e6308", "Gift", 125),
    ("d01a849bb0e2c9f42a0a", "Cake", 150),
    ("d01a849b8c2f0cd6de99", "Rose Bouquet", 200),
    ("d01a849b9c4de7d48c4e", "Ring", 300),
    ("d01a849b8de88d0e703d", "Trophy", 500),
    ("d01a849b92670e79adce", "Diamond", 750),
    ("d01a849b95b3da4d0acb", "Calendar", 1000),
)


def seed_definitions(now: datetime) -> list[GiftDefinition]:
    """Build GiftDefinitions for the static seed list, stamped with `now`."""

    return [
        GiftDefinition(name=name, star_cost=stars, updated_at=now, provider_gift_id=provider_id)
        for provider_id, name, stars in GIFT_SEED
    ]


__all__ = [
    "IdentifierKind",
    "GiftIdentifier",
    "GiftDefinition",
    "GIFT_SEED",
    "seed_definitions",
]
