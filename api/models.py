"""
API Request and Response Models.

Pydantic models for validating API requests and serializing responses.
Wire field names are camelCase (the WebApp contract); Python attributes are
snake_case with aliases.
"""

from datetime import datetime
from typing import List, Optional, Union

from pydantic import BaseModel, Field

from domain.gift import GiftDefinition
from domain.prize import PrizeRecord
from repositories.catalog_store import CatalogStats


# ============================================================================
# Claim Models
# ============================================================================

class ClaimGiftRequest(BaseModel):
    """
    Request to claim a prize.

    Fields are optional at the schema level so that missing values are
    reported by the claim service as a VALIDATION failure (400).
    """
    user_id: Optional[Union[int, str]] = Field(None, alias="userId")
    prize_id: Optional[Union[int, str]] = Field(None, alias="prizeId")
    gift_name: Optional[str] = Field(
        None,
        alias="giftName",
        description="Gift name (e.g. 'Heart') or provider gift id",
    )

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "userId": "123456789",
                "prizeId": "prize_8f2c",
                "giftName": "Heart"
            }
        }


class ClaimGiftResponse(BaseModel):
    """Response for a claim attempt (success or failure)."""
    success: bool
    prize_id: Optional[str] = Field(None, alias="prizeId")
    gift_name: Optional[str] = Field(None, alias="giftName")
    message: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = Field(None, alias="errorCode")
    current_status: Optional[str] = Field(None, alias="currentStatus")

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "success": True,
                "prizeId": "prize_8f2c",
                "giftName": "Heart",
                "message": "Gift sent successfully!"
            }
        }


# ============================================================================
# Catalog Models
# ============================================================================

class GiftMappingModel(BaseModel):
    """Single catalog entry."""
    name: str
    provider_gift_id: Optional[str] = Field(None, alias="providerGiftId")
    star_cost: int = Field(..., alias="starCost")
    display_name: str = Field(..., alias="displayName")
    updated_at: datetime = Field(..., alias="updatedAt")
    mapped: bool

    class Config:
        populate_by_name = True

    @classmethod
    def from_definition(cls, gift: GiftDefinition) -> "GiftMappingModel":
        return cls(
            name=gift.name,
            provider_gift_id=gift.provider_gift_id,
            star_cost=gift.star_cost,
            display_name=gift.display_name,
            updated_at=gift.updated_at,
            mapped=gift.is_mapped,
        )


class MappingsResponse(BaseModel):
    success: bool = True
    mappings: List[GiftMappingModel]
    total: int


class GiftMappingUpsertRequest(BaseModel):
    """Create or replace the catalog entry for a gift name."""
    provider_gift_id: Optional[str] = Field(None, alias="providerGiftId")
    star_cost: int = Field(..., alias="starCost", gt=0)
    display_name: Optional[str] = Field(None, alias="displayName")

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "providerGiftId": "d01a849b9ef17642d8f4",
                "starCost": 15,
                "displayName": "Heart"
            }
        }


# ============================================================================
# Status Models
# ============================================================================

class StatisticsModel(BaseModel):
    gifts_total: int = Field(..., alias="giftsTotal")
    gifts_mapped: int = Field(..., alias="giftsMapped")
    gifts_unmapped: int = Field(..., alias="giftsUnmapped")
    mapped_percentage: int = Field(..., alias="mappedPercentage")
    prizes_total: int = Field(..., alias="prizesTotal")
    prizes_pending: int = Field(..., alias="prizesPending")
    prizes_sent: int = Field(..., alias="prizesSent")
    prizes_failed: int = Field(..., alias="prizesFailed")
    total_stars_value: int = Field(..., alias="totalStarsValue")
    total_gifts_sent: int = Field(..., alias="totalGiftsSent")
    total_stars_spent: int = Field(..., alias="totalStarsSpent")
    last_sync: Optional[datetime] = Field(None, alias="lastSync")

    class Config:
        populate_by_name = True

    @classmethod
    def from_stats(cls, stats: CatalogStats) -> "StatisticsModel":
        return cls(
            gifts_total=stats.gifts_total,
            gifts_mapped=stats.gifts_mapped,
            gifts_unmapped=stats.gifts_unmapped,
            mapped_percentage=stats.mapped_percentage,
            prizes_total=stats.prizes_total,
            prizes_pending=stats.prizes_pending,
            prizes_sent=stats.prizes_sent,
            prizes_failed=stats.prizes_failed,
            total_stars_value=stats.total_stars_value,
            total_gifts_sent=stats.total_gifts_sent,
            total_stars_spent=stats.total_stars_spent,
            last_sync=stats.last_sync,
        )


class StatusResponse(BaseModel):
    """Service status. balance is null when the provider could not be reached."""
    success: bool = True
    balance: Optional[int] = None
    statistics: StatisticsModel
    total_mappings: int = Field(..., alias="totalMappings")
    timestamp: datetime

    class Config:
        populate_by_name = True


# ============================================================================
# Prize History Models
# ============================================================================

class PrizeRecordModel(BaseModel):
    prize_id: str = Field(..., alias="prizeId")
    gift_name: str = Field(..., alias="giftName")
    owner_user_id: str = Field(..., alias="ownerUserId")
    status: str
    claimed_at: datetime = Field(..., alias="claimedAt")
    updated_at: datetime = Field(..., alias="updatedAt")
    error_message: Optional[str] = Field(None, alias="errorMessage")
    retry_count: int = Field(..., alias="retryCount")
    star_cost: int = Field(..., alias="starCost")
    ledger_finalized: bool = Field(..., alias="ledgerFinalized")

    class Config:
        populate_by_name = True

    @classmethod
    def from_record(cls, record: PrizeRecord) -> "PrizeRecordModel":
        return cls(
            prize_id=record.prize_id,
            gift_name=record.gift_name,
            owner_user_id=record.owner_user_id,
            status=record.status.value,
            claimed_at=record.claimed_at,
            updated_at=record.updated_at,
            error_message=record.error_message,
            retry_count=record.retry_count,
            star_cost=record.star_cost,
            ledger_finalized=record.ledger_finalized,
        )


class PrizeHistoryResponse(BaseModel):
    success: bool = True
    prizes: List[PrizeRecordModel]
    total: int


class ReconciliationResponse(BaseModel):
    success: bool = True
    examined: int
    finalized: List[str]
    unresolved: List[str]


# ============================================================================
# Error Models
# ============================================================================

class ErrorResponse(BaseModel):
    """Body of an HTTPException raised by the catalog and prize routes."""
    detail: str

    class Config:
        json_schema_extra = {
            "example": {
                "detail": "Invalid or missing X-Admin-Token"
            }
        }
