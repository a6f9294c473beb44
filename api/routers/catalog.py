"""
Catalog API Endpoints.

Read-only service status and gift mappings, plus the administrative mapping
upsert.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from api.dependencies import get_context, require_admin
from api.models import (
    ErrorResponse,
    GiftMappingModel,
    GiftMappingUpsertRequest,
    MappingsResponse,
    StatisticsModel,
    StatusResponse,
)
from domain.gift import GiftDefinition
from domain.time import utc_now
from repositories.catalog_store import CatalogConflictError
from repositories.client import ExternalServiceError
from services.context import AppContext

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get(
    "/status",
    response_model=StatusResponse,
    summary="Service Status",
    description="Current Star balance and all-time dispatch statistics."
)
def get_status(context: AppContext = Depends(get_context)):
    """
    Get service status.

    `balance` is `null` when the gift provider cannot be reached; statistics
    are always served from the local catalog.
    """
    try:
        balance = context.provider.get_balance()
    except ExternalServiceError as e:
        logger.warning(f"Error getting balance: {e}")
        balance = None

    stats = context.catalog.stats()
    return StatusResponse(
        balance=balance,
        statistics=StatisticsModel.from_stats(stats),
        total_mappings=stats.gifts_mapped,
        timestamp=utc_now(),
    )


@router.get(
    "/mappings",
    response_model=MappingsResponse,
    summary="Gift Mappings",
    description="All catalog entries, cheapest first."
)
def get_mappings(context: AppContext = Depends(get_context)):
    gifts = context.catalog.list_gifts()
    return MappingsResponse(
        mappings=[GiftMappingModel.from_definition(g) for g in gifts],
        total=len(gifts),
    )


@router.put(
    "/mappings/{gift_name}",
    response_model=GiftMappingModel,
    summary="Save Gift Mapping",
    description="Create or replace the catalog entry for a gift name.",
    dependencies=[Depends(require_admin)],
    responses={
        401: {"model": ErrorResponse, "description": "Missing or wrong X-Admin-Token"},
        403: {"model": ErrorResponse, "description": "ADMIN_TOKEN is not configured"},
    },
)
def put_mapping(
    gift_name: str,
    request: GiftMappingUpsertRequest,
    context: AppContext = Depends(get_context),
):
    """
    Map a gift name to a provider gift id and star cost.

    Requires the `X-Admin-Token` header. Returns **409** if the provider gift id is already mapped to a different name.
    """
    try:
        definition = GiftDefinition(
            name=gift_name.strip(),
            star_cost=request.star_cost,
            updated_at=utc_now(),
            provider_gift_id=request.provider_gift_id or None,
            display_name=request.display_name or "",
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    try:
        stored = context.catalog.upsert(definition)
    except CatalogConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return GiftMappingModel.from_definition(stored)
