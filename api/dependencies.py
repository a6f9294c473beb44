"""
Shared FastAPI dependencies.
"""

import logging
import secrets
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request

from services.context import AppContext

logger = logging.getLogger(__name__)


def get_context(request: Request) -> AppContext:
    """The AppContext attached to the running application."""
    return request.app.state.context


def require_admin(
    x_admin_token: Optional[str] = Header(None, description="Shared operator token (ADMIN_TOKEN)"),
    context: AppContext = Depends(get_context),
) -> None:
    """
    Guard for routes that change the catalog or the ledger outside a claim.

    Raises:
        HTTPException: 403 when ADMIN_TOKEN is not configured,
            401 when the header is missing or does not match
    """
    expected = context.settings.admin_token
    if not expected:
        raise HTTPException(status_code=403, detail="Admin endpoints are disabled: ADMIN_TOKEN is not set")

    if not x_admin_token or not secrets.compare_digest(x_admin_token.encode(), expected.encode()):
        logger.warning("Rejected admin request with a missing or invalid X-Admin-Token")
        raise HTTPException(status_code=401, detail="Invalid or missing X-Admin-Token")
