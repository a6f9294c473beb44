"""
Gift Claim Service API - Main Application.

FastAPI application with CORS enabled for the WebApp.
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api import __version__
from repositories.client import configure_logging, load_allowed_origins, load_env_file, load_settings
from services.context import AppContext, build_context

logger = logging.getLogger(__name__)


def create_app(context: Optional[AppContext] = None) -> FastAPI:
    """
    Build the application.

    With no context, settings are read from the environment and the
    collaborators are wired at startup (and closed at shutdown).
    """

    if context is None:
        load_env_file()
        configure_logging(os.getenv("LOG_LEVEL", "INFO"))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = context is None
        if owned:
            app.state.context = build_context(load_settings())
        else:
            app.state.context = context
        ctx: AppContext = app.state.context
        stats = ctx.catalog.stats()
        logger.info(
            f"Gift Claim Service v{__version__} ready",
            extra={
                "gift_mappings": stats.gifts_mapped,
                "prize_store": ctx.settings.prize_store_url,
                "catalog_path": str(ctx.settings.catalog_path),
            },
        )
        try:
            yield
        finally:
            if owned:
                ctx.close()

    app = FastAPI(
        title="Gift Claim Service API",
        description="Claims reserved prizes and sends the matching Telegram gift exactly once",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    origins = list(context.settings.allowed_origins) if context else list(load_allowed_origins())
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=origins != ["*"],
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Origin", "X-Requested-With", "Content-Type", "Accept", "Authorization", "X-Admin-Token"],
        max_age=86400,
    )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={
                "success": False,
                "error": "Invalid request body",
                "detail": jsonable_encoder(exc.errors()),
            },
        )

    @app.get("/health", tags=["Health"])
    def health_check():
        """
        Health check endpoint.

        Returns the API status and version.
        """
        return {
            "status": "healthy",
            "version": __version__,
            "service": "gift-claim-service"
        }

    @app.get("/", tags=["Root"])
    def root():
        """
        Root endpoint with API information.
        """
        return {
            "status": "online",
            "message": "Gift Claim Service API",
            "version": __version__,
            "endpoints": {
                "POST /claim-gift": "Claim a prize",
                "GET /api/v1/status": "Balance and statistics",
                "GET /api/v1/mappings": "Gift mappings",
                "GET /api/v1/prizes": "Prize history",
            },
            "docs": "/docs",
            "health": "/health"
        }

    # Import and include routers
    from api.routers import catalog, claims, prizes

    # /claim-gift stays at the root for existing WebApp clients
    app.include_router(claims.router, tags=["Claims"])
    app.include_router(claims.router, prefix="/api/v1", tags=["Claims"])
    app.include_router(catalog.router, prefix="/api/v1", tags=["Catalog"])
    app.include_router(prizes.router, prefix="/api/v1", tags=["Prizes"])

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("api.main:app", host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", "3001")))
