"""FastAPI application for the Fulfillment Service."""

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from libs.common.config import get_settings
from libs.common.logging import get_logger
from libs.common.middleware import add_observability_middleware
from services.fulfillment_service.errors import FulfillmentError
from services.fulfillment_service.routers import (
    admin_files_router,
    admin_orders_router,
    internal_router,
    webhooks_router,
)
from sqlalchemy.exc import SQLAlchemyError

logger = get_logger(__name__)


async def fulfillment_error_handler(request: Request, exc: FulfillmentError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error("Database error on %s: %s", request.url.path, exc, exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


def create_app() -> FastAPI:
    """Create and configure the Fulfillment Service FastAPI app."""
    app = FastAPI(
        title="Fulfillment Service",
        version="0.1.0",
        description="Order fulfillment, carrier parcel sync and status workflows.",
    )
    add_observability_middleware(app)

    app.add_exception_handler(FulfillmentError, fulfillment_error_handler)
    app.add_exception_handler(SQLAlchemyError, database_error_handler)

    @app.get("/health", tags=["system"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok", "service": "fulfillment"}

    # Admin routes (order edits, order and file status)
    app.include_router(admin_orders_router, prefix="/admin")
    app.include_router(admin_files_router, prefix="/admin")

    # Service-to-service and inbound webhooks
    app.include_router(internal_router)
    app.include_router(webhooks_router)

    return app


app = create_app()


def run() -> None:
    """Serve the app with uvicorn; reloads on code changes in local runs."""
    settings = get_settings()
    uvicorn.run(
        "services.fulfillment_service.app.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.ENVIRONMENT == "local",
        log_level=settings.LOG_LEVEL.lower(),
    )
