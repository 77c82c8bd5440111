"""Fulfillment service routers package."""

from services.fulfillment_service.routers.admin_files import router as admin_files_router
from services.fulfillment_service.routers.admin_orders import (
    router as admin_orders_router,
)
from services.fulfillment_service.routers.internal import router as internal_router
from services.fulfillment_service.routers.webhooks import router as webhooks_router

__all__ = [
    "admin_files_router",
    "admin_orders_router",
    "internal_router",
    "webhooks_router",
]
