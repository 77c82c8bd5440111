"""Shared helpers for fulfillment routers."""

from typing import Optional

from services.fulfillment_service.models import Order, OrderItem, Parcel
from services.fulfillment_service.schemas import (
    OrderItemResponse,
    OrderResponse,
    OrderSummary,
    ParcelResponse,
)


def order_response(order: Order, items: list[OrderItem]) -> OrderResponse:
    """Serialize an order with explicitly loaded items.

    ``order.items`` is never read; lazy loading is not available on an
    async session.
    """
    summary = OrderSummary.model_validate(order)
    return OrderResponse(
        **summary.model_dump(),
        items=[OrderItemResponse.model_validate(item) for item in items],
    )


def parcel_response(parcel: Optional[Parcel]) -> Optional[ParcelResponse]:
    if parcel is None:
        return None
    return ParcelResponse.model_validate(parcel)
