"""Admin order edits: one transaction covering fields, items, totals and parcel."""

import uuid
from dataclasses import dataclass
from typing import Optional

from libs.auth.models import AuthUser
from libs.common.logging import get_logger
from services.fulfillment_service.errors import (
    AuthorizationError,
    NotFoundError,
    OrderLockedError,
)
from services.fulfillment_service.models import Order, OrderItem, Parcel
from services.fulfillment_service.schemas import OrderUpdateRequest
from services.fulfillment_service.services.item_reconciler import reconcile_items
from services.fulfillment_service.services.parcel_sync import (
    sync_customer_info,
    sync_parcel,
)
from services.fulfillment_service.services.unit_of_work import UnitOfWork

logger = get_logger(__name__)

# Plain columns copied from the request when the client sent them
EDITABLE_FIELDS = (
    "customer_first",
    "customer_last",
    "customer_phone",
    "customer_email",
    "customer_notes",
    "admin_notes",
    "shipping_method",
    "tracking_number",
    "estimated_delivery",
    "shipping",
    "tax",
    "discount",
)


@dataclass
class OrderUpdateResult:
    order: Order
    items: list[OrderItem]
    parcel: Optional[Parcel] = None
    parcel_error: Optional[str] = None


def _field_changes(request: OrderUpdateRequest) -> dict:
    sent = request.model_fields_set
    changes = {name: getattr(request, name) for name in EDITABLE_FIELDS if name in sent}
    if "shipping_address" in sent and request.shipping_address is not None:
        changes["shipping_address"] = request.shipping_address.model_dump(mode="json")
    return changes


async def update_order(
    uow: UnitOfWork,
    order_id: uuid.UUID,
    request: OrderUpdateRequest,
    actor: AuthUser,
) -> OrderUpdateResult:
    """Apply an admin edit to an order and keep its parcel in step.

    Client-supplied ``subtotal``/``total`` are ignored; totals are always
    recomputed from the reconciled items. Parcel sync failures are reported
    on the result but never undo the edit.
    """
    if not actor.is_admin:
        raise AuthorizationError()

    async with uow:
        order = await uow.orders.get(order_id)
        if not order:
            raise NotFoundError("Order", order_id)
        if order.is_terminal:
            raise OrderLockedError(order.order_number, order.display_status)

        changes = _field_changes(request)
        if changes:
            await uow.orders.update(order, **changes)

        items = await reconcile_items(uow, order.id, request.items)
        parcel_result = await sync_parcel(uow, order, items, request.shipping_options)
        customer_result = await sync_customer_info(
            uow,
            order,
            order.customer_first,
            order.customer_last,
            order.customer_phone,
            request.shipping_address,
        )

        await uow.commit()

    logger.info(
        "Order %s updated by %s: %d items, total %s",
        order.order_number,
        actor.user_id,
        len(items),
        order.total,
    )
    return OrderUpdateResult(
        order=order,
        items=items,
        parcel=customer_result.parcel or parcel_result.parcel,
        parcel_error=parcel_result.error or customer_result.error,
    )
