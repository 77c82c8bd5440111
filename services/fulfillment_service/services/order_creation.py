"""Order creation from checkout."""

import time
from dataclasses import dataclass
from typing import Optional

from libs.common.config import get_settings
from libs.common.currency import as_money, to_centimes
from libs.common.logging import get_logger
from services.fulfillment_service.models import (
    CodStatus,
    Order,
    OrderItem,
    OrderStatus,
    Parcel,
    PaymentMethod,
)
from services.fulfillment_service.schemas import OrderCreateRequest
from services.fulfillment_service.services.best_effort import (
    BestEffortOutcome,
    run_best_effort,
)
from services.fulfillment_service.services.collaborators import Collaborators
from services.fulfillment_service.services.item_reconciler import (
    PLACEHOLDER_PRODUCT_ID,
)
from services.fulfillment_service.services.parcel_sync import (
    sync_customer_info,
    sync_parcel,
)
from services.fulfillment_service.services.unit_of_work import UnitOfWork

logger = get_logger(__name__)


async def generate_order_number(uow: UnitOfWork, max_attempts: Optional[int] = None) -> str:
    """Next sequential 6-digit order number, e.g. ``000042``.

    Tries ``count + 1``, ``count + 2``, ... against the uniqueness check and
    falls back to the last six digits of the millisecond clock.
    """
    if max_attempts is None:
        max_attempts = get_settings().ORDER_NUMBER_MAX_ATTEMPTS
    count = await uow.orders.count()
    for attempt in range(max_attempts):
        candidate = f"{count + 1 + attempt:06d}"
        if not await uow.orders.number_exists(candidate):
            return candidate
    fallback = str(int(time.time() * 1000))[-6:]
    logger.warning(
        "Order number collisions after %d attempts, using timestamp %s",
        max_attempts,
        fallback,
    )
    return fallback


@dataclass
class OrderCreationResult:
    order: Order
    items: list[OrderItem]
    parcel: Optional[Parcel] = None


async def create_order(uow: UnitOfWork, request: OrderCreateRequest) -> OrderCreationResult:
    """Persist a new order with its items, totals and (COD) parcel."""
    async with uow:
        order_number = await generate_order_number(uow)
        is_cod = request.payment_method == PaymentMethod.COD
        order = Order(
            order_number=order_number,
            user_id=request.user_id,
            customer_first=request.customer_first,
            customer_last=request.customer_last,
            customer_phone=request.customer_phone,
            customer_email=request.customer_email,
            payment_method=request.payment_method,
            status=OrderStatus.PENDING,
            cod_status=CodStatus.PENDING if is_cod else None,
            shipping=as_money(request.shipping),
            tax=as_money(request.tax),
            discount=as_money(request.discount),
            customer_notes=request.customer_notes,
            shipping_address=(
                request.shipping_address.model_dump(mode="json")
                if request.shipping_address
                else None
            ),
        )
        await uow.orders.add(order)

        for line in request.items:
            await uow.orders.create_item(
                order.id,
                product_id=line.product_id or PLACEHOLDER_PRODUCT_ID,
                name=line.name,
                sku=line.sku or "",
                price=as_money(line.price),
                quantity=line.quantity,
                unit_price_cents=to_centimes(line.price),
                is_virtual=line.is_virtual,
            )
        items = await uow.orders.list_items(order.id)

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
        "Created order %s (%s) total %s",
        order.order_number,
        order.payment_method.value,
        order.total,
    )
    return OrderCreationResult(
        order=order,
        items=items,
        parcel=customer_result.parcel or parcel_result.parcel,
    )


def _customer_name(order: Order) -> str:
    name = " ".join(part for part in (order.customer_first, order.customer_last) if part)
    return name or "Guest"


async def announce_order(
    collaborators: Collaborators, order: Order, items: list[OrderItem]
) -> list[BestEffortOutcome]:
    """Tell the customer and the admins about a newly placed order.

    Runs after the creation commit; neither notification can fail the order.
    """
    context = {"order_id": str(order.id), "order_number": order.order_number}
    total = str(order.total)
    outcomes = []
    if order.user_id:
        outcomes.append(
            await run_best_effort(
                "notify_customer_order_placed",
                collaborators.notifications.notify_customer,
                order.user_id,
                "order_placed",
                {"order_id": str(order.id), "order_number": order.order_number, "total": total},
                context=context,
            )
        )
    outcomes.append(
        await run_best_effort(
            "notify_admins_new_order",
            collaborators.notifications.notify_admins,
            "new_order",
            {
                "order_number": order.order_number,
                "customer_name": _customer_name(order),
                "total": total,
                "user_id": order.user_id or "guest",
                "items": [
                    {"name": item.name, "quantity": item.quantity, "price": str(item.price)}
                    for item in items
                ],
            },
            context=context,
        )
    )
    return outcomes
