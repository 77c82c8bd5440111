"""Reconcile a submitted order item list against the persisted order lines."""

import uuid
from typing import Iterable

from libs.common.currency import as_money, to_centimes
from libs.common.logging import get_logger
from services.fulfillment_service.errors import ValidationFailedError
from services.fulfillment_service.models import OrderItem
from services.fulfillment_service.schemas import OrderItemInput
from services.fulfillment_service.services.unit_of_work import UnitOfWork

logger = get_logger(__name__)

PLACEHOLDER_PRODUCT_ID = "temp-product"


def _normalize_id(raw: str) -> str:
    try:
        return str(uuid.UUID(raw))
    except ValueError:
        raise ValidationFailedError(f"Invalid order item id: {raw}")


def _line_fields(submitted: OrderItemInput) -> dict:
    return {
        "name": submitted.name,
        "price": as_money(submitted.price),
        "quantity": submitted.quantity,
        "sku": submitted.sku or "",
        "unit_price_cents": to_centimes(submitted.price),
    }


def _changed(item: OrderItem, fields: dict) -> dict:
    return {key: value for key, value in fields.items() if getattr(item, key) != value}


async def reconcile_items(
    uow: UnitOfWork,
    order_id: uuid.UUID,
    submitted: Iterable[OrderItemInput],
) -> list[OrderItem]:
    """Make the persisted lines of ``order_id`` match the submitted list.

    ``submitted`` is the full desired list, not a delta: lines with a
    ``temp-`` (or missing) id are created, lines with a persisted id are
    overwritten in place, and persisted lines not mentioned are deleted.
    New lines never take the client's ``is_virtual``: a product already on
    the order keeps its persisted flag and anything else is physical.
    Must run inside the caller's transaction; persistence errors propagate.

    Returns the reloaded persisted lines.
    """
    submitted = list(submitted)
    persisted = await uow.orders.list_items(order_id)
    persisted_by_id = {str(item.id): item for item in persisted}
    virtual_products = {item.product_id for item in persisted if item.is_virtual}

    new_lines = [line for line in submitted if line.is_new]
    existing_lines = [(_normalize_id(line.id), line) for line in submitted if not line.is_new]

    # Validate everything before the first write
    unknown = [line_id for line_id, _ in existing_lines if line_id not in persisted_by_id]
    if unknown:
        raise ValidationFailedError(
            f"Order items do not belong to order {order_id}: {', '.join(unknown)}"
        )

    keep_ids = {line_id for line_id, _ in existing_lines}
    deleted = 0
    for item in persisted:
        if str(item.id) not in keep_ids:
            await uow.orders.delete_item(item.id)
            deleted += 1

    updated = 0
    for line_id, line in existing_lines:
        item = persisted_by_id[line_id]
        changes = _changed(item, _line_fields(line))
        if changes:
            await uow.orders.update_item(item, **changes)
            updated += 1

    for line in new_lines:
        await uow.orders.create_item(
            order_id,
            product_id=line.product_id or PLACEHOLDER_PRODUCT_ID,
            is_virtual=bool(line.product_id) and line.product_id in virtual_products,
            **_line_fields(line),
        )

    logger.info(
        "Reconciled items for order %s: %d created, %d updated, %d deleted",
        order_id,
        len(new_lines),
        updated,
        deleted,
    )
    return await uow.orders.list_items(order_id)
