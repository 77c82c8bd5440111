"""Post-payment fulfillment: downloads, course access, license keys, auto-delivery.

Runs once per order after it is paid (or created free). The run is claimed
by stamping ``fulfillment_completed_at`` with a conditional update, so a
duplicate payment confirmation finds the marker set and does nothing.
"""

import uuid
from dataclasses import dataclass
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from services.fulfillment_service.errors import NotFoundError
from services.fulfillment_service.models import (
    AuditAction,
    AuditEntityType,
    OrderItem,
    OrderStatus,
)
from services.fulfillment_service.services.best_effort import run_best_effort
from services.fulfillment_service.services.collaborators import Collaborators
from services.fulfillment_service.services.unit_of_work import UnitOfWork

logger = get_logger(__name__)

PIPELINE_ACTOR = "fulfillment-pipeline"


@dataclass
class CompletionReport:
    order_id: uuid.UUID
    already_completed: bool = False
    downloads_provisioned: bool = False
    courses_enrolled: int = 0
    license_keys_assigned: int = 0
    license_key_failures: int = 0
    auto_delivered: bool = False


def is_all_virtual(items: list[OrderItem]) -> bool:
    return bool(items) and all(item.is_virtual for item in items)


async def _assign_license_keys(
    collaborators: Collaborators,
    order_id: str,
    user_id: Optional[str],
    item: OrderItem,
) -> int:
    """One key per unit. A failure stops the remaining units of this item."""
    assigned = 0
    for _ in range(item.quantity):
        await collaborators.licenses.assign(item.product_id, order_id, user_id)
        assigned += 1
    return assigned


async def complete_order(
    uow: UnitOfWork,
    collaborators: Collaborators,
    order_id: uuid.UUID,
    user_id: Optional[str] = None,
) -> CompletionReport:
    """Run the completion pipeline for ``order_id`` at most once.

    If download provisioning fails the claim is released so the whole run
    can be retried; later steps are best effort and only reported.
    """
    report = CompletionReport(order_id=order_id)

    async with uow:
        order = await uow.orders.get(order_id)
        if not order:
            raise NotFoundError("Order", order_id)
        claimed = await uow.orders.claim_fulfillment(order.id, utc_now())
        if not claimed:
            logger.info("Order %s already fulfilled, skipping", order.order_number)
            report.already_completed = True
            return report
        items = await uow.orders.list_items(order.id)
        await uow.commit()

    user_id = user_id or order.user_id
    order_key = str(order.id)

    # Step 1: download links for digital products
    try:
        await collaborators.downloads.create_for_order(order_key)
    except Exception:
        logger.error(
            "Download provisioning failed for order %s, releasing claim",
            order.order_number,
            exc_info=True,
        )
        async with uow:
            await uow.orders.update(order, fulfillment_completed_at=None)
            await uow.commit()
        raise
    report.downloads_provisioned = True

    # Step 2: course access
    if user_id:
        outcome = await run_best_effort(
            "course_enrollment",
            collaborators.courses.enroll_from_order,
            order_key,
            context={"order_id": order_key},
        )
        if outcome.ok:
            report.courses_enrolled = int(outcome.result or 0)

    # Step 3: license keys, isolated per item
    virtual_items = [item for item in items if item.is_virtual]
    for item in virtual_items:
        outcome = await run_best_effort(
            "license_keys",
            _assign_license_keys,
            collaborators,
            order_key,
            user_id,
            item,
            context={"order_id": order_key, "product_id": item.product_id},
        )
        if outcome.ok:
            report.license_keys_assigned += outcome.result
        else:
            report.license_key_failures += 1

    # Step 4: digital-only orders need no shipping
    if is_all_virtual(items):
        async with uow:
            old_status = order.status
            await uow.orders.update(
                order, status=OrderStatus.DELIVERED, delivered_at=utc_now()
            )

            async def _audit() -> None:
                async with uow.savepoint():
                    await uow.audit.add(
                        entity_type=AuditEntityType.ORDER,
                        entity_id=order.id,
                        actor_id=PIPELINE_ACTOR,
                        action=AuditAction.STATUS_CHANGE.value,
                        old_value=old_status.name,
                        new_value=OrderStatus.DELIVERED.name,
                    )

            await run_best_effort("audit_log", _audit, context={"order_id": order_key})
            await uow.commit()
        report.auto_delivered = True
        logger.info(
            "Order %s marked DELIVERED, all products are digital", order.order_number
        )
        await run_best_effort(
            "notify_admins",
            collaborators.notifications.notify_admins,
            "virtual_order_completed",
            {"order_id": order_key, "order_number": order.order_number},
        )

    logger.info(
        "Order %s fulfilled: %d license keys, %d courses",
        order.order_number,
        report.license_keys_assigned,
        report.courses_enrolled,
    )
    return report
