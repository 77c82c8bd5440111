"""Service-to-service endpoints used by checkout and payments."""

import uuid
from dataclasses import asdict

from fastapi import APIRouter, Depends, status
from libs.auth.dependencies import require_service_role
from libs.common.logging import get_logger
from services.fulfillment_service.routers._helpers import order_response
from services.fulfillment_service.schemas import (
    CompletionReportResponse,
    OrderCompleteRequest,
    OrderCreateRequest,
    OrderResponse,
)
from services.fulfillment_service.services.best_effort import run_best_effort
from services.fulfillment_service.services.collaborators import (
    Collaborators,
    get_collaborators,
)
from services.fulfillment_service.services.completion import complete_order
from services.fulfillment_service.services.order_creation import (
    announce_order,
    create_order,
)
from services.fulfillment_service.services.unit_of_work import UnitOfWork, get_uow

router = APIRouter(
    prefix="/internal",
    tags=["internal-fulfillment"],
    dependencies=[Depends(require_service_role)],
)
logger = get_logger(__name__)


@router.post("/orders", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
async def create_order_internal(
    payload: OrderCreateRequest,
    uow: UnitOfWork = Depends(get_uow),
    collaborators: Collaborators = Depends(get_collaborators),
):
    """Create an order from checkout. Free orders are fulfilled right away.

    The order is committed before anything else runs, so a failing
    notification or free-order completion still answers 201. A free order
    whose completion failed keeps an unclaimed marker and can be completed
    again through the complete endpoint.
    """
    result = await create_order(uow, payload)
    order = result.order
    await announce_order(collaborators, order, result.items)

    if order.total == 0:
        outcome = await run_best_effort(
            "free_order_completion",
            complete_order,
            uow,
            collaborators,
            order.id,
            order.user_id,
            context={"order_id": str(order.id), "order_number": order.order_number},
        )
        if outcome.ok:
            logger.info(
                "Free order %s fulfilled on creation",
                order.order_number,
                extra={"extra_fields": asdict(outcome.result)},
            )
        else:
            logger.warning(
                "Free order %s created but not fulfilled: %s",
                order.order_number,
                outcome.error,
            )
        order = await uow.orders.get(order.id) or order
        result.items = await uow.orders.list_items(order.id)

    return order_response(order, result.items)


@router.post("/orders/{order_id}/complete", response_model=CompletionReportResponse)
async def complete_order_internal(
    order_id: uuid.UUID,
    payload: OrderCompleteRequest,
    uow: UnitOfWork = Depends(get_uow),
    collaborators: Collaborators = Depends(get_collaborators),
):
    """
    Run the completion pipeline after payment confirmation.

    Safe to call repeatedly; only the first call does any work.
    """
    report = await complete_order(uow, collaborators, order_id, payload.user_id)
    return CompletionReportResponse(**asdict(report))
