"""Admin order editing and status router."""

import uuid

from fastapi import APIRouter, Depends
from libs.auth.dependencies import require_admin
from libs.auth.models import AuthUser
from libs.common.logging import get_logger
from services.fulfillment_service.routers._helpers import (
    order_response,
    parcel_response,
)
from services.fulfillment_service.schemas import (
    OrderStatusChangeResponse,
    OrderStatusUpdate,
    OrderSummary,
    OrderUpdateRequest,
    OrderUpdateResponse,
)
from services.fulfillment_service.services.collaborators import (
    Collaborators,
    get_collaborators,
)
from services.fulfillment_service.services.order_updates import update_order
from services.fulfillment_service.services.status_transitions import (
    Actor,
    transition_order_status,
)
from services.fulfillment_service.services.unit_of_work import UnitOfWork, get_uow

router = APIRouter(tags=["admin-orders"])
logger = get_logger(__name__)


@router.patch("/orders/{order_id}", response_model=OrderUpdateResponse)
async def edit_order(
    order_id: uuid.UUID,
    payload: OrderUpdateRequest,
    current_user: AuthUser = Depends(require_admin),
    uow: UnitOfWork = Depends(get_uow),
):
    """
    Edit an order: customer details, notes, shipping metadata and items.

    Totals are recomputed server-side; the COD parcel follows the new totals.
    """
    result = await update_order(uow, order_id, payload, current_user)
    return OrderUpdateResponse(
        order=order_response(result.order, result.items),
        parcel=parcel_response(result.parcel),
        parcel_sync_error=result.parcel_error,
    )


@router.patch("/orders/{order_id}/status", response_model=OrderStatusChangeResponse)
async def update_order_status(
    order_id: uuid.UUID,
    status_update: OrderStatusUpdate,
    current_user: AuthUser = Depends(require_admin),
    uow: UnitOfWork = Depends(get_uow),
    collaborators: Collaborators = Depends(get_collaborators),
):
    """Update order status. COD orders move their carrier workflow status."""
    order, result = await transition_order_status(
        uow,
        collaborators,
        order_id,
        status_update.status,
        Actor.from_user(current_user),
        admin_notes=status_update.admin_notes,
    )
    return OrderStatusChangeResponse(
        order=OrderSummary.model_validate(order),
        old_status=result.old_value,
        new_status=result.new_value,
        changed=result.changed,
    )
