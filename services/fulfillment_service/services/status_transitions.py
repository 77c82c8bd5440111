"""Status changes for tuning files and orders.

Every change follows the same sequence: authorize, load, validate the
transition, persist, write one audit row (savepoint, best effort), commit,
then fan out notifications and, for COD orders, the carrier hand-off.
Nothing after the commit can undo the change.

Actors are either authenticated admins or one of the system actors used by
the webhook routes (``file-admin-bot``, ``carrier-webhook``).
"""

import uuid
from dataclasses import dataclass, field
from typing import Optional, Union

from libs.auth.models import AuthUser
from libs.common.config import get_settings
from libs.common.datetime_utils import humanize_minutes, utc_now
from libs.common.logging import get_logger
from services.fulfillment_service.errors import (
    AuthorizationError,
    InvalidTransitionError,
    NotFoundError,
    ValidationFailedError,
)
from services.fulfillment_service.models import (
    TERMINAL_COD_STATUSES,
    TERMINAL_ORDER_STATUSES,
    AuditAction,
    AuditEntityType,
    CodStatus,
    FileStatus,
    Order,
    OrderStatus,
    TuningFile,
)
from services.fulfillment_service.services.best_effort import (
    BestEffortOutcome,
    run_best_effort,
)
from services.fulfillment_service.services.carrier_client import (
    CarrierParcel,
    parcel_payload,
)
from services.fulfillment_service.services.collaborators import Collaborators
from services.fulfillment_service.services.telegram_client import (
    file_status_keyboard,
    file_status_message,
)
from services.fulfillment_service.services.unit_of_work import UnitOfWork
from services.fulfillment_service.services.webhook_payloads import (
    CallbackRef,
    CarrierStatusEvent,
)

logger = get_logger(__name__)

FILE_BOT_ACTOR = "file-admin-bot"
CARRIER_ACTOR = "carrier-webhook"

MIN_ESTIMATE_MINUTES = 1
MAX_ESTIMATE_MINUTES = 1440

# PENDING may be re-entered (e.g. after a new estimate); READY only reopens to PENDING
FILE_TRANSITIONS: dict[FileStatus, frozenset[FileStatus]] = {
    FileStatus.RECEIVED: frozenset({FileStatus.PENDING, FileStatus.READY}),
    FileStatus.PENDING: frozenset(
        {FileStatus.RECEIVED, FileStatus.PENDING, FileStatus.READY}
    ),
    FileStatus.READY: frozenset({FileStatus.PENDING}),
}

# Admin UI values accepted for COD orders
ADMIN_COD_STATUS_MAP: dict[str, CodStatus] = {
    "PENDING": CodStatus.PENDING,
    "CONFIRMED": CodStatus.SUBMITTED,
    "PROCESSING": CodStatus.SUBMITTED,
    "SUBMITTED": CodStatus.SUBMITTED,
    "SHIPPED": CodStatus.DISPATCHED,
    "DISPATCHED": CodStatus.DISPATCHED,
    "DELIVERED": CodStatus.DELIVERED,
    "FAILED": CodStatus.FAILED,
    "CANCELLED": CodStatus.CANCELLED,
    "REFUNDED": CodStatus.CANCELLED,
}

# Admin UI values accepted for prepaid/free orders
ADMIN_ORDER_STATUS_MAP: dict[str, OrderStatus] = {
    "PENDING": OrderStatus.PENDING,
    "CONFIRMED": OrderStatus.PROCESSING,
    "PROCESSING": OrderStatus.PROCESSING,
    "SHIPPED": OrderStatus.SHIPPED,
    "DISPATCHED": OrderStatus.SHIPPED,
    "DELIVERED": OrderStatus.DELIVERED,
    "CANCELLED": OrderStatus.CANCELLED,
    "REFUNDED": OrderStatus.CANCELLED,
}

# COD statuses at which an untracked parcel is handed to the carrier
CARRIER_SUBMIT_STATUSES = frozenset({CodStatus.SUBMITTED, CodStatus.DISPATCHED})

# Carrier outcomes applied to orders that are not COD
CARRIER_TO_ORDER_STATUS: dict[CodStatus, OrderStatus] = {
    CodStatus.DISPATCHED: OrderStatus.SHIPPED,
    CodStatus.DELIVERED: OrderStatus.DELIVERED,
    CodStatus.CANCELLED: OrderStatus.CANCELLED,
    CodStatus.FAILED: OrderStatus.PROCESSING,
}


@dataclass(frozen=True)
class Actor:
    actor_id: str
    is_admin: bool = False
    is_system: bool = False

    @classmethod
    def from_user(cls, user: AuthUser) -> "Actor":
        return cls(actor_id=user.user_id, is_admin=user.is_admin)

    @classmethod
    def system(cls, name: str) -> "Actor":
        return cls(actor_id=name, is_system=True)


@dataclass
class TransitionResult:
    entity_id: uuid.UUID
    old_value: Optional[str]
    new_value: Optional[str]
    changed: bool = True
    audited: bool = False
    side_effects: list[BestEffortOutcome] = field(default_factory=list)

    @property
    def failed_side_effects(self) -> list[str]:
        return [outcome.name for outcome in self.side_effects if not outcome.ok]


def _authorize(actor: Actor) -> None:
    if not (actor.is_system or actor.is_admin):
        raise AuthorizationError()


def parse_file_status(raw: str) -> FileStatus:
    """Accept a file status by name (``READY``) or value (``ready``)."""
    candidate = (raw or "").strip()
    for status in FileStatus:
        if candidate.upper() == status.name:
            return status
    raise ValidationFailedError(f"Invalid file status: {raw}")


def parse_estimate_minutes(raw: Union[str, int]) -> int:
    try:
        minutes = int(raw)
    except (TypeError, ValueError):
        raise ValidationFailedError(f"Invalid estimated time: {raw}")
    if not MIN_ESTIMATE_MINUTES <= minutes <= MAX_ESTIMATE_MINUTES:
        raise ValidationFailedError(
            f"Estimated time must be between {MIN_ESTIMATE_MINUTES} and "
            f"{MAX_ESTIMATE_MINUTES} minutes"
        )
    return minutes


def check_file_transition(current: FileStatus, target: FileStatus) -> None:
    if target not in FILE_TRANSITIONS.get(current, frozenset()):
        raise InvalidTransitionError("file", current.name, target.name)


def resolve_order_target(order: Order, raw: str) -> Union[OrderStatus, CodStatus]:
    """Map an admin status value onto the field the order actually uses."""
    key = (raw or "").strip().upper()
    mapping = ADMIN_COD_STATUS_MAP if order.is_cod else ADMIN_ORDER_STATUS_MAP
    if key not in mapping:
        raise ValidationFailedError(f"Invalid order status: {raw}")
    return mapping[key]


def _current_order_status(order: Order) -> Union[OrderStatus, CodStatus]:
    if order.is_cod:
        return order.cod_status or CodStatus.PENDING
    return order.status


def _is_terminal(status: Union[OrderStatus, CodStatus]) -> bool:
    return status in TERMINAL_ORDER_STATUSES or status in TERMINAL_COD_STATUSES


def _order_status_fields(order: Order, target: Union[OrderStatus, CodStatus]) -> dict:
    now = utc_now()
    fields: dict = {"cod_status": target} if order.is_cod else {"status": target}
    if target in (OrderStatus.SHIPPED, CodStatus.DISPATCHED) and not order.shipped_at:
        fields["shipped_at"] = now
    elif target in (OrderStatus.DELIVERED, CodStatus.DELIVERED):
        fields["delivered_at"] = now
    elif target in (OrderStatus.CANCELLED, CodStatus.CANCELLED):
        fields["cancelled_at"] = now
    return fields


async def _audit(
    uow: UnitOfWork,
    entity_type: AuditEntityType,
    entity_id: uuid.UUID,
    actor_id: str,
    action: AuditAction,
    old_value: Optional[str],
    new_value: Optional[str],
) -> bool:
    async def _write() -> None:
        async with uow.savepoint():
            await uow.audit.add(
                entity_type=entity_type,
                entity_id=entity_id,
                actor_id=actor_id,
                action=action.value,
                old_value=old_value,
                new_value=new_value,
            )

    outcome = await run_best_effort(
        "audit_log",
        _write,
        context={"entity_id": str(entity_id), "action": action.value},
    )
    return outcome.ok


# ============================================================================
# FILES
# ============================================================================


async def _answer_and_edit(
    collaborators: Collaborators,
    callback: Optional[CallbackRef],
    answer: str,
    file: TuningFile,
    time_text: Optional[str] = None,
) -> list[BestEffortOutcome]:
    if callback is None:
        return []
    outcomes = [
        await run_best_effort(
            "answer_callback",
            collaborators.chat.answer_callback_query,
            callback.callback_query_id,
            answer,
        )
    ]
    if callback.chat_id is not None and callback.message_id is not None:
        status = file.status.name
        outcomes.append(
            await run_best_effort(
                "edit_chat_message",
                collaborators.chat.edit_message_text,
                callback.chat_id,
                callback.message_id,
                file_status_message(
                    str(file.id), file.original_filename, status, time_text
                ),
                file_status_keyboard(str(file.id), status, time_set=time_text is not None),
            )
        )
    return outcomes


async def transition_file_status(
    uow: UnitOfWork,
    collaborators: Collaborators,
    file_id: uuid.UUID,
    target: FileStatus,
    actor: Actor,
    callback: Optional[CallbackRef] = None,
) -> TransitionResult:
    """Move a tuning file to ``target`` and tell everyone who cares."""
    _authorize(actor)

    async with uow:
        file = await uow.files.get(file_id)
        if not file:
            raise NotFoundError("File", file_id)
        old_status = file.status
        check_file_transition(old_status, target)

        await uow.files.update(file, status=target, updated_at=utc_now())
        audited = await _audit(
            uow,
            AuditEntityType.FILE,
            file.id,
            actor.actor_id,
            AuditAction.STATUS_CHANGE,
            old_status.name,
            target.name,
        )
        await uow.commit()

    logger.info(
        "File %s status %s -> %s by %s",
        file.id,
        old_status.name,
        target.name,
        actor.actor_id,
    )
    result = TransitionResult(
        entity_id=file.id,
        old_value=old_status.name,
        new_value=target.name,
        audited=audited,
    )

    data = {
        "file_id": str(file.id),
        "filename": file.original_filename,
        "old_status": old_status.name,
        "new_status": target.name,
    }
    event = "file_ready" if target == FileStatus.READY else "file_status_changed"
    result.side_effects.append(
        await run_best_effort(
            "notify_customer",
            collaborators.notifications.notify_customer,
            file.user_id,
            event,
            data,
            context={"file_id": str(file.id)},
        )
    )
    result.side_effects.append(
        await run_best_effort(
            "realtime_push",
            collaborators.realtime.send_to_user,
            file.user_id,
            "file_status_update",
            {**data, "message": f"File status updated to {target.name}"},
        )
    )
    if not actor.is_system:
        result.side_effects.append(
            await run_best_effort(
                "notify_admins",
                collaborators.notifications.notify_admins,
                "file_status_changed_by_admin",
                {**data, "actor_id": actor.actor_id},
            )
        )
    result.side_effects.extend(
        await _answer_and_edit(
            collaborators, callback, f"✅ File status updated to {target.name}", file
        )
    )
    return result


async def set_estimated_time(
    uow: UnitOfWork,
    collaborators: Collaborators,
    file_id: uuid.UUID,
    minutes: int,
    actor: Actor,
    callback: Optional[CallbackRef] = None,
) -> TransitionResult:
    """Record a processing estimate; the file is forced back to PENDING."""
    _authorize(actor)
    minutes = parse_estimate_minutes(minutes)

    async with uow:
        file = await uow.files.get(file_id)
        if not file:
            raise NotFoundError("File", file_id)
        old_estimate = file.estimated_processing_time
        now = utc_now()
        await uow.files.update(
            file,
            status=FileStatus.PENDING,
            estimated_processing_time=minutes,
            estimated_processing_time_set_at=now,
            updated_at=now,
        )
        audited = await _audit(
            uow,
            AuditEntityType.FILE,
            file.id,
            actor.actor_id,
            AuditAction.ESTIMATED_TIME_SET,
            str(old_estimate) if old_estimate is not None else None,
            str(minutes),
        )
        await uow.commit()

    time_text = humanize_minutes(minutes)
    logger.info("File %s estimated time set to %s by %s", file.id, time_text, actor.actor_id)
    result = TransitionResult(
        entity_id=file.id,
        old_value=str(old_estimate) if old_estimate is not None else None,
        new_value=str(minutes),
        audited=audited,
    )

    data = {
        "file_id": str(file.id),
        "filename": file.original_filename,
        "estimated_time": minutes,
        "time_text": time_text,
        "status": FileStatus.PENDING.name,
    }
    result.side_effects.append(
        await run_best_effort(
            "notify_customer",
            collaborators.notifications.notify_customer,
            file.user_id,
            "file_estimated_time",
            data,
            context={"file_id": str(file.id)},
        )
    )
    result.side_effects.append(
        await run_best_effort(
            "realtime_push",
            collaborators.realtime.send_to_user,
            file.user_id,
            "estimated_time_update",
            {**data, "message": f"Estimated processing time set to {time_text}"},
        )
    )
    result.side_effects.extend(
        await _answer_and_edit(
            collaborators,
            callback,
            f"✅ Estimated time set to {time_text}",
            file,
            time_text=time_text,
        )
    )
    return result


# ============================================================================
# ORDERS
# ============================================================================


async def _notify_order_change(
    collaborators: Collaborators,
    order: Order,
    old_value: str,
    new_value: str,
) -> list[BestEffortOutcome]:
    if not order.user_id:
        return []
    data = {
        "order_id": str(order.id),
        "order_number": order.order_number,
        "old_status": old_value,
        "new_status": new_value,
    }
    return [
        await run_best_effort(
            "notify_customer",
            collaborators.notifications.notify_customer,
            order.user_id,
            "order_status_changed",
            data,
            context={"order_id": str(order.id)},
        ),
        await run_best_effort(
            "realtime_push",
            collaborators.realtime.send_to_user,
            order.user_id,
            "order_status_update",
            data,
        ),
    ]


async def submit_parcel_to_carrier(
    uow: UnitOfWork,
    collaborators: Collaborators,
    order: Order,
) -> Optional[CarrierParcel]:
    """Create the carrier shipment for a COD order whose parcel has no tracking.

    The carrier call runs between two short transactions, never inside one.
    Returns ``None`` when there is nothing to submit.
    """
    async with uow:
        parcel = await uow.parcels.find_by_order_id(order.id)
        payload = None
        if parcel is not None and not parcel.tracking:
            payload = parcel_payload(parcel, order.order_number)
        await uow.commit()
    if payload is None:
        return None

    created = await collaborators.carrier.create_parcel(payload)

    async with uow:
        parcel = await uow.parcels.find_by_order_id(order.id)
        if parcel is None:
            logger.warning(
                "Parcel for order %s vanished before tracking %s was stored",
                order.order_number,
                created.tracking,
            )
            await uow.commit()
            return created
        await uow.parcels.update(
            parcel,
            tracking=created.tracking,
            label_url=created.label_url,
            status=created.status or "created",
            last_payload={
                "request": payload,
                "response": created.raw,
                "timestamp": utc_now().isoformat(),
            },
        )
        await uow.commit()

    logger.info(
        "Carrier parcel %s created for order %s",
        created.tracking,
        order.order_number,
    )
    return created


async def _apply_order_transition(
    uow: UnitOfWork,
    order: Order,
    target: Union[OrderStatus, CodStatus],
    actor: Actor,
    extra_fields: Optional[dict] = None,
) -> TransitionResult:
    current = _current_order_status(order)
    if _is_terminal(current):
        raise InvalidTransitionError("order", current.name, target.name)

    fields = dict(extra_fields or {})
    if current == target:
        if fields:
            await uow.orders.update(order, **fields)
        return TransitionResult(
            entity_id=order.id,
            old_value=current.name,
            new_value=target.name,
            changed=False,
        )

    fields.update(_order_status_fields(order, target))
    await uow.orders.update(order, **fields)
    audited = await _audit(
        uow,
        AuditEntityType.ORDER,
        order.id,
        actor.actor_id,
        AuditAction.STATUS_CHANGE,
        current.name,
        target.name,
    )
    return TransitionResult(
        entity_id=order.id,
        old_value=current.name,
        new_value=target.name,
        audited=audited,
    )


async def transition_order_status(
    uow: UnitOfWork,
    collaborators: Collaborators,
    order_id: uuid.UUID,
    raw_status: str,
    actor: Actor,
    admin_notes: Optional[str] = None,
) -> tuple[Order, TransitionResult]:
    """Admin status change. COD orders move ``cod_status``, others ``status``."""
    _authorize(actor)

    async with uow:
        order = await uow.orders.get(order_id)
        if not order:
            raise NotFoundError("Order", order_id)
        target = resolve_order_target(order, raw_status)
        extra = {"admin_notes": admin_notes} if admin_notes else None
        result = await _apply_order_transition(uow, order, target, actor, extra)
        await uow.commit()

    logger.info(
        "Order %s status %s -> %s by %s (input %s)",
        order.order_number,
        result.old_value,
        result.new_value,
        actor.actor_id,
        raw_status,
    )
    if result.changed:
        result.side_effects.extend(
            await _notify_order_change(
                collaborators, order, result.old_value, result.new_value
            )
        )
    if (
        result.changed
        and order.is_cod
        and order.cod_status in CARRIER_SUBMIT_STATUSES
        and get_settings().CARRIER_AUTO_CREATE
    ):
        result.side_effects.append(
            await run_best_effort(
                "carrier_parcel_create",
                submit_parcel_to_carrier,
                uow,
                collaborators,
                order,
                context={"order_id": str(order.id), "order_number": order.order_number},
            )
        )
    return order, result


async def apply_carrier_update(
    uow: UnitOfWork,
    collaborators: Collaborators,
    event: CarrierStatusEvent,
) -> Optional[TransitionResult]:
    """Apply one carrier event to its order and parcel.

    Returns ``None`` when the event was already processed or matches no
    order. Events for orders in a terminal state only refresh the parcel.
    """
    actor = Actor.system(CARRIER_ACTOR)

    async with uow:
        if event.event_id:
            stored = await uow.carrier_events.add_if_absent(
                event.event_id,
                event.type,
                event.occurred_at or utc_now(),
                event.raw,
            )
            if not stored:
                logger.info("Carrier event %s already processed", event.event_id)
                return None

        order = await uow.orders.find_for_carrier(event.tracking, event.order_ref)
        if not order:
            logger.warning(
                "No order for carrier event (tracking=%s, order=%s)",
                event.tracking,
                event.order_ref,
            )
            await uow.commit()
            return None

        async def _refresh_parcel() -> None:
            async with uow.savepoint():
                parcel = await uow.parcels.find_by_order_id(order.id)
                if parcel is None:
                    return
                await uow.parcels.update(
                    parcel,
                    tracking=event.tracking or parcel.tracking,
                    label_url=event.label_url or parcel.label_url,
                    status=event.status_text or parcel.status,
                    last_payload=event.raw,
                )

        await run_best_effort(
            "parcel_refresh", _refresh_parcel, context={"order_id": str(order.id)}
        )

        target = (
            event.mapped_status
            if order.is_cod
            else CARRIER_TO_ORDER_STATUS[event.mapped_status]
        )
        extra = {"tracking_number": event.tracking} if event.tracking else None
        current = _current_order_status(order)
        if _is_terminal(current):
            logger.info(
                "Order %s is %s, ignoring carrier status %s",
                order.order_number,
                current.name,
                target.name,
            )
            await uow.commit()
            return TransitionResult(
                entity_id=order.id,
                old_value=current.name,
                new_value=current.name,
                changed=False,
            )
        result = await _apply_order_transition(uow, order, target, actor, extra)
        await uow.commit()

    if result.changed:
        logger.info(
            "Carrier moved order %s %s -> %s",
            order.order_number,
            result.old_value,
            result.new_value,
        )
        result.side_effects.extend(
            await _notify_order_change(
                collaborators, order, result.old_value, result.new_value
            )
        )
    return result
