"""Inbound webhooks: file-admin chat bot and COD carrier.

Both senders retry on non-2xx responses, so validation and lookup failures
are acknowledged with ``{"ok": false, "error": ...}`` and HTTP 200. Only a
bad carrier signature is refused outright.
"""

import json
import uuid

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import PlainTextResponse
from libs.common.config import get_settings
from libs.common.logging import get_logger
from services.fulfillment_service.errors import (
    FulfillmentError,
    NotFoundError,
    ValidationFailedError,
)
from services.fulfillment_service.schemas import WebhookAck
from services.fulfillment_service.services.best_effort import run_best_effort
from services.fulfillment_service.services.collaborators import (
    Collaborators,
    get_collaborators,
)
from services.fulfillment_service.services.status_transitions import (
    FILE_BOT_ACTOR,
    Actor,
    apply_carrier_update,
    parse_estimate_minutes,
    parse_file_status,
    set_estimated_time,
    transition_file_status,
)
from services.fulfillment_service.services.unit_of_work import UnitOfWork, get_uow
from services.fulfillment_service.services.webhook_payloads import (
    BotUpdate,
    CallbackRef,
    CancelCallback,
    CommandMessage,
    EstimatedTimeRequest,
    EstimatedTimeSelected,
    FileStatusCallback,
    UnknownPayload,
    parse_bot_update,
    parse_carrier_webhook,
    verify_carrier_signature,
)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])
logger = get_logger(__name__)

CARRIER_SIGNATURE_HEADERS = (
    "x-carrier-signature",
    "x-yalidine-signature",
    "x_yalidine_signature",
)


def _parse_file_id(raw: str) -> uuid.UUID:
    try:
        return uuid.UUID(raw)
    except ValueError:
        raise ValidationFailedError(f"Invalid file id: {raw}")


async def _reject_callback(
    collaborators: Collaborators, callback: CallbackRef, error: FulfillmentError
) -> WebhookAck:
    await run_best_effort(
        "answer_callback",
        collaborators.chat.answer_callback_query,
        callback.callback_query_id,
        f"❌ {error.message}",
        True,
    )
    return WebhookAck(ok=False, error=error.message)


async def _handle_bot_update(
    update: BotUpdate, uow: UnitOfWork, collaborators: Collaborators
) -> WebhookAck:
    actor = Actor.system(FILE_BOT_ACTOR)

    if isinstance(update, FileStatusCallback):
        target = parse_file_status(update.status)
        file_id = _parse_file_id(update.file_id)
        result = await transition_file_status(
            uow, collaborators, file_id, target, actor, callback=update.callback
        )
        return WebhookAck(ok=True, message=f"File status updated to {result.new_value}")

    if isinstance(update, EstimatedTimeSelected):
        minutes = parse_estimate_minutes(update.minutes)
        file_id = _parse_file_id(update.file_id)
        await set_estimated_time(
            uow, collaborators, file_id, minutes, actor, callback=update.callback
        )
        return WebhookAck(ok=True, message=f"Estimated time set to {minutes} minutes")

    if isinstance(update, EstimatedTimeRequest):
        file_id = _parse_file_id(update.file_id)
        file = await uow.files.get(file_id)
        if not file:
            raise NotFoundError("File", file_id)
        await run_best_effort(
            "answer_callback",
            collaborators.chat.answer_callback_query,
            update.callback.callback_query_id,
            "⏰ Setting estimated time...",
        )
        if update.callback.chat_id is not None:
            await run_best_effort(
                "request_estimated_time",
                collaborators.chat.request_estimated_time,
                update.callback.chat_id,
                str(file.id),
                file.original_filename,
            )
        return WebhookAck(ok=True, message="Estimated time requested")

    if isinstance(update, CancelCallback):
        await run_best_effort(
            "answer_callback",
            collaborators.chat.answer_callback_query,
            update.callback.callback_query_id,
            "❌ Cancelled",
        )
        return WebhookAck(ok=True, message="Cancelled")

    if isinstance(update, CommandMessage):
        logger.info("Ignoring file-admin bot message from chat %s", update.chat_id)
        return WebhookAck(ok=True, message="Message ignored")

    return WebhookAck(ok=False, error=update.reason)


@router.post("/telegram/file-admin", response_model=WebhookAck)
async def file_admin_bot_webhook(
    request: Request,
    uow: UnitOfWork = Depends(get_uow),
    collaborators: Collaborators = Depends(get_collaborators),
):
    """
    File-admin chat bot webhook (no auth; the bot token is in the registered URL).
    """
    try:
        body = await request.json()
    except ValueError:
        return WebhookAck(ok=False, error="Invalid JSON payload")

    update = parse_bot_update(body)
    logger.info(
        "File-admin bot update: %s",
        type(update).__name__,
        extra={"extra_fields": {"update_type": type(update).__name__}},
    )
    try:
        return await _handle_bot_update(update, uow, collaborators)
    except FulfillmentError as e:
        logger.warning("File-admin bot update rejected: %s", e.message)
        callback = getattr(update, "callback", None)
        if callback is not None and not isinstance(update, UnknownPayload):
            return await _reject_callback(collaborators, callback, e)
        return WebhookAck(ok=False, error=e.message)


@router.post("/carrier", response_model=WebhookAck)
async def carrier_webhook(
    request: Request,
    uow: UnitOfWork = Depends(get_uow),
    collaborators: Collaborators = Depends(get_collaborators),
):
    """
    Carrier delivery status webhook (verified by HMAC-SHA256 when a secret is set).
    """
    raw = await request.body()
    secret = get_settings().CARRIER_WEBHOOK_SECRET
    if secret:
        signature = next(
            (request.headers.get(h) for h in CARRIER_SIGNATURE_HEADERS if request.headers.get(h)),
            None,
        )
        if not verify_carrier_signature(raw, signature, secret):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature"
            )

    try:
        body = json.loads(raw.decode("utf-8") or "{}")
        webhook = parse_carrier_webhook(body)
    except ValueError:
        return WebhookAck(ok=False, error="Invalid JSON payload")
    except ValidationFailedError as e:
        return WebhookAck(ok=False, error=e.message)

    applied = 0
    for event in webhook.events:
        result = await apply_carrier_update(uow, collaborators, event)
        if result is not None and result.changed:
            applied += 1

    logger.info(
        "Carrier webhook %s processed: %d events, %d applied",
        webhook.type,
        len(webhook.events),
        applied,
    )
    return WebhookAck(ok=True, received=len(webhook.events), applied=applied)


@router.get("/carrier")
async def carrier_webhook_check(request: Request):
    """Subscription check: echo ``crc_token`` back when ``subscribe`` is present."""
    params = request.query_params
    crc = params.get("crc_token")
    if "subscribe" in params and crc:
        return PlainTextResponse(crc)
    return {"ok": True}
