"""Parse inbound webhook bodies into typed events.

Two senders post to this service:

* the file-admin chat bot (Telegram updates). Button presses arrive as
  ``callback_query`` updates whose ``data`` encodes the action, e.g.
  ``file_admin_status_<file_id>_READY``.
* the COD carrier. It sends either a single parcel status object or a batch
  ``{"type": ..., "events": [{"event_id", "occurred_at", "data"}, ...]}``.

Parsing never touches the database. Values are kept as sent so callers can
reject them with an explicit error before any lookup.
"""

import hashlib
import hmac
import unicodedata
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, Union

from libs.common.datetime_utils import utc_now
from services.fulfillment_service.errors import ValidationFailedError
from services.fulfillment_service.models import CodStatus

CALLBACK_PREFIX = "file_admin"

# ============================================================================
# CHAT BOT UPDATES
# ============================================================================


@dataclass(frozen=True)
class CallbackRef:
    """Identifies the button press and the message that carried it."""

    callback_query_id: str
    chat_id: Optional[int]
    message_id: Optional[int]


@dataclass(frozen=True)
class FileStatusCallback:
    callback: CallbackRef
    file_id: str
    status: str


@dataclass(frozen=True)
class EstimatedTimeRequest:
    callback: CallbackRef
    file_id: str


@dataclass(frozen=True)
class EstimatedTimeSelected:
    callback: CallbackRef
    file_id: str
    minutes: str


@dataclass(frozen=True)
class CancelCallback:
    callback: CallbackRef
    file_id: Optional[str] = None


@dataclass(frozen=True)
class CommandMessage:
    chat_id: Optional[int]
    text: str
    from_id: Optional[int] = None


@dataclass(frozen=True)
class UnknownPayload:
    reason: str
    callback: Optional[CallbackRef] = None


BotUpdate = Union[
    FileStatusCallback,
    EstimatedTimeRequest,
    EstimatedTimeSelected,
    CancelCallback,
    CommandMessage,
    UnknownPayload,
]


def _callback_ref(query: dict) -> CallbackRef:
    message = query.get("message") or {}
    chat = message.get("chat") or {}
    return CallbackRef(
        callback_query_id=str(query.get("id", "")),
        chat_id=chat.get("id"),
        message_id=message.get("message_id"),
    )


def parse_callback_data(data: str, callback: CallbackRef) -> BotUpdate:
    """Decode ``file_admin_*`` callback data, validating segment counts."""
    parts = data.split("_")
    if len(parts) < 3 or f"{parts[0]}_{parts[1]}" != CALLBACK_PREFIX:
        return UnknownPayload(reason=f"Unrecognised callback data: {data}", callback=callback)

    action = parts[2]
    if action == "status" and len(parts) == 5:
        return FileStatusCallback(callback=callback, file_id=parts[3], status=parts[4])
    if action == "estimated" and len(parts) == 5 and parts[3] == "time":
        return EstimatedTimeRequest(callback=callback, file_id=parts[4])
    if action == "time" and len(parts) == 5:
        return EstimatedTimeSelected(callback=callback, file_id=parts[3], minutes=parts[4])
    if action == "cancel" and len(parts) in (3, 4):
        return CancelCallback(callback=callback, file_id=parts[3] if len(parts) == 4 else None)
    return UnknownPayload(reason=f"Malformed callback data: {data}", callback=callback)


def parse_bot_update(body: Any) -> BotUpdate:
    """Classify a Telegram update posted to the file-admin webhook."""
    if not isinstance(body, dict):
        return UnknownPayload(reason="Update body is not an object")

    query = body.get("callback_query")
    if isinstance(query, dict):
        callback = _callback_ref(query)
        data = query.get("data")
        if not isinstance(data, str) or not data:
            return UnknownPayload(reason="Callback query without data", callback=callback)
        return parse_callback_data(data, callback)

    message = body.get("message")
    if isinstance(message, dict) and isinstance(message.get("text"), str):
        return CommandMessage(
            chat_id=(message.get("chat") or {}).get("id"),
            text=message["text"],
            from_id=(message.get("from") or {}).get("id"),
        )
    return UnknownPayload(reason="Unsupported update type")


# ============================================================================
# CARRIER WEBHOOKS
# ============================================================================

EVENT_STATUS_UPDATED = "parcel_status_updated"
EVENT_CREATED = "parcel_created"
EVENT_DELETED = "parcel_deleted"


@dataclass(frozen=True)
class CarrierStatusEvent:
    type: str
    tracking: Optional[str]
    order_ref: Optional[str]
    status_text: str
    mapped_status: CodStatus
    event_id: Optional[str] = None
    occurred_at: Optional[datetime] = None
    label_url: Optional[str] = None
    raw: dict = field(default_factory=dict)


@dataclass(frozen=True)
class CarrierWebhook:
    type: str
    events: list[CarrierStatusEvent]
    batched: bool = False


def strip_accents(text: str) -> str:
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def map_carrier_status(event_type: str, status_text: Optional[str]) -> CodStatus:
    """Map the carrier's free-text status (mostly French) onto a COD status.

    >>> map_carrier_status("parcel_status_updated", "Livré")
    <CodStatus.DELIVERED: 'delivered'>
    """
    if event_type == EVENT_DELETED:
        return CodStatus.CANCELLED
    normalized = strip_accents(status_text or "").lower()
    if "livr" in normalized:
        return CodStatus.DELIVERED
    if "retour" in normalized:
        return CodStatus.CANCELLED
    if any(word in normalized for word in ("echou", "echec", "failed")):
        return CodStatus.FAILED
    return CodStatus.DISPATCHED


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _text(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def _single_event(raw: dict) -> CarrierStatusEvent:
    parcel = raw.get("parcel") if isinstance(raw.get("parcel"), dict) else {}
    status_text = _text(raw.get("status") or parcel.get("status")) or ""
    tracking = _text(
        raw.get("tracking") or raw.get("tracking_number") or parcel.get("tracking_number")
    )
    if not tracking:
        raise ValidationFailedError("Carrier webhook is missing a tracking number")
    event_type = EVENT_STATUS_UPDATED
    if raw.get("event") == "parcel.deleted":
        event_type = EVENT_DELETED
    return CarrierStatusEvent(
        type=event_type,
        tracking=tracking,
        order_ref=_text(raw.get("order_id") or parcel.get("order_id")),
        status_text=status_text,
        mapped_status=map_carrier_status(event_type, status_text),
        occurred_at=_parse_timestamp(raw.get("updated_at") or raw.get("timestamp")),
        label_url=_text(raw.get("label")),
        raw=raw,
    )


def _batched_event(event_type: str, raw: dict) -> CarrierStatusEvent:
    data = raw.get("data") if isinstance(raw.get("data"), dict) else {}
    status_text = _text(data.get("status")) or ""
    return CarrierStatusEvent(
        type=event_type,
        tracking=_text(data.get("tracking")),
        order_ref=_text(data.get("order_id")),
        status_text=status_text,
        mapped_status=map_carrier_status(event_type, status_text),
        event_id=_text(raw.get("event_id")),
        occurred_at=_parse_timestamp(raw.get("occurred_at")) or utc_now(),
        label_url=_text(data.get("label")),
        raw=raw,
    )


def parse_carrier_webhook(body: Any) -> CarrierWebhook:
    """Normalize the single-event and batched carrier payload shapes."""
    if not isinstance(body, dict):
        raise ValidationFailedError("Carrier webhook body must be a JSON object")

    event_type = body.get("type")
    events = body.get("events")
    if isinstance(event_type, str) and isinstance(events, list):
        parsed = [_batched_event(event_type, e) for e in events if isinstance(e, dict)]
        return CarrierWebhook(type=event_type, events=parsed, batched=True)

    event = _single_event(body)
    return CarrierWebhook(type=event.type, events=[event])


def verify_carrier_signature(raw_body: bytes, signature: Optional[str], secret: str) -> bool:
    """Check an HMAC-SHA256 hex digest of the raw request body."""
    if not signature:
        return False
    expected = hmac.new(secret.encode(), raw_body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature.strip().lower())
