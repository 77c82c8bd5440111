"""Unit tests for file and order status transitions."""

import uuid
from decimal import Decimal

import pytest
from libs.auth.models import AuthUser
from libs.common.config import get_settings
from services.fulfillment_service.errors import (
    AuthorizationError,
    InvalidTransitionError,
    NotFoundError,
    ValidationFailedError,
)
from services.fulfillment_service.models import (
    AuditAction,
    AuditEntityType,
    CodStatus,
    FileStatus,
    OrderStatus,
    PaymentMethod,
)
from services.fulfillment_service.services.status_transitions import (
    CARRIER_ACTOR,
    FILE_BOT_ACTOR,
    Actor,
    apply_carrier_update,
    check_file_transition,
    parse_estimate_minutes,
    parse_file_status,
    set_estimated_time,
    transition_file_status,
    transition_order_status,
)
from services.fulfillment_service.services.webhook_payloads import (
    CallbackRef,
    CarrierStatusEvent,
    map_carrier_status,
)
from tests.factories import OrderFactory, ParcelFactory, TuningFileFactory
from tests.fakes import (
    RecordingCarrier,
    RecordingNotifications,
    recording_collaborators,
)

BOT = Actor.system(FILE_BOT_ACTOR)
ADMIN = Actor.from_user(AuthUser(user_id="admin-1", role="ADMIN"))
CUSTOMER = Actor.from_user(AuthUser(user_id="customer-1", role="CUSTOMER"))


def _carrier_event(status_text, tracking="YAL-100", order_ref=None, event_id=None, **extra):
    return CarrierStatusEvent(
        type="parcel_status_updated",
        tracking=tracking,
        order_ref=order_ref,
        status_text=status_text,
        mapped_status=map_carrier_status("parcel_status_updated", status_text),
        event_id=event_id,
        raw={"status": status_text, "tracking": tracking},
        **extra,
    )


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


@pytest.mark.unit
@pytest.mark.parametrize("raw", ["READY", "ready", " Ready "])
def test_parse_file_status_accepts_name_or_value(raw):
    """Wire names and stored values both resolve."""
    assert parse_file_status(raw) == FileStatus.READY


@pytest.mark.unit
@pytest.mark.parametrize("raw", ["HACKED", "", "DONE"])
def test_parse_file_status_rejects_unknown(raw):
    """Anything outside the file status set is a validation error."""
    with pytest.raises(ValidationFailedError):
        parse_file_status(raw)


@pytest.mark.unit
@pytest.mark.parametrize("raw", ["0", "1441", "custom", None])
def test_parse_estimate_minutes_rejects(raw):
    """Estimates must be an integer in [1, 1440]."""
    with pytest.raises(ValidationFailedError):
        parse_estimate_minutes(raw)


@pytest.mark.unit
def test_parse_estimate_minutes_bounds():
    assert parse_estimate_minutes("1") == 1
    assert parse_estimate_minutes(1440) == 1440


@pytest.mark.unit
@pytest.mark.parametrize(
    "current,target",
    [
        (FileStatus.RECEIVED, FileStatus.PENDING),
        (FileStatus.RECEIVED, FileStatus.READY),
        (FileStatus.PENDING, FileStatus.READY),
        (FileStatus.PENDING, FileStatus.PENDING),
        (FileStatus.PENDING, FileStatus.RECEIVED),
        (FileStatus.READY, FileStatus.PENDING),
    ],
)
def test_allowed_file_transitions(current, target):
    check_file_transition(current, target)


@pytest.mark.unit
@pytest.mark.parametrize(
    "current,target",
    [
        (FileStatus.READY, FileStatus.RECEIVED),
        (FileStatus.READY, FileStatus.READY),
        (FileStatus.RECEIVED, FileStatus.RECEIVED),
    ],
)
def test_rejected_file_transitions(current, target):
    with pytest.raises(InvalidTransitionError):
        check_file_transition(current, target)


# ---------------------------------------------------------------------------
# File status
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_bot_marks_file_ready(uow, collaborators):
    """Status, audit row and customer notification all follow the change."""
    file = TuningFileFactory.create(status=FileStatus.PENDING)
    uow.seed(file)

    result = await transition_file_status(uow, collaborators, file.id, FileStatus.READY, BOT)

    assert file.status == FileStatus.READY
    assert result.audited is True
    assert (result.old_value, result.new_value) == ("PENDING", "READY")

    [entry] = uow.audit.entries.values()
    assert entry.entity_type == AuditEntityType.FILE
    assert entry.actor_id == FILE_BOT_ACTOR
    assert (entry.old_value, entry.new_value) == ("PENDING", "READY")

    [(user_id, event, data)] = collaborators.notifications.customer
    assert user_id == file.user_id
    assert event == "file_ready"
    assert data["new_status"] == "READY"
    assert collaborators.realtime.pushes[0][1] == "file_status_update"
    assert collaborators.notifications.admins == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_admin_change_notifies_admins(uow, collaborators):
    """Changes made by a person are broadcast to the other admins."""
    file = TuningFileFactory.create()
    uow.seed(file)

    await transition_file_status(uow, collaborators, file.id, FileStatus.PENDING, ADMIN)

    [(event, data)] = collaborators.notifications.admins
    assert event == "file_status_changed_by_admin"
    assert data["actor_id"] == "admin-1"
    assert collaborators.notifications.customer[0][1] == "file_status_changed"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_customer_cannot_change_file_status(uow, collaborators):
    file = TuningFileFactory.create()
    uow.seed(file)

    with pytest.raises(AuthorizationError):
        await transition_file_status(uow, collaborators, file.id, FileStatus.READY, CUSTOMER)

    assert file.status == FileStatus.RECEIVED


@pytest.mark.asyncio
@pytest.mark.unit
async def test_invalid_file_transition_changes_nothing(uow, collaborators):
    """READY -> RECEIVED is refused and nothing is written."""
    file = TuningFileFactory.create(status=FileStatus.READY)
    uow.seed(file)

    with pytest.raises(InvalidTransitionError):
        await transition_file_status(uow, collaborators, file.id, FileStatus.RECEIVED, BOT)

    assert file.status == FileStatus.READY
    assert uow.audit.entries == {}
    assert collaborators.notifications.customer == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_unknown_file(uow, collaborators):
    with pytest.raises(NotFoundError):
        await transition_file_status(uow, collaborators, uuid.uuid4(), FileStatus.READY, BOT)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_notification_failure_keeps_status(uow):
    """A failing notifier is reported but the change is committed."""
    file = TuningFileFactory.create()
    uow.seed(file)
    collaborators = recording_collaborators(
        notifications=RecordingNotifications(fail_customer=True)
    )

    result = await transition_file_status(uow, collaborators, file.id, FileStatus.READY, BOT)

    assert file.status == FileStatus.READY
    assert result.failed_side_effects == ["notify_customer"]
    assert uow.commits == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_audit_failure_keeps_status(uow, collaborators):
    """A failed audit write does not roll back the status change."""
    file = TuningFileFactory.create()
    uow.seed(file)
    uow.audit.fail_with = RuntimeError("audit table locked")

    result = await transition_file_status(uow, collaborators, file.id, FileStatus.READY, BOT)

    assert result.audited is False
    assert file.status == FileStatus.READY
    assert uow.commits == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_admin_notification_failure_keeps_audit_row(uow):
    """A failing admin broadcast leaves both the status and its audit row."""
    file = TuningFileFactory.create()
    uow.seed(file)
    collaborators = recording_collaborators(
        notifications=RecordingNotifications(fail_admins=True)
    )

    result = await transition_file_status(uow, collaborators, file.id, FileStatus.PENDING, ADMIN)

    assert file.status == FileStatus.PENDING
    assert result.failed_side_effects == ["notify_admins"]
    [entry] = uow.audit.entries.values()
    assert entry.actor_id == "admin-1"
    assert (entry.old_value, entry.new_value) == ("RECEIVED", "PENDING")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_callback_is_answered_and_message_edited(uow, collaborators):
    """Bot-initiated changes answer the button press and refresh the message."""
    file = TuningFileFactory.create(original_filename="clio4.bin")
    uow.seed(file)
    callback = CallbackRef(callback_query_id="cb-1", chat_id=42, message_id=7)

    await transition_file_status(
        uow, collaborators, file.id, FileStatus.READY, BOT, callback=callback
    )

    assert collaborators.chat.answers == [("cb-1", "✅ File status updated to READY", False)]
    [(chat_id, message_id, text, keyboard)] = collaborators.chat.edits
    assert (chat_id, message_id) == (42, 7)
    assert "clio4.bin" in text
    assert "READY" in text
    assert keyboard["inline_keyboard"][0][0]["text"] == "✅ READY"


# ---------------------------------------------------------------------------
# Estimated time
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_estimate_forces_pending(uow, collaborators):
    """Setting an estimate reopens a READY file as PENDING."""
    file = TuningFileFactory.create(status=FileStatus.READY, estimated_processing_time=60)
    uow.seed(file)

    result = await set_estimated_time(uow, collaborators, file.id, 240, BOT)

    assert file.status == FileStatus.PENDING
    assert file.estimated_processing_time == 240
    assert file.estimated_processing_time_set_at is not None
    assert (result.old_value, result.new_value) == ("60", "240")

    [entry] = uow.audit.entries.values()
    assert entry.action == AuditAction.ESTIMATED_TIME_SET.value

    [(_, event, data)] = collaborators.notifications.customer
    assert event == "file_estimated_time"
    assert data["time_text"] == "4 hours"
    assert collaborators.realtime.pushes[0][1] == "estimated_time_update"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_estimate_edit_shows_time(uow, collaborators):
    file = TuningFileFactory.create()
    uow.seed(file)
    callback = CallbackRef(callback_query_id="cb-2", chat_id=42, message_id=8)

    await set_estimated_time(uow, collaborators, file.id, 1440, BOT, callback=callback)

    assert collaborators.chat.answers[0][1] == "✅ Estimated time set to 1 day"
    [(_, _, text, keyboard)] = collaborators.chat.edits
    assert "1 day" in text
    assert keyboard["inline_keyboard"][1][0]["text"] == "⏳ PENDING (Time Set)"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_estimate_out_of_range(uow, collaborators):
    file = TuningFileFactory.create()
    uow.seed(file)

    with pytest.raises(ValidationFailedError):
        await set_estimated_time(uow, collaborators, file.id, 1441, BOT)

    assert file.estimated_processing_time is None


# ---------------------------------------------------------------------------
# Order status (admin)
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_admin_ships_prepaid_order(uow, collaborators):
    """SHIPPED stamps shipped_at, writes an audit row, tells the customer."""
    order = OrderFactory.create()
    uow.seed(order)

    _, result = await transition_order_status(uow, collaborators, order.id, "shipped", ADMIN)

    assert order.status == OrderStatus.SHIPPED
    assert order.shipped_at is not None
    assert result.changed is True
    [entry] = uow.audit.entries.values()
    assert entry.entity_type == AuditEntityType.ORDER
    assert (entry.old_value, entry.new_value) == ("PENDING", "SHIPPED")
    [(user_id, event, _)] = collaborators.notifications.customer
    assert (user_id, event) == (order.user_id, "order_status_changed")


@pytest.mark.asyncio
@pytest.mark.unit
@pytest.mark.parametrize(
    "raw,expected",
    [
        ("CONFIRMED", CodStatus.SUBMITTED),
        ("PROCESSING", CodStatus.SUBMITTED),
        ("SHIPPED", CodStatus.DISPATCHED),
        ("REFUNDED", CodStatus.CANCELLED),
    ],
)
async def test_admin_status_on_cod_order_moves_cod_status(uow, collaborators, raw, expected):
    """COD orders translate admin values onto the carrier workflow."""
    order = OrderFactory.create(payment_method=PaymentMethod.COD)
    uow.seed(order)

    await transition_order_status(uow, collaborators, order.id, raw, ADMIN)

    assert order.cod_status == expected
    assert order.status == OrderStatus.PENDING


@pytest.mark.asyncio
@pytest.mark.unit
async def test_admin_status_unknown_value(uow, collaborators):
    order = OrderFactory.create()
    uow.seed(order)

    with pytest.raises(ValidationFailedError):
        await transition_order_status(uow, collaborators, order.id, "LOST", ADMIN)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_admin_same_status_is_noop(uow, collaborators):
    """Re-sending the current status writes notes only, no audit, no notification."""
    order = OrderFactory.create(status=OrderStatus.PROCESSING)
    uow.seed(order)

    _, result = await transition_order_status(
        uow, collaborators, order.id, "CONFIRMED", ADMIN, admin_notes="Paid by transfer"
    )

    assert result.changed is False
    assert order.admin_notes == "Paid by transfer"
    assert uow.audit.entries == {}
    assert collaborators.notifications.customer == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_terminal_order_cannot_move(uow, collaborators):
    order = OrderFactory.create(status=OrderStatus.CANCELLED)
    uow.seed(order)

    with pytest.raises(InvalidTransitionError):
        await transition_order_status(uow, collaborators, order.id, "PENDING", ADMIN)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_guest_order_change_sends_no_notifications(uow, collaborators):
    order = OrderFactory.create(user_id=None)
    uow.seed(order)

    _, result = await transition_order_status(uow, collaborators, order.id, "CANCELLED", ADMIN)

    assert order.cancelled_at is not None
    assert result.side_effects == []
    assert collaborators.realtime.pushes == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_customer_cannot_change_order_status(uow, collaborators):
    order = OrderFactory.create()
    uow.seed(order)

    with pytest.raises(AuthorizationError):
        await transition_order_status(uow, collaborators, order.id, "SHIPPED", CUSTOMER)


# ---------------------------------------------------------------------------
# Carrier hand-off
# ---------------------------------------------------------------------------


@pytest.fixture
def carrier_auto_create(monkeypatch):
    monkeypatch.setattr(get_settings(), "CARRIER_AUTO_CREATE", True)


@pytest.fixture
def cod_order_with_parcel(uow):
    order = OrderFactory.create(payment_method=PaymentMethod.COD, total=Decimal("28.00"))
    parcel = ParcelFactory.create(order, price=28, stopdesk_id=None)
    uow.seed(order, parcel)
    return order, parcel


@pytest.mark.asyncio
@pytest.mark.unit
async def test_submitted_cod_order_creates_carrier_parcel(
    uow, collaborators, carrier_auto_create, cod_order_with_parcel
):
    """Confirming a COD order hands its parcel to the carrier and stores the tracking."""
    order, parcel = cod_order_with_parcel

    _, result = await transition_order_status(uow, collaborators, order.id, "CONFIRMED", ADMIN)

    assert order.cod_status == CodStatus.SUBMITTED
    [payload] = collaborators.carrier.calls
    assert payload["order_id"] == parcel.legacy_order_id
    assert payload["price"] == 28
    assert payload["do_insurance"] is True
    assert "stopdesk_id" not in payload
    assert parcel.tracking == "yal-ABC123"
    assert parcel.label_url == "https://carrier.test/label/yal-ABC123"
    assert parcel.status == "created"
    assert parcel.last_payload["request"] == payload
    assert result.failed_side_effects == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_carrier_parcel_not_created_when_disabled(uow, collaborators, cod_order_with_parcel):
    order, parcel = cod_order_with_parcel

    await transition_order_status(uow, collaborators, order.id, "SHIPPED", ADMIN)

    assert order.cod_status == CodStatus.DISPATCHED
    assert collaborators.carrier.calls == []
    assert parcel.tracking is None


@pytest.mark.asyncio
@pytest.mark.unit
async def test_tracked_parcel_is_not_resubmitted(
    uow, collaborators, carrier_auto_create, cod_order_with_parcel
):
    """A parcel that already has tracking is left alone."""
    order, parcel = cod_order_with_parcel
    parcel.tracking = "yal-EXISTING"

    await transition_order_status(uow, collaborators, order.id, "DISPATCHED", ADMIN)

    assert collaborators.carrier.calls == []
    assert parcel.tracking == "yal-EXISTING"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_carrier_not_called_for_other_cod_statuses(
    uow, collaborators, carrier_auto_create, cod_order_with_parcel
):
    order, _ = cod_order_with_parcel

    await transition_order_status(uow, collaborators, order.id, "CANCELLED", ADMIN)

    assert collaborators.carrier.calls == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_carrier_failure_keeps_status_change(uow, carrier_auto_create, cod_order_with_parcel):
    """The carrier being down is reported, never undoes the status change."""
    order, parcel = cod_order_with_parcel
    collaborators = recording_collaborators(carrier=RecordingCarrier(fail=True))

    _, result = await transition_order_status(uow, collaborators, order.id, "SUBMITTED", ADMIN)

    assert order.cod_status == CodStatus.SUBMITTED
    assert result.failed_side_effects == ["carrier_parcel_create"]
    assert parcel.tracking is None
    assert len(uow.audit.entries) == 1


# ---------------------------------------------------------------------------
# Carrier updates
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_carrier_delivers_cod_order(uow, collaborators):
    """A delivered event moves cod_status and refreshes the parcel."""
    order = OrderFactory.create(
        payment_method=PaymentMethod.COD,
        cod_status=CodStatus.DISPATCHED,
        tracking_number="YAL-100",
    )
    parcel = ParcelFactory.create(order, tracking="YAL-100", status="En transit")
    uow.seed(order, parcel)

    result = await apply_carrier_update(
        uow, collaborators, _carrier_event("Livré", label_url="https://labels/1.pdf")
    )

    assert result.changed is True
    assert order.cod_status == CodStatus.DELIVERED
    assert order.delivered_at is not None
    assert parcel.status == "Livré"
    assert parcel.label_url == "https://labels/1.pdf"
    [entry] = uow.audit.entries.values()
    assert entry.actor_id == CARRIER_ACTOR


@pytest.mark.asyncio
@pytest.mark.unit
async def test_carrier_matches_by_order_number(uow, collaborators):
    """Without a known tracking number the order reference is used."""
    order = OrderFactory.create(payment_method=PaymentMethod.COD, order_number="000777")
    uow.seed(order)

    result = await apply_carrier_update(
        uow, collaborators, _carrier_event("Expédié", tracking="YAL-NEW", order_ref="000777")
    )

    assert result.changed is True
    assert order.cod_status == CodStatus.DISPATCHED
    assert order.tracking_number == "YAL-NEW"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_carrier_failure_on_prepaid_order_returns_to_processing(uow, collaborators):
    order = OrderFactory.create(status=OrderStatus.SHIPPED, tracking_number="YAL-100")
    uow.seed(order)

    await apply_carrier_update(uow, collaborators, _carrier_event("Tentative échouée"))

    assert order.status == OrderStatus.PROCESSING


@pytest.mark.asyncio
@pytest.mark.unit
async def test_carrier_event_processed_once(uow, collaborators):
    """A redelivered event id is ignored."""
    order = OrderFactory.create(payment_method=PaymentMethod.COD, tracking_number="YAL-100")
    uow.seed(order)
    event = _carrier_event("Expédié", event_id="evt-1")

    first = await apply_carrier_update(uow, collaborators, event)
    second = await apply_carrier_update(uow, collaborators, event)

    assert first.changed is True
    assert second is None
    assert len(uow.audit.entries) == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_carrier_ignores_terminal_order(uow, collaborators):
    order = OrderFactory.create(
        payment_method=PaymentMethod.COD,
        cod_status=CodStatus.DELIVERED,
        tracking_number="YAL-100",
    )
    uow.seed(order)

    result = await apply_carrier_update(uow, collaborators, _carrier_event("Retour expéditeur"))

    assert result.changed is False
    assert order.cod_status == CodStatus.DELIVERED
    assert collaborators.notifications.customer == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_carrier_event_without_order(uow, collaborators):
    """Unmatched events are stored and otherwise ignored."""
    result = await apply_carrier_update(
        uow, collaborators, _carrier_event("Livré", tracking="YAL-404", event_id="evt-9")
    )

    assert result is None
    assert "evt-9" in uow.carrier_events.events
    assert uow.commits == 1
