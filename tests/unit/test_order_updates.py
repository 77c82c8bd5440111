"""Unit tests for admin order edits.

Covers the full edit transaction: field updates, item reconciliation,
server-side totals and the COD parcel following along.
"""

import uuid
from decimal import Decimal

import pytest
from libs.auth.models import AuthUser
from services.fulfillment_service.errors import (
    AuthorizationError,
    NotFoundError,
    OrderLockedError,
    ValidationFailedError,
)
from services.fulfillment_service.models import CodStatus, OrderStatus, PaymentMethod
from services.fulfillment_service.schemas import (
    OrderCreateRequest,
    OrderItemInput,
    OrderUpdateRequest,
    ShippingAddress,
)
from services.fulfillment_service.services.order_creation import create_order
from services.fulfillment_service.services.order_updates import update_order
from tests.factories import OrderFactory, OrderItemFactory, ParcelFactory

ADMIN = AuthUser(user_id="admin-1", email="admin@test.com", role="ADMIN")
CUSTOMER = AuthUser(user_id="customer-1", email="customer@test.com", role="CUSTOMER")


def _keep(item, **overrides) -> OrderItemInput:
    fields = {
        "id": str(item.id),
        "name": item.name,
        "price": item.price,
        "quantity": item.quantity,
    }
    fields.update(overrides)
    return OrderItemInput(**fields)


@pytest.fixture
def cod_order(uow):
    order = OrderFactory.create(payment_method=PaymentMethod.COD, shipping=Decimal("3.00"))
    item = OrderItemFactory.create(order, name="Stage 1", price="10.00", quantity=2)
    parcel = ParcelFactory.create(order, price=23)
    uow.seed(order, item, parcel)
    return order, item, parcel


# ---------------------------------------------------------------------------
# End to end
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_create_then_edit_keeps_parcel_in_step(uow):
    """10x2 + 5x1 with shipping 3 is 25/28; editing 5 -> 7 gives 27/30 and parcel 30."""
    created = await create_order(
        uow,
        OrderCreateRequest(
            customer_first="Amine",
            customer_last="Benali",
            customer_phone="0555123456",
            payment_method=PaymentMethod.COD,
            shipping=Decimal("3"),
            items=[
                OrderItemInput(id="temp-1", name="Stage 1", price=Decimal("10"), quantity=2),
                OrderItemInput(id="temp-2", name="EGR Off", price=Decimal("5"), quantity=1),
            ],
        ),
    )
    order = created.order
    assert order.subtotal == Decimal("25.00")
    assert order.total == Decimal("28.00")
    assert created.parcel.price == 28

    stage1, egr = created.items
    result = await update_order(
        uow,
        order.id,
        OrderUpdateRequest(
            items=[_keep(stage1), _keep(egr, price=Decimal("7"))],
            shipping=Decimal("3"),
        ),
        ADMIN,
    )

    assert result.order.subtotal == Decimal("27.00")
    assert result.order.total == Decimal("30.00")
    assert result.order.total_cents == 3000
    assert result.parcel.price == 30
    assert result.parcel.product_list == "Stage 1 x2, EGR Off"
    assert result.parcel_error is None
    assert len(uow.parcels.parcels) == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_create_then_replace_line_keeps_parcel_in_step(uow):
    """Dropping the 5.00 line and adding a 7.00 temp line also gives 27/30 and parcel 30."""
    created = await create_order(
        uow,
        OrderCreateRequest(
            customer_first="Amine",
            customer_last="Benali",
            customer_phone="0555123456",
            payment_method=PaymentMethod.COD,
            shipping=Decimal("3"),
            items=[
                OrderItemInput(id="temp-1", name="Stage 1", price=Decimal("10"), quantity=2),
                OrderItemInput(id="temp-2", name="EGR Off", price=Decimal("5"), quantity=1),
            ],
        ),
    )
    order = created.order
    stage1, egr = created.items

    result = await update_order(
        uow,
        order.id,
        OrderUpdateRequest(
            items=[
                _keep(stage1),
                OrderItemInput(id="temp-1", name="EGR Delete", price=Decimal("7"), quantity=1),
            ],
            shipping=Decimal("3"),
        ),
        ADMIN,
    )

    assert result.order.subtotal == Decimal("27.00")
    assert result.order.total == Decimal("30.00")
    assert result.parcel.price == 30
    assert egr.id not in uow.orders.items
    assert sorted(item.name for item in result.items) == ["EGR Delete", "Stage 1"]
    assert len(uow.parcels.parcels) == 1


# ---------------------------------------------------------------------------
# Fields and totals
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_update_ignores_client_totals(uow, cod_order):
    """Client subtotal/total never reach the order."""
    order, item, _ = cod_order

    result = await update_order(
        uow,
        order.id,
        OrderUpdateRequest(
            items=[_keep(item)],
            shipping=Decimal("3"),
            subtotal=Decimal("1"),
            total=Decimal("999"),
        ),
        ADMIN,
    )

    assert result.order.subtotal == Decimal("20.00")
    assert result.order.total == Decimal("23.00")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_update_only_touches_sent_fields(uow, cod_order):
    """Unsent optional fields keep their stored values."""
    order, item, _ = cod_order
    order.customer_email = "keep@test.com"

    await update_order(
        uow,
        order.id,
        OrderUpdateRequest(
            items=[_keep(item)],
            customer_notes="Call before delivery",
            tracking_number="YAL-555",
        ),
        ADMIN,
    )

    assert order.customer_email == "keep@test.com"
    assert order.customer_notes == "Call before delivery"
    assert order.tracking_number == "YAL-555"
    assert uow.commits == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_update_customer_details_reach_parcel(uow, cod_order):
    """New name, phone and address are written to the parcel."""
    order, item, parcel = cod_order

    result = await update_order(
        uow,
        order.id,
        OrderUpdateRequest(
            items=[_keep(item)],
            customer_first="Lina",
            customer_last="Mansouri",
            customer_phone="0699887766",
            shipping_address=ShippingAddress(address1="7 Bd Zighout Youcef", state="Constantine", city="El Khroub"),
        ),
        ADMIN,
    )

    assert result.parcel is parcel
    assert parcel.firstname == "Lina"
    assert parcel.familyname == "Mansouri"
    assert parcel.contact_phone == "0699887766"
    assert parcel.address == "7 Bd Zighout Youcef"
    assert parcel.to_wilaya_name == "Constantine"
    assert order.shipping_address["city"] == "El Khroub"


# ---------------------------------------------------------------------------
# Refusals
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_update_requires_admin(uow, cod_order):
    """Customers cannot edit orders."""
    order, item, _ = cod_order

    with pytest.raises(AuthorizationError):
        await update_order(uow, order.id, OrderUpdateRequest(items=[_keep(item)]), CUSTOMER)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_update_unknown_order(uow):
    """Editing a missing order raises NotFoundError."""
    with pytest.raises(NotFoundError):
        await update_order(
            uow,
            uuid.uuid4(),
            OrderUpdateRequest(items=[OrderItemInput(name="A", price=Decimal("1"), quantity=1)]),
            ADMIN,
        )


@pytest.mark.asyncio
@pytest.mark.unit
@pytest.mark.parametrize(
    "overrides",
    [
        {"status": OrderStatus.DELIVERED},
        {"status": OrderStatus.CANCELLED},
        {"payment_method": PaymentMethod.COD, "cod_status": CodStatus.FAILED},
    ],
)
async def test_update_terminal_order_is_locked(uow, overrides):
    """Delivered, cancelled and failed orders can no longer be edited."""
    order = OrderFactory.create(**overrides)
    item = OrderItemFactory.create(order)
    uow.seed(order, item)

    with pytest.raises(OrderLockedError):
        await update_order(
            uow, order.id, OrderUpdateRequest(items=[_keep(item, quantity=5)]), ADMIN
        )

    assert item.quantity == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_update_rolls_back_on_invalid_item(uow, cod_order):
    """A bad item id undoes the field changes made earlier in the edit."""
    order, item, _ = cod_order

    with pytest.raises(ValidationFailedError):
        await update_order(
            uow,
            order.id,
            OrderUpdateRequest(
                items=[_keep(item), OrderItemInput(id=str(uuid.uuid4()), name="X", price=Decimal("1"), quantity=1)],
                admin_notes="should not stick",
            ),
            ADMIN,
        )

    assert order.admin_notes is None
    assert uow.commits == 0


@pytest.mark.asyncio
@pytest.mark.unit
async def test_update_parcel_failure_does_not_undo_edit(uow, cod_order):
    """Parcel errors are reported on the result; the order edit commits."""
    order, item, _ = cod_order
    uow.parcels.fail_with = RuntimeError("carrier store down")

    result = await update_order(
        uow,
        order.id,
        OrderUpdateRequest(items=[_keep(item, quantity=4)], shipping=Decimal("3")),
        ADMIN,
    )

    assert result.parcel_error is not None
    assert order.total == Decimal("43.00")
    assert item.quantity == 4
    assert uow.commits == 1
