"""Fulfillment commerce models: orders, order items, carrier parcels, carrier events."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from services.fulfillment_service.models.enums import (
    TERMINAL_COD_STATUSES,
    TERMINAL_ORDER_STATUSES,
    CodStatus,
    OrderStatus,
    PaymentMethod,
    enum_values,
)
from sqlalchemy import Boolean, CheckConstraint, DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

# ============================================================================
# ORDER MODELS
# ============================================================================


class Order(Base):
    """Orders."""

    __tablename__ = "fulfillment_orders"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    order_number: Mapped[str] = mapped_column(
        String(20), unique=True, nullable=False, index=True
    )

    # Customer (user_id is null for guest checkout)
    user_id: Mapped[Optional[str]] = mapped_column(
        String(255), index=True, nullable=True
    )
    customer_first: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    customer_last: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    customer_phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    customer_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    payment_method: Mapped[PaymentMethod] = mapped_column(
        SAEnum(
            PaymentMethod,
            values_callable=enum_values,
            name="fulfillment_payment_method_enum",
        ),
        default=PaymentMethod.ONLINE,
        server_default="online",
    )

    # Pricing, always derived from items server-side
    subtotal: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), default=0, server_default="0"
    )
    shipping: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), default=0, server_default="0"
    )
    tax: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, server_default="0")
    discount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), default=0, server_default="0"
    )
    total: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), default=0, server_default="0"
    )

    # Cents mirrors read by the COD back-office
    subtotal_cents: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    total_cents: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Status
    status: Mapped[OrderStatus] = mapped_column(
        SAEnum(
            OrderStatus,
            values_callable=enum_values,
            name="fulfillment_order_status_enum",
        ),
        default=OrderStatus.PENDING,
        server_default="pending",
    )
    cod_status: Mapped[Optional[CodStatus]] = mapped_column(
        SAEnum(
            CodStatus,
            values_callable=enum_values,
            name="fulfillment_cod_status_enum",
        ),
        nullable=True,
    )

    # Shipping
    shipping_address: Mapped[Optional[dict]] = mapped_column(
        JSONB, nullable=True
    )  # {"address1": "...", "address2": "...", "city": "...", "state": "..."}
    shipping_method: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    tracking_number: Mapped[Optional[str]] = mapped_column(
        String(100), index=True, nullable=True
    )
    estimated_delivery: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Notes
    customer_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    admin_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Timestamps
    shipped_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    delivered_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    # Set once by the completion pipeline; doubles as its idempotency marker
    fulfillment_completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    # Relationships
    items = relationship(
        "OrderItem", back_populates="order", cascade="all, delete-orphan"
    )
    parcel = relationship("Parcel", back_populates="order", uselist=False)

    @property
    def is_cod(self) -> bool:
        return self.payment_method == PaymentMethod.COD

    @property
    def display_status(self) -> str:
        """COD orders surface the carrier workflow status to customers."""
        if self.is_cod:
            return (self.cod_status or CodStatus.PENDING).value
        return self.status.value

    @property
    def is_terminal(self) -> bool:
        if self.status in TERMINAL_ORDER_STATUSES:
            return True
        return self.is_cod and self.cod_status in TERMINAL_COD_STATUSES

    def __repr__(self):
        return f"<Order {self.order_number}>"


class OrderItem(Base):
    """Order line items (snapshot at order time)."""

    __tablename__ = "fulfillment_order_items"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("fulfillment_orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    product_id: Mapped[str] = mapped_column(String(100), nullable=False)

    # Snapshot at order time (products may change)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    sku: Mapped[str] = mapped_column(String(100), default="", server_default="")
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    is_virtual: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("quantity >= 1", name="fulfillment_item_positive_quantity"),
    )

    order = relationship("Order", back_populates="items")

    @property
    def line_total(self) -> Decimal:
        return Decimal(self.price) * self.quantity

    def __repr__(self):
        return f"<OrderItem {self.name} qty={self.quantity}>"


# ============================================================================
# CARRIER MODELS
# ============================================================================


class Parcel(Base):
    """Carrier shipment record mirroring a COD order's delivery fields."""

    __tablename__ = "fulfillment_parcels"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    # Unique so concurrent creators cannot attach two parcels to one order
    order_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("fulfillment_orders.id", ondelete="SET NULL"),
        unique=True,
        nullable=True,
    )
    # Carrier-side order reference; older parcels only carry this one
    legacy_order_id: Mapped[Optional[str]] = mapped_column(
        String(100), index=True, nullable=True
    )

    # Recipient
    firstname: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    familyname: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    contact_phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    address: Mapped[str] = mapped_column(String(500), nullable=False)
    to_wilaya_name: Mapped[str] = mapped_column(String(100), nullable=False)
    to_commune_name: Mapped[str] = mapped_column(String(100), nullable=False)

    # Delivery options
    is_stopdesk: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false"
    )
    stopdesk_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    freeshipping: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false"
    )

    # Carrier-facing content (carrier API takes whole currency units)
    product_list: Mapped[str] = mapped_column(String(240), nullable=False)
    price: Mapped[int] = mapped_column(Integer, nullable=False)

    # Carrier state
    status: Mapped[str] = mapped_column(
        String(100), default="PENDING", server_default="PENDING"
    )
    tracking: Mapped[Optional[str]] = mapped_column(
        String(100), index=True, nullable=True
    )
    label_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    last_payload: Mapped[Optional[dict]] = mapped_column(JSONB, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        Index("ix_fulfillment_parcels_recipient", "firstname", "familyname"),
        Index("ix_fulfillment_parcels_contact_phone", "contact_phone"),
    )

    order = relationship("Order", back_populates="parcel")

    def __repr__(self):
        return f"<Parcel {self.id} order={self.order_id} price={self.price}>"


class CarrierEvent(Base):
    """Carrier webhook events, stored once per carrier event id."""

    __tablename__ = "fulfillment_carrier_events"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    payload: Mapped[Optional[dict]] = mapped_column(JSONB, nullable=True)
    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )

    def __repr__(self):
        return f"<CarrierEvent {self.id} {self.type}>"
