"""Pydantic schemas for fulfillment service."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from services.fulfillment_service.models import (
    CodStatus,
    FileStatus,
    OrderStatus,
    PaymentMethod,
)

TEMP_ITEM_PREFIX = "temp-"

# ============================================================================
# ORDER EDIT SCHEMAS
# ============================================================================


class OrderItemInput(BaseModel):
    """One line of the full desired item list submitted by an order edit."""

    id: Optional[str] = None  # persisted id, or "temp-..." for unsaved lines
    product_id: Optional[str] = Field(None, max_length=100)
    name: str = Field(..., min_length=1, max_length=255)
    sku: Optional[str] = Field(None, max_length=100)
    price: Decimal = Field(..., ge=0)
    quantity: int = Field(..., ge=1)
    is_virtual: bool = False  # honoured on creation only; edits derive it from the order

    @property
    def is_new(self) -> bool:
        return not self.id or self.id.startswith(TEMP_ITEM_PREFIX)


class ShippingAddress(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    company: Optional[str] = None
    address1: str = Field(..., max_length=255)
    address2: Optional[str] = Field(None, max_length=255)
    city: Optional[str] = Field(None, max_length=100)  # carrier commune
    state: Optional[str] = Field(None, max_length=100)  # carrier wilaya
    postal_code: Optional[str] = None
    country: Optional[str] = None
    phone: Optional[str] = None

    @property
    def street(self) -> str:
        if self.address2:
            return f"{self.address1}, {self.address2}"
        return self.address1


class ShippingOptions(BaseModel):
    """Carrier overrides; only explicitly provided fields are applied."""

    delivery_type: Optional[Literal["stopdesk", "home"]] = None
    wilaya: Optional[str] = None
    commune: Optional[str] = None
    free_shipping: Optional[bool] = None
    stopdesk_id: Optional[int] = None


class OrderUpdateRequest(BaseModel):
    """Admin order edit. Client subtotal/total are accepted but never trusted."""

    customer_first: Optional[str] = None
    customer_last: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_email: Optional[str] = None
    items: list[OrderItemInput] = Field(..., min_length=1)
    subtotal: Optional[Decimal] = None  # ignored, recomputed
    shipping: Decimal = Field(Decimal("0"), ge=0)
    tax: Decimal = Field(Decimal("0"), ge=0)
    discount: Decimal = Field(Decimal("0"), ge=0)
    total: Optional[Decimal] = None  # ignored, recomputed
    customer_notes: Optional[str] = None
    admin_notes: Optional[str] = None
    shipping_address: Optional[ShippingAddress] = None
    shipping_method: Optional[str] = None
    tracking_number: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    shipping_options: Optional[ShippingOptions] = None


class OrderCreateRequest(BaseModel):
    """Order creation from checkout (service-to-service)."""

    user_id: Optional[str] = None
    customer_first: str = Field(..., min_length=1)
    customer_last: str = Field(..., min_length=1)
    customer_phone: str = Field(..., min_length=1)
    customer_email: Optional[str] = None
    payment_method: PaymentMethod = PaymentMethod.ONLINE
    items: list[OrderItemInput] = Field(..., min_length=1)
    shipping: Decimal = Field(Decimal("0"), ge=0)
    tax: Decimal = Field(Decimal("0"), ge=0)
    discount: Decimal = Field(Decimal("0"), ge=0)
    customer_notes: Optional[str] = None
    shipping_address: Optional[ShippingAddress] = None
    shipping_options: Optional[ShippingOptions] = None


# ============================================================================
# ORDER RESPONSE SCHEMAS
# ============================================================================


class OrderItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    product_id: str
    name: str
    sku: str
    price: Decimal
    quantity: int
    unit_price_cents: int
    is_virtual: bool


class ParcelResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    order_id: Optional[uuid.UUID]
    firstname: Optional[str]
    familyname: Optional[str]
    contact_phone: Optional[str]
    address: str
    to_wilaya_name: str
    to_commune_name: str
    is_stopdesk: bool
    stopdesk_id: Optional[int]
    freeshipping: bool
    product_list: str
    price: int
    status: str
    tracking: Optional[str]


class OrderSummary(BaseModel):
    """Order columns without lines; safe to build from a detached order."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    order_number: str
    user_id: Optional[str]
    payment_method: PaymentMethod
    status: OrderStatus
    cod_status: Optional[CodStatus]
    display_status: str

    customer_first: Optional[str]
    customer_last: Optional[str]
    customer_phone: Optional[str]
    customer_email: Optional[str]

    subtotal: Decimal
    shipping: Decimal
    tax: Decimal
    discount: Decimal
    total: Decimal

    shipping_address: Optional[dict]
    shipping_method: Optional[str]
    tracking_number: Optional[str]
    customer_notes: Optional[str]
    admin_notes: Optional[str]

    delivered_at: Optional[datetime]
    fulfillment_completed_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime


class OrderResponse(OrderSummary):
    items: list[OrderItemResponse] = []


class OrderUpdateResponse(BaseModel):
    success: bool = True
    message: str = "Order updated successfully"
    order: OrderResponse
    parcel: Optional[ParcelResponse] = None
    parcel_sync_error: Optional[str] = None


# ============================================================================
# STATUS SCHEMAS
# ============================================================================


class OrderStatusUpdate(BaseModel):
    """Update order status (admin). COD orders map the value onto cod_status."""

    status: str = Field(..., min_length=1, max_length=20)
    admin_notes: Optional[str] = None


class FileStatusUpdate(BaseModel):
    """Update file status and/or set a processing estimate (admin).

    ``status`` accepts the wire names used by the chat bot (``READY``) as
    well as the stored values (``ready``).
    """

    status: Optional[str] = Field(None, min_length=1, max_length=20)
    estimated_processing_time: Optional[int] = Field(None, ge=1, le=1440)

    @model_validator(mode="after")
    def require_change(self) -> "FileStatusUpdate":
        if self.status is None and self.estimated_processing_time is None:
            raise ValueError("Provide a status or an estimated_processing_time")
        return self


class OrderStatusChangeResponse(BaseModel):
    order: OrderSummary
    old_status: Optional[str]
    new_status: Optional[str]
    changed: bool


class FileStatusResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    status: FileStatus
    estimated_processing_time: Optional[int]
    estimated_processing_time_set_at: Optional[datetime]
    updated_at: datetime


# ============================================================================
# COMPLETION SCHEMAS
# ============================================================================


class OrderCompleteRequest(BaseModel):
    user_id: Optional[str] = None


class CompletionReportResponse(BaseModel):
    order_id: uuid.UUID
    already_completed: bool
    downloads_provisioned: bool
    courses_enrolled: int
    license_keys_assigned: int
    license_key_failures: int
    auto_delivered: bool


class WebhookAck(BaseModel):
    ok: bool
    message: Optional[str] = None
    error: Optional[str] = None
    received: Optional[int] = None
    applied: Optional[int] = None
