"""Fulfillment Service models package."""

from services.fulfillment_service.models.commerce import (
    CarrierEvent,
    Order,
    OrderItem,
    Parcel,
)
from services.fulfillment_service.models.enums import (
    TERMINAL_COD_STATUSES,
    TERMINAL_ORDER_STATUSES,
    AuditAction,
    AuditEntityType,
    CodStatus,
    FileStatus,
    OrderStatus,
    PaymentMethod,
)
from services.fulfillment_service.models.files import AuditLog, TuningFile

__all__ = [
    "AuditAction",
    "AuditEntityType",
    "AuditLog",
    "CarrierEvent",
    "CodStatus",
    "FileStatus",
    "Order",
    "OrderItem",
    "OrderStatus",
    "Parcel",
    "PaymentMethod",
    "TERMINAL_COD_STATUSES",
    "TERMINAL_ORDER_STATUSES",
    "TuningFile",
]
