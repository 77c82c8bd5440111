"""Enum definitions for fulfillment service models."""

import enum


def enum_values(enum_cls):
    """Return persistent DB values for SAEnum mappings."""
    return [member.value for member in enum_cls]


class PaymentMethod(str, enum.Enum):
    COD = "cod"
    ONLINE = "online"
    FREE = "free"


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class CodStatus(str, enum.Enum):
    PENDING = "pending"
    SUBMITTED = "submitted"
    DISPATCHED = "dispatched"
    DELIVERED = "delivered"
    FAILED = "failed"
    CANCELLED = "cancelled"


class FileStatus(str, enum.Enum):
    RECEIVED = "received"
    PENDING = "pending"
    READY = "ready"


class AuditEntityType(str, enum.Enum):
    FILE = "file"
    ORDER = "order"


class AuditAction(str, enum.Enum):
    STATUS_CHANGE = "STATUS_CHANGE"
    ESTIMATED_TIME_SET = "ESTIMATED_TIME_SET"


TERMINAL_ORDER_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})
TERMINAL_COD_STATUSES = frozenset(
    {CodStatus.DELIVERED, CodStatus.FAILED, CodStatus.CANCELLED}
)
