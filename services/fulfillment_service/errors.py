"""Exceptions raised by the fulfillment core.

Each carries the HTTP status the API layer answers with; webhook routes
acknowledge them instead of failing so the sender does not retry forever.
"""


class FulfillmentError(Exception):
    """Base exception for all fulfillment errors."""

    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationFailedError(FulfillmentError):
    """Raised when a payload is missing fields or carries unknown values."""

    status_code = 400


class InvalidTransitionError(ValidationFailedError):
    """Raised when a status change is not allowed from the current state."""

    def __init__(self, entity: str, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Invalid {entity} status transition from {current} to {target}")


class AuthorizationError(FulfillmentError):
    """Raised when a non-admin actor attempts an admin-only change."""

    status_code = 403

    def __init__(self, message: str = "Admin privileges required"):
        super().__init__(message)


class NotFoundError(FulfillmentError):
    """Raised when an order, file or parcel does not exist."""

    status_code = 404

    def __init__(self, entity: str, entity_id: object):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


class OrderLockedError(FulfillmentError):
    """Raised when editing an order that reached a terminal state."""

    status_code = 409

    def __init__(self, order_number: str, status: str):
        self.order_number = order_number
        super().__init__(f"Order {order_number} is {status} and can no longer be edited")
