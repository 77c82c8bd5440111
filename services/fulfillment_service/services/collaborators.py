"""Interfaces to the services that fulfillment hands work off to.

The core only depends on the protocols below. Production wiring uses the
HTTP clients, which call peer services through ``internal_post`` and raise
on non-2xx responses so ``run_best_effort`` records the failure.
"""

from dataclasses import dataclass
from typing import Any, Optional, Protocol

from libs.common.config import get_settings
from libs.common.service_client import internal_post
from services.fulfillment_service.services.carrier_client import (
    CarrierParcel,
    HttpCarrierClient,
)
from services.fulfillment_service.services.telegram_client import (
    TelegramFileAdminClient,
)

CALLING_SERVICE = "fulfillment"


class LicenseKeyService(Protocol):
    async def assign(
        self, product_id: str, order_id: str, user_id: Optional[str]
    ) -> Optional[str]: ...


class DownloadProvisioningService(Protocol):
    async def create_for_order(self, order_id: str) -> None: ...


class CourseEnrollmentService(Protocol):
    async def enroll_from_order(self, order_id: str) -> int: ...


class NotificationDispatcher(Protocol):
    async def notify_customer(self, user_id: str, event: str, data: dict) -> None: ...

    async def notify_admins(self, event: str, data: dict) -> None: ...


class RealtimePush(Protocol):
    async def send_to_user(self, user_id: str, event: str, data: dict) -> None: ...


class CarrierClient(Protocol):
    async def create_parcel(self, payload: dict) -> CarrierParcel: ...


class ChatBotClient(Protocol):
    async def answer_callback_query(
        self, callback_query_id: str, text: Optional[str] = None, show_alert: bool = False
    ) -> None: ...

    async def edit_message_text(
        self,
        chat_id: int,
        message_id: int,
        text: str,
        reply_markup: Optional[dict] = None,
    ) -> None: ...

    async def request_estimated_time(
        self, chat_id: int, file_id: str, filename: str
    ) -> None: ...


# ---------------------------------------------------------------------------
# HTTP implementations
# ---------------------------------------------------------------------------


async def _post(service_url: str, path: str, payload: dict) -> Any:
    response = await internal_post(
        service_url=service_url,
        path=path,
        calling_service=CALLING_SERVICE,
        json=payload,
    )
    response.raise_for_status()
    if not response.content:
        return None
    return response.json()


class HttpLicenseKeyService:
    async def assign(
        self, product_id: str, order_id: str, user_id: Optional[str]
    ) -> Optional[str]:
        data = await _post(
            get_settings().LICENSE_SERVICE_URL,
            "/internal/license-keys/assign",
            {"product_id": product_id, "order_id": order_id, "user_id": user_id},
        )
        return (data or {}).get("key")


class HttpDownloadProvisioningService:
    async def create_for_order(self, order_id: str) -> None:
        await _post(
            get_settings().DOWNLOADS_SERVICE_URL,
            "/internal/downloads/orders",
            {"order_id": order_id},
        )


class HttpCourseEnrollmentService:
    async def enroll_from_order(self, order_id: str) -> int:
        data = await _post(
            get_settings().COURSES_SERVICE_URL,
            "/internal/enrollments/from-order",
            {"order_id": order_id},
        )
        return int((data or {}).get("enrolled", 0))


class HttpNotificationDispatcher:
    async def notify_customer(self, user_id: str, event: str, data: dict) -> None:
        await _post(
            get_settings().NOTIFICATIONS_SERVICE_URL,
            "/internal/notifications/customer",
            {"user_id": user_id, "event": event, "data": data},
        )

    async def notify_admins(self, event: str, data: dict) -> None:
        await _post(
            get_settings().NOTIFICATIONS_SERVICE_URL,
            "/internal/notifications/admins",
            {"event": event, "data": data},
        )


class HttpRealtimePush:
    async def send_to_user(self, user_id: str, event: str, data: dict) -> None:
        await _post(
            get_settings().REALTIME_SERVICE_URL,
            "/internal/realtime/push",
            {"user_id": user_id, "event": event, "data": data},
        )


@dataclass
class Collaborators:
    licenses: LicenseKeyService
    downloads: DownloadProvisioningService
    courses: CourseEnrollmentService
    notifications: NotificationDispatcher
    realtime: RealtimePush
    chat: ChatBotClient
    carrier: CarrierClient


def get_collaborators() -> Collaborators:
    """FastAPI dependency wiring the HTTP-backed collaborators."""
    return Collaborators(
        licenses=HttpLicenseKeyService(),
        downloads=HttpDownloadProvisioningService(),
        courses=HttpCourseEnrollmentService(),
        notifications=HttpNotificationDispatcher(),
        realtime=HttpRealtimePush(),
        chat=TelegramFileAdminClient(),
        carrier=HttpCarrierClient(),
    )
