"""Telegram Bot API client for the file-admin chat bot."""

from typing import Any, Optional

import httpx
from libs.common.config import get_settings
from libs.common.datetime_utils import humanize_minutes
from libs.common.logging import get_logger

logger = get_logger(__name__)

# Minutes offered by the estimated-time picker, three buttons per row
ESTIMATED_TIME_CHOICES = (5, 10, 15, 20, 30, 45, 60, 120, 240, 1440)


def estimated_time_keyboard(file_id: str) -> dict:
    buttons = [
        {"text": humanize_minutes(m), "callback_data": f"file_admin_time_{file_id}_{m}"}
        for m in ESTIMATED_TIME_CHOICES
    ]
    rows = [buttons[i : i + 3] for i in range(0, len(buttons), 3)]
    rows.append([{"text": "❌ Cancel", "callback_data": f"file_admin_cancel_{file_id}"}])
    return {"inline_keyboard": rows}


def file_status_keyboard(file_id: str, status: str, time_set: bool = False) -> dict:
    """Action buttons shown under a file-admin message once a status is set."""
    ready = "✅ READY" if status == "READY" else "✅ Set to READY"
    if time_set:
        pending = "⏳ PENDING (Time Set)"
    else:
        pending = "⏳ PENDING" if status == "PENDING" else "⏳ Set to PENDING"
    return {
        "inline_keyboard": [
            [{"text": ready, "callback_data": f"file_admin_status_{file_id}_READY"}],
            [{"text": pending, "callback_data": f"file_admin_status_{file_id}_PENDING"}],
            [
                {
                    "text": "⏰ Change Time" if time_set else "⏰ Set Estimated Time",
                    "callback_data": f"file_admin_estimated_time_{file_id}",
                }
            ],
        ]
    }


def file_status_message(
    file_id: str,
    filename: str,
    status: str,
    time_text: Optional[str] = None,
) -> str:
    title = "Time Set" if time_text else "Status Updated"
    lines = [
        f"📁 <b>File Upload - {title}</b>",
        "",
        f"📄 <b>File:</b> {filename}",
        f"📊 <b>Status:</b> {status}",
    ]
    if time_text:
        lines.append(f"⏰ <b>Estimated Time:</b> {time_text}")
    lines += [
        "",
        f'🔗 <a href="{get_settings().FRONTEND_URL}/admin/files/{file_id}">View in Admin Panel</a>',
    ]
    return "\n".join(lines)


class TelegramFileAdminClient:
    """Thin wrapper over the Bot API methods the file-admin flow needs."""

    def __init__(self, token: Optional[str] = None, api_url: Optional[str] = None):
        settings = get_settings()
        self.token = token if token is not None else settings.TELEGRAM_FILE_ADMIN_BOT_TOKEN
        self.api_url = api_url or settings.TELEGRAM_API_URL
        self.timeout = settings.SERVICE_HTTP_TIMEOUT

    async def _call(self, method: str, payload: dict) -> Any:
        if not self.token:
            logger.warning("File-admin bot token not configured, skipping %s", method)
            return None
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(
                f"{self.api_url}/bot{self.token}/{method}", json=payload
            )
        response.raise_for_status()
        return response.json()

    async def answer_callback_query(
        self, callback_query_id: str, text: Optional[str] = None, show_alert: bool = False
    ) -> None:
        payload = {"callback_query_id": callback_query_id, "show_alert": show_alert}
        if text:
            payload["text"] = text
        await self._call("answerCallbackQuery", payload)

    async def edit_message_text(
        self,
        chat_id: int,
        message_id: int,
        text: str,
        reply_markup: Optional[dict] = None,
    ) -> None:
        payload = {
            "chat_id": chat_id,
            "message_id": message_id,
            "text": text,
            "parse_mode": "HTML",
        }
        if reply_markup:
            payload["reply_markup"] = reply_markup
        await self._call("editMessageText", payload)

    async def request_estimated_time(self, chat_id: int, file_id: str, filename: str) -> None:
        text = "\n".join(
            [
                "⏰ <b>Set Estimated Time</b>",
                "",
                f"📄 <b>File:</b> {filename}",
                "",
                "Please select the estimated processing time:",
            ]
        )
        await self._call(
            "sendMessage",
            {
                "chat_id": chat_id,
                "text": text,
                "parse_mode": "HTML",
                "reply_markup": estimated_time_keyboard(file_id),
            },
        )
