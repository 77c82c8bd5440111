"""Reusable async HTTP client for internal service-to-service communication.

Calls to collaborating services (license keys, downloads, courses,
notifications, realtime push) go through these helpers so they carry a
service token and the current request id.
"""

from __future__ import annotations

from typing import Any, Optional

import httpx
from libs.auth.dependencies import _service_role_jwt
from libs.common.config import get_settings
from libs.common.logging import get_logger, get_request_id

logger = get_logger(__name__)


def _default_timeout() -> float:
    return get_settings().SERVICE_HTTP_TIMEOUT


async def internal_request(
    *,
    service_url: str,
    method: str,
    path: str,
    calling_service: str,
    json: Any = None,
    params: Optional[dict] = None,
    timeout: Optional[float] = None,
) -> httpx.Response:
    """Make an authenticated internal service-to-service HTTP call.

    Args:
        service_url: Base URL of the target service (e.g. settings.LICENSE_SERVICE_URL).
        method: HTTP method (GET, POST, DELETE, …).
        path: URL path on the target service (e.g. "/internal/license-keys/assign").
        calling_service: Name of the calling service for the JWT "sub" claim.
        json: Optional JSON body.
        params: Optional query parameters.
        timeout: Request timeout in seconds; defaults to SERVICE_HTTP_TIMEOUT.

    Returns:
        The httpx.Response object.

    Raises:
        httpx.RequestError on connection failures.
    """
    url = f"{service_url}{path}"
    headers = {
        "Authorization": f"Bearer {_service_role_jwt(calling_service)}",
        "X-Caller-Service": calling_service,
    }
    request_id = get_request_id()
    if request_id:
        headers["X-Request-ID"] = request_id

    async with httpx.AsyncClient(timeout=timeout or _default_timeout()) as client:
        response = await client.request(
            method,
            url,
            headers=headers,
            json=json,
            params=params,
        )
    if response.status_code >= 500:
        logger.warning(
            "Internal call %s %s returned %s", method, url, response.status_code
        )
    return response


async def internal_post(
    *,
    service_url: str,
    path: str,
    calling_service: str,
    json: Any = None,
    timeout: Optional[float] = None,
) -> httpx.Response:
    """Convenience wrapper for POST requests."""
    return await internal_request(
        service_url=service_url,
        method="POST",
        path=path,
        calling_service=calling_service,
        json=json,
        timeout=timeout,
    )
