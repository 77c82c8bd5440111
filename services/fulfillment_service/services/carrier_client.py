"""
Carrier API client for submitting COD parcels.

Parcels are created with a POST of a one-element JSON array to
``{CARRIER_API_URL}parcels``. The carrier answers with either a list, a
``{"parcels": [...]}`` envelope or a bare object keyed by order reference;
``parse_created_parcel`` flattens all of them.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

import httpx
from libs.common.config import get_settings
from libs.common.logging import get_logger
from services.fulfillment_service.models import Parcel

logger = get_logger(__name__)

# Fixed package weight (kg) so the carrier applies its oversize rules
DEFAULT_WEIGHT_KG = 1


@dataclass
class CarrierParcel:
    """Tracking details returned for a created parcel."""

    tracking: Optional[str]
    label_url: Optional[str]
    status: str
    raw: Any = field(default=None, repr=False)


class CarrierError(Exception):
    """Raised when the carrier API rejects a request or is unreachable."""

    def __init__(self, message: str, status_code: int = None, response_data: Any = None):
        self.message = message
        self.status_code = status_code
        self.response_data = response_data
        super().__init__(message)


def parcel_payload(parcel: Parcel, order_reference: str) -> dict:
    """Build the carrier create-parcel body from a stored parcel."""
    payload = {
        "order_id": parcel.legacy_order_id or order_reference,
        "firstname": parcel.firstname,
        "familyname": parcel.familyname,
        "contact_phone": parcel.contact_phone,
        "address": parcel.address,
        "to_wilaya_name": parcel.to_wilaya_name,
        "to_commune_name": parcel.to_commune_name,
        "product_list": parcel.product_list,
        "price": parcel.price,
        "weight": DEFAULT_WEIGHT_KG,
        "is_stopdesk": parcel.is_stopdesk,
        "freeshipping": parcel.freeshipping,
        "do_insurance": True,
    }
    if parcel.stopdesk_id:
        payload["stopdesk_id"] = parcel.stopdesk_id
    return payload


def _first_entry(raw: Any) -> dict:
    if isinstance(raw, list):
        first = raw[0] if raw else {}
    elif isinstance(raw, dict) and isinstance(raw.get("parcels"), list):
        first = raw["parcels"][0] if raw["parcels"] else {}
    else:
        first = raw
    if not isinstance(first, dict):
        return {}
    # Responses keyed by order reference wrap the parcel one level deeper
    if "tracking" not in first and "status" not in first and first:
        nested = next(iter(first.values()))
        if isinstance(nested, dict):
            return nested
    return first


def parse_created_parcel(raw: Any) -> CarrierParcel:
    entry = _first_entry(raw)
    tracking = entry.get("tracking") or entry.get("tracking_code") or entry.get("tracking_number")
    label_url = entry.get("label_url") or entry.get("labelUrl") or entry.get("label")
    status = entry.get("status") or ("created" if entry.get("success") else "pending")
    return CarrierParcel(tracking=tracking, label_url=label_url, status=str(status), raw=raw)


class HttpCarrierClient:
    """Async client for the carrier's parcel API."""

    def __init__(
        self,
        api_id: Optional[str] = None,
        api_token: Optional[str] = None,
        api_url: Optional[str] = None,
    ):
        settings = get_settings()
        self.api_id = api_id if api_id is not None else settings.CARRIER_API_ID
        self.api_token = api_token if api_token is not None else settings.CARRIER_API_TOKEN
        self.api_url = api_url or settings.CARRIER_API_URL
        self.timeout = settings.SERVICE_HTTP_TIMEOUT
        self._headers = {
            "X-API-ID": self.api_id,
            "X-API-TOKEN": self.api_token,
            "Content-Type": "application/json",
        }

    async def _request(self, method: str, endpoint: str, json_data: Any = None) -> Any:
        if not (self.api_id and self.api_token):
            raise CarrierError("Carrier API credentials are not configured")

        url = f"{self.api_url}{endpoint}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.request(
                    method=method, url=url, headers=self._headers, json=json_data
                )
        except httpx.HTTPError as e:
            raise CarrierError(f"Carrier API unreachable: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = response.text

        if not response.is_success:
            logger.error("Carrier API error: %s - %s", response.status_code, data)
            message = data.get("message") if isinstance(data, dict) else None
            raise CarrierError(
                message=message or f"Carrier API returned {response.status_code}",
                status_code=response.status_code,
                response_data=data,
            )
        return data

    async def create_parcel(self, payload: dict) -> CarrierParcel:
        data = await self._request("POST", "parcels", json_data=[payload])
        created = parse_created_parcel(data)
        if not created.tracking:
            raise CarrierError("Carrier response carried no tracking number", response_data=data)
        return created
