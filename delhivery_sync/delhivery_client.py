import httpx
import logging
from typing import Any, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)


class DelhiveryAPIError(Exception):
    pass


def _opt_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


def parse_tracking_response(data: Any) -> List[Dict[str, Optional[str]]]:
    """
    Flatten a /api/v1/packages/json/ response into webhook-shaped scan records.

    Each record carries the same keys as an inbound webhook body
    (waybill, status, status_datetime, location, remarks, expected_delivery_date)
    so both paths feed the reconciler identically.
    """
    if not isinstance(data, dict):
        return []

    out: List[Dict[str, Optional[str]]] = []
    for item in data.get("ShipmentData") or []:
        shipment = item.get("Shipment") if isinstance(item, dict) else None
        if not isinstance(shipment, dict):
            continue
        waybill = _opt_str(shipment.get("AWB") or shipment.get("Waybill"))
        status = shipment.get("Status") or {}
        if not waybill or not isinstance(status, dict):
            continue

        expected = _opt_str(shipment.get("ExpectedDeliveryDate") or shipment.get("PromisedDeliveryDate"))
        out.append({
            "waybill": waybill,
            "status": _opt_str(status.get("Status")),
            "status_datetime": _opt_str(status.get("StatusDateTime")),
            "location": _opt_str(status.get("StatusLocation")),
            "remarks": _opt_str(status.get("Instructions")),
            "expected_delivery_date": expected[:10] if expected else None,
        })
    return out


class DelhiveryClient:
    def __init__(self, base_url: str, token: Optional[str], *, timeout: float = 30.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = (base_url or "https://track.delhivery.com").rstrip("/")
        self.token = token
        self.timeout = timeout
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.token)

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Token {self.token}",
            "accept": "application/json",
        }

    async def track(self, waybills: Iterable[str]) -> List[Dict[str, Optional[str]]]:
        """Fetch the latest scan for up to 50 waybills in one call."""
        awbs = [str(w).strip() for w in waybills if str(w or "").strip()]
        if not awbs:
            return []

        url = f"{self.base_url}/api/v1/packages/json/"
        params = {"waybill": ",".join(awbs)}
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            try:
                response = await client.get(url, params=params, headers=self._headers())
                response.raise_for_status()
                data = response.json() if response.content else {}
            except httpx.HTTPStatusError as e:
                logger.error(f"Delhivery tracking failed ({e.response.status_code}): {e.response.text}")
                raise DelhiveryAPIError(f"Delhivery tracking failed: {e.response.status_code}") from e
            except (httpx.HTTPError, ValueError) as e:
                logger.error(f"Delhivery tracking error: {str(e)}")
                raise DelhiveryAPIError(f"Delhivery tracking error: {str(e)}") from e

        return parse_tracking_response(data)
