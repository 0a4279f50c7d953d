from pydantic import BaseModel
from typing import Optional, List, Any
from datetime import datetime


def _opt_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


class TrackingEvent(BaseModel):
    status: str
    mapped_status: str
    timestamp: str
    location: Optional[str] = None
    remarks: Optional[str] = None


class DelhiveryWebhookPayload(BaseModel):
    """Fields we read from a Delhivery push; anything else in the body is ignored."""

    waybill: Optional[str] = None
    status: Optional[str] = None
    status_datetime: Optional[str] = None
    location: Optional[str] = None
    expected_delivery_date: Optional[str] = None
    remarks: Optional[str] = None

    @classmethod
    def from_body(cls, body: dict) -> "DelhiveryWebhookPayload":
        # Delhivery is loose about types (numeric waybills, nulls), so coerce instead of validating.
        return cls(**{name: _opt_str(body.get(name)) for name in cls.model_fields})

    def missing_required(self) -> bool:
        return not self.waybill or not self.status


class WebhookAck(BaseModel):
    success: bool = True
    message: str


class ErrorResponse(BaseModel):
    success: bool = False
    error: str


class HealthResponse(BaseModel):
    success: bool
    message: str
    timestamp: datetime
    recent_syncs: int
    last_sync: Optional[datetime] = None


class ShipmentActivity(BaseModel):
    awb: str
    current_status: Optional[str] = None
    last_update: Optional[datetime] = None
    last_sync: Optional[datetime] = None
    events_count: int = 0
    recent_events: List[dict] = []


class WebhookLogsResponse(BaseModel):
    success: bool = True
    message: str = "Recent webhook activity"
    total: int
    shipments: List[ShipmentActivity]


class StatusDisplaySchema(BaseModel):
    status: str
    label: str
    description: str
    icon: str
    color: str
    progress: int
    terminal: bool


class SimulateWebhookRequest(BaseModel):
    status: Optional[str] = None
