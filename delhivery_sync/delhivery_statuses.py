"""
Delhivery shipment status vocabulary and its mapping onto our internal statuses.

The keys of `DELHIVERY_STATUS_MAP` must match the strings Delhivery sends
exactly (case and punctuation included). Adding support for a new courier
status is a single entry in that table.
"""

from __future__ import annotations

import logging
import os
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional

logger = logging.getLogger(__name__)

PENDING_REVIEW = "pending_review"
APPROVED = "approved"
PLACED = "placed"
PENDING_PICKUP = "pending_pickup"
PICKED_UP = "picked_up"
IN_TRANSIT = "in_transit"
OUT_FOR_DELIVERY = "out_for_delivery"
DELIVERED = "delivered"
RTO_INITIATED = "rto_initiated"
RTO_DELIVERED = "rto_delivered"
FAILED = "failed"
CANCELLED = "cancelled"

# Lifecycle order.
VALID_STATUSES: List[str] = [
    PENDING_REVIEW,
    APPROVED,
    PLACED,
    PENDING_PICKUP,
    PICKED_UP,
    IN_TRANSIT,
    OUT_FOR_DELIVERY,
    DELIVERED,
    RTO_INITIATED,
    RTO_DELIVERED,
    FAILED,
    CANCELLED,
]

TERMINAL_STATUSES = frozenset({DELIVERED, CANCELLED, RTO_DELIVERED})

FALLBACK_STATUS = IN_TRANSIT

DELHIVERY_STATUS_MAP: Mapping[str, str] = MappingProxyType({
    # Forward shipments: Manifested -> Picked Up -> In Transit -> Delivered
    "Manifested": PLACED,
    "Booked": PLACED,
    "Not Picked": PENDING_PICKUP,
    "Pickup Scheduled": PENDING_PICKUP,
    "Picked Up": PICKED_UP,
    "In Transit": IN_TRANSIT,
    "Pending": IN_TRANSIT,  # at destination hub, not yet dispatched
    "Dispatched": OUT_FOR_DELIVERY,
    "Out for Delivery": OUT_FOR_DELIVERY,
    "Delivered": DELIVERED,
    # Return to origin
    "RTO Initiated": RTO_INITIATED,
    "RTO": RTO_DELIVERED,
    "RTO Delivered": RTO_DELIVERED,
    "Undelivered": FAILED,
    # Reverse pickups: Open -> Scheduled -> Picked Up -> DTO
    "Open": PENDING_PICKUP,
    "Scheduled": PENDING_PICKUP,
    "DTO": DELIVERED,  # delivered to origin
    # Cancellation
    "Cancelled": CANCELLED,
    "Canceled": CANCELLED,
    "Closed": CANCELLED,
})

STATUS_DISPLAY: Dict[str, dict] = {
    PENDING_REVIEW: {"label": "Under Review", "description": "Your order is being reviewed by our team", "icon": "⏳", "color": "yellow", "progress": 10},
    APPROVED: {"label": "Approved", "description": "Order approved, placing with courier...", "icon": "✅", "color": "blue", "progress": 20},
    PLACED: {"label": "Order Confirmed", "description": "Shipment created with courier, waiting for pickup", "icon": "📋", "color": "blue", "progress": 30},
    PENDING_PICKUP: {"label": "Pickup Scheduled", "description": "Courier will pick up your order soon", "icon": "📅", "color": "blue", "progress": 40},
    PICKED_UP: {"label": "Picked Up", "description": "Package picked up by courier", "icon": "📦", "color": "green", "progress": 50},
    IN_TRANSIT: {"label": "In Transit", "description": "Your package is on the way", "icon": "🚚", "color": "green", "progress": 70},
    OUT_FOR_DELIVERY: {"label": "Out for Delivery", "description": "Package is out for delivery today", "icon": "🚴", "color": "green", "progress": 90},
    DELIVERED: {"label": "Delivered", "description": "Package delivered successfully", "icon": "✅", "color": "green", "progress": 100},
    RTO_INITIATED: {"label": "Return Initiated", "description": "Package is being returned to origin", "icon": "↩️", "color": "orange", "progress": 60},
    RTO_DELIVERED: {"label": "Returned", "description": "Package returned to warehouse", "icon": "📦", "color": "orange", "progress": 100},
    FAILED: {"label": "Delivery Failed", "description": "Delivery attempt unsuccessful", "icon": "❌", "color": "red", "progress": 80},
    CANCELLED: {"label": "Cancelled", "description": "Shipment has been cancelled", "icon": "🚫", "color": "gray", "progress": 0},
}

_FALLBACK_DISPLAY = {"label": "Processing", "description": "Order is being processed", "icon": "⏳", "color": "gray", "progress": 50}


def map_status(courier_status: Optional[str]) -> str:
    """
    Map a Delhivery status string onto an internal status.

    Empty or unknown strings map to `in_transit` with a warning; this never raises.
    """
    if not courier_status:
        logger.warning("Empty Delhivery status received, defaulting to %s", FALLBACK_STATUS)
        return FALLBACK_STATUS

    mapped = DELHIVERY_STATUS_MAP.get(courier_status)
    if mapped is None:
        logger.warning(
            "Unknown Delhivery status %r, defaulting to %s. Add it to DELHIVERY_STATUS_MAP if it is a valid status.",
            courier_status,
            FALLBACK_STATUS,
        )
        return FALLBACK_STATUS

    if str(os.getenv("LOG_STATUS_MAPPING", "")).strip().lower() == "true":
        logger.info("Delhivery status %r -> %s", courier_status, mapped)
    return mapped


def is_terminal(status: Optional[str]) -> bool:
    return status in TERMINAL_STATUSES


def get_status_display(status: Optional[str]) -> dict:
    return dict(STATUS_DISPLAY.get(status or "", _FALLBACK_DISPLAY))


def get_valid_statuses() -> List[str]:
    return list(VALID_STATUSES)
