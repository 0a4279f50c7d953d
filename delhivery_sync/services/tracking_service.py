from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Optional


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def build_event(
    raw_status: str,
    mapped_status: str,
    *,
    occurred_at: Optional[str] = None,
    location: Optional[str] = None,
    remarks: Optional[str] = None,
    received_at: Optional[str] = None,
) -> dict:
    """
    Build a tracking_history entry.

    `timestamp` is the courier's event time when it sent one, else our receipt time.
    It is stored verbatim because dedup compares it as a string.
    """
    return {
        "status": raw_status,
        "mapped_status": mapped_status,
        "timestamp": occurred_at or received_at or now_iso(),
        "location": location or None,
        "remarks": remarks or None,
    }


def should_append(history: Optional[Iterable[Mapping[str, Any]]], candidate: Mapping[str, Any]) -> bool:
    """False iff an existing event has the same raw status and the same timestamp string."""
    for event in history or ():
        if not isinstance(event, Mapping):
            continue
        if event.get("status") == candidate.get("status") and event.get("timestamp") == candidate.get("timestamp"):
            return False
    return True


def repeats_last_event(history: Optional[Iterable[Mapping[str, Any]]], candidate: Mapping[str, Any]) -> bool:
    """
    True when the newest history entry has the same raw status, location and remarks.

    Used for updates without a courier event time, whose timestamp is our
    receipt time and so never matches on a retry.
    """
    entries = [e for e in (history or ()) if isinstance(e, Mapping)]
    if not entries:
        return False
    last = entries[-1]
    return all(last.get(key) == candidate.get(key) for key in ("status", "location", "remarks"))
