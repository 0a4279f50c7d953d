"""
Merge a courier status update into the stored shipment.

Used by the webhook handler (after the 200 has been sent), the development
simulation endpoints and the polling sync. Nothing here raises to the
caller: every failure is logged and reported as a `ReconcileOutcome`.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
import logging
from typing import Callable, Optional
import weakref

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

try:
    from .. import database, delhivery_statuses
except ImportError:  # pragma: no cover
    import database, delhivery_statuses  # type: ignore

try:
    from . import shipments_service, tracking_service
except ImportError:  # pragma: no cover
    import shipments_service, tracking_service  # type: ignore

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3


class ReconcileOutcome(str, Enum):
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    NOT_FOUND = "not_found"
    FAILED = "failed"


@dataclass(frozen=True)
class StatusUpdate:
    tracking_number: str
    raw_status: str
    occurred_at: Optional[str] = None
    location: Optional[str] = None
    remarks: Optional[str] = None
    expected_delivery_date: Optional[str] = None


# One lock per AWB, dropped automatically once nobody holds or waits on it.
_awb_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()


def _lock_for(awb: str) -> asyncio.Lock:
    lock = _awb_locks.get(awb)
    if lock is None:
        lock = asyncio.Lock()
        _awb_locks[awb] = lock
    return lock


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _apply_update(db: Session, update: StatusUpdate) -> ReconcileOutcome:
    shipment = shipments_service.get_by_awb(db, update.tracking_number)
    if shipment is None:
        logger.warning("Shipment not found for AWB %s, ignoring Delhivery update", update.tracking_number)
        return ReconcileOutcome.NOT_FOUND

    mapped = delhivery_statuses.map_status(update.raw_status)
    logger.info(
        "Delhivery update for %s (shipment %s, order %s): %r -> %s",
        update.tracking_number,
        shipment.id,
        shipment.order_id,
        update.raw_status,
        mapped,
    )

    received = _now_utc()
    event = tracking_service.build_event(
        update.raw_status,
        mapped,
        occurred_at=update.occurred_at,
        location=update.location,
        remarks=update.remarks,
        received_at=received.isoformat(),
    )
    history = list(shipment.tracking_history or [])
    append = tracking_service.should_append(history, event)
    if append and not update.occurred_at and tracking_service.repeats_last_event(history, event):
        append = False

    current = shipment.status
    guarded = mapped != current and delhivery_statuses.is_terminal(current)
    new_status = current if guarded else mapped
    if new_status == current and not append:
        logger.info("Status unchanged and event already recorded for %s, skipping update", update.tracking_number)
        return ReconcileOutcome.UNCHANGED

    if guarded:
        logger.warning(
            "Shipment %s is already %s; recording %r in history without changing status",
            update.tracking_number,
            current,
            update.raw_status,
        )

    if append:
        history.append(event)
    else:
        logger.info("Duplicate tracking event for %s, not appending", update.tracking_number)

    expected = shipments_service.parse_delivery_date(update.expected_delivery_date)
    if update.expected_delivery_date and expected is None:
        logger.warning(
            "Unparsable expected_delivery_date %r for %s, keeping stored value",
            update.expected_delivery_date,
            update.tracking_number,
        )

    shipments_service.apply_tracking_update(
        db,
        shipment,
        status=new_status,
        tracking_history=history,
        expected_delivery_date=expected,
        last_sync_at=received.replace(tzinfo=None),
    )
    logger.info("Updated %s: %r -> %s", update.tracking_number, update.raw_status, new_status)
    return ReconcileOutcome.UPDATED


def _reconcile_sync(update: StatusUpdate, session_factory: Callable[[], Session]) -> ReconcileOutcome:
    """NOTE: Runs in a thread (sync SQLAlchemy)."""
    for attempt in range(1, MAX_ATTEMPTS + 1):
        db = session_factory()
        try:
            return _apply_update(db, update)
        except StaleDataError:
            db.rollback()
            logger.warning(
                "Concurrent update on shipment %s (attempt %s/%s), re-reading",
                update.tracking_number,
                attempt,
                MAX_ATTEMPTS,
            )
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
    raise RuntimeError(f"Gave up reconciling {update.tracking_number} after {MAX_ATTEMPTS} conflicting writes")


async def reconcile(
    tracking_number: str,
    raw_status: str,
    occurred_at: Optional[str] = None,
    location: Optional[str] = None,
    remarks: Optional[str] = None,
    expected_delivery_date: Optional[str] = None,
    *,
    session_factory: Optional[Callable[[], Session]] = None,
) -> ReconcileOutcome:
    update = StatusUpdate(
        tracking_number=str(tracking_number or "").strip(),
        raw_status=raw_status,
        occurred_at=occurred_at,
        location=location,
        remarks=remarks,
        expected_delivery_date=expected_delivery_date,
    )
    factory = session_factory or database.SessionLocal
    try:
        async with _lock_for(update.tracking_number):
            return await asyncio.to_thread(_reconcile_sync, update, factory)
    except asyncio.CancelledError:
        raise
    except Exception:
        logger.exception("Failed to reconcile Delhivery update for %s", update.tracking_number)
        return ReconcileOutcome.FAILED
