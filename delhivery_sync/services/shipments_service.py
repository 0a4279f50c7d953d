from __future__ import annotations

from datetime import date, datetime, timezone
import logging
from typing import Any, List, Optional

from sqlalchemy.orm import Session

try:
    from .. import models
    from ..delhivery_statuses import TERMINAL_STATUSES
except ImportError:  # pragma: no cover
    import models  # type: ignore
    from delhivery_statuses import TERMINAL_STATUSES  # type: ignore

logger = logging.getLogger(__name__)


def _now_utc_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_delivery_date(value: Any) -> Optional[date]:
    """Parse Delhivery's expected delivery date ("YYYY-MM-DD", sometimes a full timestamp)."""
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    s = str(value).strip()
    if not s:
        return None
    try:
        return date.fromisoformat(s[:10])
    except ValueError:
        return None


def get_by_awb(db: Session, awb: str) -> Optional[models.Shipment]:
    awb = str(awb or "").strip()
    if not awb:
        return None
    return db.query(models.Shipment).filter(models.Shipment.awb == awb).first()


def apply_tracking_update(
    db: Session,
    shipment: models.Shipment,
    *,
    status: str,
    tracking_history: List[dict],
    expected_delivery_date: Optional[date] = None,
    last_sync_at: Optional[datetime] = None,
) -> models.Shipment:
    """
    Persist a reconciled tracking update.

    `tracking_history` must be a new list (JSON columns do not track in-place
    mutation). A None `expected_delivery_date` keeps the stored value.
    Raises StaleDataError when another writer bumped the row version first.
    """
    now = _now_utc_naive()
    shipment.status = status
    shipment.tracking_history = list(tracking_history)
    if expected_delivery_date is not None:
        shipment.expected_delivery_date = expected_delivery_date
    shipment.last_sync_at = last_sync_at or now
    shipment.updated_at = now
    db.commit()
    return shipment


def recent_synced(db: Session, *, limit: int = 5) -> List[models.Shipment]:
    return (
        db.query(models.Shipment)
        .filter(models.Shipment.awb.isnot(None))
        .order_by(models.Shipment.last_sync_at.desc().nulls_last())
        .limit(limit)
        .all()
    )


def recent_activity(db: Session, *, limit: int = 20) -> List[models.Shipment]:
    return (
        db.query(models.Shipment)
        .filter(models.Shipment.awb.isnot(None))
        .order_by(models.Shipment.updated_at.desc().nulls_last())
        .limit(limit)
        .all()
    )


def latest_with_awb(db: Session) -> Optional[models.Shipment]:
    return (
        db.query(models.Shipment)
        .filter(models.Shipment.awb.isnot(None))
        .order_by(models.Shipment.created_at.desc(), models.Shipment.id.desc())
        .first()
    )


def active_awbs(db: Session, *, limit: int = 500) -> List[str]:
    """AWBs of shipments still expecting courier updates, least recently synced first."""
    rows = (
        db.query(models.Shipment.awb)
        .filter(models.Shipment.awb.isnot(None))
        .filter(models.Shipment.awb != "")
        .filter(models.Shipment.status.notin_(sorted(TERMINAL_STATUSES)))
        .order_by(models.Shipment.last_sync_at.asc().nulls_first(), models.Shipment.id.asc())
        .limit(limit)
        .all()
    )
    return [r[0] for r in rows]


def activity_summary(ship: models.Shipment) -> dict:
    history = ship.tracking_history or []
    return {
        "awb": ship.awb,
        "current_status": ship.status,
        "last_update": ship.updated_at,
        "last_sync": ship.last_sync_at,
        "events_count": len(history),
        "recent_events": list(history[-3:]),
    }
