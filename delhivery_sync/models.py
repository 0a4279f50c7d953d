from sqlalchemy import Column, Integer, String, Date, DateTime, JSON
from datetime import datetime
try:
    from .database import Base
except ImportError:  # pragma: no cover
    from database import Base


class Shipment(Base):
    """
    A courier shipment for one order.

    Rows are created when the order is placed with Delhivery (which assigns
    the AWB) and afterwards only mutated by webhook/poll reconciliation.
    """

    __tablename__ = "shipments"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(String, index=True)
    awb = Column(String, unique=True, index=True, nullable=True)
    courier = Column(String, default="delhivery")
    status = Column(String, default="pending_review")

    # Ordered list of tracking events (see schemas.TrackingEvent), in arrival order.
    tracking_history = Column(JSON, default=list)
    expected_delivery_date = Column(Date, nullable=True)
    last_sync_at = Column(DateTime, nullable=True, index=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Optimistic lock counter; a concurrent writer makes the flush raise StaleDataError.
    version_id = Column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}
