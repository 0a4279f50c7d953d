from datetime import datetime
from pathlib import Path

from dotenv import load_dotenv

# Ensure we seed the same DB config the API uses (delhivery_sync/.env).
_env_path = Path(__file__).resolve().parent / "delhivery_sync" / ".env"
if _env_path.exists():
    load_dotenv(dotenv_path=str(_env_path), override=True)

from delhivery_sync.database import SessionLocal, engine
from delhivery_sync.models import Base, Shipment

DEMO_SHIPMENTS = [
    {"order_id": "PP-DEMO-1001", "awb": "DEMOAWB0001", "status": "placed"},
    {"order_id": "PP-DEMO-1002", "awb": "DEMOAWB0002", "status": "in_transit"},
    {"order_id": "PP-DEMO-1003", "awb": None, "status": "pending_review"},
]

def seed():
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()

    for data in DEMO_SHIPMENTS:
        ship = db.query(Shipment).filter(Shipment.order_id == data["order_id"]).first()
        if not ship:
            db.add(Shipment(tracking_history=[], created_at=datetime.utcnow(), **data))
            print(f"Shipment for {data['order_id']} added")
        else:
            # Keep dev environments predictable.
            ship.status = data["status"]
            ship.tracking_history = []
            ship.expected_delivery_date = None
            ship.last_sync_at = None
            print(f"Shipment for {data['order_id']} reset")

    db.commit()
    db.close()

if __name__ == "__main__":
    seed()
