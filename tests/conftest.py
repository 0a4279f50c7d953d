import os
import tempfile

import pytest

# Force tests to use a throwaway SQLite DB, not delhivery_sync/.env.
_tmp_db = tempfile.NamedTemporaryFile(prefix="delhivery-sync-test-", suffix=".db", delete=False)
os.environ["DATABASE_URL"] = f"sqlite:///{_tmp_db.name}"

from delhivery_sync import database, models

models.Base.metadata.create_all(bind=database.engine)

_ENV_VARS = (
    "DELHIVERY_WEBHOOK_SECRET",
    "APP_ENV",
    "CRON_SECRET",
    "DELHIVERY_API_URL",
    "DELHIVERY_API_TOKEN",
    "AUTO_SYNC_DELHIVERY",
    "AUTO_SYNC_DELHIVERY_INTERVAL_SECONDS",
    "AUTO_SYNC_DELHIVERY_BATCH_SIZE",
    "AUTO_SYNC_DELHIVERY_MAX_SHIPMENTS",
    "AUTO_SYNC_DELHIVERY_RUN_IMMEDIATELY",
    "LOG_STATUS_MAPPING",
)


@pytest.fixture(autouse=True)
def clean_state(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    db = database.SessionLocal()
    try:
        db.query(models.Shipment).delete()
        db.commit()
    finally:
        db.close()
    yield


@pytest.fixture
def make_shipment():
    def _make(awb="AWB123", status="placed", history=None, order_id="ORD-1001", **extra):
        db = database.SessionLocal()
        try:
            ship = models.Shipment(
                awb=awb,
                status=status,
                order_id=order_id,
                tracking_history=list(history or []),
                **extra,
            )
            db.add(ship)
            db.commit()
            return ship.id
        finally:
            db.close()

    return _make


@pytest.fixture
def load_shipment():
    def _load(awb):
        db = database.SessionLocal()
        try:
            return db.query(models.Shipment).filter(models.Shipment.awb == awb).first()
        finally:
            db.close()

    return _load
