from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass, field
import logging
import time
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

try:
    from .. import config as app_config
    from .. import database, delhivery_client
except ImportError:  # pragma: no cover
    import config as app_config  # type: ignore
    import database, delhivery_client  # type: ignore

try:
    from . import reconcile_service, shipments_service
except ImportError:  # pragma: no cover
    import reconcile_service, shipments_service  # type: ignore


logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    success: List[str] = field(default_factory=list)
    failed: List[Dict[str, str]] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _db_active_awbs(limit: int, session_factory: Callable[[], Session]) -> List[str]:
    """NOTE: Runs in a thread (sync SQLAlchemy)."""
    db = session_factory()
    try:
        return shipments_service.active_awbs(db, limit=limit)
    finally:
        db.close()


def client_from_config(cfg: app_config.DelhiverySyncConfig) -> delhivery_client.DelhiveryClient:
    return delhivery_client.DelhiveryClient(cfg.api_url, cfg.api_token)


async def sync_active_shipments(
    client: delhivery_client.DelhiveryClient,
    *,
    config: Optional[app_config.DelhiverySyncConfig] = None,
    session_factory: Optional[Callable[[], Session]] = None,
) -> SyncResult:
    """
    Pull the latest Delhivery scan for every non-terminal shipment and reconcile it.

    Fallback for missed webhooks; goes through the same reconciler so both paths
    dedup against one tracking history.
    """
    cfg = config or app_config.load_sync_config()
    factory = session_factory or database.SessionLocal
    result = SyncResult()

    if not client.configured:
        logger.info("DELHIVERY_API_TOKEN missing; skipping Delhivery sync")
        return result

    awbs = await asyncio.to_thread(_db_active_awbs, cfg.max_shipments, factory)
    if not awbs:
        return result

    for start in range(0, len(awbs), cfg.batch_size):
        batch = awbs[start:start + cfg.batch_size]
        try:
            scans = await client.track(batch)
        except delhivery_client.DelhiveryAPIError as e:
            result.failed.extend({"awb": awb, "error": str(e)} for awb in batch)
            continue

        by_awb = {s["waybill"]: s for s in scans if s.get("waybill")}
        for awb in batch:
            scan = by_awb.get(awb)
            if scan is None or not scan.get("status"):
                result.failed.append({"awb": awb, "error": "No tracking data returned"})
                continue

            outcome = await reconcile_service.reconcile(
                awb,
                scan["status"],
                occurred_at=scan.get("status_datetime"),
                location=scan.get("location"),
                remarks=scan.get("remarks"),
                expected_delivery_date=scan.get("expected_delivery_date"),
                session_factory=factory,
            )
            if outcome in (reconcile_service.ReconcileOutcome.UPDATED, reconcile_service.ReconcileOutcome.UNCHANGED):
                result.success.append(awb)
            else:
                result.failed.append({"awb": awb, "error": outcome.value})

    return result


async def delhivery_poll_loop(
    client: delhivery_client.DelhiveryClient,
    *,
    config: Optional[app_config.DelhiverySyncConfig] = None,
) -> None:
    cfg = config or app_config.load_sync_config()
    if not cfg.enabled:
        logger.info("AUTO_SYNC_DELHIVERY not enabled; Delhivery poll loop will not start")
        return

    next_run = time.monotonic()
    if not cfg.run_immediately:
        next_run += float(cfg.interval_seconds)

    while True:
        sleep_s = next_run - time.monotonic()
        if sleep_s > 0:
            await asyncio.sleep(sleep_s)

        run_started = time.monotonic()
        try:
            result = await sync_active_shipments(client, config=cfg)
            logger.info(
                "Delhivery sync: synced=%s failed=%s duration_s=%.1f",
                len(result.success),
                len(result.failed),
                time.monotonic() - run_started,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Delhivery sync failed: %s", str(e), exc_info=True)

        # Keep a steady cadence measured from the start of each run.
        next_run = run_started + float(cfg.interval_seconds)
