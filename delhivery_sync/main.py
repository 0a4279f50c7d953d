from fastapi import FastAPI, Depends, Request, BackgroundTasks
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session
from datetime import datetime, timedelta, timezone
from typing import List, Optional
import asyncio
import contextlib
import hmac
import json
import os
import logging
import time
from dotenv import load_dotenv

# Load environment variables from the package directory
env_path = os.path.join(os.path.dirname(__file__), '.env')
load_dotenv(dotenv_path=env_path, override=True)

from . import models, schemas, database, delhivery_statuses
from . import config as app_config
from .services import delhivery_sync_service, reconcile_service, shipments_service, signature_service, tracking_service

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

WEBHOOK_PATH = "/api/webhooks/delhivery"

MISSING_FIELDS_ERROR = "Missing required fields: waybill and status are required"
DEV_ONLY_ERROR = "Test endpoint only available in development mode"

# Forward lifecycle replayed by the test-all endpoint.
SIMULATION_STATUSES = [
    "Manifested",
    "Pickup Scheduled",
    "Picked Up",
    "In Transit",
    "Pending",
    "Dispatched",
    "Out for Delivery",
    "Delivered",
]

# Create tables
models.Base.metadata.create_all(bind=database.engine)

app = FastAPI(title="Delhivery Shipment Sync API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

_poll_task: Optional[asyncio.Task] = None


def _error(status_code: int, error: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=schemas.ErrorResponse(error=error).model_dump())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@app.on_event("startup")
async def startup_event():
    global _poll_task
    if not app_config.load_webhook_config().webhook_secret:
        logger.warning("DELHIVERY_WEBHOOK_SECRET not set: webhook signatures will NOT be verified")

    sync_cfg = app_config.load_sync_config()
    if sync_cfg.enabled:
        client = delhivery_sync_service.client_from_config(sync_cfg)
        _poll_task = asyncio.create_task(delhivery_sync_service.delhivery_poll_loop(client, config=sync_cfg))
        logger.info("Delhivery poll loop scheduled every %ss", sync_cfg.interval_seconds)


@app.on_event("shutdown")
async def shutdown_event():
    global _poll_task
    if _poll_task is not None:
        _poll_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await _poll_task
        _poll_task = None


@app.post(WEBHOOK_PATH)
async def delhivery_webhook(request: Request, background_tasks: BackgroundTasks):
    """
    Receive a Delhivery status push.

    Acknowledges as soon as the request is authenticated and well-formed; the
    shipment is reconciled after the response has been sent so a slow database
    never trips Delhivery's retry timer.
    """
    try:
        raw_body = await request.body()
        cfg = app_config.load_webhook_config()

        signature = request.headers.get(signature_service.SIGNATURE_HEADER)
        if not signature_service.verify_signature(raw_body, signature, cfg.webhook_secret):
            logger.error("Rejecting Delhivery webhook: invalid signature")
            return _error(401, "Invalid webhook signature")

        try:
            body = json.loads(raw_body) if raw_body else {}
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.error("Rejecting Delhivery webhook: body is not valid JSON")
            return _error(400, "Invalid JSON payload")
        if not isinstance(body, dict):
            logger.error("Rejecting Delhivery webhook: body is not a JSON object")
            return _error(400, "Invalid JSON payload")

        logger.info("Delhivery webhook received: %s", body)

        payload = schemas.DelhiveryWebhookPayload.from_body(body)
        if payload.missing_required():
            logger.error("Delhivery webhook missing required fields: waybill=%r status=%r", payload.waybill, payload.status)
            return _error(400, MISSING_FIELDS_ERROR)

        background_tasks.add_task(
            reconcile_service.reconcile,
            payload.waybill,
            payload.status,
            payload.status_datetime,
            payload.location,
            payload.remarks,
            payload.expected_delivery_date,
        )
        return schemas.WebhookAck(message="Webhook received, processing asynchronously").model_dump()
    except Exception:
        logger.exception("Delhivery webhook failed before acknowledgement")
        return _error(500, "Internal server error")


@app.get(f"{WEBHOOK_PATH}/health", response_model=schemas.HealthResponse)
async def delhivery_webhook_health(db: Session = Depends(database.get_db)):
    try:
        recent = shipments_service.recent_synced(db, limit=5)
        return schemas.HealthResponse(
            success=True,
            message="Webhook endpoint is active and healthy",
            timestamp=_utcnow(),
            recent_syncs=len(recent),
            last_sync=recent[0].last_sync_at if recent else None,
        )
    except Exception as e:
        logger.error(f"Webhook health check failed: {str(e)}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"success": False, "message": "Health check failed", "error": str(e)},
        )


@app.get(f"{WEBHOOK_PATH}/logs", response_model=schemas.WebhookLogsResponse)
async def delhivery_webhook_logs(db: Session = Depends(database.get_db)):
    try:
        shipments = shipments_service.recent_activity(db, limit=20)
        return schemas.WebhookLogsResponse(
            total=len(shipments),
            shipments=[schemas.ShipmentActivity(**shipments_service.activity_summary(s)) for s in shipments],
        )
    except Exception as e:
        logger.error(f"Webhook activity lookup failed: {str(e)}", exc_info=True)
        return _error(500, str(e))


@app.get(f"{WEBHOOK_PATH}/statuses", response_model=List[schemas.StatusDisplaySchema])
async def delhivery_status_table():
    return [
        schemas.StatusDisplaySchema(
            status=status,
            terminal=delhivery_statuses.is_terminal(status),
            **delhivery_statuses.get_status_display(status),
        )
        for status in delhivery_statuses.get_valid_statuses()
    ]


async def _simulate_status(db: Session, status: str):
    """Replay `status` as a webhook for the newest shipment with an AWB and wait for the result."""
    shipment = shipments_service.latest_with_awb(db)
    if shipment is None:
        return None, None

    payload = {
        "waybill": shipment.awb,
        "status": status,
        "status_datetime": tracking_service.now_iso(),
        "location": "Test Location - Mumbai Hub",
        "remarks": "Test webhook simulation",
        "expected_delivery_date": (_utcnow() + timedelta(days=2)).date().isoformat(),
    }
    logger.info(
        "Simulating Delhivery webhook for %s (order %s): current=%s test=%r mapped=%s",
        shipment.awb,
        shipment.order_id,
        shipment.status,
        status,
        delhivery_statuses.map_status(status),
    )
    outcome = await reconcile_service.reconcile(
        payload["waybill"],
        payload["status"],
        payload["status_datetime"],
        payload["location"],
        payload["remarks"],
        payload["expected_delivery_date"],
    )
    return payload, outcome


def _no_shipment_response() -> JSONResponse:
    return JSONResponse(
        status_code=404,
        content={
            "success": False,
            "error": "No shipments with AWB found. Create and approve a shipment first.",
            "hint": "Go to /admin/shipments and approve a pending shipment",
        },
    )


@app.post(f"{WEBHOOK_PATH}/test")
async def simulate_delhivery_webhook(
    body: Optional[schemas.SimulateWebhookRequest] = None,
    db: Session = Depends(database.get_db),
):
    if not app_config.load_webhook_config().development:
        return _error(403, DEV_ONLY_ERROR)

    status = (body.status if body else None) or "Picked Up"
    payload, outcome = await _simulate_status(db, status)
    if payload is None:
        return _no_shipment_response()

    return {
        "success": True,
        "message": "Test webhook executed successfully",
        "test_payload": payload,
        "mapped_status": delhivery_statuses.map_status(status),
        "outcome": outcome.value,
    }


@app.post(f"{WEBHOOK_PATH}/test-all")
async def simulate_all_delhivery_statuses(db: Session = Depends(database.get_db)):
    if not app_config.load_webhook_config().development:
        return _error(403, DEV_ONLY_ERROR)

    if shipments_service.latest_with_awb(db) is None:
        return _no_shipment_response()

    results = []
    for status in SIMULATION_STATUSES:
        _payload, outcome = await _simulate_status(db, status)
        ok = outcome in (reconcile_service.ReconcileOutcome.UPDATED, reconcile_service.ReconcileOutcome.UNCHANGED)
        results.append({
            "status": status,
            "delhivery_status": status,
            "internal_status": delhivery_statuses.map_status(status),
            "success": ok,
            "outcome": outcome.value if outcome else None,
        })

    return {
        "success": True,
        "message": "All status tests completed",
        "total": len(SIMULATION_STATUSES),
        "results": results,
    }


@app.post(f"{WEBHOOK_PATH}/sync-now")
async def manual_delhivery_sync():
    if not app_config.load_webhook_config().development:
        return _error(403, DEV_ONLY_ERROR)

    logger.info("Manual Delhivery sync triggered via API")
    try:
        sync_cfg = app_config.load_sync_config()
        client = delhivery_sync_service.client_from_config(sync_cfg)
        result = await delhivery_sync_service.sync_active_shipments(client, config=sync_cfg)
    except Exception as e:
        logger.error(f"Manual Delhivery sync failed: {str(e)}", exc_info=True)
        return _error(500, str(e))

    return {
        "success": True,
        "message": "Manual sync completed",
        "synced": len(result.success),
        "failed": len(result.failed),
        "details": result.as_dict(),
    }


def _cron_authorized(request: Request, secret: Optional[str]) -> bool:
    if not secret:
        return False
    provided = request.headers.get("x-vercel-cron-secret")
    if not provided:
        auth = request.headers.get("authorization") or ""
        provided = auth[len("Bearer "):] if auth.startswith("Bearer ") else ""
    if not provided:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), secret.encode("utf-8"))


@app.api_route("/api/cron/sync-shipments", methods=["GET", "POST"])
async def cron_sync_shipments(request: Request):
    cfg = app_config.load_webhook_config()
    if not _cron_authorized(request, cfg.cron_secret):
        logger.warning("Unauthorized cron access attempt")
        return JSONResponse(status_code=401, content={"success": False, "message": "Unauthorized cron request"})

    started = time.monotonic()
    logger.info("Scheduled Delhivery sync starting")
    try:
        sync_cfg = app_config.load_sync_config()
        client = delhivery_sync_service.client_from_config(sync_cfg)
        result = await delhivery_sync_service.sync_active_shipments(client, config=sync_cfg)
    except Exception as e:
        logger.error(f"Scheduled Delhivery sync failed: {str(e)}", exc_info=True)
        # 200 so the scheduler does not retry; the next run picks it up.
        return {
            "success": False,
            "message": "Shipment sync failed",
            "error": str(e) if cfg.development else "Internal error",
            "timestamp": _utcnow(),
        }

    duration_ms = int((time.monotonic() - started) * 1000)
    logger.info("Scheduled Delhivery sync completed in %sms", duration_ms)
    return {
        "success": True,
        "message": "Shipment sync completed",
        "timestamp": _utcnow(),
        "duration": f"{duration_ms}ms",
        "result": result.as_dict(),
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
