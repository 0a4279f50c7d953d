from __future__ import annotations

from dataclasses import dataclass
import os
from typing import Optional

_TRUTHY = {"1", "true", "yes", "y", "on"}
_FALSY = {"0", "false", "no", "n", "off", ""}

DEFAULT_DELHIVERY_API_URL = "https://track.delhivery.com"


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    val = str(raw).strip().lower()
    if val in _TRUTHY:
        return True
    if val in _FALSY:
        return False
    return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(str(raw).strip())
    except Exception:
        return default


def _env_str(name: str) -> Optional[str]:
    raw = os.getenv(name)
    if raw is None:
        return None
    val = str(raw).strip()
    return val or None


@dataclass(frozen=True)
class WebhookConfig:
    webhook_secret: Optional[str]
    development: bool
    cron_secret: Optional[str]


@dataclass(frozen=True)
class DelhiverySyncConfig:
    enabled: bool
    api_url: str
    api_token: Optional[str]
    interval_seconds: int
    batch_size: int
    max_shipments: int
    run_immediately: bool


def load_webhook_config() -> WebhookConfig:
    # Read per call so a rotated secret in the environment is picked up without a restart.
    return WebhookConfig(
        webhook_secret=_env_str("DELHIVERY_WEBHOOK_SECRET"),
        development=(_env_str("APP_ENV") or "").lower() == "development",
        cron_secret=_env_str("CRON_SECRET"),
    )


def load_sync_config() -> DelhiverySyncConfig:
    return DelhiverySyncConfig(
        enabled=_env_bool("AUTO_SYNC_DELHIVERY", default=False),
        api_url=(_env_str("DELHIVERY_API_URL") or DEFAULT_DELHIVERY_API_URL).rstrip("/"),
        api_token=_env_str("DELHIVERY_API_TOKEN"),
        interval_seconds=max(60, _env_int("AUTO_SYNC_DELHIVERY_INTERVAL_SECONDS", 900)),
        # Delhivery's tracking endpoint accepts at most 50 waybills per call.
        batch_size=max(1, min(_env_int("AUTO_SYNC_DELHIVERY_BATCH_SIZE", 50), 50)),
        max_shipments=max(1, _env_int("AUTO_SYNC_DELHIVERY_MAX_SHIPMENTS", 500)),
        run_immediately=_env_bool("AUTO_SYNC_DELHIVERY_RUN_IMMEDIATELY", default=False),
    )
