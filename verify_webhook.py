import json
import os
import sys

import requests
from dotenv import load_dotenv

load_dotenv("delhivery_sync/.env")

from delhivery_sync.services.signature_service import SIGNATURE_HEADER, compute_signature

def verify(awb: str = "DEMOAWB0001", status: str = "Picked Up"):
    base_url = os.getenv("VERIFY_BASE_URL", "http://localhost:8000")
    webhook_url = f"{base_url}/api/webhooks/delhivery"
    print(f"--- VERIFYING WEBHOOK AT {webhook_url} ---")

    # 1. Health
    try:
        r = requests.get(f"{webhook_url}/health", timeout=10)
        if r.status_code == 200:
            print(f"✅ Webhook endpoint healthy: {r.json()}")
        else:
            print(f"❌ Health check returned {r.status_code}")
            return
    except Exception as e:
        print(f"❌ Backend unreachable: {e}")
        return

    # 2. Signed webhook (signature only sent when a secret is configured)
    print("\n--- POSTING WEBHOOK ---")
    body = json.dumps({"waybill": awb, "status": status}).encode()
    headers = {"Content-Type": "application/json"}
    secret = os.getenv("DELHIVERY_WEBHOOK_SECRET")
    if secret:
        headers[SIGNATURE_HEADER] = compute_signature(body, secret)
    try:
        r = requests.post(webhook_url, data=body, headers=headers, timeout=10)
        if r.status_code == 200:
            print(f"✅ Webhook accepted: {r.json()}")
        else:
            print(f"❌ Webhook rejected: {r.status_code} - {r.text}")
            return
    except Exception as e:
        print(f"❌ Webhook error: {e}")
        return

    # 3. Activity
    print("\n--- RECENT ACTIVITY ---")
    try:
        r = requests.get(f"{webhook_url}/logs", timeout=10)
        for s in r.json().get("shipments", [])[:5]:
            print(f"   {s.get('awb')}: {s.get('current_status')} ({s.get('events_count')} events)")
    except Exception as e:
        print(f"❌ Activity error: {e}")

if __name__ == "__main__":
    verify(*sys.argv[1:3])
