"""Smoke test for the webhook -> ledger -> claims flow.

Steps:
1) Send a signed checkout.session.completed event
2) Read claims for the subscriber
3) Use one claim unit

Requires a running backend with a seeded plan and subscriber.
Env: BASE_URL (default http://localhost:8000), STRIPE_WEBHOOK_SECRET,
SMOKE_USER_ID, SMOKE_PLAN_ID, SMOKE_CLAIM_NAME.
"""
import hashlib
import hmac
import json
import os
import sys
import time
from uuid import uuid4

import httpx

BASE_URL = os.getenv("BASE_URL", "http://localhost:8000").rstrip("/")
WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET", "")
USER_ID = os.getenv("SMOKE_USER_ID", "smoke-user")
PLAN_ID = os.getenv("SMOKE_PLAN_ID", "basic")
CLAIM_NAME = os.getenv("SMOKE_CLAIM_NAME", "dental")
TIMEOUT_SECONDS = float(os.getenv("SMOKE_TIMEOUT", "5"))


def sign(payload: bytes, secret: str, timestamp: int) -> str:
    signed = f"{timestamp}.".encode("utf-8") + payload
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def _require_ok(resp: httpx.Response, step: str) -> dict:
    if resp.status_code != 200:
        raise RuntimeError(f"{step} failed: status={resp.status_code}, body={resp.text}")
    return resp.json()


def run(client: httpx.Client) -> None:
    event = {
        "id": f"evt_smoke_{uuid4().hex[:12]}",
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": f"cs_smoke_{uuid4().hex[:12]}",
                "client_reference_id": USER_ID,
                "customer": "cus_smoke",
                "subscription": f"sub_smoke_{uuid4().hex[:8]}",
                "metadata": {"planId": PLAN_ID},
            }
        },
    }
    body = json.dumps(event).encode("utf-8")
    resp = client.post(
        f"{BASE_URL}/webhook",
        content=body,
        headers={"stripe-signature": sign(body, WEBHOOK_SECRET, int(time.time())), "content-type": "application/json"},
    )
    ack = _require_ok(resp, "webhook")
    print(f"webhook: {ack}")

    claims = _require_ok(client.get(f"{BASE_URL}/getClaims", params={"patientId": USER_ID}), "getClaims")
    print(f"claims: {claims}")

    used = _require_ok(
        client.post(f"{BASE_URL}/useClaim", json={"patientId": USER_ID, "claimName": CLAIM_NAME}),
        "useClaim",
    )
    print(f"useClaim: {used}")


def main() -> int:
    if not WEBHOOK_SECRET:
        print("STRIPE_WEBHOOK_SECRET is required")
        return 1
    with httpx.Client(timeout=TIMEOUT_SECONDS) as client:
        try:
            run(client)
        except RuntimeError as exc:
            print(f"FAIL: {exc}")
            return 1
    print("PASS")
    return 0


if __name__ == "__main__":
    sys.exit(main())
