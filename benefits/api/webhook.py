"""
Stripe webhook endpoint.

The raw body is verified against STRIPE_WEBHOOK_SECRET before anything is
trusted. After verification the endpoint always answers {"received": true};
ingestion outcomes are logged and stored, never surfaced as non-2xx, so the
provider does not redeliver.
"""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from benefits.core.database import get_db
from benefits.features.billing.provider import BillingProvider
from benefits.features.billing.service import get_provider
from benefits.features.ingestion.service import ingest_event


router = APIRouter(tags=["webhook"])


@router.post("/webhook")
@router.post("/stripeWebhook", include_in_schema=False)
async def stripe_webhook(
    request: Request,
    db: Session = Depends(get_db),
    provider: BillingProvider = Depends(get_provider),
):
    """
    Handle Stripe webhook events.

    Returns:
        {"received": true, "outcome": "..."}

    Errors:
        400: Invalid signature or payload (no state mutation)
        503: Billing disabled
    """
    # Read raw body (required for signature verification)
    body = await request.body()
    headers = dict(request.headers)

    # SignatureInvalidError propagates to the 400 handler
    event = provider.verify_webhook(headers, body)

    result = await run_in_threadpool(ingest_event, db, event, body)
    return {"received": True, "outcome": result.outcome.value}
