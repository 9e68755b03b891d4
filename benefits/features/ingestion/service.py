"""
benefits/features/ingestion/service.py

Billing event ingestion.

Turns verified Stripe events into directory and ledger mutations:
- checkout.session.completed -> append a Purchase (current month counters at 0)
- customer.subscription.updated -> purchase status from cancel_at_period_end
- customer.subscription.deleted -> purchase status inactive
- anything else -> ignored

Data-integrity anomalies (unknown plan/subscriber, no matching purchase) are
logged and skipped. Nothing here raises to the webhook caller: once the
signature is verified the provider always gets an acknowledgement, otherwise
it would keep redelivering.
"""

import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional

from sqlalchemy import select, insert, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from benefits.core.database import billing_events
from benefits.core.errors import ValidationError
from benefits.core.identity import normalize_subscriber_id
from benefits.core.logging import log_event
from benefits.features.catalog.service import get_plan
from benefits.features.ledger.service import (
    create_purchase,
    find_purchase_for_subscription,
    set_purchase_status,
)
from benefits.features.subscribers.service import get_subscriber, set_customer_ref
from benefits.models.purchase import SubscriptionStatus


logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"


class IngestionOutcome(str, Enum):
    APPLIED = "applied"
    SKIPPED = "skipped"        # data-integrity anomaly, logged
    IGNORED = "ignored"        # unhandled event type
    DUPLICATE = "duplicate"    # already processed
    FAILED = "failed"          # unexpected error, recorded on billing_events


@dataclass(frozen=True)
class IngestionResult:
    event_id: Optional[str]
    event_type: str
    outcome: IngestionOutcome
    detail: Optional[str] = None


def _payload(event: Dict[str, Any]) -> Dict[str, Any]:
    return (event.get("data") or {}).get("object") or {}


def handle_checkout_completed(db: Session, session_obj: Dict[str, Any], now: Optional[datetime] = None) -> IngestionResult:
    """Append a purchase for a completed checkout session."""
    metadata = session_obj.get("metadata") or {}
    plan_id = metadata.get("planId")
    customer_ref = session_obj.get("customer")

    try:
        user_id = normalize_subscriber_id(session_obj.get("client_reference_id"), field="client_reference_id")
    except ValidationError:
        log_event("error", "[ingestion] checkout without client_reference_id", event_type=CHECKOUT_COMPLETED, logger=logger)
        return IngestionResult(None, CHECKOUT_COMPLETED, IngestionOutcome.SKIPPED, "missing user")

    log_event(
        "info",
        "[ingestion] processing checkout",
        subscriber_id=user_id,
        event_type=CHECKOUT_COMPLETED,
        extra={"plan_id": plan_id, "customer": customer_ref},
        logger=logger,
    )

    plan = get_plan(db, plan_id) if plan_id else None
    if plan is None:
        log_event("error", "[ingestion] no such plan", subscriber_id=user_id, event_type=CHECKOUT_COMPLETED, extra={"plan_id": plan_id}, logger=logger)
        return IngestionResult(None, CHECKOUT_COMPLETED, IngestionOutcome.SKIPPED, "plan not found")

    if get_subscriber(db, user_id) is None:
        log_event("error", "[ingestion] subscriber not found", subscriber_id=user_id, event_type=CHECKOUT_COMPLETED, logger=logger)
        return IngestionResult(None, CHECKOUT_COMPLETED, IngestionOutcome.SKIPPED, "subscriber not found")

    purchase, created = create_purchase(
        db,
        subscriber_id=user_id,
        plan=plan,
        customer_ref=customer_ref,
        subscription_id=session_obj.get("subscription"),
        checkout_session_id=session_obj.get("id"),
        now=now,
    )
    # Separate write; also runs for an already-recorded checkout so a redelivery
    # after a failed directory update relinks the customer
    if customer_ref:
        set_customer_ref(db, user_id, customer_ref)

    if not created:
        log_event("info", "[ingestion] checkout already recorded", subscriber_id=user_id, event_type=CHECKOUT_COMPLETED, extra={"purchase_id": purchase.purchase_id}, logger=logger)
        return IngestionResult(None, CHECKOUT_COMPLETED, IngestionOutcome.DUPLICATE, purchase.purchase_id)

    log_event("info", "[ingestion] purchase stored", subscriber_id=user_id, event_type=CHECKOUT_COMPLETED, extra={"purchase_id": purchase.purchase_id}, logger=logger)
    return IngestionResult(None, CHECKOUT_COMPLETED, IngestionOutcome.APPLIED, purchase.purchase_id)


def _apply_status(db: Session, subscription: Dict[str, Any], event_type: str, status: SubscriptionStatus) -> IngestionResult:
    customer_ref = subscription.get("customer")
    purchase = find_purchase_for_subscription(
        db,
        subscription_id=subscription.get("id"),
        customer_ref=customer_ref,
    )
    if purchase is None:
        log_event("error", "[ingestion] no purchase for customer", event_type=event_type, extra={"customer": customer_ref}, logger=logger)
        return IngestionResult(None, event_type, IngestionOutcome.SKIPPED, "purchase not found")

    set_purchase_status(db, purchase.purchase_id, status)
    log_event(
        "info",
        "[ingestion] subscription status set",
        subscriber_id=purchase.subscriber_id,
        event_type=event_type,
        extra={"purchase_id": purchase.purchase_id, "status": status.value},
        logger=logger,
    )
    return IngestionResult(None, event_type, IngestionOutcome.APPLIED, purchase.purchase_id)


def handle_subscription_updated(db: Session, subscription: Dict[str, Any]) -> IngestionResult:
    """Inactive when the subscription will cancel at period end, active otherwise."""
    cancel_at_period_end = bool(subscription.get("cancel_at_period_end"))
    status = SubscriptionStatus.INACTIVE if cancel_at_period_end else SubscriptionStatus.ACTIVE
    return _apply_status(db, subscription, SUBSCRIPTION_UPDATED, status)


def handle_subscription_deleted(db: Session, subscription: Dict[str, Any]) -> IngestionResult:
    """A deleted subscription marks its purchase inactive."""
    return _apply_status(db, subscription, SUBSCRIPTION_DELETED, SubscriptionStatus.INACTIVE)


_HANDLERS: Dict[str, Callable[..., IngestionResult]] = {
    CHECKOUT_COMPLETED: handle_checkout_completed,
    SUBSCRIPTION_UPDATED: handle_subscription_updated,
    SUBSCRIPTION_DELETED: handle_subscription_deleted,
}


def _record_event(db: Session, event_id: str, event_type: str, payload_hash: str) -> bool:
    """Insert the event into billing_events. Returns False if already processed."""
    existing = db.execute(
        select(billing_events.c.processed).where(billing_events.c.stripe_event_id == event_id)
    ).first()
    if existing:
        # Unprocessed rows (earlier failure) are retried
        return not existing.processed

    try:
        db.execute(
            insert(billing_events).values(
                stripe_event_id=event_id,
                event_type=event_type,
                payload_hash=payload_hash,
                processed=False,
            )
        )
        db.commit()
    except IntegrityError:
        # Race condition: another worker already inserted this event
        db.rollback()
        return False
    return True


def _finish_event(db: Session, event_id: str, outcome: IngestionOutcome, error: Optional[str] = None) -> None:
    values: Dict[str, Any] = {"outcome": outcome.value, "error": error}
    if outcome != IngestionOutcome.FAILED:
        values.update(processed=True, processed_at=datetime.now(timezone.utc))
    db.execute(
        update(billing_events)
        .where(billing_events.c.stripe_event_id == event_id)
        .values(**values)
    )
    db.commit()


def ingest_event(db: Session, event: Dict[str, Any], raw_body: Optional[bytes] = None, now: Optional[datetime] = None) -> IngestionResult:
    """
    Process one verified billing event (idempotent on the Stripe event id).

    1. Record the event id (skip if already processed)
    2. Dispatch by type
    3. Mark processed, or store the error

    Never raises: failures are logged and reported in the result.
    """
    event_type = event.get("type") or "unknown"
    event_id = event.get("id")
    log_event("info", "[ingestion] received event", event_type=event_type, extra={"event_id": event_id}, logger=logger)

    handler = _HANDLERS.get(event_type)
    if handler is None:
        log_event("info", "[ingestion] unhandled event type", event_type=event_type, logger=logger)
        return IngestionResult(event_id, event_type, IngestionOutcome.IGNORED)

    try:
        if event_id:
            body = raw_body if raw_body is not None else json.dumps(event, sort_keys=True).encode("utf-8")
            if not _record_event(db, event_id, event_type, hashlib.sha256(body).hexdigest()):
                log_event("info", "[ingestion] duplicate event skipped", event_type=event_type, extra={"event_id": event_id}, logger=logger)
                return IngestionResult(event_id, event_type, IngestionOutcome.DUPLICATE)

        payload = _payload(event)
        if event_type == CHECKOUT_COMPLETED:
            result = handler(db, payload, now=now)
        else:
            result = handler(db, payload)

        if event_id:
            _finish_event(db, event_id, result.outcome)
        return IngestionResult(event_id, event_type, result.outcome, result.detail)
    except Exception as e:
        db.rollback()
        logger.error("[ingestion] event handling failed", exc_info=True, extra={"event_type": event_type})
        if event_id:
            try:
                _finish_event(db, event_id, IngestionOutcome.FAILED, error=str(e)[:2000])
            except Exception:
                db.rollback()
                logger.error("[ingestion] could not record event failure", exc_info=True, extra={"event_type": event_type})
        return IngestionResult(event_id, event_type, IngestionOutcome.FAILED, str(e))
