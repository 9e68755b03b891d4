"""
Billing service orchestrator.

Coordinates catalog and directory lookups with the billing provider for
hosted checkout and customer-portal sessions. All Stripe-specific code is in
stripe_provider.py.
"""
import logging
from typing import Any

from sqlalchemy.orm import Session

from benefits.core.config import settings
from benefits.core.errors import BillingDisabledError, NotFoundError, ValidationError
from benefits.core.identity import normalize_subscriber_id, require_text
from benefits.core.logging import log_event
from benefits.features.billing.provider import BillingProvider, CheckoutSession
from benefits.features.billing.stripe_provider import StripeProvider
from benefits.features.catalog.service import resolve_plan
from benefits.features.ledger.service import find_purchase_for_plan
from benefits.features.subscribers.service import get_subscriber


logger = logging.getLogger(__name__)


def billing_enabled() -> bool:
    """Check if billing is enabled (Stripe configured)."""
    return bool(settings.STRIPE_SECRET_KEY)


def get_provider() -> BillingProvider:
    """
    FastAPI dependency returning the configured billing provider.

    Raises:
        BillingDisabledError: If STRIPE_SECRET_KEY is not set
    """
    if not billing_enabled():
        raise BillingDisabledError("Stripe is not configured. Set STRIPE_SECRET_KEY environment variable.")
    return StripeProvider()


def start_checkout(db: Session, provider: BillingProvider, plan_ref: Any, user_id: Any) -> CheckoutSession:
    """
    Start a hosted checkout session for a plan.

    Args:
        plan_ref: Stripe product ID (or internal plan ID) chosen by the client
        user_id: Raw subscriber identity

    Raises:
        ValidationError: Missing planId/userId, userId not a string, or unknown plan
        NotFoundError: Subscriber does not exist
        UpstreamProviderError: Stripe call failed
    """
    if not plan_ref or not user_id:
        raise ValidationError("Missing planId or userId")
    sid = normalize_subscriber_id(user_id, field="userId")
    plan_ref = require_text(plan_ref, field="planId")

    plan = resolve_plan(db, plan_ref)
    if plan is None or not plan.stripe_price_id:
        raise ValidationError("Invalid plan")

    subscriber = get_subscriber(db, sid)
    if subscriber is None:
        raise NotFoundError("Subscriber not found")

    session = provider.create_checkout_session(
        price_id=plan.stripe_price_id,
        subscriber_id=sid,
        plan_id=plan.plan_id,
        customer_id=subscriber.stripe_customer_id,
    )
    log_event(
        "info",
        "[billing] checkout session created",
        subscriber_id=sid,
        extra={"plan_id": plan.plan_id, "reused_customer": bool(subscriber.stripe_customer_id)},
        logger=logger,
    )
    return session


def start_portal(db: Session, provider: BillingProvider, user_id: Any, plan_ref: Any) -> str:
    """
    Start a billing portal session for the customer behind a plan's purchase.

    Raises:
        ValidationError: Missing fields, or no Stripe customer for that purchase
        NotFoundError: Subscriber does not exist
        UpstreamProviderError: Stripe call failed
    """
    if not user_id or not plan_ref:
        raise ValidationError("Missing userId or planId")
    sid = normalize_subscriber_id(user_id, field="userId")
    plan_ref = require_text(plan_ref, field="planId")

    if get_subscriber(db, sid) is None:
        raise NotFoundError("Subscriber not found")

    plan = resolve_plan(db, plan_ref)
    plan_id = plan.plan_id if plan else plan_ref
    purchase = find_purchase_for_plan(db, sid, plan_id)
    customer_id = purchase.stripe_customer_id if purchase else None
    if not customer_id:
        raise ValidationError("User does not have a Stripe Customer ID")

    url = provider.create_portal_session(customer_id)
    log_event("info", "[billing] portal session created", subscriber_id=sid, extra={"plan_id": plan_id}, logger=logger)
    return url
