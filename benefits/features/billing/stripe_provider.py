"""
Stripe billing provider implementation.

Implements BillingProvider protocol using the Stripe API.
Handles webhook signature verification and hosted session creation.
"""
import json
import logging
from typing import Dict, Any, Optional

import stripe

from benefits.core.config import settings
from benefits.core.errors import (
    BillingDisabledError,
    SignatureInvalidError,
    UpstreamProviderError,
)
from benefits.features.billing.provider import CheckoutSession


logger = logging.getLogger(__name__)


class StripeProvider:
    """Stripe implementation of BillingProvider protocol."""

    def __init__(
        self,
        secret_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        *,
        success_url: Optional[str] = None,
        cancel_url: Optional[str] = None,
        portal_return_url: Optional[str] = None,
        webhook_tolerance: Optional[int] = None,
    ):
        """
        Initialize Stripe provider.

        Args:
            secret_key: Stripe secret key (defaults to STRIPE_SECRET_KEY setting)
            webhook_secret: Endpoint signing secret (defaults to STRIPE_WEBHOOK_SECRET setting)
        """
        self.secret_key = secret_key or settings.STRIPE_SECRET_KEY
        self.webhook_secret = webhook_secret or settings.STRIPE_WEBHOOK_SECRET
        self.success_url = success_url or settings.CHECKOUT_SUCCESS_URL
        self.cancel_url = cancel_url or settings.CHECKOUT_CANCEL_URL
        self.portal_return_url = portal_return_url or settings.PORTAL_RETURN_URL
        self.webhook_tolerance = webhook_tolerance or settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS

        if not self.secret_key:
            raise BillingDisabledError("STRIPE_SECRET_KEY not configured")

    def verify_webhook(self, headers: Dict[str, str], body: bytes) -> Dict[str, Any]:
        """Verify Stripe webhook signature over the raw body and parse the event."""
        if not self.webhook_secret:
            raise SignatureInvalidError("STRIPE_WEBHOOK_SECRET not configured")

        sig_header = headers.get("stripe-signature") or headers.get("Stripe-Signature")
        if not sig_header:
            raise SignatureInvalidError("Missing stripe-signature header")

        try:
            stripe.Webhook.construct_event(
                body, sig_header, self.webhook_secret, tolerance=self.webhook_tolerance
            )
        except ValueError as e:
            raise SignatureInvalidError(f"Invalid payload: {e}")
        except stripe.SignatureVerificationError as e:
            raise SignatureInvalidError(f"Invalid signature: {e}")

        # The verified body is the event; work with plain dicts from here on
        event = json.loads(body)
        if not isinstance(event, dict) or "type" not in event:
            raise SignatureInvalidError("Invalid payload: missing event type")
        return event

    def create_checkout_session(
        self,
        *,
        price_id: str,
        subscriber_id: str,
        plan_id: str,
        customer_id: Optional[str] = None,
    ) -> CheckoutSession:
        """Create Stripe checkout session, reusing the customer when known."""
        params: Dict[str, Any] = {
            "payment_method_types": ["card"],
            "mode": "subscription",
            "line_items": [{"price": price_id, "quantity": 1}],
            "success_url": self.success_url,
            "cancel_url": self.cancel_url,
            "client_reference_id": subscriber_id,
            "metadata": {"planId": plan_id},
        }
        if customer_id:
            params["customer"] = customer_id

        try:
            session = stripe.checkout.Session.create(api_key=self.secret_key, **params)
        except stripe.StripeError as e:
            logger.error("[billing] checkout session creation failed", exc_info=True)
            raise UpstreamProviderError(f"Stripe checkout session creation failed: {e}")
        return CheckoutSession(id=session.id, url=session.url)

    def create_portal_session(self, customer_id: str) -> str:
        """Create Stripe billing portal session."""
        params: Dict[str, Any] = {"customer": customer_id}
        if self.portal_return_url:
            params["return_url"] = self.portal_return_url
        try:
            session = stripe.billing_portal.Session.create(api_key=self.secret_key, **params)
        except stripe.StripeError as e:
            logger.error("[billing] portal session creation failed", exc_info=True)
            raise UpstreamProviderError(f"Stripe portal session creation failed: {e}")
        return session.url
