"""
Billing provider protocol.

Defines the interface for billing providers (Stripe, etc.).
This allows swapping providers without changing business logic.
"""
from typing import Protocol, Dict, Any, Optional
from dataclasses import dataclass


@dataclass(frozen=True)
class CheckoutSession:
    """Hosted checkout session handle returned to the client."""
    id: str
    url: str


class BillingProvider(Protocol):
    """
    Protocol for billing providers.

    Implementations must handle:
    - Webhook signature verification and parsing
    - Checkout session creation
    - Portal session creation
    """

    def verify_webhook(self, headers: Dict[str, str], body: bytes) -> Dict[str, Any]:
        """
        Verify webhook signature and parse event.

        Args:
            headers: HTTP headers (must include signature header)
            body: Raw, unparsed webhook body

        Returns:
            The event as a plain dict ({"id", "type", "data": {"object": ...}})

        Raises:
            SignatureInvalidError: If signature invalid or payload unparseable
        """
        ...

    def create_checkout_session(
        self,
        *,
        price_id: str,
        subscriber_id: str,
        plan_id: str,
        customer_id: Optional[str] = None,
    ) -> CheckoutSession:
        """
        Create a hosted subscription checkout session.

        Args:
            price_id: Provider price ID
            subscriber_id: Sent back as client_reference_id in the webhook
            plan_id: Internal plan ID, sent back in metadata
            customer_id: Existing provider customer to reuse (optional)

        Raises:
            UpstreamProviderError: If session creation fails
        """
        ...

    def create_portal_session(self, customer_id: str) -> str:
        """
        Create a billing portal session for customer self-service.

        Returns:
            Portal session URL

        Raises:
            UpstreamProviderError: If portal session creation fails
        """
        ...
