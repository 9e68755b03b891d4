"""
Hosted checkout and customer-portal session routes.

- POST /create-checkout-session {planId, userId} -> {id, url}
- POST /create-customer-portal  {userId, planId} -> {url}
"""
from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from benefits.core.database import get_db
from benefits.features.billing.provider import BillingProvider
from benefits.features.billing.service import get_provider, start_checkout, start_portal


router = APIRouter(tags=["billing"])


class CheckoutRequest(BaseModel):
    """Request to create checkout session."""
    planId: Optional[Any] = None
    userId: Optional[Any] = None


class CheckoutResponse(BaseModel):
    id: str
    url: str


class PortalRequest(BaseModel):
    """Request to create portal session."""
    userId: Optional[Any] = None
    planId: Optional[Any] = None


class PortalResponse(BaseModel):
    url: str


@router.post("/create-checkout-session", response_model=CheckoutResponse)
def create_checkout_session(
    request: CheckoutRequest,
    db: Session = Depends(get_db),
    provider: BillingProvider = Depends(get_provider),
):
    """
    Create Stripe checkout session.

    Errors:
        400: Missing planId/userId, userId not a string, or invalid plan
        404: Subscriber not found
        500: Stripe API error
        503: Billing disabled
    """
    session = start_checkout(db, provider, request.planId, request.userId)
    return {"id": session.id, "url": session.url}


@router.post("/create-customer-portal", response_model=PortalResponse)
def create_customer_portal(
    request: PortalRequest,
    db: Session = Depends(get_db),
    provider: BillingProvider = Depends(get_provider),
):
    """
    Create Stripe billing portal session.

    Errors:
        400: Missing fields or no Stripe customer for the plan's purchase
        404: Subscriber not found
        500: Stripe API error
        503: Billing disabled
    """
    url = start_portal(db, provider, request.userId, request.planId)
    return {"url": url}
