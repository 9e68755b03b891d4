"""
benefits/features/ledger/service.py

Entitlement ledger: purchases and their monthly claim counters.

Invariants:
- For every recorded month and item, 0 <= used <= limit.
- used only increases, one unit at a time, via consume_claim.
- Month rows are created only when a purchase is recorded; reads never
  create them.
- Purchases are enumerated newest-first (purchased_at desc); "first" always
  means first in that order.
"""

import logging
import uuid
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select, insert, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from benefits.core.database import purchases, purchase_claims
from benefits.core.errors import LimitExceededError, NotFoundError
from benefits.core.logging import log_event
from benefits.features.ledger.months import month_key, normalize_now
from benefits.models.plan import Plan
from benefits.models.purchase import (
    ClaimBalance,
    ClaimCounter,
    Purchase,
    SubscriptionStatus,
)


logger = logging.getLogger(__name__)

_NEWEST_FIRST = (purchases.c.purchased_at.desc(), purchases.c.purchase_id)


def _load_claims(db: Session, purchase_id: str) -> Dict[str, Dict[str, ClaimCounter]]:
    rows = db.execute(
        select(purchase_claims)
        .where(purchase_claims.c.purchase_id == purchase_id)
        .order_by(purchase_claims.c.month_key, purchase_claims.c.id)
    ).all()
    ledger: Dict[str, Dict[str, ClaimCounter]] = {}
    for row in rows:
        ledger.setdefault(row.month_key, {})[row.item_name] = ClaimCounter(
            used=row.used, limit=row.claim_limit
        )
    return ledger


def _to_purchase(db: Session, row) -> Purchase:
    return Purchase(
        purchase_id=row.purchase_id,
        subscriber_id=row.subscriber_id,
        plan_id=row.plan_id,
        plan_name=row.plan_name,
        stripe_customer_id=row.stripe_customer_id,
        stripe_subscription_id=row.stripe_subscription_id,
        checkout_session_id=row.checkout_session_id,
        subscription_status=SubscriptionStatus(row.subscription_status),
        purchased_at=row.purchased_at,
        claims=_load_claims(db, row.purchase_id),
    )


def get_purchase_by_checkout_session(db: Session, checkout_session_id: str) -> Optional[Purchase]:
    row = db.execute(
        select(purchases).where(purchases.c.checkout_session_id == checkout_session_id)
    ).first()
    if not row:
        return None
    return _to_purchase(db, row)


def list_purchases(db: Session, subscriber_id: str) -> List[Purchase]:
    """All purchases for a subscriber, newest first."""
    rows = db.execute(
        select(purchases)
        .where(purchases.c.subscriber_id == subscriber_id)
        .order_by(*_NEWEST_FIRST)
    ).all()
    return [_to_purchase(db, row) for row in rows]


def find_purchase_for_plan(db: Session, subscriber_id: str, plan_id: str) -> Optional[Purchase]:
    """Newest purchase of a given plan by a subscriber."""
    row = db.execute(
        select(purchases)
        .where(purchases.c.subscriber_id == subscriber_id)
        .where(purchases.c.plan_id == plan_id)
        .order_by(*_NEWEST_FIRST)
        .limit(1)
    ).first()
    if not row:
        return None
    return _to_purchase(db, row)


def find_purchase_for_subscription(
    db: Session,
    *,
    subscription_id: Optional[str] = None,
    customer_ref: Optional[str] = None,
) -> Optional[Purchase]:
    """
    Locate the purchase a subscription event refers to.

    Matches on the Stripe subscription ID first, then falls back to the newest
    purchase carrying the Stripe customer ID.
    """
    if subscription_id:
        row = db.execute(
            select(purchases)
            .where(purchases.c.stripe_subscription_id == subscription_id)
            .order_by(*_NEWEST_FIRST)
            .limit(1)
        ).first()
        if row:
            return _to_purchase(db, row)
    if customer_ref:
        row = db.execute(
            select(purchases)
            .where(purchases.c.stripe_customer_id == customer_ref)
            .order_by(*_NEWEST_FIRST)
            .limit(1)
        ).first()
        if row:
            return _to_purchase(db, row)
    return None


def create_purchase(
    db: Session,
    *,
    subscriber_id: str,
    plan: Plan,
    customer_ref: Optional[str],
    subscription_id: Optional[str] = None,
    checkout_session_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Tuple[Purchase, bool]:
    """
    Append a purchase with the current month's counters initialized.

    Every claimable item of the plan is copied with used=0 and its limit.
    The append is idempotent on checkout_session_id when one is given.

    Returns:
        (purchase, created) where created is False for a duplicate checkout
    """
    if checkout_session_id:
        existing = get_purchase_by_checkout_session(db, checkout_session_id)
        if existing:
            return existing, False

    current = normalize_now(now)
    month = month_key(current)
    purchase_id = str(uuid.uuid4())

    try:
        db.execute(
            insert(purchases).values(
                purchase_id=purchase_id,
                subscriber_id=subscriber_id,
                plan_id=plan.plan_id,
                plan_name=plan.name,
                stripe_customer_id=customer_ref,
                stripe_subscription_id=subscription_id,
                checkout_session_id=checkout_session_id,
                subscription_status=SubscriptionStatus.ACTIVE.value,
                purchased_at=current,
            )
        )
        for item in plan.items:
            db.execute(
                insert(purchase_claims).values(
                    purchase_id=purchase_id,
                    month_key=month,
                    item_name=item.name,
                    used=0,
                    claim_limit=item.limit,
                )
            )
        db.commit()
    except IntegrityError:
        # Race condition: the same checkout was recorded concurrently
        db.rollback()
        if checkout_session_id:
            existing = get_purchase_by_checkout_session(db, checkout_session_id)
            if existing:
                return existing, False
        raise

    purchase = Purchase(
        purchase_id=purchase_id,
        subscriber_id=subscriber_id,
        plan_id=plan.plan_id,
        plan_name=plan.name,
        stripe_customer_id=customer_ref,
        stripe_subscription_id=subscription_id,
        checkout_session_id=checkout_session_id,
        subscription_status=SubscriptionStatus.ACTIVE,
        purchased_at=current,
        claims={month: {item.name: ClaimCounter(used=0, limit=item.limit) for item in plan.items}},
    )
    return purchase, True


def set_purchase_status(db: Session, purchase_id: str, status: SubscriptionStatus) -> None:
    db.execute(
        update(purchases)
        .where(purchases.c.purchase_id == purchase_id)
        .values(subscription_status=SubscriptionStatus(status).value)
    )
    db.commit()


def month_balances(db: Session, subscriber_id: str, month: str) -> List[ClaimBalance]:
    """
    Flatten every purchase's counters for one month (newest purchase first).

    Read-only: months without rows simply contribute nothing.
    """
    rows = db.execute(
        select(
            purchase_claims.c.item_name,
            purchase_claims.c.used,
            purchase_claims.c.claim_limit,
        )
        .select_from(purchase_claims.join(purchases, purchase_claims.c.purchase_id == purchases.c.purchase_id))
        .where(purchases.c.subscriber_id == subscriber_id)
        .where(purchase_claims.c.month_key == month)
        .order_by(*_NEWEST_FIRST, purchase_claims.c.id)
    ).all()
    return [ClaimBalance(name=row.item_name, used=row.used, limit=row.claim_limit) for row in rows]


def _first_counter(db: Session, subscriber_id: str, claim_name: str, month: str):
    return db.execute(
        select(
            purchase_claims.c.id,
            purchase_claims.c.purchase_id,
            purchase_claims.c.used,
            purchase_claims.c.claim_limit,
        )
        .select_from(purchase_claims.join(purchases, purchase_claims.c.purchase_id == purchases.c.purchase_id))
        .where(purchases.c.subscriber_id == subscriber_id)
        .where(purchase_claims.c.month_key == month)
        .where(purchase_claims.c.item_name == claim_name)
        .order_by(*_NEWEST_FIRST)
        .limit(1)
    ).first()


def consume_claim(db: Session, subscriber_id: str, claim_name: str, month: str) -> ClaimBalance:
    """
    Consume one unit of a claim on the first purchase that has it this month.

    The limit check and the increment are a single conditional UPDATE on one
    counter row, so concurrent consumers can never push used past limit.

    Raises:
        NotFoundError: No purchase has the claim for this month
        LimitExceededError: used + 1 would exceed limit (no mutation)
    """
    counter = _first_counter(db, subscriber_id, claim_name, month)
    if counter is None:
        raise NotFoundError("Claim not found")

    result = db.execute(
        update(purchase_claims)
        .where(purchase_claims.c.id == counter.id)
        .where(purchase_claims.c.used < purchase_claims.c.claim_limit)
        .values(used=purchase_claims.c.used + 1)
    )
    if result.rowcount == 0:
        db.rollback()
        log_event(
            "info",
            "[ledger] claim limit reached",
            subscriber_id=subscriber_id,
            error_code=LimitExceededError.code,
            extra={"claim": claim_name, "month": month, "limit": counter.claim_limit},
            logger=logger,
        )
        raise LimitExceededError("Claim limit reached. Cannot redeem anymore.")
    db.commit()

    row = db.execute(
        select(purchase_claims.c.used, purchase_claims.c.claim_limit)
        .where(purchase_claims.c.id == counter.id)
    ).one()
    log_event(
        "info",
        "[ledger] claim consumed",
        subscriber_id=subscriber_id,
        extra={"claim": claim_name, "month": month, "purchase_id": counter.purchase_id, "used": row.used},
        logger=logger,
    )
    return ClaimBalance(name=claim_name, used=row.used, limit=row.claim_limit)
