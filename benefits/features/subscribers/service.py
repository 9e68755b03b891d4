"""
benefits/features/subscribers/service.py

Subscriber directory: identity -> Stripe customer reference + points balance.

Points are only ever changed with a single conditional UPDATE so concurrent
redemptions cannot race past the balance check.
"""

import logging
from typing import Any, Optional

from sqlalchemy import select, insert, update
from sqlalchemy.orm import Session

from benefits.core.database import subscribers
from benefits.core.errors import (
    InsufficientBalanceError,
    NotFoundError,
    ValidationError,
)
from benefits.core.identity import normalize_subscriber_id
from benefits.core.logging import log_event
from benefits.models.subscriber import Subscriber


logger = logging.getLogger(__name__)


def _to_subscriber(row) -> Subscriber:
    return Subscriber(
        subscriber_id=row.subscriber_id,
        stripe_customer_id=row.stripe_customer_id,
        points=row.points or 0,
    )


def get_subscriber(db: Session, subscriber_id: str) -> Optional[Subscriber]:
    """Get subscriber by (already normalized) ID."""
    row = db.execute(
        select(subscribers).where(subscribers.c.subscriber_id == subscriber_id)
    ).first()
    if not row:
        return None
    return _to_subscriber(row)


def ensure_subscriber(db: Session, subscriber_id: Any, points: int = 0) -> Subscriber:
    """
    Create the subscriber if missing (idempotent). Existing balances are kept.

    Used by seeding and tests; subscribers are otherwise provisioned upstream.
    """
    sid = normalize_subscriber_id(subscriber_id)
    if isinstance(points, bool) or not isinstance(points, int) or points < 0:
        raise ValidationError("points must be a non-negative integer")

    existing = get_subscriber(db, sid)
    if existing:
        return existing

    db.execute(insert(subscribers).values(subscriber_id=sid, points=points))
    db.commit()
    return Subscriber(subscriber_id=sid, points=points)


def set_customer_ref(db: Session, subscriber_id: str, customer_ref: str) -> bool:
    """Record the Stripe customer ID on the subscriber. Returns False if absent."""
    result = db.execute(
        update(subscribers)
        .where(subscribers.c.subscriber_id == subscriber_id)
        .values(stripe_customer_id=customer_ref)
    )
    db.commit()
    return result.rowcount > 0


def _validate_amount(amount: Any) -> int:
    # bool is an int subclass; reject it along with floats and strings
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationError("pointsToRedeem must be a positive integer")
    return amount


def redeem_points(db: Session, subscriber_id: Any, amount: Any) -> int:
    """
    Atomically subtract points from a subscriber's balance.

    Args:
        db: Session
        subscriber_id: Raw external identity (normalized here)
        amount: Positive integer number of points

    Returns:
        Remaining balance

    Raises:
        ValidationError: Empty id or non-positive/non-integer amount
        NotFoundError: Subscriber does not exist
        InsufficientBalanceError: Balance lower than amount (no mutation)
    """
    sid = normalize_subscriber_id(subscriber_id, field="patientId")
    amount = _validate_amount(amount)

    result = db.execute(
        update(subscribers)
        .where(subscribers.c.subscriber_id == sid)
        .where(subscribers.c.points >= amount)
        .values(points=subscribers.c.points - amount)
    )
    if result.rowcount == 0:
        db.rollback()
        current = get_subscriber(db, sid)
        if current is None:
            raise NotFoundError("Subscriber not found")
        log_event(
            "info",
            "[points] redemption refused",
            subscriber_id=sid,
            error_code=InsufficientBalanceError.code,
            extra={"requested": amount, "balance": current.points},
            logger=logger,
        )
        raise InsufficientBalanceError("Not enough points to redeem")

    db.commit()
    remaining = db.execute(
        select(subscribers.c.points).where(subscribers.c.subscriber_id == sid)
    ).scalar_one()

    log_event(
        "info",
        "[points] redeemed",
        subscriber_id=sid,
        extra={"amount": amount, "balance": remaining},
        logger=logger,
    )
    return remaining
