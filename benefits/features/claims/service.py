"""
benefits/features/claims/service.py

Claim API operations over the ledger and the subscriber directory.

- get_claims_and_points: read-only aggregate for the current month
- use_claim: consume one unit of a claim
- redeem_points: spend from the points balance
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy.orm import Session

from benefits.core.database import store_errors
from benefits.core.errors import NotFoundError
from benefits.core.identity import normalize_subscriber_id, require_text
from benefits.features.ledger.months import month_key
from benefits.features.ledger.service import consume_claim, month_balances
from benefits.features.subscribers import service as subscriber_service
from benefits.models.purchase import ClaimBalance


@dataclass(frozen=True)
class ClaimsSummary:
    claims: List[ClaimBalance] = field(default_factory=list)
    points: int = 0

    def to_dict(self) -> dict:
        return {
            "claims": [claim.model_dump() for claim in self.claims],
            "points": self.points,
        }


def get_claims_and_points(db: Session, subscriber_id: Any, now: Optional[datetime] = None) -> ClaimsSummary:
    """
    Current month's claims across all purchases, plus the points balance.

    Never creates month entries; purchases without counters for the month
    contribute nothing.

    Raises:
        ValidationError: Empty subscriber id
        NotFoundError: Unknown subscriber
    """
    sid = normalize_subscriber_id(subscriber_id, field="patientId")
    with store_errors(db):
        subscriber = subscriber_service.get_subscriber(db, sid)
        if subscriber is None:
            raise NotFoundError("Subscriber not found")
        claims = month_balances(db, sid, month_key(now))
    return ClaimsSummary(claims=claims, points=subscriber.points)


def use_claim(db: Session, subscriber_id: Any, claim_name: Any, now: Optional[datetime] = None) -> ClaimBalance:
    """
    Consume one unit of claim_name for the current month.

    Raises:
        ValidationError: Missing subscriber id or claim name
        NotFoundError: No purchase has the claim this month
        LimitExceededError: Monthly limit already reached
        StoreUnavailableError: Database unreachable or locked
    """
    sid = normalize_subscriber_id(subscriber_id, field="patientId")
    name = require_text(claim_name, field="claimName")
    with store_errors(db):
        return consume_claim(db, sid, name, month_key(now))


def redeem_points(db: Session, subscriber_id: Any, amount: Any) -> int:
    """Spend points; returns the remaining balance."""
    with store_errors(db):
        return subscriber_service.redeem_points(db, subscriber_id, amount)
