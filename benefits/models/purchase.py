"""
benefits/models/purchase.py

Purchase and claim-ledger models.

A Purchase owns a claims ledger keyed by calendar month ("YYYY-MM"); each
month maps claimable item names to a ClaimCounter. Counters only move up
within a month and never exceed their limit.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, Optional
from pydantic import BaseModel, ConfigDict, Field, model_validator


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class ClaimCounter(BaseModel):
    model_config = ConfigDict(frozen=True)

    used: int = Field(ge=0)
    limit: int = Field(gt=0)

    @model_validator(mode="after")
    def _used_within_limit(self):
        if self.used > self.limit:
            raise ValueError("used cannot exceed limit")
        return self


class ClaimBalance(BaseModel):
    """Flattened view of one item's counter for a month."""
    model_config = ConfigDict(frozen=True)

    name: str
    used: int
    limit: int


class Purchase(BaseModel):
    model_config = ConfigDict(frozen=True)

    purchase_id: str
    subscriber_id: str
    plan_id: str
    plan_name: str
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    checkout_session_id: Optional[str] = None
    subscription_status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    purchased_at: datetime
    claims: Dict[str, Dict[str, ClaimCounter]] = Field(default_factory=dict)

    def claims_for_month(self, month: str) -> Dict[str, ClaimCounter]:
        """Return the month's counters, or an empty mapping (never creates one)."""
        return dict(self.claims.get(month, {}))
