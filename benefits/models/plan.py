"""
benefits/models/plan.py

Catalog models: purchasable plans and the claimable items they grant.
"""

from typing import Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field


class ClaimableItem(BaseModel):
    """One claimable benefit and its monthly limit."""
    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    limit: int = Field(gt=0)


class Plan(BaseModel):
    """
    Plan represents a purchasable benefit bundle.

    Items are copied into each Purchase at purchase time, so editing a plan
    never changes what an existing purchase grants.
    """
    model_config = ConfigDict(frozen=True)

    plan_id: str
    name: str
    stripe_product_id: Optional[str] = None
    stripe_price_id: Optional[str] = None
    items: Tuple[ClaimableItem, ...] = ()
