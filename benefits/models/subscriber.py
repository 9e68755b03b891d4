from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class Subscriber(BaseModel):
    """A user identity linked to an optional Stripe customer and a points balance."""
    model_config = ConfigDict(frozen=True)

    subscriber_id: str
    stripe_customer_id: Optional[str] = None
    points: int = Field(default=0, ge=0)
