"""
benefits/features/catalog/service.py

Benefit catalog service.

Handles:
- Plan lookup by internal id or Stripe product id
- Idempotent plan seeding (upsert_plan)
- Loading catalog/seed files
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from sqlalchemy import select, insert, update, delete
from sqlalchemy.orm import Session

from benefits.core.database import plans, plan_items
from benefits.models.plan import Plan, ClaimableItem


logger = logging.getLogger(__name__)


def _load_items(db: Session, plan_id: str) -> tuple:
    rows = db.execute(
        select(plan_items.c.name, plan_items.c.claim_limit)
        .where(plan_items.c.plan_id == plan_id)
        .order_by(plan_items.c.position, plan_items.c.id)
    ).all()
    return tuple(ClaimableItem(name=row.name, limit=row.claim_limit) for row in rows)


def _to_plan(db: Session, row) -> Plan:
    return Plan(
        plan_id=row.plan_id,
        name=row.name,
        stripe_product_id=row.stripe_product_id,
        stripe_price_id=row.stripe_price_id,
        items=_load_items(db, row.plan_id),
    )


def get_plan(db: Session, plan_id: str) -> Optional[Plan]:
    """Get plan by internal ID."""
    row = db.execute(select(plans).where(plans.c.plan_id == plan_id)).first()
    if not row:
        return None
    return _to_plan(db, row)


def get_plan_by_product(db: Session, stripe_product_id: str) -> Optional[Plan]:
    """Get plan by its Stripe product ID."""
    row = db.execute(
        select(plans).where(plans.c.stripe_product_id == stripe_product_id).limit(1)
    ).first()
    if not row:
        return None
    return _to_plan(db, row)


def resolve_plan(db: Session, plan_ref: str) -> Optional[Plan]:
    """Resolve a client-supplied plan reference (internal id first, then product id)."""
    return get_plan(db, plan_ref) or get_plan_by_product(db, plan_ref)


def list_plans(db: Session) -> List[Plan]:
    rows = db.execute(select(plans).order_by(plans.c.plan_id)).all()
    return [_to_plan(db, row) for row in rows]


def upsert_plan(
    db: Session,
    plan_id: str,
    name: str,
    items: Iterable[Union[ClaimableItem, Dict[str, Any]]],
    *,
    stripe_product_id: Optional[str] = None,
    stripe_price_id: Optional[str] = None,
) -> Plan:
    """
    Create or replace a catalog entry (idempotent).

    The item list is replaced wholesale. Purchases already made keep the items
    they copied at purchase time.

    Raises:
        pydantic.ValidationError: If an item has an empty name or non-positive limit
    """
    parsed = [item if isinstance(item, ClaimableItem) else ClaimableItem(**item) for item in items]

    existing = db.execute(select(plans.c.plan_id).where(plans.c.plan_id == plan_id)).first()
    values = {
        "name": name,
        "stripe_product_id": stripe_product_id,
        "stripe_price_id": stripe_price_id,
    }
    if existing:
        db.execute(update(plans).where(plans.c.plan_id == plan_id).values(**values))
        db.execute(delete(plan_items).where(plan_items.c.plan_id == plan_id))
    else:
        db.execute(insert(plans).values(plan_id=plan_id, **values))

    for position, item in enumerate(parsed):
        db.execute(
            insert(plan_items).values(
                plan_id=plan_id,
                name=item.name,
                claim_limit=item.limit,
                position=position,
            )
        )
    db.commit()

    logger.info("[catalog] plan upserted", extra={"event_type": "catalog.plan_upserted"})
    return Plan(
        plan_id=plan_id,
        name=name,
        stripe_product_id=stripe_product_id,
        stripe_price_id=stripe_price_id,
        items=tuple(parsed),
    )


def load_catalog_file(path: Union[str, Path]) -> Dict[str, Any]:
    """
    Read a seed file of the form:

        {"plans": [{"plan_id", "name", "stripe_product_id", "stripe_price_id",
                    "items": [{"name", "limit"}]}],
         "subscribers": [{"subscriber_id", "points"}]}
    """
    with open(path, "r", encoding="utf-8") as fh:
        data = json.load(fh)
    if not isinstance(data, dict):
        raise ValueError("Catalog file must contain a JSON object")
    data.setdefault("plans", [])
    data.setdefault("subscribers", [])
    return data
