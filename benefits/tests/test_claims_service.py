"""Tests for the claim API operations (getClaims / useClaim / redeemPoints)."""

from datetime import datetime, timezone
from unittest.mock import patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from benefits.core.database import purchase_claims
from benefits.core.errors import LimitExceededError, NotFoundError, StoreUnavailableError, ValidationError
from benefits.features.claims import service as claims_service
from benefits.features.claims.service import get_claims_and_points, redeem_points, use_claim
from benefits.features.ingestion.service import ingest_event


OCT = datetime(2026, 10, 5, 12, 0, tzinfo=timezone.utc)
NOV = datetime(2026, 11, 1, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def purchased(db, basic_plan, subscribers, make_checkout_event):
    """u1 bought the basic plan in October."""
    ingest_event(db, make_checkout_event("u1", "basic"), now=OCT)


def _claim_rows(db):
    return db.execute(select(func.count()).select_from(purchase_claims)).scalar_one()


def test_get_claims_lists_current_month(db, purchased):
    summary = get_claims_and_points(db, "u1", now=OCT)

    assert summary.to_dict() == {
        "claims": [
            {"name": "dental", "used": 0, "limit": 2},
            {"name": "vision", "used": 0, "limit": 1},
        ],
        "points": 0,
    }


def test_get_claims_includes_points(db, subscribers):
    summary = get_claims_and_points(db, "u2", now=OCT)

    assert summary.claims == []
    assert summary.points == 50


def test_get_claims_new_month_is_empty_and_pure(db, purchased):
    before = _claim_rows(db)

    first = get_claims_and_points(db, "u1", now=NOV)
    second = get_claims_and_points(db, "u1", now=NOV)

    assert first.claims == []
    assert first == second
    assert _claim_rows(db) == before


def test_get_claims_is_repeatable(db, purchased):
    use_claim(db, "u1", "dental", now=OCT)

    assert get_claims_and_points(db, "u1", now=OCT) == get_claims_and_points(db, "u1", now=OCT)


def test_get_claims_flattens_across_purchases(db, basic_plan, premium_plan, subscribers, make_checkout_event):
    ingest_event(db, make_checkout_event("u1", "basic", event_id="evt_a", session_id="cs_a"), now=OCT)
    ingest_event(
        db,
        make_checkout_event("u1", "premium", event_id="evt_b", session_id="cs_b"),
        now=datetime(2026, 10, 6, tzinfo=timezone.utc),
    )

    names = [c.name for c in get_claims_and_points(db, "u1", now=OCT).claims]

    assert sorted(names) == ["dental", "dental", "physio", "vision"]
    # newest purchase first
    assert names[:2] == ["dental", "physio"]


def test_get_claims_unknown_subscriber(db):
    with pytest.raises(NotFoundError):
        get_claims_and_points(db, "ghost", now=OCT)


def test_get_claims_requires_id(db):
    with pytest.raises(ValidationError):
        get_claims_and_points(db, "", now=OCT)


def test_use_claim_until_limit(db, purchased):
    first = use_claim(db, "u1", "dental", now=OCT)
    second = use_claim(db, "u1", "dental", now=OCT)

    assert (first.used, second.used) == (1, 2)
    with pytest.raises(LimitExceededError):
        use_claim(db, "u1", "dental", now=OCT)

    claims = {c.name: c.used for c in get_claims_and_points(db, "u1", now=OCT).claims}
    assert claims == {"dental": 2, "vision": 0}


def test_use_claim_unknown_name(db, purchased):
    with pytest.raises(NotFoundError):
        use_claim(db, "u1", "massage", now=OCT)


def test_use_claim_in_month_without_counters(db, purchased):
    with pytest.raises(NotFoundError):
        use_claim(db, "u1", "dental", now=NOV)


@pytest.mark.parametrize("user, claim", [("", "dental"), ("u1", ""), (None, "dental"), ("u1", None)])
def test_use_claim_requires_fields(db, purchased, user, claim):
    with pytest.raises(ValidationError):
        use_claim(db, user, claim, now=OCT)


def test_use_claim_normalizes_subscriber_id(db, purchased):
    assert use_claim(db, "u1\n", "vision", now=OCT).used == 1


def test_redeem_points_delegates(db, subscribers):
    assert redeem_points(db, "u2", 30) == 20
    assert get_claims_and_points(db, "u2", now=OCT).points == 20


def test_store_failure_surfaces_as_store_unavailable(db, purchased):
    locked = OperationalError("UPDATE purchase_claims", {}, Exception("database is locked"))
    with patch.object(claims_service, "consume_claim", side_effect=locked):
        with pytest.raises(StoreUnavailableError):
            use_claim(db, "u1", "dental", now=OCT)
    with patch.object(claims_service, "month_balances", side_effect=locked):
        with pytest.raises(StoreUnavailableError):
            get_claims_and_points(db, "u1", now=OCT)

    assert get_claims_and_points(db, "u1", now=OCT).claims[0].used == 0
