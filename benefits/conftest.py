# benefits/conftest.py
import hashlib
import hmac
import json
import time
from unittest.mock import Mock

import pytest


TEST_DATABASE_URL = "sqlite+pysqlite:///:memory:"
WEBHOOK_SECRET = "whsec_test_secret"


@pytest.fixture(scope="function", autouse=True)
def db_engine():
    """
    Fresh in-memory database for every test.

    A single shared connection (StaticPool) lets service sessions, API
    sessions and assertions all see the same data.
    """
    from benefits.core.database import init_engine, create_all_tables, drop_all_tables, dispose_engine

    engine = init_engine(TEST_DATABASE_URL)
    create_all_tables()
    yield engine
    drop_all_tables()
    dispose_engine()


@pytest.fixture
def db(db_engine):
    from benefits.core.database import get_session_factory

    session = get_session_factory()()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def basic_plan(db):
    """Plan 'basic': dental x2, vision x1 per month."""
    from benefits.features.catalog.service import upsert_plan

    return upsert_plan(
        db,
        "basic",
        "Basic Care",
        [{"name": "dental", "limit": 2}, {"name": "vision", "limit": 1}],
        stripe_product_id="prod_basic",
        stripe_price_id="price_basic",
    )


@pytest.fixture
def premium_plan(db):
    from benefits.features.catalog.service import upsert_plan

    return upsert_plan(
        db,
        "premium",
        "Premium Care",
        [{"name": "dental", "limit": 5}, {"name": "physio", "limit": 3}],
        stripe_product_id="prod_premium",
        stripe_price_id="price_premium",
    )


@pytest.fixture
def subscribers(db):
    """u1 with no points, u2 with 50 points."""
    from benefits.features.subscribers.service import ensure_subscriber

    return {
        "u1": ensure_subscriber(db, "u1"),
        "u2": ensure_subscriber(db, "u2", points=50),
    }


def checkout_event(
    user_id="u1",
    plan_id="basic",
    *,
    event_id="evt_checkout_1",
    session_id="cs_test_1",
    customer="cus_123",
    subscription="sub_123",
):
    return {
        "id": event_id,
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": session_id,
                "object": "checkout.session",
                "client_reference_id": user_id,
                "customer": customer,
                "subscription": subscription,
                "metadata": {"planId": plan_id},
            }
        },
    }


def subscription_event(
    event_type="customer.subscription.updated",
    *,
    event_id="evt_sub_1",
    subscription="sub_123",
    customer="cus_123",
    cancel_at_period_end=False,
):
    return {
        "id": event_id,
        "type": event_type,
        "data": {
            "object": {
                "id": subscription,
                "object": "subscription",
                "customer": customer,
                "cancel_at_period_end": cancel_at_period_end,
            }
        },
    }


def sign_payload(body: bytes, secret: str = WEBHOOK_SECRET, timestamp=None) -> str:
    """Build a stripe-signature header using Stripe's v1 scheme."""
    ts = int(timestamp if timestamp is not None else time.time())
    signed = f"{ts}.".encode("utf-8") + body
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"


@pytest.fixture
def stripe_provider():
    """Real Stripe provider with test secrets (no network for webhook verification)."""
    from benefits.features.billing.stripe_provider import StripeProvider

    return StripeProvider(secret_key="sk_test_dummy", webhook_secret=WEBHOOK_SECRET)


@pytest.fixture
def fake_provider():
    """Mock provider for checkout/portal calls."""
    from benefits.features.billing.provider import CheckoutSession

    provider = Mock()
    provider.create_checkout_session.return_value = CheckoutSession(
        id="cs_test_new", url="https://checkout.stripe.com/c/pay/cs_test_new"
    )
    provider.create_portal_session.return_value = "https://billing.stripe.com/p/session/test_123"
    return provider


@pytest.fixture
def client(stripe_provider):
    """TestClient with the Stripe provider dependency overridden."""
    from fastapi.testclient import TestClient
    from benefits.main import app
    from benefits.features.billing.service import get_provider

    app.dependency_overrides[get_provider] = lambda: stripe_provider
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def post_webhook(client):
    """Sign and POST an event to /webhook."""

    def _post(event, *, secret=WEBHOOK_SECRET, signature=None):
        body = json.dumps(event).encode("utf-8")
        header = signature if signature is not None else sign_payload(body, secret)
        return client.post(
            "/webhook",
            content=body,
            headers={"stripe-signature": header, "content-type": "application/json"},
        )

    return _post


@pytest.fixture
def make_checkout_event():
    return checkout_event


@pytest.fixture
def make_subscription_event():
    return subscription_event


@pytest.fixture
def sign():
    return sign_payload
