"""Checkout and portal endpoint tests with a mocked billing provider."""
from unittest.mock import patch

import pytest

from benefits.core.config import settings
from benefits.core.errors import UpstreamProviderError
from benefits.features.billing.service import get_provider
from benefits.features.ingestion.service import ingest_event
from benefits.main import app


@pytest.fixture
def billing_client(client, fake_provider):
    app.dependency_overrides[get_provider] = lambda: fake_provider
    return client


def test_create_checkout_session(billing_client, basic_plan, subscribers, fake_provider):
    resp = billing_client.post("/create-checkout-session", json={"planId": "prod_basic", "userId": "u1"})

    assert resp.status_code == 200
    assert resp.json() == {"id": "cs_test_new", "url": "https://checkout.stripe.com/c/pay/cs_test_new"}
    assert fake_provider.create_checkout_session.call_args.kwargs["price_id"] == "price_basic"


def test_checkout_missing_fields(billing_client):
    resp = billing_client.post("/create-checkout-session", json={"planId": "basic"})

    assert resp.status_code == 400
    assert resp.json()["detail"] == "Missing planId or userId"


def test_checkout_user_id_must_be_string(billing_client, basic_plan):
    resp = billing_client.post("/create-checkout-session", json={"planId": "basic", "userId": 7})

    assert resp.status_code == 400


def test_checkout_invalid_plan(billing_client, subscribers):
    resp = billing_client.post("/create-checkout-session", json={"planId": "prod_x", "userId": "u1"})

    assert resp.status_code == 400
    assert resp.json()["detail"] == "Invalid plan"


def test_checkout_unknown_user(billing_client, basic_plan):
    resp = billing_client.post("/create-checkout-session", json={"planId": "basic", "userId": "ghost"})

    assert resp.status_code == 404


def test_checkout_upstream_failure(billing_client, basic_plan, subscribers, fake_provider):
    fake_provider.create_checkout_session.side_effect = UpstreamProviderError("Stripe checkout session creation failed")

    resp = billing_client.post("/create-checkout-session", json={"planId": "basic", "userId": "u1"})

    assert resp.status_code == 500
    assert resp.json()["error"]["code"] == "upstream_provider_error"


def test_customer_portal(billing_client, db, basic_plan, subscribers, make_checkout_event, fake_provider):
    ingest_event(db, make_checkout_event("u1", "basic", customer="cus_portal"))

    resp = billing_client.post("/create-customer-portal", json={"userId": "u1", "planId": "basic"})

    assert resp.status_code == 200
    assert resp.json() == {"url": "https://billing.stripe.com/p/session/test_123"}
    fake_provider.create_portal_session.assert_called_once_with("cus_portal")


def test_customer_portal_without_customer(billing_client, basic_plan, subscribers):
    resp = billing_client.post("/create-customer-portal", json={"userId": "u1", "planId": "basic"})

    assert resp.status_code == 400


def test_billing_disabled_returns_503(client, basic_plan, subscribers):
    app.dependency_overrides.pop(get_provider, None)

    with patch.object(settings, "STRIPE_SECRET_KEY", None):
        resp = client.post("/create-checkout-session", json={"planId": "basic", "userId": "u1"})

    assert resp.status_code == 503
    assert resp.json()["error"]["code"] == "billing_disabled"
