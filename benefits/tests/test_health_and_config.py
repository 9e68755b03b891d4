"""Health endpoints, configuration validation and logging helpers."""
import json
import logging

import pytest

from benefits.core.config import Settings, validate_config
from benefits.core.database import drop_all_tables
from benefits.core.logging import JsonFormatter, PrettyFormatter, latency_bucket_ms, log_event, request_id_ctx_var


def test_healthz(client):
    assert client.get("/healthz").json() == {"status": "ok"}


def test_readyz_ready(client):
    resp = client.get("/readyz")

    assert resp.status_code == 200
    assert resp.json() == {"status": "ready", "missing_tables": []}


def test_readyz_reports_missing_tables(client):
    drop_all_tables()

    resp = client.get("/readyz")

    assert resp.status_code == 503
    body = resp.json()
    assert body["status"] == "not_ready"
    assert "purchase_claims" in body["missing_tables"]


def test_validate_config_warns(caplog):
    cfg = Settings(DATABASE_URL=None, STRIPE_SECRET_KEY=None, STRIPE_WEBHOOK_SECRET=None)

    with caplog.at_level(logging.WARNING, logger="benefits"):
        assert validate_config(strict=False, settings_obj=cfg) is True

    assert "STRIPE_WEBHOOK_SECRET" in caplog.text


def test_validate_config_strict_raises():
    cfg = Settings(DATABASE_URL="sqlite://", STRIPE_SECRET_KEY=None, STRIPE_WEBHOOK_SECRET="whsec_x")

    with pytest.raises(RuntimeError, match="STRIPE_SECRET_KEY"):
        validate_config(strict=True, settings_obj=cfg)


def test_validate_config_complete():
    cfg = Settings(DATABASE_URL="sqlite://", STRIPE_SECRET_KEY="sk_test", STRIPE_WEBHOOK_SECRET="whsec_x")

    assert validate_config(strict=True, settings_obj=cfg) is True


def test_cors_origins_parsing():
    cfg = Settings(CORS_ALLOW_ORIGINS="https://a.example, https://b.example,")

    assert cfg.cors_origins == ["https://a.example", "https://b.example"]


@pytest.mark.parametrize(
    "latency, bucket",
    [(None, "unknown"), (5, "<10ms"), (50, "10-100ms"), (200, "100-500ms"), (700, "500-1000ms"), (5000, ">=1000ms")],
)
def test_latency_bucket(latency, bucket):
    assert latency_bucket_ms(latency) == bucket


def test_json_formatter_includes_structured_fields():
    record = logging.LogRecord("benefits", logging.INFO, __file__, 1, "claim consumed", None, None)
    record.request_id = "req-1"
    record.subscriber_id = "u1"
    record.error_code = "limit_exceeded"

    payload = json.loads(JsonFormatter().format(record))

    assert payload["message"] == "claim consumed"
    assert payload["request_id"] == "req-1"
    assert payload["subscriber_id"] == "u1"
    assert payload["error_code"] == "limit_exceeded"


def test_log_event_uses_context_request_id(caplog):
    token = request_id_ctx_var.set("ctx-rid")
    try:
        with caplog.at_level(logging.INFO, logger="benefits"):
            log_event("info", "points redeemed", subscriber_id="u2", extra={"amount": "x" * 1000})
    finally:
        request_id_ctx_var.reset(token)

    record = caplog.records[-1]
    assert record.request_id == "ctx-rid"
    assert record.subscriber_id == "u2"
    assert record.amount.endswith("...<truncated>")


def test_pretty_formatter_shows_request_and_subscriber():
    record = logging.LogRecord("benefits", logging.INFO, __file__, 1, "claim consumed", None, None)
    record.request_id = "req-1"
    record.subscriber_id = "u1"

    line = PrettyFormatter().format(record)

    assert line.endswith("INFO [benefits] [rid=req-1] [sub=u1] claim consumed")
