"""Tests for subscriber id normalization and month keys."""

from datetime import datetime, timedelta, timezone

import pytest

from benefits.core.errors import ValidationError
from benefits.core.identity import normalize_subscriber_id, require_text
from benefits.features.ledger.months import month_key


@pytest.mark.parametrize(
    "raw",
    ["u1", " u1", "u1\n", "\tu1\r\n", "u\x001", "  u1  \n"],
)
def test_normalize_strips_whitespace_and_control_chars(raw):
    assert normalize_subscriber_id(raw) == "u1"


def test_normalize_keeps_inner_spaces():
    assert normalize_subscriber_id(" Jane Doe\n") == "Jane Doe"


@pytest.mark.parametrize("raw", ["", "   ", "\n", None, 123, ["u1"]])
def test_normalize_rejects_empty_or_non_string(raw):
    with pytest.raises(ValidationError):
        normalize_subscriber_id(raw)


def test_require_text_error_names_field():
    with pytest.raises(ValidationError, match="claimName is required"):
        require_text("  ", field="claimName")


def test_month_key_is_zero_padded():
    assert month_key(datetime(2026, 3, 9, tzinfo=timezone.utc)) == "2026-03"
    assert month_key(datetime(2026, 11, 30, tzinfo=timezone.utc)) == "2026-11"


def test_month_key_uses_utc():
    # 23:30 on Jan 31 in UTC-5 is already February in UTC
    local = datetime(2026, 1, 31, 23, 30, tzinfo=timezone(timedelta(hours=-5)))
    assert month_key(local) == "2026-02"


def test_month_key_treats_naive_as_utc():
    assert month_key(datetime(2025, 12, 31, 23, 59)) == "2025-12"


def test_month_key_stable_within_month():
    first = month_key(datetime(2026, 10, 1, 0, 0, tzinfo=timezone.utc))
    last = month_key(datetime(2026, 10, 31, 23, 59, tzinfo=timezone.utc))
    assert first == last == "2026-10"
