"""
Unit tests for offer helpers.

WHAT: Test amount validation, offer text and status fingerprints
WHY: Invalid amounts must be rejected before any network call
HOW: Direct calls with good and bad inputs
"""

from decimal import Decimal

import pytest

from marketchat.models.chat import Message
from marketchat.utils.exceptions import ValidationException
from marketchat.utils.offers import (
    format_offer_content,
    offer_fingerprint,
    parse_offer_amount,
)
from tests.fixtures.payloads import message_payload


@pytest.mark.unit
class TestParseOfferAmount:
    """Test parse_offer_amount."""

    @pytest.mark.parametrize("raw,expected", [
        (450, Decimal("450")),
        ("450", Decimal("450")),
        (" 450.50 ", Decimal("450.50")),
        ("₹1,200", Decimal("1200")),
        (450.1, Decimal("450.1")),
        (Decimal("99.99"), Decimal("99.99")),
    ])
    def test_valid_amounts(self, raw, expected):
        assert parse_offer_amount(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "   ", "abc", "NaN", "inf", 0, "0", -5, "-1.5", True])
    def test_invalid_amounts(self, raw):
        with pytest.raises(ValidationException) as exc_info:
            parse_offer_amount(raw)
        assert exc_info.value.code == "VALIDATION_ERROR"
        assert exc_info.value.details == {"field": "amount"}


@pytest.mark.unit
def test_format_offer_content():
    assert format_offer_content(Decimal("450")) == "Made offer: ₹450"
    assert format_offer_content(Decimal("450.00")) == "Made offer: ₹450"
    assert format_offer_content(Decimal("450.5")) == "Made offer: ₹450.50"


@pytest.mark.unit
def test_offer_fingerprint_tracks_status_changes():
    before = [
        Message.model_validate(message_payload(1, content="hi")),
        Message.model_validate(message_payload(2, offer_id=7, status="Pending")),
    ]
    after = [
        Message.model_validate(message_payload(1, content="hi")),
        Message.model_validate(message_payload(2, offer_id=7, status="Accepted")),
    ]

    assert offer_fingerprint(before) == (("7", "Pending"),)
    assert offer_fingerprint(before) != offer_fingerprint(after)
