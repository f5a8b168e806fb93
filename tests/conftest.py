"""
Pytest configuration and shared fixtures.

WHAT: Markers, fake backends and wire-payload builders
WHY: Keep service tests short and independent of HTTP
HOW: FakeMarketplace with one buyer/seller conversation per test
"""

import pytest

from marketchat.models.chat import ConversationContext
from marketchat.services.message_store import MessageStore
from tests.fixtures.fake_backend import FakeMarketplace
from tests.fixtures.payloads import BUYER_ID, CONVERSATION_ID, LISTING_ID, SELLER_ID


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests (isolated component tests)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests (multiple components)"
    )


@pytest.fixture
def market():
    """Marketplace with conversation c1: buyer u1, seller u2, listing l1 priced 500."""
    market = FakeMarketplace()
    market.add_conversation(
        CONVERSATION_ID,
        listing_id=LISTING_ID,
        seller_id=SELLER_ID,
        buyer_id=BUYER_ID,
        price="500.00"
    )
    return market


@pytest.fixture
def buyer_backend(market):
    return market.backend_for(BUYER_ID)


@pytest.fixture
def seller_backend(market):
    return market.backend_for(SELLER_ID)


@pytest.fixture
def buyer_context():
    return ConversationContext(
        conversation_id=CONVERSATION_ID,
        user_id=BUYER_ID,
        seller_id=SELLER_ID,
        listing_id=LISTING_ID,
        buyer_id=BUYER_ID
    )


@pytest.fixture
def seller_context():
    return ConversationContext(
        conversation_id=CONVERSATION_ID,
        user_id=SELLER_ID,
        seller_id=SELLER_ID,
        listing_id=LISTING_ID,
        buyer_id=BUYER_ID
    )


@pytest.fixture
def store():
    return MessageStore()
