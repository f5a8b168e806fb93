"""
Backend protocol definition.

WHAT: Abstract interface for the marketplace REST backend
WHY: Decouple conversation services from the HTTP client so they can run against fakes
HOW: Use Protocol to define the async endpoint methods
"""

from decimal import Decimal
from typing import Any, Protocol


class MarketplaceBackend(Protocol):
    """Protocol defining the endpoints the conversation services call."""
    
    async def get_conversation(self, conversation_id: str) -> dict[str, Any]:
        """Fetch conversation metadata (listing, participants)."""
        ...
    
    async def get_messages(self, conversation_id: str) -> list[dict[str, Any]]:
        """Fetch the ordered message list for a conversation."""
        ...
    
    async def send_message(
        self,
        conversation_id: str,
        sender_id: str,
        content: str,
        *,
        is_offer: bool = False,
        price: Decimal | None = None
    ) -> dict[str, Any]:
        """Create a message (optionally an offer); returns the created message."""
        ...
    
    async def accept_offer(self, offer_id: str) -> Any:
        """Accept a pending offer."""
        ...
    
    async def reject_offer(self, offer_id: str) -> Any:
        """Reject a pending offer."""
        ...
    
    async def cancel_offer(self, offer_id: str) -> Any:
        """Cancel a pending offer."""
        ...
    
    async def submit_review(
        self,
        reviewed_user_id: str,
        reviewed_product_id: str,
        rating: int,
        text: str | None = None
    ) -> dict[str, Any]:
        """Create a review of a seller for a product."""
        ...
    
    async def get_listing_reviews(self, product_id: str) -> list[dict[str, Any]]:
        """Fetch the reviews already left for a product."""
        ...
