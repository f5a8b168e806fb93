"""Marketplace chat client: transcript sync, offer negotiation and review gating."""

from .services.chat_session import ChatSession
from .api.client import MarketplaceClient
from .api.types import TokenStore

__all__ = ["ChatSession", "MarketplaceClient", "TokenStore"]
