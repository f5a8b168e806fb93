"""
Conversation domain models.

WHAT: Messages, offers, reviews, listings and conversations as seen by the client
WHY: One validated shape regardless of how the backend spells its fields
HOW: Pydantic v2 models with before-validators that normalise wire payloads
"""

import enum
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


Role = Literal["buyer", "seller"]


class OfferStatus(str, enum.Enum):
    """Offer lifecycle states; everything except PENDING is terminal."""
    PENDING = "Pending"
    ACCEPTED = "Accepted"
    REJECTED = "Rejected"
    CANCELLED = "Cancelled"
    
    @property
    def is_terminal(self) -> bool:
        return self is not OfferStatus.PENDING


def _ref_id(value: Any) -> Any:
    """Pull the id out of a nested {"id": ...} reference, or pass scalars through."""
    if isinstance(value, dict):
        return value.get("id")
    return value


def _as_str_id(value: Any) -> Any:
    # Backend ids are integers or UUIDs; the client compares them as strings
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(int(value))
    return value


class Offer(BaseModel):
    """A buyer-proposed price with a single mutable status."""
    
    id: str
    price: Decimal = Field(gt=0)
    status: OfferStatus = OfferStatus.PENDING
    
    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        return _as_str_id(v)
    
    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, v):
        """Accept any casing the backend uses ("pending", "ACCEPTED", ...)."""
        if isinstance(v, str):
            for status in OfferStatus:
                if status.value.lower() == v.strip().lower():
                    return status
        return v
    
    @model_validator(mode="before")
    @classmethod
    def handle_amount_alias(cls, data):
        """Older endpoints call the price "amount"."""
        if isinstance(data, dict) and "price" not in data and "amount" in data:
            data = dict(data)
            data["price"] = data.pop("amount")
        return data


class Review(BaseModel):
    """A buyer's rating of a seller for one listing."""
    
    reviewer_id: str
    reviewed_user_id: str
    reviewed_product_id: str
    rating: int = Field(ge=1, le=5)
    text: Optional[str] = None
    
    @model_validator(mode="before")
    @classmethod
    def normalize_wire_fields(cls, data):
        if not isinstance(data, dict):
            return data
        data = dict(data)
        for wire, field in (
            ("reviewer", "reviewer_id"),
            ("reviewed_user", "reviewed_user_id"),
            ("reviewed_product", "reviewed_product_id"),
        ):
            if field not in data and wire in data:
                data[field] = _ref_id(data.pop(wire))
        if "text" not in data and "comment" in data:
            data["text"] = data.pop("comment")
        for field in ("reviewer_id", "reviewed_user_id", "reviewed_product_id"):
            if field in data:
                data[field] = _as_str_id(data[field])
        return data


class Message(BaseModel):
    """A message in a conversation transcript, optionally carrying an offer or review."""
    
    id: str
    conversation_id: Optional[str] = None
    sender_id: str
    content: str = ""
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    is_offer: bool = False
    offer: Optional[Offer] = None
    review_data: Optional[Review] = None
    
    @model_validator(mode="before")
    @classmethod
    def normalize_wire_fields(cls, data):
        """
        Map backend field names onto the model.
        
        The backend nests the sender ({"sender": {"id": 1, ...}}), names the
        conversation foreign key "conversation", and sends integer ids.
        """
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if "sender_id" not in data and "sender" in data:
            data["sender_id"] = _ref_id(data.pop("sender"))
        if "conversation_id" not in data and "conversation" in data:
            data["conversation_id"] = _ref_id(data.pop("conversation"))
        if "review_data" not in data and "review" in data:
            data["review_data"] = data.pop("review")
        for field in ("id", "sender_id", "conversation_id"):
            if field in data:
                data[field] = _as_str_id(data[field])
        if data.get("content") is None:
            data["content"] = ""
        if "created_at" in data and data["created_at"] is None:
            del data["created_at"]
        return data
    
    @property
    def offer_id(self) -> Optional[str]:
        """Offer identity if this message carries one."""
        if self.is_offer and self.offer is not None:
            return self.offer.id
        return None


class Listing(BaseModel):
    """The listing a conversation negotiates over."""
    
    listing_id: str
    seller_id: str
    title: Optional[str] = None
    price: Optional[Decimal] = None
    
    @model_validator(mode="before")
    @classmethod
    def normalize_wire_fields(cls, data):
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if "listing_id" not in data:
            data["listing_id"] = data.pop("product_id", data.get("id"))
        if "seller_id" not in data and "seller" in data:
            data["seller_id"] = _ref_id(data.pop("seller"))
        if "title" not in data and "name" in data:
            data["title"] = data.pop("name")
        for field in ("listing_id", "seller_id"):
            if field in data:
                data[field] = _as_str_id(data[field])
        return data


class Conversation(BaseModel):
    """Conversation metadata: the listing and its two participants."""
    
    id: str
    listing: Listing
    buyer_id: Optional[str] = None
    seller_id: Optional[str] = None
    messages: list[Message] = Field(default_factory=list)
    
    @model_validator(mode="before")
    @classmethod
    def normalize_wire_fields(cls, data):
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if "buyer_id" not in data and "buyer" in data:
            data["buyer_id"] = _ref_id(data.pop("buyer"))
        if "seller_id" not in data and "seller" in data:
            data["seller_id"] = _ref_id(data.pop("seller"))
        for field in ("id", "buyer_id", "seller_id"):
            if field in data:
                data[field] = _as_str_id(data[field])
        return data
    
    @model_validator(mode="after")
    def default_seller_from_listing(self):
        """The listing owner is the seller when the conversation omits it."""
        if self.seller_id is None:
            self.seller_id = self.listing.seller_id
        return self


@dataclass(frozen=True)
class ConversationContext:
    """Who is looking at which conversation; the role is never stored separately."""
    conversation_id: str
    user_id: str
    seller_id: str
    listing_id: str
    buyer_id: Optional[str] = None
    
    @classmethod
    def from_conversation(cls, conversation: Conversation, user_id: str) -> "ConversationContext":
        return cls(
            conversation_id=conversation.id,
            user_id=str(user_id),
            seller_id=conversation.listing.seller_id,
            listing_id=conversation.listing.listing_id,
            buyer_id=conversation.buyer_id,
        )
    
    @property
    def role(self) -> Role:
        return "seller" if self.user_id == self.seller_id else "buyer"
    
    @property
    def is_seller(self) -> bool:
        return self.role == "seller"
    
    @property
    def is_buyer(self) -> bool:
        return self.role == "buyer"


# Transcript entries: server-confirmed vs optimistic (awaiting confirmation)

@dataclass(frozen=True)
class ConfirmedEntry:
    """A message the server has acknowledged."""
    message: Message


@dataclass(frozen=True)
class PendingEntry:
    """A locally sent message awaiting server confirmation."""
    temp_id: str
    message: Message


TranscriptEntry = ConfirmedEntry | PendingEntry
