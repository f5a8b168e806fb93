"""
Review gate.

WHAT: At most one review per (buyer, listing), offered only after an accepted deal
WHY: Hide "Review Seller" once used and never send a duplicate submission
HOW: Per-pair cache flipped by a successful submit, a duplicate-review
     answer, or an existing review found on refresh
"""

import asyncio
from typing import Optional

from pydantic import ValidationError

from ..api.protocol import MarketplaceBackend
from ..api.types import ApiError, AuthenticationExpiredError, DuplicateReviewError
from ..models.chat import ConversationContext, OfferStatus, Review
from ..utils.exceptions import (
    OperationFailedException,
    ReviewNotAllowedException,
    SessionExpiredException,
    ValidationException,
)
from ..utils.logger import get_logger
from .events import ChatEventBus, REVIEW_SUBMITTED
from .message_store import MessageStore

logger = get_logger(__name__)


class ReviewGate:
    """Gate for the buyer's review of the seller on one listing."""

    def __init__(
        self,
        backend: MarketplaceBackend,
        store: MessageStore,
        context: ConversationContext,
        events: Optional[ChatEventBus] = None
    ):
        self.backend = backend
        self.store = store
        self.context = context
        self.events = events
        self._reviewed: dict[tuple[str, str], Review] = {}
        self._submit_lock = asyncio.Lock()

    def has_reviewed(self, buyer_id: Optional[str] = None, listing_id: Optional[str] = None) -> bool:
        key = (buyer_id or self.context.user_id, listing_id or self.context.listing_id)
        return key in self._reviewed

    def can_review(self, buyer_id: Optional[str] = None, listing_id: Optional[str] = None) -> bool:
        """
        True when the latest offer is Accepted, the current user is its buyer,
        and no review exists yet for (buyer, listing).
        """
        buyer_id = buyer_id or self.context.user_id
        listing_id = listing_id or self.context.listing_id
        return self._denial_reason(buyer_id, listing_id) is None

    def _denial_reason(self, buyer_id: str, listing_id: str) -> Optional[str]:
        if not self.context.is_buyer or buyer_id != self.context.user_id:
            return "only the buyer can review the seller"
        if listing_id != self.context.listing_id:
            return f"listing {listing_id} is not part of this conversation"
        if self.has_reviewed(buyer_id, listing_id):
            return "already reviewed"
        offer = self.store.latest_offer()
        if offer is None or offer.status is not OfferStatus.ACCEPTED:
            return "no accepted offer"
        return None

    async def refresh(self) -> bool:
        """
        Seed the gate from reviews the backend already holds for this listing.

        Failures are logged and leave the gate as it was; the backend still
        rejects a duplicate if one slips through.

        Returns:
            True if a review by the current user was found
        """
        try:
            reviews = await self.backend.get_listing_reviews(self.context.listing_id)
        except AuthenticationExpiredError as e:
            raise SessionExpiredException() from e
        except ApiError as e:
            logger.warning(f"Could not load reviews for listing {self.context.listing_id}: {e}")
            return False

        for raw in reviews:
            # Listing-scoped payloads may omit the reviewed user and product
            review = self._review_from(
                raw,
                reviewed_user_id=self.context.seller_id,
                reviewed_product_id=self.context.listing_id
            )
            if review is not None and review.reviewer_id == self.context.user_id:
                self._reviewed[(self.context.user_id, self.context.listing_id)] = review
                logger.debug(f"Existing review found for listing {self.context.listing_id}")
                return True
        return False

    async def submit_review(self, rating: int, text: Optional[str] = None) -> Review:
        """
        Submit the buyer's review of the seller.

        A second call for the same (buyer, listing) is a no-op returning the
        cached review; a backend "already reviewed" answer counts as success.

        Raises:
            ValidationException: Rating not an integer in 1..5
            ReviewNotAllowedException: No accepted offer, or user is not the buyer
            SessionExpiredException: Session could not be refreshed
            OperationFailedException: Backend unreachable or failed; retry later
        """
        if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
            raise ValidationException("Rating must be a whole number from 1 to 5", field="rating")
        text = text.strip() if text else None

        key = (self.context.user_id, self.context.listing_id)
        async with self._submit_lock:
            if key in self._reviewed:
                logger.debug(f"Review for listing {self.context.listing_id} already recorded; skipping")
                return self._reviewed[key]

            reason = self._denial_reason(*key)
            if reason is not None:
                raise ReviewNotAllowedException(reason)

            try:
                created = await self.backend.submit_review(
                    self.context.seller_id,
                    self.context.listing_id,
                    rating,
                    text
                )
                review = self._parse_review(created) or self._local_review(rating, text)
                logger.info(f"Review submitted for listing {self.context.listing_id} (rating={rating})")
            except DuplicateReviewError:
                logger.info(f"Listing {self.context.listing_id} already reviewed by {self.context.user_id}")
                review = self._local_review(rating, text)
            except AuthenticationExpiredError as e:
                raise SessionExpiredException() from e
            except ApiError as e:
                logger.warning(f"Review for listing {self.context.listing_id} not submitted: {e}")
                raise OperationFailedException("submit the review", str(e)) from e

            self._reviewed[key] = review

        if self.events is not None:
            self.events.publish(REVIEW_SUBMITTED, review)
        return review

    def _local_review(self, rating: int, text: Optional[str]) -> Review:
        return Review(
            reviewer_id=self.context.user_id,
            reviewed_user_id=self.context.seller_id,
            reviewed_product_id=self.context.listing_id,
            rating=rating,
            text=text,
        )

    def _parse_review(self, raw) -> Optional[Review]:
        return self._review_from(
            raw,
            reviewer_id=self.context.user_id,
            reviewed_user_id=self.context.seller_id,
            reviewed_product_id=self.context.listing_id
        )

    @staticmethod
    def _review_from(raw, **defaults: str) -> Optional[Review]:
        """Validate a wire review, filling fields absent under both wire and model names."""
        if not isinstance(raw, dict):
            return None
        data = dict(raw)
        for field, value in defaults.items():
            if field not in data and field.removesuffix("_id") not in data:
                data[field] = value
        try:
            return Review.model_validate(data)
        except ValidationError:
            return None
