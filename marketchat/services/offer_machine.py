"""
Offer lifecycle and role-gated offer actions.

WHAT: Pending -> Accepted/Rejected/Cancelled transitions and who may trigger them
WHY: Exactly one pending offer per conversation; buyers propose, sellers decide
HOW: Validate input, role and current status locally before every remote call,
     then overlay the confirmed status on the transcript
"""

from typing import Any, Optional

from ..api.protocol import MarketplaceBackend
from ..api.types import (
    ApiError,
    AuthenticationExpiredError,
    ConflictError,
    PermissionDeniedError,
)
from ..models.chat import ConversationContext, Offer, OfferStatus, Role
from ..utils.exceptions import (
    BusinessException,
    NoPendingOfferException,
    OfferAlreadyPendingException,
    OfferNotFoundException,
    OfferNotPendingException,
    OperationFailedException,
    RoleDeniedException,
    SessionExpiredException,
    ValidationException,
)
from ..utils.logger import get_logger
from ..utils.offers import format_offer_content, parse_offer_amount
from .events import ChatEventBus, OFFER_CHANGED
from .message_store import MessageStore, TEMP_ID_PREFIX
from .outbox import send_optimistic

logger = get_logger(__name__)

ALLOWED_TRANSITIONS: dict[OfferStatus, frozenset[OfferStatus]] = {
    OfferStatus.PENDING: frozenset({
        OfferStatus.ACCEPTED,
        OfferStatus.REJECTED,
        OfferStatus.CANCELLED,
    }),
}

# action -> (target status, role allowed to perform it)
OFFER_ACTIONS: dict[str, tuple[OfferStatus, Role]] = {
    "accept": (OfferStatus.ACCEPTED, "seller"),
    "reject": (OfferStatus.REJECTED, "seller"),
    "cancel": (OfferStatus.CANCELLED, "buyer"),
}


def can_transition(current: OfferStatus, target: OfferStatus) -> bool:
    """Terminal states have no outgoing transitions."""
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def ensure_transition(offer_id: str, current: OfferStatus, target: OfferStatus):
    if not can_transition(current, target):
        raise OfferNotPendingException(offer_id, current.value)


class OfferStateMachine:
    """
    Role-gated offer operations for one conversation.

    WHAT: make/amend/cancel (buyer) and accept/reject (seller)
    WHY: Wrong-role and wrong-state calls never reach the backend
    HOW: Local checks -> remote call -> status overlay on the MessageStore
    """

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

    def _require_role(self, role: Role, action: str):
        if self.context.role != role:
            logger.warning(f"User {self.context.user_id} ({self.context.role}) denied: {action}")
            raise RoleDeniedException(action, role, self.context.user_id)

    def _publish(self, offer: Optional[Offer]):
        if self.events is not None:
            self.events.publish(OFFER_CHANGED, offer)

    @property
    def pending_offer(self) -> Optional[Offer]:
        return self.store.pending_offer

    def allowed_actions(self, offer_id: str) -> set[str]:
        """Actions the current user may take on an offer right now (for button state)."""
        offer = self.store.find_offer(offer_id)
        if offer is None or offer.id.startswith(TEMP_ID_PREFIX):
            return set()
        allowed = set()
        for action, (target, role) in OFFER_ACTIONS.items():
            if role != self.context.role or not can_transition(offer.status, target):
                continue
            if action == "cancel" and self.store.offer_sender(offer_id) != self.context.user_id:
                continue
            allowed.add(action)
        return allowed

    # ---- buyer actions ----

    async def make_offer(self, amount: Any) -> Offer:
        """
        Propose a price.

        Raises:
            ValidationException: Amount missing, non-numeric or not > 0
            RoleDeniedException: Current user is the seller
            OfferAlreadyPendingException: Another offer is still pending
        """
        price = parse_offer_amount(amount)
        self._require_role("buyer", "make an offer")

        pending = self.store.pending_offer
        if pending is not None:
            raise OfferAlreadyPendingException(pending.id)

        return await self._create_offer(price)

    async def amend_offer(self, new_amount: Any) -> Offer:
        """
        Replace the pending offer with a new price.

        Cancel-then-create, not atomic: if the cancel succeeds and the create
        fails, the conversation has no pending offer until the buyer offers again.

        Raises:
            ValidationException: New amount invalid (checked before cancelling)
            RoleDeniedException: Current user is the seller
            NoPendingOfferException: Nothing to amend
        """
        price = parse_offer_amount(new_amount)
        self._require_role("buyer", "amend an offer")

        current = self.store.pending_offer
        if current is None:
            raise NoPendingOfferException(self.context.conversation_id)

        await self.cancel_offer(current.id)
        try:
            return await self._create_offer(price)
        except BusinessException:
            logger.warning(
                f"Amend in conversation {self.context.conversation_id} cancelled offer "
                f"{current.id} but could not create the replacement"
            )
            raise

    async def cancel_offer(self, offer_id: str) -> Offer:
        """Withdraw the buyer's own pending offer."""
        return await self._transition(offer_id, "cancel")

    # ---- seller actions ----

    async def accept_offer(self, offer_id: str) -> Offer:
        """Accept a pending offer (seller only)."""
        return await self._transition(offer_id, "accept")

    async def reject_offer(self, offer_id: str) -> Offer:
        """Reject a pending offer (seller only)."""
        return await self._transition(offer_id, "reject")

    # ---- internals ----

    async def _create_offer(self, price) -> Offer:
        message = await send_optimistic(
            self.backend,
            self.store,
            self.context,
            format_offer_content(price),
            offer_price=price
        )
        offer = message.offer or Offer(id=message.id, price=price)
        offer = self.store.find_offer(offer.id) or offer
        logger.info(f"Offer {offer.id} of {price} made in conversation {self.context.conversation_id}")
        self._publish(offer)
        return offer

    async def _transition(self, offer_id: str, action: str) -> Offer:
        """
        Run one remote status transition.

        Checks run in order: role, offer exists, creator (cancel only), status.
        A 403 becomes RoleDeniedException. A domain conflict refreshes the
        transcript and counts as success if the offer already sits in the
        target state.
        Any other transport failure becomes OperationFailedException and
        leaves the offer untouched.
        """
        target, role = OFFER_ACTIONS[action]
        self._require_role(role, f"{action} an offer")

        offer = self.store.find_offer(offer_id)
        if offer is None:
            raise OfferNotFoundException(offer_id)

        if action == "cancel" and self.store.offer_sender(offer_id) != self.context.user_id:
            logger.warning(f"User {self.context.user_id} tried to cancel offer {offer_id} made by someone else")
            raise RoleDeniedException("cancel this offer", "offer's creator", self.context.user_id)

        ensure_transition(offer_id, offer.status, target)

        if offer_id.startswith(TEMP_ID_PREFIX):
            raise ValidationException("Offer is still being sent", field="offer_id")

        call = getattr(self.backend, f"{action}_offer")
        try:
            result = await call(offer_id)
        except PermissionDeniedError as e:
            logger.warning(f"Backend denied {action} on offer {offer_id} for user {self.context.user_id}")
            raise RoleDeniedException(f"{action} this offer", role, self.context.user_id) from e
        except AuthenticationExpiredError as e:
            raise SessionExpiredException() from e
        except ConflictError as e:
            return await self._resolve_conflict(offer_id, target, e)
        except ApiError as e:
            logger.warning(f"Could not {action} offer {offer_id}: {e}")
            raise OperationFailedException(f"{action} the offer", str(e)) from e

        if isinstance(result, list):
            # Some endpoints answer with the refreshed transcript
            self.store.ingest(result)
        self.store.apply_status(offer_id, target)

        updated = self.store.find_offer(offer_id) or offer.model_copy(update={"status": target})
        logger.info(f"Offer {offer_id} -> {target.value} by {self.context.role} {self.context.user_id}")
        self._publish(updated)
        return updated

    async def _resolve_conflict(self, offer_id: str, target: OfferStatus, error: ConflictError) -> Offer:
        """Offer changed underneath us: refresh and accept the outcome if it matches intent."""
        logger.info(f"Conflict on offer {offer_id} ({error}); refreshing transcript")
        try:
            self.store.ingest(await self.backend.get_messages(self.context.conversation_id))
        except AuthenticationExpiredError as e:
            raise SessionExpiredException() from e
        except ApiError as e:
            logger.warning(f"Refresh after conflict failed: {e}")
            raise OfferNotPendingException(offer_id, "unknown") from error

        current = self.store.find_offer(offer_id)
        if current is not None and current.status is target:
            logger.info(f"Offer {offer_id} already {target.value}; treating as success")
            self._publish(current)
            return current

        status = current.status.value if current is not None else "unknown"
        raise OfferNotPendingException(offer_id, status) from error
