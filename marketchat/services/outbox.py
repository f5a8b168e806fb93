"""
Optimistic send path.

WHAT: Append locally, POST, then reconcile or roll back
WHY: Plain messages and offers share the same render-before-confirm rule
HOW: One coroutine wrapping MessageStore.append/reconcile/rollback around the backend call
"""

from decimal import Decimal
from typing import Optional

from ..api.protocol import MarketplaceBackend
from ..api.types import ApiError, AuthenticationExpiredError
from ..models.chat import ConversationContext, Message, Offer
from ..utils.exceptions import MessageSendException, SessionExpiredException
from ..utils.logger import get_logger
from .message_store import MessageStore, coerce_message, new_temp_id

logger = get_logger(__name__)


async def send_optimistic(
    backend: MarketplaceBackend,
    store: MessageStore,
    context: ConversationContext,
    content: str,
    *,
    offer_price: Optional[Decimal] = None
) -> Message:
    """
    Send a message with an optimistic local copy.
    
    The temp entry renders immediately. On success it is replaced in place by
    the server's echo; on failure it is removed so the transcript never shows
    an unconfirmed message as sent.
    
    Args:
        backend: REST collaborator
        store: Transcript of the active conversation
        context: Conversation and acting user
        content: Message text
        offer_price: When set, the message carries a new Pending offer
    
    Returns:
        The confirmed message (or the local copy if the echo was unreadable)
    
    Raises:
        SessionExpiredException: Session could not be refreshed
        MessageSendException: Any other delivery failure
    """
    temp_id = new_temp_id()
    is_offer = offer_price is not None
    local = Message(
        id=temp_id,
        conversation_id=context.conversation_id,
        sender_id=context.user_id,
        content=content,
        is_offer=is_offer,
        offer=Offer(id=temp_id, price=offer_price) if is_offer else None,
    )
    store.append(local, temp_id=temp_id)
    
    try:
        created = await backend.send_message(
            context.conversation_id,
            context.user_id,
            content,
            is_offer=is_offer,
            price=offer_price
        )
    except AuthenticationExpiredError as e:
        store.rollback(temp_id)
        raise SessionExpiredException() from e
    except ApiError as e:
        store.rollback(temp_id)
        logger.warning(f"Send failed in conversation {context.conversation_id}, rolled back {temp_id}: {e}")
        raise MessageSendException(context.conversation_id, str(e)) from e
    
    store.reconcile(temp_id, created)
    return coerce_message(created) or local
