"""
Chat session facade.

WHAT: Everything one open conversation view needs, wired together
WHY: Store, sync, offers and review gate share one transcript and one lifetime
HOW: open() loads and wires the components; close() tears them down
"""

from typing import Optional

from ..api.protocol import MarketplaceBackend
from ..api.types import TokenStore
from ..models.chat import Conversation, ConversationContext, Message, Offer, Role
from ..utils.exceptions import InitialLoadException, ValidationException
from ..utils.logger import get_logger
from .conversation_sync import ConversationSync
from .events import ChatEventBus, MESSAGES_UPDATED, SIGNED_OUT
from .message_store import MessageStore
from .offer_machine import OfferStateMachine
from .outbox import send_optimistic
from .review_gate import ReviewGate

logger = get_logger(__name__)


class ChatSession:
    """
    One conversation view.

    WHAT: Owns the transcript, the poll loop, offer actions and the review gate
    WHY: Teardown must stop polling and drop late results in one step
    HOW: Build via ChatSession.open(); use as an async context manager or call close()
    """

    def __init__(
        self,
        backend: MarketplaceBackend,
        conversation: Conversation,
        context: ConversationContext,
        store: MessageStore,
        sync: ConversationSync,
        events: ChatEventBus,
        tokens: Optional[TokenStore] = None
    ):
        self.backend = backend
        self.conversation = conversation
        self.context = context
        self.store = store
        self.sync = sync
        self.events = events
        self.offers = OfferStateMachine(backend, store, context, events)
        self.reviews = ReviewGate(backend, store, context, events)
        self._closed = False
        self._remove_sign_out_listener = tokens.on_sign_out(self._handle_sign_out) if tokens else None

    @classmethod
    async def open(
        cls,
        backend: MarketplaceBackend,
        conversation_id: str,
        user_id: str,
        *,
        tokens: Optional[TokenStore] = None,
        poll_interval: Optional[float] = None,
        start_polling: bool = True
    ) -> "ChatSession":
        """
        Load a conversation and start keeping it in sync.

        Args:
            backend: REST collaborator
            conversation_id: Conversation to open
            user_id: Signed-in user
            tokens: Token store whose sign-out should close this session
                    (defaults to backend.tokens when present)
            poll_interval: Seconds between polls (settings default)
            start_polling: False to drive sync.tick() manually

        Raises:
            InitialLoadException: Conversation could not be loaded
            SessionExpiredException: Session could not be refreshed
        """
        store = MessageStore()
        events = ChatEventBus()
        sync = ConversationSync(backend, store, str(conversation_id), interval=poll_interval, events=events)

        conversation = await sync.load()
        if conversation is None:
            raise InitialLoadException(str(conversation_id), "view closed while loading")
        context = ConversationContext.from_conversation(conversation, str(user_id))
        session = cls(
            backend,
            conversation,
            context,
            store,
            sync,
            events,
            tokens=tokens or getattr(backend, "tokens", None)
        )

        await session.reviews.refresh()
        if start_polling:
            sync.start()

        logger.info(f"Opened conversation {conversation_id} as {context.role} {user_id}")
        return session

    @property
    def role(self) -> Role:
        return self.context.role

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending_offer(self) -> Optional[Offer]:
        return self.store.pending_offer

    def visible_messages(self) -> list[Message]:
        return self.store.visible_messages()

    async def send_message(self, content: str) -> Message:
        """
        Send a plain chat message with an optimistic local copy.

        Raises:
            ValidationException: Empty message (nothing is sent)
            MessageSendException: Delivery failed; the local copy was removed
            SessionExpiredException: Session could not be refreshed
        """
        text = (content or "").strip()
        if not text:
            raise ValidationException("Message cannot be empty", field="content")

        message = await send_optimistic(self.backend, self.store, self.context, text)
        self.events.publish(MESSAGES_UPDATED, self.store.visible_messages())
        return message

    def _handle_sign_out(self):
        logger.warning(f"Signed out while viewing conversation {self.context.conversation_id}")
        self.sync.dispose()
        self.events.publish(SIGNED_OUT, self.context.conversation_id)

    async def close(self):
        """Tear down: stop polling, discard in-flight results, drop subscribers."""
        if self._closed:
            return
        self._closed = True
        await self.sync.aclose()
        if self._remove_sign_out_listener is not None:
            self._remove_sign_out_listener()
        self.events.clear()
        logger.debug(f"Closed conversation {self.context.conversation_id}")

    async def __aenter__(self) -> "ChatSession":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()
