"""
Conversation synchronisation.

WHAT: Initial load plus a cancellable fixed-interval poll of the message list
WHY: The backend has no push channel; the transcript must converge without
     disturbing optimistic sends in flight
HOW: asyncio.gather for the one-shot load, an asyncio task for the poll loop,
     a disposed flag that discards results arriving after teardown
"""

import asyncio
from typing import Any, Optional

from pydantic import ValidationError

from ..api.protocol import MarketplaceBackend
from ..api.types import ApiError, AuthenticationExpiredError
from ..core.config import settings
from ..models.chat import Conversation, Message
from ..utils.exceptions import InitialLoadException, SessionExpiredException
from ..utils.logger import get_logger
from ..utils.offers import offer_fingerprint
from .events import ChatEventBus, MESSAGES_UPDATED
from .message_store import MessageStore, coerce_message

logger = get_logger(__name__)


class ConversationSync:
    """
    Keeps a MessageStore eventually consistent with the remote transcript.

    Lifetime is tied to the owning view: start() begins polling, dispose()
    (or leaving the async context) stops it and guarantees no later result
    is applied.
    """

    def __init__(
        self,
        backend: MarketplaceBackend,
        store: MessageStore,
        conversation_id: str,
        *,
        interval: Optional[float] = None,
        events: Optional[ChatEventBus] = None,
        detect_status_changes: Optional[bool] = None
    ):
        self.backend = backend
        self.store = store
        self.conversation_id = conversation_id
        self.interval = interval if interval is not None else settings.POLL_INTERVAL_SECONDS
        if self.interval <= 0:
            raise ValueError("Poll interval must be > 0")
        self.events = events
        self.detect_status_changes = (
            settings.SYNC_DETECT_STATUS_CHANGES if detect_status_changes is None else detect_status_changes
        )
        self._task: Optional[asyncio.Task] = None
        self._disposed = False
        self._fingerprint: tuple = ()

    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def load(self) -> Optional[Conversation]:
        """
        One-shot initial load: conversation metadata and messages in parallel.

        Returns:
            The conversation, or None if the view was disposed while loading
            (the stale response is discarded)

        Raises:
            SessionExpiredException: Session could not be refreshed
            InitialLoadException: Anything else; fatal to the view
        """
        try:
            conversation_data, messages = await asyncio.gather(
                self.backend.get_conversation(self.conversation_id),
                self.backend.get_messages(self.conversation_id)
            )
        except AuthenticationExpiredError as e:
            raise SessionExpiredException() from e
        except ApiError as e:
            logger.error(f"Initial load of conversation {self.conversation_id} failed: {e}")
            raise InitialLoadException(self.conversation_id, str(e)) from e

        if self._disposed:
            logger.info(f"Discarding initial load of conversation {self.conversation_id} after teardown")
            return None

        try:
            conversation = Conversation.model_validate(conversation_data)
        except ValidationError as e:
            logger.error(f"Malformed conversation {self.conversation_id}: {e.error_count()} validation errors")
            raise InitialLoadException(self.conversation_id, "malformed conversation") from e

        self._apply(self._parse(messages))
        logger.info(f"Loaded conversation {self.conversation_id} ({self.store.confirmed_count} messages)")
        return conversation

    async def tick(self) -> bool:
        """
        One poll: fetch the remote list and ingest it if it moved.

        Failures are logged and swallowed; stale data beats a broken view.
        An expired session stops polling.

        Returns:
            True if the store was updated
        """
        if self._disposed:
            return False

        try:
            remote = await self.backend.get_messages(self.conversation_id)
        except AuthenticationExpiredError:
            logger.warning(f"Session expired; stopping poll of conversation {self.conversation_id}")
            self.dispose()
            return False
        except ApiError as e:
            logger.warning(f"Poll of conversation {self.conversation_id} failed: {e}")
            return False

        if self._disposed:
            logger.debug(f"Discarding poll result for {self.conversation_id} after teardown")
            return False

        parsed = self._parse(remote)
        if not self._has_changed(parsed):
            return False

        self._apply(parsed)
        return True

    @staticmethod
    def _parse(remote: list[Any]) -> list[Message]:
        """Readable remote messages, first occurrence of each id."""
        parsed: list[Message] = []
        seen_ids: set[str] = set()
        for raw in remote:
            message = coerce_message(raw)
            if message is None or message.id in seen_ids:
                continue
            seen_ids.add(message.id)
            parsed.append(message)
        return parsed

    def _has_changed(self, parsed: list[Message]) -> bool:
        confirmed = self.store.confirmed_count
        if len(parsed) < confirmed:
            # Snapshot taken before a send we have already confirmed
            logger.debug(
                f"Ignoring stale poll of conversation {self.conversation_id} "
                f"({len(parsed)} < {confirmed} messages)"
            )
            return False
        if len(parsed) > confirmed:
            return True
        if not self.detect_status_changes:
            return False
        return offer_fingerprint(parsed) != self._fingerprint

    def _apply(self, parsed: list[Message]):
        self.store.ingest(parsed)
        self._fingerprint = offer_fingerprint(parsed)
        if self.events is not None:
            self.events.publish(MESSAGES_UPDATED, self.store.visible_messages())

    def start(self) -> "ConversationSync":
        """
        Begin polling on the running event loop.

        Returns:
            self, the dispose handle
        """
        if self._disposed:
            raise RuntimeError("ConversationSync has been disposed")
        if not self.running:
            self._task = asyncio.create_task(self._poll_loop())
            logger.debug(f"Polling conversation {self.conversation_id} every {self.interval}s")
        return self

    async def _poll_loop(self):
        while not self._disposed:
            await asyncio.sleep(self.interval)
            try:
                await self.tick()
            except Exception as e:
                logger.error(f"Unexpected poll error for conversation {self.conversation_id}: {e}")

    def dispose(self):
        """Stop polling; any in-flight fetch result is discarded."""
        self._disposed = True
        current = asyncio.current_task() if self._has_running_loop() else None
        if self._task is not None and not self._task.done() and self._task is not current:
            self._task.cancel()

    @staticmethod
    def _has_running_loop() -> bool:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return False
        return True

    async def aclose(self):
        """Dispose and wait for the poll task to finish."""
        self.dispose()
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def __aenter__(self) -> "ConversationSync":
        return self.start()

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()
