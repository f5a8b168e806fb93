"""
Conversation transcript store.

WHAT: Ordered, de-duplicated transcript of confirmed and optimistic messages
WHY: Polls, optimistic sends and offer mutations all land in one place and
     must agree on which offer is currently pending
HOW: List of ConfirmedEntry/PendingEntry, offer status overlays, derivation
     of the pending offer after every mutation
"""

from typing import Any, Iterable, Optional
from uuid import uuid4

from pydantic import ValidationError

from ..models.chat import (
    ConfirmedEntry,
    Message,
    Offer,
    OfferStatus,
    PendingEntry,
    TranscriptEntry,
)
from ..utils.logger import get_logger

logger = get_logger(__name__)

TEMP_ID_PREFIX = "temp-"


def new_temp_id() -> str:
    """Temporary id for an optimistic message (or the offer it carries)."""
    return f"{TEMP_ID_PREFIX}{uuid4()}"


def coerce_message(raw: Any) -> Optional[Message]:
    """Parse a wire message; malformed ones (no id, no sender) yield None."""
    if isinstance(raw, Message):
        return raw
    if not isinstance(raw, dict):
        logger.debug(f"Dropping non-object message: {raw!r:.80}")
        return None
    try:
        return Message.model_validate(raw)
    except ValidationError as e:
        logger.debug(f"Dropping malformed message {raw.get('id')!r}: {e.error_count()} validation errors")
        return None


def _is_echo(local: Message, remote: Message) -> bool:
    """True if remote looks like the server's copy of an optimistic message."""
    if local.sender_id != remote.sender_id or local.is_offer != remote.is_offer:
        return False
    if local.is_offer:
        if local.offer is None or remote.offer is None:
            return False
        return local.offer.price == remote.offer.price
    return local.content.strip() == remote.content.strip()


class MessageStore:
    """
    Canonical transcript for one conversation view.

    WHAT: Holds remote messages plus not-yet-confirmed local ones
    WHY: Optimistic sends render immediately and are replaced exactly once
    HOW: ingest/append/reconcile/rollback mutate the entry list; each mutation
         re-derives the offer table and the single pending offer
    """

    def __init__(self):
        self._entries: list[TranscriptEntry] = []
        # offer_id -> status applied locally after a successful mutation,
        # held until the server reports a terminal status itself
        self._status_overlay: dict[str, OfferStatus] = {}
        # temp_id -> server message id, for optimistic messages a poll confirmed first
        self._claimed: dict[str, str] = {}
        self._offers: dict[str, Offer] = {}
        self._offer_senders: dict[str, str] = {}
        self._pending_offer: Optional[Offer] = None

    # ---- read side ----

    @property
    def entries(self) -> tuple[TranscriptEntry, ...]:
        return tuple(self._entries)

    @property
    def confirmed_count(self) -> int:
        """Number of server-confirmed messages (what the poll compares against)."""
        return sum(1 for entry in self._entries if isinstance(entry, ConfirmedEntry))

    @property
    def pending_count(self) -> int:
        return sum(1 for entry in self._entries if isinstance(entry, PendingEntry))

    @property
    def pending_offer(self) -> Optional[Offer]:
        """The single Pending offer, as of the last mutation."""
        return self._pending_offer

    def is_pending(self, message_id: str) -> bool:
        return any(
            isinstance(entry, PendingEntry) and entry.temp_id == message_id
            for entry in self._entries
        )

    def messages(self) -> list[Message]:
        """Full transcript in order with resolved offer statuses (no de-duplication)."""
        return [self._resolved(entry.message) for entry in self._entries]

    def visible_messages(self) -> list[Message]:
        """
        Render-ready transcript.

        An offer-bearing message is dropped when an earlier message already
        carries the same offer id; repeated polls never produce a second card.
        """
        visible = []
        seen_offers: set[str] = set()
        for message in self.messages():
            offer_id = message.offer_id
            if offer_id is not None:
                if offer_id in seen_offers:
                    continue
                seen_offers.add(offer_id)
            visible.append(message)
        return visible

    def find_offer(self, offer_id: str) -> Optional[Offer]:
        """Offer with its resolved status, or None if no message carries it."""
        return self._offers.get(offer_id)

    def offer_sender(self, offer_id: str) -> Optional[str]:
        """Id of the user whose message first carried the offer (its creator)."""
        return self._offer_senders.get(offer_id)

    def latest_offer(self) -> Optional[Offer]:
        """Most recent offer in the transcript, whatever its status."""
        for entry in reversed(self._entries):
            offer_id = entry.message.offer_id
            if offer_id is not None:
                return self._offers.get(offer_id)
        return None

    # ---- write side ----

    def ingest(self, remote_messages: Iterable[Any]) -> int:
        """
        Replace the confirmed transcript with the authoritative remote list.

        Optimistic entries survive unless a newly seen remote message is their
        echo, in which case the temp entry is retired and reconcile() for it
        becomes a no-op. Confirmed messages missing from a stale remote list
        are kept; messages are never deleted locally.

        Args:
            remote_messages: Wire dicts or Message objects in server order

        Returns:
            Number of messages accepted (malformed and repeated ids are dropped)
        """
        known_ids = {
            entry.message.id for entry in self._entries if isinstance(entry, ConfirmedEntry)
        }

        confirmed: list[TranscriptEntry] = []
        seen_ids: set[str] = set()
        for raw in remote_messages:
            message = coerce_message(raw)
            if message is None or message.id in seen_ids:
                continue
            seen_ids.add(message.id)
            confirmed.append(ConfirmedEntry(message))

        claimed_ids = set(self._claimed.values())
        survivors: list[TranscriptEntry] = []
        for entry in self._entries:
            if not isinstance(entry, PendingEntry):
                continue
            echo = next(
                (
                    candidate.message for candidate in confirmed
                    if candidate.message.id not in known_ids
                    and candidate.message.id not in claimed_ids
                    and _is_echo(entry.message, candidate.message)
                ),
                None
            )
            if echo is not None:
                self._claimed[entry.temp_id] = echo.id
                claimed_ids.add(echo.id)
                logger.debug(f"Optimistic message {entry.temp_id} confirmed by poll as {echo.id}")
            else:
                survivors.append(entry)

        missing = [
            entry for entry in self._entries
            if isinstance(entry, ConfirmedEntry) and entry.message.id not in seen_ids
        ]
        if missing:
            logger.debug(f"Remote list lacks {len(missing)} confirmed messages; keeping them")

        self._entries = confirmed + missing + survivors
        self._refresh()
        return len(confirmed)

    def append(self, message: Message, temp_id: Optional[str] = None) -> str:
        """
        Append an optimistic message.

        Args:
            message: Locally built message
            temp_id: Handle to use (generated when omitted)

        Returns:
            The temp id used later to reconcile or roll back
        """
        temp_id = temp_id or new_temp_id()
        local = message.model_copy(update={"id": temp_id})
        self._entries.append(PendingEntry(temp_id=temp_id, message=local))
        self._refresh()
        return temp_id

    def reconcile(self, temp_id: str, server_message: Any) -> bool:
        """
        Replace an optimistic entry with the server-confirmed message in place.

        Args:
            temp_id: Handle returned by append()
            server_message: The created message echoed by the backend

        Returns:
            True if the transcript changed, False if a poll already confirmed it
            or the echo was unreadable (the next poll will confirm it)

        Raises:
            KeyError: temp_id was never appended, or was rolled back
        """
        if temp_id in self._claimed:
            return False

        index = self._index_of(temp_id)
        if index is None:
            raise KeyError(temp_id)

        confirmed = coerce_message(server_message)
        if confirmed is None:
            logger.warning(f"Unreadable echo for {temp_id}; waiting for next poll")
            return False

        self._claimed[temp_id] = confirmed.id
        already_present = any(
            isinstance(entry, ConfirmedEntry) and entry.message.id == confirmed.id
            for entry in self._entries
        )
        if already_present:
            del self._entries[index]
        else:
            self._entries[index] = ConfirmedEntry(confirmed)
        self._refresh()
        return True

    def rollback(self, temp_id: str) -> bool:
        """
        Remove an optimistic entry after a failed send.

        Returns:
            True if removed, False if the server had in fact confirmed it

        Raises:
            KeyError: temp_id is unknown
        """
        if temp_id in self._claimed:
            return False
        index = self._index_of(temp_id)
        if index is None:
            raise KeyError(temp_id)
        del self._entries[index]
        self._refresh()
        return True

    def apply_status(self, offer_id: str, status: OfferStatus) -> bool:
        """
        Overlay an offer status confirmed by a mutation call.

        Terminal statuses are immutable: an overlay never moves an offer out of
        Accepted/Rejected/Cancelled.

        Returns:
            True if the overlay was applied
        """
        current = self._offers.get(offer_id)
        if current is not None and current.status.is_terminal and current.status != status:
            logger.warning(f"Ignoring {status.value} for offer {offer_id}: already {current.status.value}")
            return False
        self._status_overlay[offer_id] = status
        self._refresh()
        return True

    def derive_pending_offer(self) -> Optional[Offer]:
        """Last offer-bearing message whose offer is Pending, or None."""
        pending = None
        for entry in self._entries:
            offer_id = entry.message.offer_id
            if offer_id is None:
                continue
            offer = self._offers[offer_id]
            if offer.status is OfferStatus.PENDING:
                pending = offer
        return pending

    # ---- internals ----

    def _index_of(self, temp_id: str) -> Optional[int]:
        for index, entry in enumerate(self._entries):
            if isinstance(entry, PendingEntry) and entry.temp_id == temp_id:
                return index
        return None

    def _resolved(self, message: Message) -> Message:
        offer_id = message.offer_id
        if offer_id is None:
            return message
        offer = self._offers.get(offer_id)
        if offer is None or offer == message.offer:
            return message
        return message.model_copy(update={"offer": offer})

    def _refresh(self):
        """
        Rebuild the offer table and the pending offer.

        Every message carrying an offer id reflects the same offer, so the
        latest carrier's status wins; a local overlay wins over a non-terminal
        server status and is dropped once the server reports a terminal one.
        """
        offers: dict[str, Offer] = {}
        senders: dict[str, str] = {}
        server_terminal: dict[str, OfferStatus] = {}

        for entry in self._entries:
            message = entry.message
            offer_id = message.offer_id
            if offer_id is None:
                continue
            offers[offer_id] = message.offer
            senders.setdefault(offer_id, message.sender_id)
            if isinstance(entry, ConfirmedEntry) and message.offer.status.is_terminal:
                server_terminal.setdefault(offer_id, message.offer.status)

        # Terminal states are immutable: a stale Pending copy cannot revive one
        for offer_id, status in server_terminal.items():
            if offers[offer_id].status is not status:
                offers[offer_id] = offers[offer_id].model_copy(update={"status": status})

        for offer_id in list(self._status_overlay):
            if offer_id in server_terminal:
                del self._status_overlay[offer_id]
            elif offer_id in offers:
                offers[offer_id] = offers[offer_id].model_copy(
                    update={"status": self._status_overlay[offer_id]}
                )

        self._offers = offers
        self._offer_senders = senders
        self._pending_offer = self.derive_pending_offer()
